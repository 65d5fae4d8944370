# tests/conftest.py
# -*- coding: utf-8 -*-
import os
import sys
import uuid
import pathlib
import tempfile

import pytest


# --------------------------------------------------------------------------------------
# Limpeza de arquivos de DB residuais (ex.: test.sqlite)
# --------------------------------------------------------------------------------------
@pytest.fixture(scope="session", autouse=True)
def _cleanup_test_sqlite_files():
    for fname in ("test.sqlite", "test.db"):
        if os.path.exists(fname):
            try: os.remove(fname)
            except OSError: pass
    yield
    for fname in ("test.sqlite", "test.db"):
        if os.path.exists(fname):
            try: os.remove(fname)
            except OSError: pass

# =====================================================================================
# Localização do projeto (garante que "quebracabeca_app" esteja no sys.path)
# =====================================================================================
def _add_project_root():
    here = pathlib.Path(__file__).resolve()
    for base in [here.parent, here.parent.parent, pathlib.Path.cwd()]:
        for candidate in [base, *base.parents]:
            if (candidate / "quebracabeca_app").is_dir():
                if str(candidate) not in sys.path:
                    sys.path.insert(0, str(candidate))
                return candidate
    return None


PROJECT_ROOT = _add_project_root()


# =====================================================================================
# Ambiente de testes (sem serviços externos)
# =====================================================================================
@pytest.fixture(autouse=True, scope="session")
def _testing_env():
    os.environ["APP_ENV"] = "testing"
    os.environ["FLASK_ENV"] = "testing"
    os.environ["TESTING"] = "1"
    os.environ.setdefault("SECRET_KEY", "testing-secret")
    yield


# =====================================================================================
# App Flask com SQLite temporário e schema criado uma vez por sessão
# =====================================================================================
@pytest.fixture(scope="session")
def app(_testing_env):
    fd, db_path = tempfile.mkstemp(prefix="quebracabeca_test_", suffix=".sqlite")
    os.close(fd)

    from config import TestingConfig
    from quebracabeca_app import create_app
    from quebracabeca_app.extensions import db

    app = create_app(
        TestingConfig,
        SQLALCHEMY_DATABASE_URI=f"sqlite:///{db_path}",
        SECRET_KEY="testing-secret",
    )

    with app.app_context():
        db.create_all()

    yield app

    # teardown
    with app.app_context():
        db.session.remove()
        db.engine.dispose()
    try:
        os.remove(db_path)
    except OSError:
        pass


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def db_session(app):
    from quebracabeca_app.extensions import db
    with app.app_context():
        try:
            yield db.session
        finally:
            db.session.rollback()
            db.session.close()


@pytest.fixture
def persistence(app):
    return app.extensions["persistence"]


# =====================================================================================
# Sem rede: requests.post (relay de e-mail) é registrado, não enviado
# =====================================================================================
class _Resp:
    def __init__(self, status_code=200, json_data=None, text="OK"):
        self.status_code = status_code
        self._json = json_data or {}
        self.text = text

    def json(self):
        return self._json

    def raise_for_status(self):
        if self.status_code >= 400:
            import requests
            raise requests.HTTPError(f"{self.status_code} Error")


@pytest.fixture(autouse=True)
def sent_requests(monkeypatch):
    import requests

    calls = []

    def fake_post(url, *a, **k):
        calls.append({"url": url, **k})
        return _Resp()

    monkeypatch.setattr(requests, "post", fake_post, raising=False)
    yield calls


# =====================================================================================
# Helpers
# =====================================================================================
@pytest.fixture
def unique_email():
    return f"comprador+{uuid.uuid4().hex[:8]}@test.com"


@pytest.fixture
def user_existing(db_session):
    from quebracabeca_app.models.user import User
    email = f"user+{uuid.uuid4().hex[:6]}@test.com"
    u = User(name="Maria", email=email, phone="11999990000")
    u.set_password("secret123")
    db_session.add(u); db_session.commit()
    return u


@pytest.fixture
def logged_client(client, user_existing):
    with client.session_transaction() as sess:
        sess["user"] = {"id": user_existing.id, "email": user_existing.email, "name": user_existing.name}
    return client
