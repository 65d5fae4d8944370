# quebracabeca_app/extensions.py
# -*- coding: utf-8 -*-
from __future__ import annotations
from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_migrate import Migrate
from sqlalchemy import text



db = SQLAlchemy()
bcrypt = Bcrypt()
migrate = Migrate()

def init_extensions(app):
    # DB/Bcrypt/Migrate
    db.init_app(app)
    bcrypt.init_app(app)
    migrate.init_app(app, db)

def register_cli(app):
    @app.cli.command("init-db")
    def init_db_cmd():
        """Cria as tabelas iniciais (DEV/MVP). Para produção: use flask db upgrade."""
        # garante que os modelos estão registrados no metadata
        from . import models  # noqa: F401
        with app.app_context():
            # sanity check
            db.session.execute(text("SELECT 1"))
            db.create_all()
            print("Tabelas criadas.")

    @app.cli.command("expire-subscriptions")
    def expire_subscriptions_cmd():
        """Marca como 'expired' as assinaturas ativas cujo expires_at já passou."""
        from .services.stores import get_persistence
        with app.app_context():
            count = get_persistence().subscriptions.expire_overdue(datetime.now(timezone.utc))
            print(f"Assinaturas expiradas: {count}")
