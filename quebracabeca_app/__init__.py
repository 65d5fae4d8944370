# quebracabeca_app/__init__.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import os
from datetime import datetime, timezone

from flask import Flask
from config import Config, TestingConfig, StagingConfig, ProductionConfig
from .extensions import db, bcrypt, migrate, init_extensions, register_cli
from .services.stores import init_persistence
from .blueprints.webhooks import bp as webhooks_bp
from .blueprints.auth import bp as auth_bp

_CONFIGS = {
    "testing": TestingConfig,
    "staging": StagingConfig,
    "production": ProductionConfig,
}


def create_app(config_object: type[Config] | None = None, **overrides) -> Flask:
    app = Flask(__name__)

    if config_object is None:
        app_env = os.getenv("APP_ENV", "").lower()
        config_object = _CONFIGS.get(app_env, Config)
    app.config.from_object(config_object)
    # ajustes pontuais (ex.: URI do banco temporário dos testes)
    app.config.update(overrides)

    # Extensões (DB/Bcrypt/Migrate)
    init_extensions(app)

    # Cliente de persistência injetado nas rotas — fica em app.extensions["persistence"]
    init_persistence(app)
    app.config["STARTED_AT"] = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")

    # Blueprints
    app.register_blueprint(webhooks_bp)
    app.register_blueprint(auth_bp)

    # CLI (ex.: flask init-db, flask expire-subscriptions)
    register_cli(app)
    return app


__all__ = ["create_app", "db", "bcrypt", "migrate"]
