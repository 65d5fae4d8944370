# quebracabeca_app/blueprints/auth.py
# -*- coding: utf-8 -*-
from __future__ import annotations

from flask import Blueprint, request, jsonify, session, current_app

from quebracabeca_app.decorators import login_required
from quebracabeca_app.extensions import db
from quebracabeca_app.models import User
from quebracabeca_app.services.stores import get_persistence

bp = Blueprint("auth", __name__, url_prefix="/auth")

MIN_PASSWORD_LEN = 6


def _json() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def current_user():
    info = session.get("user") or {}
    if not info.get("id"):
        return None
    return db.session.get(User, info["id"])


@bp.route("/login", methods=["POST"])
def login():
    data = _json()
    email = (data.get("email") or "").strip()
    pwd = data.get("password") or ""

    u = get_persistence().identities.find_user_by_email(email) if email else None
    if not u or not u.check_password(pwd):
        return jsonify(error="Credenciais inválidas."), 401

    session["user"] = {"id": u.id, "name": u.name, "email": u.email}
    return jsonify(success=True, user=u.to_dict())


@bp.route("/logout", methods=["POST"])
def logout():
    session.clear()
    return jsonify(success=True)


@bp.route("/forgot-password", methods=["POST"])
def forgot_password():
    email = (_json().get("email") or "").strip()
    if not email:
        return jsonify(error="Informe o e-mail."), 400

    identities = get_persistence().identities
    # resposta igual exista ou não o e-mail, mesmo se o envio falhar
    if identities.find_user_by_email(email):
        try:
            identities.send_recovery_link(email)
        except Exception:
            current_app.logger.exception("Falha ao enviar link de recuperação para %s", email)
    return jsonify(success=True, message="Se o e-mail estiver cadastrado, você receberá um link para definir a senha.")


@bp.route("/reset-password", methods=["POST"])
def reset_password():
    data = _json()
    token = (data.get("token") or "").strip()
    pwd = data.get("password") or ""
    if not token or len(pwd) < MIN_PASSWORD_LEN:
        return jsonify(error=f"Informe o token e uma senha com pelo menos {MIN_PASSWORD_LEN} caracteres."), 400

    u = get_persistence().identities.consume_recovery_token(token, pwd)
    if not u:
        return jsonify(error="Link de recuperação inválido ou expirado."), 400
    return jsonify(success=True, message="Senha definida.")


@bp.route("/me")
@login_required
def me():
    u = current_user()
    if not u:
        session.clear()
        return jsonify(error="Usuário não encontrado."), 401

    subs = get_persistence().subscriptions
    sub = subs.find_active_subscription(u.id) or subs.latest_for_user(u.id)
    return jsonify(
        user=u.to_dict(),
        subscription=sub.to_dict() if sub else None,
        has_active_subscription=bool(sub and sub.is_current()),
    )
