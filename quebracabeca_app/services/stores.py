# quebracabeca_app/services/stores.py
# -*- coding: utf-8 -*-
"""Colaboradores de persistência usados pelo provisionamento.

``PersistenceClient`` agrupa os três stores e é criado uma vez por app
(``init_persistence``), ficando em ``app.extensions["persistence"]``. As
rotas o entregam explicitamente ao ``ProvisioningService``; testes podem
trocar por outra implementação com os mesmos métodos.
"""
from __future__ import annotations

import secrets
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import requests
from flask import current_app
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..errors import DuplicateIdentityError
from ..extensions import db
from ..models.password_recovery import PasswordRecovery
from ..models.subscription import (
    STATUS_ACTIVE, STATUS_CANCELLED, STATUS_EXPIRED, STATUS_PENDING, Subscription,
)
from ..models.transaction import Transaction
from ..models.user import User


@contextmanager
def _committing():
    """Commit ao final; rollback e re-raise em qualquer erro de banco."""
    try:
        yield
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise


def _normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class IdentityStore:
    def __init__(self, recovery_url: str, token_ttl_minutes: int = 1440,
                 mail_webhook_url: str = "", timeout: int = 10):
        self.recovery_url = recovery_url
        self.token_ttl_minutes = token_ttl_minutes
        self.mail_webhook_url = mail_webhook_url
        self.timeout = timeout

    def find_user_by_email(self, email: str) -> Optional[User]:
        return User.query.filter(func.lower(User.email) == _normalize_email(email)).first()

    def create_user(self, email: str, profile: Dict[str, Any]) -> User:
        """Cria o usuário com senha aleatória; ela nunca sai daqui."""
        user = User(
            email=_normalize_email(email),
            name=profile.get("full_name") or "Cliente",
            phone=profile.get("phone") or None,
        )
        user.set_password(secrets.token_urlsafe(32))
        db.session.add(user)
        try:
            db.session.commit()
        except IntegrityError as exc:
            db.session.rollback()
            raise DuplicateIdentityError(email) from exc
        return user

    def issue_recovery_token(self, user: User) -> str:
        token = secrets.token_urlsafe(32)
        with _committing():
            db.session.add(PasswordRecovery(
                user_id=user.id,
                token=token,
                expires_at=datetime.now(timezone.utc) + timedelta(minutes=self.token_ttl_minutes),
            ))
        return token

    def send_recovery_link(self, email: str) -> str:
        """Gera o link de definição de senha e entrega ao relay de e-mail (ou só loga)."""
        user = self.find_user_by_email(email)
        if not user:
            raise LookupError(f"usuário não encontrado: {email}")
        token = self.issue_recovery_token(user)
        link = f"{self.recovery_url}?token={token}"
        if self.mail_webhook_url:
            resp = requests.post(
                self.mail_webhook_url,
                json={"type": "recovery", "email": user.email, "name": user.name, "link": link},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            current_app.logger.info("Link de recuperação enviado para %s", user.email)
        else:
            current_app.logger.info("Link de recuperação para %s: %s", user.email, link)
        return link

    def consume_recovery_token(self, token: str, new_password: str) -> Optional[User]:
        """Troca a senha se o token existir, não tiver sido usado e não tiver expirado."""
        rec = PasswordRecovery.query.filter_by(token=token).first()
        now = datetime.now(timezone.utc)
        if not rec or rec.used_at is not None:
            return None
        expires_at = rec.expires_at if rec.expires_at.tzinfo else rec.expires_at.replace(tzinfo=timezone.utc)
        if expires_at <= now:
            return None
        with _committing():
            rec.used_at = now
            rec.user.set_password(new_password)
        return rec.user


class SubscriptionStore:
    def insert_subscription(self, record: Dict[str, Any]) -> Subscription:
        sub = Subscription(**record)
        with _committing():
            db.session.add(sub)
        return sub

    def find_active_subscription(self, user_id: int) -> Optional[Subscription]:
        return (Subscription.query
                .filter_by(user_id=user_id, status=STATUS_ACTIVE)
                .order_by(Subscription.created_at.desc(), Subscription.id.desc())
                .first())

    def upsert_active_subscription(self, user_id: int, record: Dict[str, Any]) -> Subscription:
        """Uma assinatura ativa por usuário: reaprovação atualiza a existente."""
        sub = self.find_active_subscription(user_id)
        if sub is None:
            try:
                return self.insert_subscription(dict(record, user_id=user_id))
            except IntegrityError:
                # outra aprovação gravou a ativa entre a busca e o insert
                sub = self.find_active_subscription(user_id)
                if sub is None:
                    raise
        with _committing():
            for name, value in record.items():
                setattr(sub, name, value)
        return sub

    def update_subscription_status(self, email: str, status: str, timestamp: datetime) -> int:
        """Atualiza as assinaturas ativas/pendentes do e-mail; devolve quantas mudaram."""
        user_ids = select(User.id).where(func.lower(User.email) == _normalize_email(email))
        values = {"status": status, "updated_at": timestamp}
        if status == STATUS_CANCELLED:
            values["cancelled_at"] = timestamp
        stmt = (update(Subscription)
                .where(Subscription.user_id.in_(user_ids),
                       Subscription.status.in_((STATUS_ACTIVE, STATUS_PENDING)))
                .values(**values)
                .execution_options(synchronize_session=False))
        with _committing():
            result = db.session.execute(stmt)
        return result.rowcount or 0

    def latest_for_user(self, user_id: int) -> Optional[Subscription]:
        return (Subscription.query
                .filter_by(user_id=user_id)
                .order_by(Subscription.created_at.desc(), Subscription.id.desc())
                .first())

    def expire_overdue(self, now: datetime) -> int:
        stmt = (update(Subscription)
                .where(Subscription.status == STATUS_ACTIVE,
                       Subscription.expires_at.isnot(None),
                       Subscription.expires_at <= now)
                .values(status=STATUS_EXPIRED, updated_at=now)
                .execution_options(synchronize_session=False))
        with _committing():
            result = db.session.execute(stmt)
        return result.rowcount or 0


class TransactionStore:
    def insert_transaction(self, record: Dict[str, Any]) -> Transaction:
        tx = Transaction(**record)
        with _committing():
            db.session.add(tx)
        return tx


@dataclass
class PersistenceClient:
    identities: Any
    subscriptions: Any
    transactions: Any


def build_persistence(config) -> PersistenceClient:
    return PersistenceClient(
        identities=IdentityStore(
            recovery_url=config.get("RECOVERY_URL", ""),
            token_ttl_minutes=int(config.get("RECOVERY_TOKEN_TTL_MINUTES", 1440)),
            mail_webhook_url=config.get("RECOVERY_MAIL_WEBHOOK_URL", ""),
            timeout=int(config.get("EXTERNAL_CALL_TIMEOUT", 10)),
        ),
        subscriptions=SubscriptionStore(),
        transactions=TransactionStore(),
    )


def init_persistence(app):
    app.extensions["persistence"] = build_persistence(app.config)


def get_persistence() -> PersistenceClient:
    client = current_app.extensions.get("persistence")
    if client is None:
        client = build_persistence(current_app.config)
        current_app.extensions["persistence"] = client
    return client
