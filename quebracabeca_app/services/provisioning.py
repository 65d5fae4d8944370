# quebracabeca_app/services/provisioning.py
# -*- coding: utf-8 -*-
"""Liberação (e cancelamento) de acesso a partir de um pagamento normalizado.

Sequência da aprovação: localizar-ou-criar usuário -> calcular validade ->
gravar assinatura -> registrar transação. Nada é desfeito em caso de falha:
reentregas do webhook contam com o localizar-antes-de-criar.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from dateutil.relativedelta import relativedelta

from ..errors import DuplicateIdentityError, ProvisioningError, ValidationError
from ..models.subscription import (
    PLAN_LIFETIME, PLAN_MONTHLY, PLAN_YEARLY, STATUS_ACTIVE, STATUS_CANCELLED,
)
from ..models.transaction import TX_COMPLETED
from .normalizer import CanonicalPaymentEvent
from .stores import PersistenceClient


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def compute_expiration(plan_type: str, started_at: datetime) -> Optional[datetime]:
    if plan_type == PLAN_MONTHLY:
        return started_at + relativedelta(months=1)
    if plan_type == PLAN_YEARLY:
        return started_at + relativedelta(years=1)
    if plan_type == PLAN_LIFETIME:
        return None
    raise ValidationError(f"plan_type inválido: {plan_type}")


@dataclass
class ProvisioningResult:
    user_id: Any
    subscription_id: Any
    transaction_id: Any
    email: str
    plan_type: str
    expires_at: Optional[datetime]
    user_created: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "subscription_id": self.subscription_id,
            "transaction_id": self.transaction_id,
            "email": self.email,
            "plan_type": self.plan_type,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


@dataclass
class CancellationResult:
    email: str
    updated: int
    cancelled_at: datetime


class ProvisioningService:
    def __init__(self, persistence: PersistenceClient,
                 logger: Optional[logging.Logger] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.persistence = persistence
        self.log = logger or logging.getLogger(__name__)
        self.clock = clock or _utcnow

    # ------------------------------------------------------------------
    # aprovação
    # ------------------------------------------------------------------
    def provision(self, event: CanonicalPaymentEvent) -> ProvisioningResult:
        user, created = self._find_or_create_user(event)

        started_at = self.clock()
        expires_at = compute_expiration(event.plan_type, started_at)

        try:
            subscription = self.persistence.subscriptions.upsert_active_subscription(user.id, {
                "status": STATUS_ACTIVE,
                "plan_type": event.plan_type,
                "started_at": started_at,
                "expires_at": expires_at,
                "cancelled_at": None,
            })
        except Exception as exc:
            self.log.exception("Erro ao criar assinatura para %s", event.email)
            raise ProvisioningError("Erro ao criar assinatura", step="subscription", details=str(exc)) from exc
        self.log.info("Assinatura ativa: id=%s user_id=%s plano=%s", subscription.id, user.id, event.plan_type)

        transaction_id = None
        try:
            transaction = self.persistence.transactions.insert_transaction({
                "user_id": user.id,
                "subscription_id": subscription.id,
                "amount": event.amount,
                "currency": event.currency,
                "payment_method": event.payment_method,
                "provider": event.provider,
                "provider_transaction_id": event.provider_transaction_id,
                "status": TX_COMPLETED,
                "metadata_json": {
                    "raw_payload": event.raw,
                    "processed_at": started_at.isoformat(),
                },
            })
            transaction_id = transaction.id
            self.log.info("Transação registrada: id=%s", transaction_id)
        except Exception:
            # a assinatura já libera o acesso; a transação é só trilha de auditoria
            self.log.exception("Erro ao registrar transação para %s (assinatura %s mantida)",
                               event.email, subscription.id)

        return ProvisioningResult(
            user_id=user.id,
            subscription_id=subscription.id,
            transaction_id=transaction_id,
            email=event.email,
            plan_type=event.plan_type,
            expires_at=expires_at,
            user_created=created,
        )

    def _find_or_create_user(self, event: CanonicalPaymentEvent):
        identities = self.persistence.identities
        try:
            user = identities.find_user_by_email(event.email)
        except Exception as exc:
            self.log.exception("Erro ao buscar usuário %s", event.email)
            raise ProvisioningError("Erro ao buscar usuário", step="find_user", details=str(exc)) from exc
        if user is not None:
            self.log.info("Usuário existente encontrado: %s", user.id)
            return user, False

        try:
            user = identities.create_user(event.email, {"full_name": event.name, "phone": event.phone or ""})
        except DuplicateIdentityError:
            # outra entrega do mesmo webhook criou o usuário entre a busca e o insert
            self.log.warning("Usuário %s criado em paralelo; recarregando", event.email)
            user = identities.find_user_by_email(event.email)
            if user is None:
                raise ProvisioningError("Erro ao criar usuário", step="create_user",
                                        details="usuário duplicado não encontrado após conflito")
            return user, False
        except Exception as exc:
            self.log.exception("Erro ao criar usuário %s", event.email)
            raise ProvisioningError("Erro ao criar usuário", step="create_user", details=str(exc)) from exc
        self.log.info("Novo usuário criado: %s", user.id)

        try:
            identities.send_recovery_link(event.email)
        except Exception:
            self.log.exception("Erro ao gerar link de recuperação para %s", event.email)
        return user, True

    # ------------------------------------------------------------------
    # cancelamento / estorno
    # ------------------------------------------------------------------
    def cancel(self, event: CanonicalPaymentEvent) -> CancellationResult:
        now = self.clock()
        try:
            updated = self.persistence.subscriptions.update_subscription_status(
                event.email, STATUS_CANCELLED, now)
        except Exception as exc:
            self.log.exception("Erro ao cancelar assinatura de %s", event.email)
            raise ProvisioningError("Erro ao cancelar assinatura", step="cancel", details=str(exc)) from exc
        if updated:
            self.log.info("Premium cancelado para %s (%s assinatura(s))", event.email, updated)
        else:
            self.log.warning("Cancelamento sem assinatura ativa para %s; nada a fazer", event.email)
        return CancellationResult(email=event.email, updated=updated, cancelled_at=now)
