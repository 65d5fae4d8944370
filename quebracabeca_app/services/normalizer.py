# quebracabeca_app/services/normalizer.py
# -*- coding: utf-8 -*-
"""Normalização dos payloads de webhook de pagamento.

Cada provedor manda o mesmo dado com nomes diferentes (``email``,
``customer_email``, ``customer.email``...). Para cada campo lógico há uma
lista ordenada de acessores; o primeiro valor não vazio vence.
"""
from __future__ import annotations

import enum
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..errors import ValidationError
from ..models.subscription import PLAN_LIFETIME, PLAN_MONTHLY, PLAN_TYPES, PLAN_YEARLY

Accessor = Callable[[Dict[str, Any]], Any]

APPROVED_KEYWORDS = (
    "paid", "approved", "completed", "success", "pago",
    "aprovado", "concluido", "confirmado", "active", "ativo",
)
CANCELLED_KEYWORDS = (
    "refunded", "cancelled", "canceled", "chargeback",
    "reembolsado", "cancelado", "estornado",
)

# grafias aceitas para o tipo de plano
_PLAN_ALIASES = {
    "monthly": PLAN_MONTHLY, "mensal": PLAN_MONTHLY, "month": PLAN_MONTHLY,
    "yearly": PLAN_YEARLY, "anual": PLAN_YEARLY, "annual": PLAN_YEARLY, "year": PLAN_YEARLY,
    "lifetime": PLAN_LIFETIME, "vitalicio": PLAN_LIFETIME, "vitalício": PLAN_LIFETIME,
}

MISSING_EMAIL = "Email do comprador não encontrado"
INCOMPLETE_DATA = "Dados incompletos: user_email, user_name, amount e plan_type são obrigatórios"


class PaymentStatus(enum.Enum):
    APPROVED = "approved"
    CANCELLED = "cancelled"
    UNCLASSIFIED = "unclassified"


@dataclass
class CanonicalPaymentEvent:
    email: str
    name: str = "Cliente"
    phone: Optional[str] = None
    amount: float = 0.0
    currency: str = "BRL"
    payment_method: str = "pix"
    provider: str = "kirvano"
    provider_transaction_id: Optional[str] = None
    plan_type: str = PLAN_LIFETIME
    status: str = ""
    raw: Any = field(default_factory=dict)

    @property
    def classification(self) -> PaymentStatus:
        return classify_status(self.status)

    def summary(self) -> Dict[str, Any]:
        """Campos extraídos, sem o payload bruto (para log)."""
        return {
            "email": self.email, "name": self.name, "phone": self.phone,
            "amount": self.amount, "currency": self.currency,
            "payment_method": self.payment_method, "provider": self.provider,
            "provider_transaction_id": self.provider_transaction_id,
            "plan_type": self.plan_type, "status": self.status,
        }


# ---------------------------------------------------------------------
# Acessores
# ---------------------------------------------------------------------
def key(name: str) -> Accessor:
    return lambda payload: payload.get(name)


def path(*names: str) -> Accessor:
    """Acessor aninhado: ``path("customer", "email")`` lê payload["customer"]["email"]."""
    def _get(payload):
        current: Any = payload
        for name in names:
            if not isinstance(current, dict):
                return None
            current = current.get(name)
        return current
    return _get


EMAIL_ALIASES: List[Accessor] = [
    key("email"), key("customer_email"), key("buyer_email"), key("user_email"),
    path("customer", "email"), path("buyer", "email"),
    path("customer", "customer_email"), path("data", "customer", "email"),
]
NAME_ALIASES: List[Accessor] = [
    key("name"), key("customer_name"), key("buyer_name"), key("user_name"),
    path("customer", "name"), path("buyer", "name"), path("data", "customer", "name"),
]
PHONE_ALIASES: List[Accessor] = [
    key("phone"), key("customer_phone"), key("buyer_phone"), key("user_phone"),
    path("customer", "phone"), path("customer", "phone_number"), path("buyer", "phone"),
]
AMOUNT_ALIASES: List[Accessor] = [
    key("amount"), key("value"), key("price"), key("total"), key("total_price"),
    path("payment", "amount"), path("sale", "amount"),
]
TRANSACTION_ID_ALIASES: List[Accessor] = [
    key("transaction_id"), key("payment_id"), key("order_id"), key("sale_id"),
    key("id"), path("payment", "id"),
]
STATUS_ALIASES: List[Accessor] = [
    key("status"), key("payment_status"), key("sale_status"), key("event"),
    path("payment", "status"),
]
PLAN_ALIASES: List[Accessor] = [key("plan_type"), key("plan"), path("offer", "plan_type")]
METHOD_ALIASES: List[Accessor] = [key("payment_method"), key("method"), path("payment", "method")]
CURRENCY_ALIASES: List[Accessor] = [key("currency"), path("payment", "currency")]


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (dict, list, tuple)):
        return not value
    return False


def first_present(payload: Dict[str, Any], accessors: Iterable[Accessor], default: Any = None) -> Any:
    for accessor in accessors:
        value = accessor(payload)
        if not _is_empty(value):
            return value.strip() if isinstance(value, str) else value
    return default


def to_amount(value: Any) -> float:
    """Converte para float não negativo; qualquer falha vira 0."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        s = str(value).strip().replace("R$", "").strip()
        # aceita "1.234,56" e "1234,56"
        if "." in s and "," in s and s.rfind(",") > s.rfind("."):
            s = s.replace(".", "").replace(",", ".")
        else:
            s = s.replace(",", ".")
        try:
            number = float(s or "0")
        except ValueError:
            return 0.0
    if math.isnan(number) or math.isinf(number) or number < 0:
        return 0.0
    return number


def to_plan_type(value: Any) -> Optional[str]:
    if _is_empty(value):
        return None
    return _PLAN_ALIASES.get(str(value).strip().lower())


def classify_status(status: Any) -> PaymentStatus:
    text = str(status or "").lower()
    if any(word in text for word in APPROVED_KEYWORDS):
        return PaymentStatus.APPROVED
    if any(word in text for word in CANCELLED_KEYWORDS):
        return PaymentStatus.CANCELLED
    return PaymentStatus.UNCLASSIFIED


def _as_text(value: Any) -> Optional[str]:
    return None if _is_empty(value) else str(value).strip()


# ---------------------------------------------------------------------
# Normalização
# ---------------------------------------------------------------------
def normalize(
    payload: Any,
    *,
    provider: str = "kirvano",
    default_plan_type: str = PLAN_LIFETIME,
    default_currency: str = "BRL",
    default_payment_method: str = "pix",
) -> CanonicalPaymentEvent:
    """Payload qualquer de provedor -> CanonicalPaymentEvent.

    Só o e-mail é obrigatório; o resto cai em valores padrão.
    """
    if not isinstance(payload, dict):
        raise ValidationError(MISSING_EMAIL, dados_recebidos=payload if payload is not None else {})

    email = _as_text(first_present(payload, EMAIL_ALIASES))
    if not email:
        raise ValidationError(MISSING_EMAIL, dados_recebidos=payload)

    return CanonicalPaymentEvent(
        email=email,
        name=_as_text(first_present(payload, NAME_ALIASES)) or "Cliente",
        phone=_as_text(first_present(payload, PHONE_ALIASES)),
        amount=to_amount(first_present(payload, AMOUNT_ALIASES, 0)),
        currency=(_as_text(first_present(payload, CURRENCY_ALIASES)) or default_currency).upper(),
        payment_method=_as_text(first_present(payload, METHOD_ALIASES)) or default_payment_method,
        provider=provider,
        provider_transaction_id=_as_text(first_present(payload, TRANSACTION_ID_ALIASES)),
        plan_type=to_plan_type(first_present(payload, PLAN_ALIASES)) or default_plan_type,
        status=_as_text(first_present(payload, STATUS_ALIASES)) or "",
        raw=payload,
    )


def parse_strict(payload: Any) -> CanonicalPaymentEvent:
    """Variante de esquema fixo (user_email, user_name, amount, plan_type...).

    Usada por integrações que já mandam o payload canônico; o pagamento é
    considerado aprovado.
    """
    if not isinstance(payload, dict):
        raise ValidationError(INCOMPLETE_DATA)

    required = ("user_email", "user_name", "amount", "plan_type")
    if any(_is_empty(payload.get(k)) or payload.get(k) in (0, False) for k in required):
        raise ValidationError(INCOMPLETE_DATA)

    plan_type = str(payload["plan_type"]).strip().lower()
    if plan_type not in PLAN_TYPES:
        raise ValidationError(f"plan_type inválido: {payload['plan_type']}. Use monthly, yearly ou lifetime.")

    return CanonicalPaymentEvent(
        email=str(payload["user_email"]).strip(),
        name=str(payload["user_name"]).strip(),
        phone=_as_text(payload.get("user_phone")),
        amount=to_amount(payload["amount"]),
        currency=(_as_text(payload.get("currency")) or "BRL").upper(),
        payment_method=_as_text(payload.get("payment_method")) or "pix",
        provider=_as_text(payload.get("payment_provider")) or "manual",
        provider_transaction_id=_as_text(payload.get("provider_transaction_id")),
        plan_type=plan_type,
        status="completed",
        raw=payload,
    )
