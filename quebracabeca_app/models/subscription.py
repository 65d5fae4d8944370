# quebracabeca_app/models/subscription.py
from __future__ import annotations
from datetime import datetime, timezone
from ..extensions import db

STATUS_ACTIVE = "active"
STATUS_EXPIRED = "expired"
STATUS_CANCELLED = "cancelled"
STATUS_PENDING = "pending"
SUBSCRIPTION_STATUSES = (STATUS_ACTIVE, STATUS_EXPIRED, STATUS_CANCELLED, STATUS_PENDING)

PLAN_MONTHLY = "monthly"
PLAN_YEARLY = "yearly"
PLAN_LIFETIME = "lifetime"
PLAN_TYPES = (PLAN_MONTHLY, PLAN_YEARLY, PLAN_LIFETIME)


def _utcnow():
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite devolve datetimes sem fuso; tudo aqui é gravado em UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class Subscription(db.Model):
    __tablename__ = "subscriptions"
    # no máximo uma assinatura ativa por usuário
    __table_args__ = (
        db.Index("uq_subscriptions_user_active", "user_id", unique=True,
                 sqlite_where=db.text("status = 'active'"),
                 postgresql_where=db.text("status = 'active'")),
    )
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), index=True, nullable=False)

    status = db.Column(db.String(20), nullable=False, default=STATUS_PENDING)  # active, expired, cancelled, pending
    plan_type = db.Column(db.String(20), nullable=False, default=PLAN_LIFETIME)  # monthly, yearly, lifetime
    started_at = db.Column(db.DateTime(timezone=True))
    expires_at = db.Column(db.DateTime(timezone=True))    # None = vitalício
    cancelled_at = db.Column(db.DateTime(timezone=True))

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def is_current(self, now: datetime | None = None) -> bool:
        if self.status != STATUS_ACTIVE:
            return False
        if self.expires_at is None:
            return True
        return as_utc(self.expires_at) > (now or _utcnow())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "status": self.status,
            "plan_type": self.plan_type,
            "started_at": as_utc(self.started_at).isoformat() if self.started_at else None,
            "expires_at": as_utc(self.expires_at).isoformat() if self.expires_at else None,
            "cancelled_at": as_utc(self.cancelled_at).isoformat() if self.cancelled_at else None,
        }
