# quebracabeca_app/models/transaction.py
# -*- coding: utf-8 -*-
from __future__ import annotations
from datetime import datetime, timezone
from ..extensions import db

TX_PENDING = "pending"
TX_COMPLETED = "completed"
TX_FAILED = "failed"
TX_REFUNDED = "refunded"

def _utcnow():
    return datetime.now(timezone.utc)

class Transaction(db.Model):
    """Registro de auditoria de cada pagamento; só recebe inserts."""
    __tablename__ = "transactions"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), index=True, nullable=False)
    subscription_id = db.Column(db.Integer, db.ForeignKey("subscriptions.id"), index=True, nullable=True)
    amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    currency = db.Column(db.String(8), nullable=False, default="BRL")
    payment_method = db.Column(db.String(20), default="pix")         # pix, credit_card, boleto, debit_card
    provider = db.Column(db.String(30), nullable=False)                # kirvano, stripe, mercadopago, manual...
    provider_transaction_id = db.Column(db.String(120), index=True)
    status = db.Column(db.String(20), nullable=False, default=TX_PENDING)  # pending, completed, failed, refunded
    # payload original do provedor, para auditoria/debug ("metadata" é reservado no declarative)
    metadata_json = db.Column("metadata", db.JSON, default=dict)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
