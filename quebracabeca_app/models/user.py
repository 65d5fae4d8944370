# quebracabeca_app/models/user.py
# -*- coding: utf-8 -*-
from __future__ import annotations
from datetime import datetime, timezone
from ..extensions import db, bcrypt

def _utcnow():
    return datetime.now(timezone.utc)

class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, default="Cliente")
    email = db.Column(db.String(180), unique=True, nullable=False, index=True)  # sempre minúsculo
    phone = db.Column(db.String(40))
    password_hash = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    subscriptions = db.relationship("Subscription", backref="user", lazy="dynamic")
    transactions = db.relationship("Transaction", backref="user", lazy="dynamic")

    def set_password(self, raw: str) -> None:
        self.password_hash = bcrypt.generate_password_hash(raw).decode("utf-8")

    def check_password(self, raw: str) -> bool:
        return bcrypt.check_password_hash(self.password_hash, raw)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "email": self.email, "phone": self.phone}
