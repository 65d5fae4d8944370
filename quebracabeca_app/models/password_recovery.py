# quebracabeca_app/models/password_recovery.py
from __future__ import annotations
from datetime import datetime, timezone
from ..extensions import db

def _utcnow():
    return datetime.now(timezone.utc)

class PasswordRecovery(db.Model):
    __tablename__ = "password_recoveries"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), index=True, nullable=False)
    token = db.Column(db.String(120), unique=True, nullable=False, index=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    used_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    user = db.relationship("User")
