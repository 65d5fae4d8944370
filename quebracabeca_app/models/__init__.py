# quebracabeca_app/models/__init__.py
# -*- coding: utf-8 -*-
from .user import User
from .subscription import Subscription
from .transaction import Transaction
from .password_recovery import PasswordRecovery


__all__ = [
    "User",
    "Subscription",
    "Transaction",
    "PasswordRecovery",
]
