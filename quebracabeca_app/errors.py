# quebracabeca_app/errors.py
# -*- coding: utf-8 -*-
"""Erros do fluxo de webhook de pagamento.

Cada erro carrega o status HTTP e os campos extras que vão no corpo JSON,
sempre ao lado da chave estável ``error``.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class WebhookError(Exception):
    status_code = 500

    def __init__(self, message: str, **payload: Any):
        super().__init__(message)
        self.message = message
        self.payload: Dict[str, Any] = payload

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.message}
        body.update(self.payload)
        return body


class ValidationError(WebhookError):
    """Entrada ausente ou malformada (ex.: e-mail do comprador)."""
    status_code = 400


class MethodNotAllowedError(WebhookError):
    status_code = 405

    def __init__(self, message: str = "Método não permitido. Use POST.", **payload: Any):
        super().__init__(message, **payload)


class UnauthorizedWebhookError(WebhookError):
    status_code = 401

    def __init__(self, message: str = "Token do webhook inválido.", **payload: Any):
        super().__init__(message, **payload)


class ProvisioningError(WebhookError):
    """Falha ao persistir usuário, assinatura ou transação."""
    status_code = 500

    def __init__(self, message: str, step: Optional[str] = None, **payload: Any):
        super().__init__(message, **payload)
        self.step = step


class DuplicateIdentityError(Exception):
    """O e-mail já existe no cadastro (corrida entre entregas do mesmo webhook)."""

    def __init__(self, email: str):
        super().__init__(f"usuário já existe: {email}")
        self.email = email
