# quebracabeca_app/blueprints/webhooks.py
from __future__ import annotations
import hmac
import uuid

from flask import Blueprint, request, jsonify, current_app
from werkzeug.exceptions import HTTPException, MethodNotAllowed

from ..errors import WebhookError, MethodNotAllowedError, UnauthorizedWebhookError
from ..services.normalizer import PaymentStatus, normalize, parse_strict
from ..services.provisioning import ProvisioningService
from ..services.stores import get_persistence

bp = Blueprint("webhooks", __name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization, X-Client-Info, Apikey, X-Webhook-Token",
}
# aceita todos para responder 405 em JSON (e não o HTML padrão do Flask)
ALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
WEBHOOK_PATHS = ("/webhooks/kirvano", "/.netlify/functions/kirvano-webhook", "/functions/v1/payment-webhook")


@bp.after_request
def _cors(resp):
    resp.headers.update(CORS_HEADERS)
    return resp


@bp.app_errorhandler(MethodNotAllowed)
def _method_not_routed(err: MethodNotAllowed):
    # métodos fora de ALL_METHODS (ex.: TRACE) caem aqui, antes do blueprint
    if request.path not in WEBHOOK_PATHS:
        return err
    resp = jsonify(MethodNotAllowedError().to_dict())
    resp.status_code = 405
    resp.headers.update(CORS_HEADERS)
    return resp


@bp.errorhandler(WebhookError)
def _webhook_error(err: WebhookError):
    body = err.to_dict()
    if err.status_code >= 500:
        correlation_id = uuid.uuid4().hex
        current_app.logger.error("[%s] %s (%s)", correlation_id, err.message, err.payload)
        body["correlation_id"] = correlation_id
    else:
        current_app.logger.warning("%s: %s", err.message, err.payload)
    return jsonify(body), err.status_code


@bp.errorhandler(Exception)
def _unexpected_error(err: Exception):
    if isinstance(err, HTTPException):
        return err
    correlation_id = uuid.uuid4().hex
    current_app.logger.exception("[%s] Erro no webhook", correlation_id)
    return jsonify(error="Erro interno do servidor", details=str(err), correlation_id=correlation_id), 500


def _guard():
    """None para seguir; caso contrário a resposta do preflight."""
    if request.method == "OPTIONS":
        return "", 200
    if request.method != "POST":
        raise MethodNotAllowedError()
    secret = current_app.config.get("WEBHOOK_SHARED_SECRET")
    if secret and not hmac.compare_digest(request.headers.get("X-Webhook-Token", "").encode(), secret.encode()):
        raise UnauthorizedWebhookError()
    return None


def _service() -> ProvisioningService:
    return ProvisioningService(get_persistence(), logger=current_app.logger)


def _approved_response(result):
    return jsonify(success=True, message="Acesso liberado com sucesso!", data=result.to_dict())


@bp.route(WEBHOOK_PATHS[0], methods=ALL_METHODS)
@bp.route(WEBHOOK_PATHS[1], methods=ALL_METHODS)
def kirvano_webhook():
    """Recebe o webhook do checkout, normaliza e libera/cancela o acesso."""
    preflight = _guard()
    if preflight is not None:
        return preflight

    log = current_app.logger
    payload = request.get_json(silent=True)
    log.info("Webhook recebido: %s", payload)

    cfg = current_app.config
    event = normalize(
        payload,
        provider=cfg.get("PAYMENT_PROVIDER", "kirvano"),
        default_plan_type=cfg.get("DEFAULT_PLAN_TYPE", "lifetime"),
        default_currency=cfg.get("DEFAULT_CURRENCY", "BRL"),
        default_payment_method=cfg.get("DEFAULT_PAYMENT_METHOD", "pix"),
    )
    log.info("Dados extraídos: %s", event.summary())

    status = event.classification
    if status is PaymentStatus.CANCELLED:
        result = _service().cancel(event)
        message = "Acesso premium cancelado" if result.updated else "Nenhuma assinatura ativa para cancelar"
        return jsonify(success=True, message=message, email=event.email, status="premium_cancelado")

    if status is PaymentStatus.UNCLASSIFIED:
        log.info("Pagamento ainda não aprovado: %s", event.status)
        return jsonify(message="Aguardando aprovação do pagamento", status=event.status)

    return _approved_response(_service().provision(event))


@bp.route(WEBHOOK_PATHS[2], methods=ALL_METHODS)
def payment_webhook():
    """Variante de esquema fixo: payload já canônico, pagamento aprovado."""
    preflight = _guard()
    if preflight is not None:
        return preflight

    payload = request.get_json(silent=True)
    current_app.logger.info("Payment webhook received: %s", payload)
    event = parse_strict(payload)
    return _approved_response(_service().provision(event))
