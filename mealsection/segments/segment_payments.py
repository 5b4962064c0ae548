from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from mealsection.errors import Forbidden, UpstreamFailure, ValidationError
from mealsection.extensions import db
from mealsection.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from mealsection.integrations.payments.factory import build_payments_provider
from mealsection.models import ROLE_MANAGER
from mealsection.services.payment_service import (
    confirm_top_up,
    mark_webhook_event,
    process_paystack_webhook,
    record_webhook,
    verify_reference,
)
from mealsection.tasks.notification_tasks import alert_operator
from mealsection.utils.auth import require_account
from mealsection.utils.deferred import defer_always, enqueue
from mealsection.utils.observability import get_request_id, report_exception

payments_bp = Blueprint("payments_bp", __name__, url_prefix="/api/users")
webhooks_bp = Blueprint("webhooks_bp", __name__, url_prefix="/api/webhooks")
public_webhooks_bp = Blueprint("public_webhooks_bp", __name__, url_prefix="/webhook")


def _provider():
    try:
        return build_payments_provider(current_app.config)
    except IntegrationDisabledError:
        raise UpstreamFailure("Payments are disabled", code="INTEGRATION_DISABLED")
    except IntegrationMisconfiguredError as e:
        current_app.logger.error("payments_provider_misconfigured err=%s", e)
        raise UpstreamFailure("Payments are not configured", code="INTEGRATION_MISCONFIGURED")


@payments_bp.post("/verify-paystack")
def verify_paystack():
    require_account()
    payload = request.get_json(silent=True) or {}
    result = verify_reference(_provider(), payload.get("reference"))
    return jsonify({"ok": True, **result}), 200


@payments_bp.post("/add-balance")
def add_balance():
    caller = require_account()
    payload = request.get_json(silent=True) or {}
    user_id = payload.get("userId")
    if user_id is None:
        raise ValidationError("userId, valid amount, and payment reference are required")
    try:
        uid = int(user_id)
    except (TypeError, ValueError):
        raise ValidationError("userId, valid amount, and payment reference are required")
    if caller.role != ROLE_MANAGER and uid != int(caller.id):
        raise Forbidden("Forbidden")
    result = confirm_top_up(
        _provider(),
        amount=payload.get("amount"),
        reference=payload.get("reference"),
        retry_delay=float(current_app.config.get("PAYSTACK_RETRY_DELAY_SECONDS", 1.0)),
    )
    return jsonify(
        {
            "ok": True,
            "message": "Payment verified. Your balance updates once the payment is confirmed.",
            **result,
        }
    ), 200


def _handle_paystack_webhook():
    raw = request.get_data() or b""
    signature = request.headers.get("X-Paystack-Signature")
    event = None
    try:
        event = record_webhook(raw)
        body, status = process_paystack_webhook(raw=raw, signature=signature, event=event)
    except Exception as exc:
        db.session.rollback()
        event_id = int(event.id) if event is not None else None
        current_app.logger.exception("paystack_webhook_failed webhook_event_id=%s", event_id)
        report_exception(exc)
        defer_always(
            enqueue,
            alert_operator,
            title="Paystack webhook processing failed",
            details={
                "webhookEventId": event_id,
                "reference": (event.reference if event is not None else None) or "",
                "error": str(exc)[:500],
            },
            trace_id=get_request_id(),
        )
        if event is not None:
            try:
                mark_webhook_event(event, "failed", error=str(exc))
            except SQLAlchemyError:
                db.session.rollback()
                current_app.logger.exception("paystack_webhook_mark_failed webhook_event_id=%s", event_id)
        return jsonify(
            {
                "ok": False,
                "error": "WEBHOOK_HANDLER_FAILED",
                "message": "Webhook processing failed",
                "trace_id": get_request_id(),
            }
        ), 500
    return jsonify(body), int(status)


@public_webhooks_bp.post("/paystack")
def paystack_webhook():
    return _handle_paystack_webhook()


@webhooks_bp.post("/paystack")
def paystack_webhook_api():
    return _handle_paystack_webhook()
