from __future__ import annotations

import hashlib
import hmac
import json
import os
import time
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from flask import current_app
from sqlalchemy.exc import IntegrityError

from mealsection.errors import UpstreamFailure, ValidationError
from mealsection.extensions import db
from mealsection.integrations.payments.base import REFERENCE_NOT_FOUND
from mealsection.models import Account, ProcessedPaystackRef, WebhookEvent
from mealsection.models.webhook_event import WEBHOOK_STATUSES
from mealsection.utils.ledger import post_txn
from mealsection.utils.observability import get_request_id


CHARGE_SUCCESS = "charge.success"

# Best-effort processor fee estimate used only when metadata carries no amount.
FEE_RATE = Decimal("0.015")
FEE_FLAT = Decimal("100")
FEE_FLAT_THRESHOLD = Decimal("2500")


def _whole(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _decimal(raw) -> Decimal | None:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        return None
    if not value.is_finite():
        return None
    return value


def compute_credit_amount(data: dict) -> int:
    """Amount to credit for a successful charge, in whole naira.

    ``metadata.amount`` (the amount the customer meant to deposit) wins. Without
    it, the processor fee is estimated and subtracted from the charged amount.
    """
    meta = data.get("metadata")
    if isinstance(meta, dict):
        intended = _decimal(meta.get("amount"))
        if intended is not None and intended > 0:
            return _whole(intended)

    charged_kobo = _decimal(data.get("amount"))
    if charged_kobo is None or charged_kobo <= 0:
        return 0
    charged = charged_kobo / 100
    fee = charged * FEE_RATE + (FEE_FLAT if charged >= FEE_FLAT_THRESHOLD else Decimal("0"))
    amount = charged - Decimal(_whole(fee))
    if amount <= 0:
        amount = charged
    return _whole(amount)


def verify_signature(raw: bytes, signature: str | None, secret: str) -> bool:
    if not signature or not secret:
        return False
    expected = hmac.new(secret.encode("utf-8"), raw or b"", hashlib.sha512).hexdigest()
    return hmac.compare_digest(expected, signature.strip().lower())


def _append_audit_log(raw: bytes) -> None:
    log_dir = current_app.config.get("WEBHOOK_LOG_DIR") or ""
    if not log_dir:
        return
    path = os.path.join(log_dir, "paystack_webhook.log")
    try:
        os.makedirs(log_dir, exist_ok=True)
        with open(path, "a", encoding="utf-8") as fh:
            fh.write(f"\n[{datetime.utcnow().isoformat()}] Event: {(raw or b'').decode('utf-8', errors='replace')}")
    except OSError as e:
        current_app.logger.warning("paystack_webhook_audit_log_failed path=%s err=%s", path, e)


def record_webhook(raw: bytes) -> WebhookEvent:
    """Persist the raw delivery before anything else looks at it.

    The log file copy is best effort; the database row is not.
    """
    _append_audit_log(raw)
    event = WebhookEvent(
        provider="paystack",
        status="received",
        request_id=get_request_id()[:64] or None,
        body_sha256=hashlib.sha256(raw or b"").hexdigest(),
        raw_body=(raw or b"").decode("utf-8", errors="replace")[:200000],
    )
    db.session.add(event)
    db.session.commit()
    return event


def mark_webhook_event(
    event: WebhookEvent | None,
    status: str,
    *,
    error: str = "",
    account_id: int | None = None,
    amount: int | None = None,
) -> None:
    if event is None:
        return
    if status not in WEBHOOK_STATUSES:
        raise ValueError(f"unknown webhook status {status!r}")
    event.status = status
    event.handled_at = datetime.utcnow()
    if error:
        event.error = error[:4000]
    if account_id is not None:
        event.account_id = int(account_id)
        event.credited_amount = amount
    db.session.commit()


def process_paystack_webhook(*, raw: bytes, signature: str | None, event: WebhookEvent | None = None) -> tuple[dict, int]:
    """Verify and apply one Paystack delivery. Returns ``(body, status)``.

    A reference is credited at most once: the processed-reference row and the
    balance credit commit together, and the unique reference column turns a
    concurrent duplicate into a rollback.
    """
    secret = (current_app.config.get("PAYSTACK_SECRET_KEY") or "").strip()
    if not secret:
        raise RuntimeError("PAYSTACK_SECRET_KEY is not configured")

    if not verify_signature(raw, signature, secret):
        current_app.logger.warning("paystack_webhook_invalid_signature request_id=%s", get_request_id())
        mark_webhook_event(event, "invalid_signature")
        return {"ok": False, "error": "INVALID_SIGNATURE", "message": "Invalid signature"}, 401

    try:
        payload = json.loads((raw or b"").decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        mark_webhook_event(event, "invalid_payload")
        return {"ok": False, "error": "INVALID_PAYLOAD", "message": "Body must be JSON"}, 400
    if not isinstance(payload, dict):
        mark_webhook_event(event, "invalid_payload")
        return {"ok": False, "error": "INVALID_PAYLOAD", "message": "Body must be an object"}, 400

    kind = str(payload.get("event") or "").strip()
    if event is not None:
        event.event = kind[:64] or None
    if kind != CHARGE_SUCCESS:
        mark_webhook_event(event, "ignored")
        return {"ok": True, "message": "Ignored"}, 200

    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    reference = str(data.get("reference") or "").strip()
    email = str(((data.get("customer") or {}).get("email") or "")).strip().lower()
    if event is not None:
        event.reference = reference[:128] or None
    if not reference:
        mark_webhook_event(event, "invalid_payload")
        return {"ok": False, "error": "INVALID_PAYLOAD", "message": "data.reference is required"}, 400

    if ProcessedPaystackRef.query.filter_by(reference=reference).first() is not None:
        mark_webhook_event(event, "duplicate")
        return {"ok": True, "message": "Already processed"}, 200

    account = Account.query.filter(db.func.lower(Account.email) == email).first() if email else None
    if account is None:
        mark_webhook_event(event, "unknown_account")
        return {"ok": False, "error": "NOT_FOUND", "message": "User not found"}, 404

    amount = compute_credit_amount(data)
    if amount <= 0:
        mark_webhook_event(event, "invalid_payload")
        return {"ok": False, "error": "INVALID_PAYLOAD", "message": "No creditable amount"}, 400

    try:
        db.session.add(ProcessedPaystackRef(reference=reference, account_id=int(account.id), amount=amount))
        db.session.flush()
        post_txn(
            account.id,
            amount,
            direction="in",
            kind="wallet_topup",
            reference=reference,
            note="Wallet top-up",
            commit=False,
        )
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        # rollback expired the fields set above
        if event is not None:
            event.event = kind[:64]
            event.reference = reference[:128]
        current_app.logger.info("paystack_webhook_duplicate_race reference=%s", reference)
        mark_webhook_event(event, "duplicate")
        return {"ok": True, "message": "Already processed"}, 200

    current_app.logger.info(
        "paystack_webhook_credited reference=%s account_id=%s amount=%s",
        reference,
        account.id,
        amount,
    )
    mark_webhook_event(event, "processed", account_id=account.id, amount=amount)
    return {"ok": True, "message": "Wallet credited", "accountId": int(account.id), "amount": amount}, 200


# -------------------------
# Pull verification
# -------------------------


def _verify_once(provider, reference: str):
    try:
        return provider.verify(reference)
    except RuntimeError as e:
        msg = str(e)
        if msg.startswith(REFERENCE_NOT_FOUND):
            raise ValidationError(
                "Payment reference not found. Please try again in a few seconds.",
                code="REFERENCE_NOT_FOUND",
            )
        raise UpstreamFailure(msg.split(":", 1)[-1] or "Verification failed")


def verify_reference(provider, reference) -> dict:
    ref = (reference or "").strip() if isinstance(reference, str) else ""
    if not ref:
        raise ValidationError("reference is required")
    result = _verify_once(provider, ref)
    if not result.succeeded:
        raise ValidationError("Payment not successful", code="PAYMENT_NOT_SUCCESSFUL")
    return {
        "verified": True,
        "status": result.status,
        "amount": float(result.amount_naira),
        "customer": result.customer_email,
    }


def confirm_top_up(provider, *, amount, reference, retry_delay: float = 1.0) -> dict:
    """Check a client-reported top-up against the processor.

    This never credits the balance; the webhook does. A reference the
    processor does not know yet is retried once after ``retry_delay`` seconds.
    """
    if isinstance(amount, bool) or not isinstance(amount, (int, float)) or amount <= 0:
        raise ValidationError("userId, valid amount, and payment reference are required")
    ref = (reference or "").strip() if isinstance(reference, str) else ""
    if not ref:
        raise ValidationError("userId, valid amount, and payment reference are required")

    try:
        result = _verify_once(provider, ref)
    except ValidationError as e:
        if e.code != "REFERENCE_NOT_FOUND":
            raise
        time.sleep(retry_delay)
        result = _verify_once(provider, ref)

    if not result.succeeded or result.amount_naira != Decimal(str(amount)):
        raise ValidationError("Payment verification failed or amount mismatch", code="VERIFICATION_FAILED")
    return {"verified": True, "reference": ref, "amount": amount}
