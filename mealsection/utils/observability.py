from __future__ import annotations

import json
import os
import time
import uuid
from datetime import datetime

from flask import g, request


REQUEST_ID_HEADER = "X-Request-Id"

# Never shipped to Sentry: bearer tokens, webhook signatures, login bodies.
_SECRET_HEADERS = frozenset({"authorization", "cookie", "set-cookie", "x-paystack-signature"})
_SECRET_FIELDS = frozenset({"password", "fcmToken", "accountNumber"})


def get_request_id() -> str:
    """The current request's correlation id, or "" outside a request."""
    try:
        return getattr(g, "request_id", "") or ""
    except RuntimeError:
        return ""


def sentry_enabled() -> bool:
    return bool((os.getenv("SENTRY_DSN") or "").strip())


def _traces_sample_rate() -> float:
    try:
        rate = float((os.getenv("SENTRY_TRACES_SAMPLE_RATE") or "0").strip())
    except ValueError:
        return 0.0
    return max(0.0, min(rate, 1.0))


def init_sentry(app) -> None:
    if not sentry_enabled():
        app.logger.info("sentry_disabled_no_dsn")
        return
    try:
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=os.getenv("SENTRY_DSN").strip(),
            environment=(os.getenv("SENTRY_ENVIRONMENT") or os.getenv("MEALSECTION_ENV") or "dev"),
            release=(os.getenv("GIT_SHA") or "unknown"),
            integrations=[FlaskIntegration()],
            send_default_pii=False,
            traces_sample_rate=_traces_sample_rate(),
            before_send=_before_send_scrub,
        )
        app.logger.info("sentry_enabled")
    except Exception as e:
        app.logger.warning("sentry_init_failed err=%s", e)


def _before_send_scrub(event, hint):
    req = event.get("request") or {}
    headers = req.get("headers") or {}
    for key in list(headers.keys()):
        if key.lower() in _SECRET_HEADERS:
            headers[key] = "[REDACTED]"
    body = req.get("data")
    if isinstance(body, dict):
        for key in _SECRET_FIELDS.intersection(body):
            body[key] = "[REDACTED]"
    req["headers"] = headers
    event["request"] = req
    return event


def report_exception(exc: BaseException) -> None:
    """Forward a handled exception to Sentry when it is configured."""
    if not sentry_enabled():
        return
    import sentry_sdk

    with sentry_sdk.new_scope() as scope:
        request_id = get_request_id()
        if request_id:
            scope.set_tag("request_id", request_id)
        sentry_sdk.capture_exception(exc)


def install_request_observers(app) -> None:
    """Tag every request with an id and log one JSON access line for it.

    The id comes from the caller's ``X-Request-Id`` when present, is echoed on
    the response, and doubles as the trace id of any deferred notification the
    request schedules.
    """

    @app.before_request
    def _begin_request():
        g.request_id = (request.headers.get(REQUEST_ID_HEADER) or "").strip()[:64] or uuid.uuid4().hex
        g.request_started_at = time.perf_counter()

    @app.after_request
    def _log_request(response):
        request_id = getattr(g, "request_id", "") or uuid.uuid4().hex
        response.headers[REQUEST_ID_HEADER] = request_id
        started = getattr(g, "request_started_at", None)
        view_args = request.view_args or {}
        line = {
            "ts": datetime.utcnow().isoformat(timespec="milliseconds"),
            "request_id": request_id,
            "method": request.method,
            "path": request.path,
            "endpoint": request.endpoint,
            "status": int(response.status_code),
            "latency_ms": round((time.perf_counter() - started) * 1000.0, 2) if started is not None else None,
            "account_id": getattr(g, "auth_user_id", None),
            "role": getattr(g, "auth_role", None),
        }
        if "order_id" in view_args:
            line["order_id"] = view_args["order_id"]
        app.logger.info(json.dumps(line))
        return response
