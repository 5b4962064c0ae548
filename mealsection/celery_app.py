from __future__ import annotations

import json
import os
from datetime import datetime

from celery import Celery
from celery.signals import task_failure, task_retry


NOTIFICATIONS_QUEUE = "notifications"

_observers_bound = False


def _redis_url(*names: str, default: str = "") -> str:
    for name in names:
        value = (os.getenv(name) or "").strip()
        if value:
            return value
    return default


def _task_context(kwargs) -> dict:
    """Correlation fields worth logging from a notification task's kwargs."""
    if not isinstance(kwargs, dict):
        return {}
    context = {}
    for key in ("trace_id", "order_id"):
        value = kwargs.get(key)
        if value not in (None, ""):
            context[key] = str(value)
    return context


def _log_task_event(flask_app, level: str, event: str, **fields) -> None:
    payload = {"event": event, "ts": datetime.utcnow().isoformat(timespec="seconds")}
    payload.update(fields)
    getattr(flask_app.logger, level)(json.dumps(payload, default=str))


def _bind_task_observers(flask_app) -> None:
    global _observers_bound
    if _observers_bound:
        return

    @task_failure.connect(weak=False)
    def _notification_failed(sender=None, task_id=None, exception=None, kwargs=None, **_extra):
        _log_task_event(
            flask_app,
            "error",
            "notification_task_failed",
            task=getattr(sender, "name", "") or "",
            task_id=str(task_id or ""),
            error=repr(exception),
            **_task_context(kwargs),
        )

    @task_retry.connect(weak=False)
    def _notification_retried(request=None, reason=None, **_extra):
        _log_task_event(
            flask_app,
            "warning",
            "notification_task_retry",
            task=str(getattr(request, "task", "") or ""),
            task_id=str(getattr(request, "id", "") or ""),
            attempt=int(getattr(request, "retries", 0) or 0) + 1,
            reason=str(reason or ""),
            **_task_context(getattr(request, "kwargs", None)),
        )

    _observers_bound = True


def create_celery_app(flask_app) -> Celery:
    """Celery bound to ``flask_app`` for the deferred notification tasks.

    Every task runs inside the Flask app context so it can use the session and
    the messaging provider. Results are not kept: callers fire and forget.
    """
    broker = _redis_url("CELERY_BROKER_URL", "REDIS_URL", default="redis://localhost:6379/0")
    celery = Celery(
        flask_app.import_name,
        broker=broker,
        backend=_redis_url("CELERY_RESULT_BACKEND", "REDIS_URL", default=broker),
    )
    celery.conf.update(
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        task_ignore_result=True,
        task_acks_late=True,
        worker_prefetch_multiplier=1,
        task_default_queue=NOTIFICATIONS_QUEUE,
        task_routes={"mealsection.tasks.notification_tasks.*": {"queue": NOTIFICATIONS_QUEUE}},
        broker_connection_retry_on_startup=True,
        timezone="UTC",
        enable_utc=True,
    )

    class AppContextTask(celery.Task):
        def __call__(self, *args, **kwargs):
            with flask_app.app_context():
                return self.run(*args, **kwargs)

    celery.Task = AppContextTask
    celery.set_default()
    celery.autodiscover_tasks(["mealsection.tasks"], related_name="notification_tasks")
    _bind_task_observers(flask_app)
    return celery
