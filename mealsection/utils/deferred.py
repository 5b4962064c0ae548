from __future__ import annotations

import os

from flask import current_app, g, has_request_context

from mealsection.utils.observability import report_exception


def _queue_enabled() -> bool:
    return (os.getenv("SIDE_EFFECTS_QUEUE") or "").strip().lower() in ("1", "true", "yes", "on")


def _run_job(fn, args, kwargs) -> None:
    name = getattr(fn, "__name__", repr(fn))
    try:
        fn(*args, **kwargs)
    except Exception as exc:
        current_app.logger.exception("deferred_job_failed job=%s", name)
        report_exception(exc)


def _push(fn, args, kwargs, *, always: bool) -> None:
    if not has_request_context():
        _run_job(fn, args, kwargs)
        return
    jobs = getattr(g, "_deferred_jobs", None)
    if jobs is None:
        jobs = []
        g._deferred_jobs = jobs
    jobs.append((fn, args, kwargs, always))


def defer(fn, *args, **kwargs) -> None:
    """Run ``fn`` once the current response has been sent to the client.

    Jobs are dropped when the request fails, so a rolled-back state change
    never announces itself. Outside a request the job runs immediately. A
    failing job is logged and reported but never propagates.
    """
    _push(fn, args, kwargs, always=False)


def defer_always(fn, *args, **kwargs) -> None:
    """Like :func:`defer`, but the job also runs when the request fails."""
    _push(fn, args, kwargs, always=True)


def discard_deferred() -> None:
    if has_request_context():
        jobs = getattr(g, "_deferred_jobs", None) or []
        g._deferred_jobs = [job for job in jobs if job[3]]


def flush_deferred() -> int:
    jobs = getattr(g, "_deferred_jobs", None) or []
    g._deferred_jobs = []
    for fn, args, kwargs, _always in jobs:
        _run_job(fn, args, kwargs)
    return len(jobs)


def enqueue(task, **kwargs) -> None:
    """Hand a Celery task to the broker, or run it in-process.

    With ``SIDE_EFFECTS_QUEUE`` off (the default) the task body runs inline via
    ``apply``; a broker that cannot be reached falls back to inline as well.
    """
    if _queue_enabled():
        try:
            task.delay(**kwargs)
            return
        except Exception as exc:
            current_app.logger.warning("side_effect_queue_unavailable task=%s err=%s", task.name, exc)
    result = task.apply(kwargs=kwargs)
    if result.failed():
        raise result.result


def _run_after_close(app, jobs) -> None:
    with app.app_context():
        for fn, args, kwargs, _always in jobs:
            _run_job(fn, args, kwargs)


def install_deferred_dispatch(app) -> None:
    """Run deferred jobs once the server has finished sending the response.

    Jobs hang off ``response.call_on_close``, so an inline SMTP or FCM call
    never holds up the body. The teardown hook only catches requests whose
    response never reached ``after_request``.
    """

    @app.after_request
    def _hand_jobs_to_response(response):
        if int(response.status_code) >= 400:
            discard_deferred()
        jobs = getattr(g, "_deferred_jobs", None) or []
        g._deferred_jobs = []
        if jobs:
            flask_app = current_app._get_current_object()
            response.call_on_close(lambda: _run_after_close(flask_app, jobs))
        return response

    @app.teardown_request
    def _flush_orphaned_jobs(exc):
        if exc is not None:
            discard_deferred()
        flush_deferred()
