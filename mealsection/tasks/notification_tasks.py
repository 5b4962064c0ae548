from __future__ import annotations

import json
import time
from datetime import datetime

from celery import shared_task
from flask import current_app

from mealsection.extensions import db
from mealsection.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from mealsection.integrations.messaging.base import INVALID_TOKEN
from mealsection.integrations.messaging.factory import build_messaging_provider
from mealsection.models import Account, Order, ROLE_RIDER, STATUS_PROCESSING
from mealsection.services import notification_templates as tpl


def _task_log(task_name: str, *, status: str, started_at: float, trace_id: str = "", **extra):
    duration_ms = int(max(0.0, (time.perf_counter() - float(started_at))) * 1000.0)
    payload = {
        "task_name": task_name,
        "status": status,
        "duration_ms": duration_ms,
        "trace_id": str(trace_id or ""),
        "timestamp": datetime.utcnow().isoformat(),
    }
    payload.update(extra or {})
    current_app.logger.info(json.dumps(payload))


def _provider():
    try:
        return build_messaging_provider(current_app.config)
    except IntegrationDisabledError:
        return None
    except IntegrationMisconfiguredError as e:
        current_app.logger.warning("notifications_misconfigured err=%s", e)
        return None


def _email(provider, to: str, message: dict) -> bool:
    if not to:
        return False
    result = provider.send_email(to=to, subject=message["subject"], html=message["html"])
    if not result.ok:
        current_app.logger.warning("email_send_failed to=%s code=%s msg=%s", to, result.code, result.message)
    return result.ok


def _push(provider, account: Account, title: str, body: str, data: dict) -> bool:
    token = (account.fcm_token or "").strip()
    if not token:
        current_app.logger.info("push_skipped_no_token account_id=%s", account.id)
        return False
    result = provider.send_push(token=token, title=title, body=body, data=data)
    if result.ok:
        return True
    current_app.logger.warning("push_send_failed account_id=%s code=%s", account.id, result.code)
    if result.code == INVALID_TOKEN:
        account.fcm_token = None
        db.session.commit()
        current_app.logger.info("push_token_cleared account_id=%s", account.id)
    return False


def _university_riders(university: str) -> list[Account]:
    return (
        Account.query.filter_by(role=ROLE_RIDER, university=university, valid=True)
        .order_by(Account.id.asc())
        .all()
    )


def _vendor_groups(order: Order) -> dict:
    """Group an order's items per vendor: id when known, store name otherwise."""
    groups: dict = {}
    for pack in order.packs:
        key = ("id", int(pack.vendor_id)) if pack.vendor_id is not None else ("name", pack.vendor_name)
        group = groups.setdefault(key, {"vendor_id": pack.vendor_id, "vendor_name": pack.vendor_name, "item_count": 0, "total": 0})
        group["item_count"] += len(pack.items)
        group["total"] += pack.line_total()
    return groups


@shared_task(name="mealsection.tasks.notification_tasks.notify_vendors_new_order")
def notify_vendors_new_order(*, order_id: int, trace_id: str = ""):
    started = time.perf_counter()
    provider = _provider()
    order = db.session.get(Order, int(order_id))
    if provider is None or order is None:
        _task_log("notify_vendors_new_order", status="skipped", started_at=started, trace_id=trace_id, order_id=order_id)
        return {"ok": False, "skipped": True}

    customer = db.session.get(Account, int(order.user_id))
    notified = 0
    for group in _vendor_groups(order).values():
        vendor = None
        if group["vendor_id"] is not None:
            vendor = db.session.get(Account, int(group["vendor_id"]))
        if vendor is None:
            current_app.logger.warning("vendor_notify_unresolved order_id=%s vendor=%s", order.id, group["vendor_name"])
            continue
        message = tpl.vendor_new_order(
            order_id=order.id,
            customer_name=customer.name if customer else "",
            item_count=group["item_count"],
            total=group["total"],
            address=order.address,
        )
        _push(
            provider,
            vendor,
            message["push_title"],
            message["push_body"],
            {"type": "NEW_ORDER", "orderId": order.id, "storeName": vendor.store_name or ""},
        )
        _email(provider, vendor.email, message)
        notified += 1
    _task_log("notify_vendors_new_order", status="ok", started_at=started, trace_id=trace_id, order_id=order.id, vendors=notified)
    return {"ok": True, "vendors": notified}


@shared_task(name="mealsection.tasks.notification_tasks.notify_pack_decision")
def notify_pack_decision(*, order_id: int, vendor_name: str, accepted: bool, outcome: str, trace_id: str = ""):
    """Tell riders about a vendor's decision, and the customer about the outcome.

    ``outcome`` is ``all_accepted``, ``all_rejected`` or ``open``.
    """
    started = time.perf_counter()
    provider = _provider()
    order = db.session.get(Order, int(order_id))
    if provider is None or order is None:
        _task_log("notify_pack_decision", status="skipped", started_at=started, trace_id=trace_id, order_id=order_id)
        return {"ok": False, "skipped": True}

    riders = _university_riders(order.university)
    push = tpl.riders_pack_decision(order_id=order.id, vendor_name=vendor_name, accepted=bool(accepted))
    for rider in riders:
        _push(
            provider,
            rider,
            push["push_title"],
            push["push_body"],
            {"type": push["type"], "orderId": order.id, "vendorName": vendor_name, "university": order.university},
        )

    customer = db.session.get(Account, int(order.user_id))
    if outcome == "all_accepted":
        available = tpl.riders_order_available(
            order_id=order.id,
            university=order.university,
            address=order.address,
            delivery_fee=order.delivery_fee,
        )
        for rider in riders:
            _email(provider, rider.email, available)
        if customer:
            _email(provider, customer.email, tpl.customer_status_update(order_id=order.id, status="ready", rider_assigned=False))
    elif outcome == "all_rejected" and customer:
        _email(provider, customer.email, tpl.customer_order_rejected(order_id=order.id, refund_amount=order.total))

    _task_log(
        "notify_pack_decision",
        status="ok",
        started_at=started,
        trace_id=trace_id,
        order_id=order.id,
        outcome=outcome,
        riders=len(riders),
    )
    return {"ok": True, "riders": len(riders)}


@shared_task(name="mealsection.tasks.notification_tasks.notify_rider_assigned")
def notify_rider_assigned(*, order_id: int, trace_id: str = ""):
    started = time.perf_counter()
    provider = _provider()
    order = db.session.get(Order, int(order_id))
    if provider is None or order is None or order.rider_id is None:
        _task_log("notify_rider_assigned", status="skipped", started_at=started, trace_id=trace_id, order_id=order_id)
        return {"ok": False, "skipped": True}
    rider = db.session.get(Account, int(order.rider_id))
    message = tpl.rider_assignment(
        order_id=order.id,
        rider_name=rider.name,
        address=order.address,
        phone=order.phone_number,
        delivery_fee=order.delivery_fee,
    )
    _email(provider, rider.email, message)
    _push(provider, rider, message["push_title"], message["push_body"], {"type": "NEW_ASSIGNMENT", "orderId": order.id})
    _task_log("notify_rider_assigned", status="ok", started_at=started, trace_id=trace_id, order_id=order.id)
    return {"ok": True}


@shared_task(name="mealsection.tasks.notification_tasks.notify_status_changed")
def notify_status_changed(*, order_id: int, status: str, trace_id: str = ""):
    started = time.perf_counter()
    provider = _provider()
    order = db.session.get(Order, int(order_id))
    if provider is None or order is None:
        _task_log("notify_status_changed", status="skipped", started_at=started, trace_id=trace_id, order_id=order_id)
        return {"ok": False, "skipped": True}
    customer = db.session.get(Account, int(order.user_id))
    if customer is None:
        return {"ok": False, "skipped": True}

    rider = db.session.get(Account, int(order.rider_id)) if order.rider_id is not None else None
    if status == STATUS_PROCESSING:
        picked = tpl.customer_picked_up(
            order_id=order.id,
            rider_name=rider.name if rider else "your rider",
            address=order.address,
        )
        _push(
            provider,
            customer,
            picked["push_title"],
            picked["push_body"],
            {"type": "ORDER_PICKED_UP", "orderId": order.id},
        )
        _email(provider, customer.email, picked)
    _email(
        provider,
        customer.email,
        tpl.customer_status_update(order_id=order.id, status=status, rider_assigned=rider is not None),
    )
    _task_log("notify_status_changed", status="ok", started_at=started, trace_id=trace_id, order_id=order.id, order_status=status)
    return {"ok": True}


@shared_task(name="mealsection.tasks.notification_tasks.alert_operator")
def alert_operator(*, title: str, details: dict, trace_id: str = ""):
    started = time.perf_counter()
    to = (current_app.config.get("ADMIN_EMAIL") or "").strip()
    provider = _provider()
    if provider is None or not to:
        current_app.logger.error("operator_alert_undelivered title=%s details=%s", title, json.dumps(details))
        return {"ok": False, "skipped": True}
    ok = _email(provider, to, tpl.operator_alert(title=title, details=details))
    _task_log("alert_operator", status="ok" if ok else "failed", started_at=started, trace_id=trace_id)
    return {"ok": ok}
