from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from mealsection.errors import Forbidden, NotFound, ValidationError
from mealsection.extensions import db
from mealsection.models import (
    Order,
    OrderPack,
    ROLE_CUSTOMER,
    ROLE_MANAGER,
    ROLE_RIDER,
    ROLE_VENDOR,
)
from mealsection.utils.auth import require_account

orders_bp = Blueprint("orders_bp", __name__, url_prefix="/api/users")


def _orders():
    return current_app.extensions["mealsection"]["orders"]


def _page_args() -> tuple[int, int]:
    try:
        page = max(1, int(request.args.get("page", 1)))
        per_page = min(100, max(1, int(request.args.get("limit", 20))))
    except (TypeError, ValueError):
        raise ValidationError("page and limit must be integers")
    return page, per_page


def _visible_order(order_id: int, account) -> Order:
    order = db.session.get(Order, int(order_id))
    if order is None:
        raise NotFound("Order not found")
    if account.role == ROLE_MANAGER:
        return order
    if account.role == ROLE_CUSTOMER and int(order.user_id) == int(account.id):
        return order
    if account.role == ROLE_RIDER and order.rider_id is not None and int(order.rider_id) == int(account.id):
        return order
    if account.role == ROLE_VENDOR and any(p.vendor_id == account.id for p in order.packs):
        return order
    raise Forbidden("Forbidden")


@orders_bp.post("/add-order")
def add_order():
    customer = require_account(ROLE_CUSTOMER)
    payload = request.get_json(silent=True) or {}
    order = _orders().place_order(customer, payload)
    return jsonify({"ok": True, "message": "Order placed successfully", "order": order.to_dict()}), 201


@orders_bp.get("/orders")
def list_orders():
    account = require_account()
    page, per_page = _page_args()
    q = Order.query
    if account.role == ROLE_CUSTOMER:
        q = q.filter(Order.user_id == int(account.id))
    elif account.role == ROLE_VENDOR:
        q = q.filter(Order.packs.any(OrderPack.vendor_id == int(account.id)))
    elif account.role == ROLE_RIDER:
        q = q.filter(Order.rider_id == int(account.id))
    status = (request.args.get("status") or "").strip()
    if status:
        q = q.filter(Order.current_status == status)
    total = q.count()
    items = q.order_by(Order.created_at.desc(), Order.id.desc()).offset((page - 1) * per_page).limit(per_page).all()
    return jsonify(
        {
            "ok": True,
            "orders": [o.to_dict() for o in items],
            "page": page,
            "limit": per_page,
            "total": total,
        }
    ), 200


@orders_bp.get("/orders/<int:order_id>")
def get_order(order_id: int):
    account = require_account()
    order = _visible_order(order_id, account)
    return jsonify({"ok": True, "order": order.to_dict(include_messages=True)}), 200


@orders_bp.put("/orders/<int:order_id>/vendor/<int:vendor_id>/accept")
def vendor_decision(order_id: int, vendor_id: int):
    account = require_account(ROLE_VENDOR)
    if account.role != ROLE_MANAGER and int(account.id) != int(vendor_id):
        raise Forbidden("Vendors can only decide their own packs")
    payload = request.get_json(silent=True) or {}
    accepted = payload.get("accepted")
    result = _orders().decide_pack(order_id, vendor_id, accepted)
    order = result["order"]
    verb = "accepted" if accepted else "rejected"
    if result["changed"]:
        message = f"All packs for vendor '{result['vendor_name']}' {verb}"
    else:
        message = f"Pack already marked as {verb}"
    return jsonify(
        {
            "ok": True,
            "message": message,
            "changed": result["changed"],
            "currentStatus": order.current_status,
            "packs": [p.to_dict() for p in order.packs],
        }
    ), 200


@orders_bp.put("/orders/<int:order_id>/assign-rider")
def assign_rider(order_id: int):
    require_account(ROLE_MANAGER)
    payload = request.get_json(silent=True) or {}
    if payload.get("rider") is None:
        raise ValidationError("rider is required")
    order = _orders().assign_rider(order_id, payload.get("rider"))
    return jsonify({"ok": True, "message": "Rider assigned", "order": order.to_dict()}), 200


@orders_bp.put("/orders/<int:order_id>/updateStatus")
def update_status(order_id: int):
    account = require_account(ROLE_RIDER)
    payload = request.get_json(silent=True) or {}
    new_status = payload.get("currentStatus")
    if not isinstance(new_status, str) or not new_status.strip():
        raise ValidationError("currentStatus is required")
    result = _orders().update_status(order_id, account, new_status.strip())
    body = {"ok": True, "changed": result["changed"], "order": result["order"].to_dict()}
    if not result["changed"]:
        body["message"] = "Status unchanged"
    return jsonify(body), 200


@orders_bp.post("/orders/<int:order_id>/message")
def post_message(order_id: int):
    account = require_account()
    _visible_order(order_id, account)
    payload = request.get_json(silent=True) or {}
    from_admin = account.role == ROLE_MANAGER
    msg = _orders().post_message(order_id, account, payload.get("text"), from_admin=from_admin)
    return jsonify({"ok": True, "message": msg.to_dict()}), 201


@orders_bp.get("/orders/<int:order_id>/messages")
def list_messages(order_id: int):
    account = require_account()
    order = _visible_order(order_id, account)
    return jsonify({"ok": True, "messages": [m.to_dict() for m in order.messages]}), 200
