from __future__ import annotations

from datetime import datetime

from flask import current_app

from mealsection.errors import (
    Forbidden,
    InvalidTransition,
    NotFound,
    ValidationError,
    Conflict,
)
from mealsection.extensions import db
from mealsection.models import (
    Account,
    Order,
    OrderMessage,
    OrderPack,
    OrderPackItem,
    ORDER_STATUSES,
    PACK_TYPES,
    ROLE_CUSTOMER,
    ROLE_MANAGER,
    ROLE_RIDER,
    ROLE_VENDOR,
    STATUS_CANCELLED,
    STATUS_DELIVERED,
    STATUS_PENDING,
    STATUS_PROCESSING,
)
from mealsection.tasks import notification_tasks
from mealsection.utils.deferred import defer, enqueue
from mealsection.utils.ledger import post_txn
from mealsection.utils.observability import get_request_id


# Self-transitions are handled separately as idempotent no-ops.
ALLOWED_TRANSITIONS = {
    STATUS_PENDING: {STATUS_PROCESSING, STATUS_CANCELLED},
    STATUS_PROCESSING: {STATUS_DELIVERED},
    STATUS_DELIVERED: set(),
    STATUS_CANCELLED: set(),
}

PACK_TYPE_CATEGORIES = ("protein", "carbohydrate")

SETTLEMENT_ORDER_SUBTOTAL = "order_subtotal"
SETTLEMENT_VENDOR_ITEMS = "vendor_items"


def can_transition(current: str, new: str) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, set())


def _non_negative_int(payload: dict, key: str, *, default=None) -> int:
    raw = payload.get(key, default)
    if raw is None:
        raise ValidationError(f"{key} is required")
    if isinstance(raw, bool) or not isinstance(raw, (int, float)) or int(raw) != raw:
        raise ValidationError(f"{key} must be a whole number")
    if raw < 0:
        raise ValidationError(f"{key} must not be negative")
    return int(raw)


def validate_packs(packs) -> None:
    """Structural checks on an order's packs. The first failure wins."""
    if not isinstance(packs, list) or not packs:
        raise ValidationError("No packs provided")
    for p in packs:
        if not isinstance(p, dict):
            raise ValidationError("Pack must be an object")
        name = p.get("name")
        if not name:
            raise ValidationError("Pack missing name")
        if not p.get("vendorName"):
            raise ValidationError("Pack missing vendorName")
        items = p.get("items")
        if not isinstance(items, list) or not items:
            raise ValidationError(f'Pack "{name}" has no items. Please remove empty pack')
        needs_pack_type = any(
            isinstance(it, dict) and str(it.get("category") or "").strip().lower() in PACK_TYPE_CATEGORIES
            for it in items
        )
        if needs_pack_type and p.get("packType") not in PACK_TYPES:
            raise ValidationError(
                f'Pack "{name}" is missing a valid packType. Select small or big for every pack '
                "containing protein or carbohydrate."
            )
        for it in items:
            if not isinstance(it, dict):
                raise ValidationError(f'Pack "{name}" has an invalid item')
            if it.get("vendorName") and it.get("vendorName") != p.get("vendorName"):
                raise ValidationError(
                    f'Item vendor mismatch in pack "{name}": all items must belong to {p.get("vendorName")}'
                )
    for p in packs:
        for it in p["items"]:
            if not it.get("name"):
                raise ValidationError(f'Item in pack "{p["name"]}" is missing a name')
            _non_negative_int(it, "price")
            quantity = it.get("quantity")
            if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
                raise ValidationError(f'Item "{it["name"]}" needs a positive quantity')


class OrderService:
    """Order lifecycle and the balance movements it drives.

    All money moves through ``post_txn`` inside the same database transaction
    as the state change it belongs to. Notifications and realtime events are
    deferred until the request has succeeded.
    """

    def __init__(self, broadcaster, *, settlement_mode: str = SETTLEMENT_ORDER_SUBTOTAL, rider_share_percent: int = 50):
        if settlement_mode not in (SETTLEMENT_ORDER_SUBTOTAL, SETTLEMENT_VENDOR_ITEMS):
            raise ValueError(f"unknown settlement mode: {settlement_mode!r}")
        self.broadcaster = broadcaster
        self.settlement_mode = settlement_mode
        self.rider_share_percent = int(rider_share_percent)

    # -------------------------
    # Side effects
    # -------------------------

    def _emit(self, event: str, payload: dict) -> None:
        defer(self.broadcaster.emit, event, payload)

    def _notify(self, task, **kwargs) -> None:
        defer(enqueue, task, trace_id=get_request_id(), **kwargs)

    # -------------------------
    # Lookups
    # -------------------------

    def _locked_order(self, order_id: int) -> Order:
        order = (
            Order.query.filter_by(id=int(order_id))
            .with_for_update()
            .populate_existing()
            .first()
        )
        if order is None:
            raise NotFound("Order not found")
        return order

    def _resolve_vendor_id(self, pack: dict) -> int | None:
        raw = pack.get("vendorId")
        if raw is not None and not isinstance(raw, bool):
            try:
                vendor = db.session.get(Account, int(raw))
            except (TypeError, ValueError):
                vendor = None
            if vendor is not None and vendor.role == ROLE_VENDOR:
                return int(vendor.id)
        vendor = Account.query.filter_by(role=ROLE_VENDOR, store_name=pack.get("vendorName")).first()
        return int(vendor.id) if vendor is not None else None

    # -------------------------
    # Placement
    # -------------------------

    def place_order(self, customer: Account, payload: dict) -> Order:
        if customer.role != ROLE_CUSTOMER:
            raise Forbidden("Only customers can place orders")
        packs = payload.get("packs")
        validate_packs(packs)
        subtotal = _non_negative_int(payload, "subtotal")
        service_fee = _non_negative_int(payload, "serviceFee")
        delivery_fee = _non_negative_int(payload, "deliveryFee", default=0)
        total = subtotal + service_fee + delivery_fee

        order = Order(
            user_id=int(customer.id),
            subtotal=subtotal,
            service_fee=service_fee,
            delivery_fee=delivery_fee,
            university=(payload.get("university") or customer.university or "Not provided"),
            address=(payload.get("Address") or "Not provided"),
            phone_number=(payload.get("PhoneNumber") or customer.phone or "Not provided"),
            order_option=payload.get("OrderOption") or None,
            delivery_note=payload.get("deliveryNote") or None,
            vendor_note=payload.get("vendorNote") or None,
            current_status=STATUS_PENDING,
        )
        for p in packs:
            vendor_id = self._resolve_vendor_id(p)
            if vendor_id is None:
                current_app.logger.warning("order_pack_vendor_unresolved vendor_name=%s", p.get("vendorName"))
            pack = OrderPack(
                name=p["name"],
                vendor_name=p["vendorName"],
                vendor_id=vendor_id,
                pack_type=p.get("packType") or None,
                accepted=None,
            )
            for it in p["items"]:
                pack.items.append(
                    OrderPackItem(
                        name=it["name"],
                        price=int(it["price"]),
                        quantity=int(it["quantity"]),
                        image=it.get("image") or None,
                        category=it.get("category") or None,
                        vendor_name=it.get("vendorName") or p["vendorName"],
                        vendor_id=vendor_id,
                    )
                )
            order.packs.append(pack)

        try:
            db.session.add(order)
            db.session.flush()
            if total > 0:
                post_txn(
                    customer.id,
                    total,
                    direction="out",
                    kind="order_payment",
                    reference=str(order.id),
                    note=f"Order payment #{order.id}",
                    require_funds=True,
                    commit=False,
                )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        current_app.logger.info(
            "order_placed order_id=%s user_id=%s total=%s packs=%s",
            order.id,
            customer.id,
            total,
            len(order.packs),
        )
        self._emit(
            "orders:new",
            {
                "order": order.to_dict(),
                "user": {
                    "id": int(customer.id),
                    "email": customer.email,
                    "fullName": customer.name,
                    "university": customer.university or "",
                },
            },
        )
        self._notify(notification_tasks.notify_vendors_new_order, order_id=int(order.id))
        return order

    # -------------------------
    # Vendor decisions
    # -------------------------

    def _settlement_amount(self, order: Order, vendor_packs: list[OrderPack]) -> int:
        if self.settlement_mode == SETTLEMENT_VENDOR_ITEMS:
            return sum(p.line_total() for p in vendor_packs)
        return int(order.subtotal or 0)

    def decide_pack(self, order_id: int, vendor_id: int, accepted) -> dict:
        """Apply a vendor's accept/reject decision to their packs in an order.

        Repeating the decision already recorded is a no-op; reversing a
        recorded decision is refused.
        """
        if not isinstance(accepted, bool):
            raise ValidationError("accepted must be a boolean")
        vendor = db.session.get(Account, int(vendor_id))
        if vendor is None or vendor.role != ROLE_VENDOR:
            raise NotFound("Vendor not found")

        try:
            order = self._locked_order(order_id)
            vendor_packs = [p for p in order.packs if p.vendor_id is not None and int(p.vendor_id) == int(vendor.id)]
            if not vendor_packs:
                raise ValidationError("Vendor pack not found in this order")

            decided = {p.accepted for p in vendor_packs if p.accepted is not None}
            if decided == {accepted} and all(p.accepted is not None for p in vendor_packs):
                db.session.rollback()
                return {"order": order, "changed": False, "vendor_name": vendor_packs[0].vendor_name}
            if decided and decided != {accepted}:
                raise Conflict(
                    f"Pack already marked as {'rejected' if accepted else 'accepted'}",
                    code="PACK_ALREADY_DECIDED",
                )
            if order.current_status != STATUS_PENDING:
                raise InvalidTransition(f"Order is {order.current_status}; pack decisions are closed")

            now = datetime.utcnow()
            for p in vendor_packs:
                p.accepted = accepted
                p.decided_at = now
            vendor_name = vendor_packs[0].vendor_name

            credited = 0
            refunded = 0
            if accepted:
                credited = self._settlement_amount(order, vendor_packs)
                if credited > 0:
                    post_txn(
                        vendor.id,
                        credited,
                        direction="in",
                        kind="order_settlement",
                        reference=str(order.id),
                        note=f"Order acceptance - {vendor_packs[0].name or 'items'}",
                        commit=False,
                    )
            elif all(p.accepted is False for p in order.packs):
                refunded = self._cancel_with_refund(order, note="Order rejection refund - all packs declined")

            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        if all(p.accepted is True for p in order.packs):
            outcome = "all_accepted"
        elif order.current_status == STATUS_CANCELLED:
            outcome = "all_rejected"
        else:
            outcome = "open"
        current_app.logger.info(
            "order_pack_decided order_id=%s vendor_id=%s accepted=%s credited=%s refunded=%s outcome=%s",
            order.id,
            vendor.id,
            accepted,
            credited,
            refunded,
            outcome,
        )
        self._emit(
            "vendors:packsUpdated",
            {
                "orderId": int(order.id),
                "vendorId": int(vendor.id),
                "vendorName": vendor_name,
                "accepted": accepted,
                "packs": [p.to_dict() for p in order.packs],
            },
        )
        if outcome == "all_rejected":
            self._emit("orders:status", {"orderId": int(order.id), "currentStatus": STATUS_CANCELLED})
        self._notify(
            notification_tasks.notify_pack_decision,
            order_id=int(order.id),
            vendor_name=vendor_name,
            accepted=accepted,
            outcome=outcome,
        )
        return {"order": order, "changed": True, "vendor_name": vendor_name}

    def _cancel_with_refund(self, order: Order, *, note: str) -> int:
        refund = order.total
        order.current_status = STATUS_CANCELLED
        if refund > 0:
            post_txn(
                order.user_id,
                refund,
                direction="in",
                kind="order_refund",
                reference=str(order.id),
                note=note,
                commit=False,
            )
        return refund

    # -------------------------
    # Status transitions
    # -------------------------

    def update_status(self, order_id: int, actor: Account, new_status) -> dict:
        if new_status not in ORDER_STATUSES:
            raise ValidationError(f"Unknown status: {new_status!r}")

        try:
            order = self._locked_order(order_id)
            self._check_status_actor(order, actor, new_status)
            current = order.current_status
            if new_status == current:
                db.session.rollback()
                return {"order": order, "changed": False}
            if not can_transition(current, new_status):
                raise InvalidTransition(f"Cannot move order from {current} to {new_status}")

            payout = 0
            refunded = 0
            if new_status == STATUS_PROCESSING and not any(p.accepted is True for p in order.packs):
                raise InvalidTransition("No accepted packs to pick up")
            if new_status == STATUS_CANCELLED:
                if any(p.accepted is True for p in order.packs):
                    raise InvalidTransition("Order has accepted packs and cannot be cancelled")
                refunded = self._cancel_with_refund(order, note="Order cancelled - full refund")
            else:
                order.current_status = new_status
            if new_status == STATUS_DELIVERED:
                payout = self._pay_rider(order)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        current_app.logger.info(
            "order_status_changed order_id=%s from=%s to=%s payout=%s refunded=%s actor_id=%s",
            order.id,
            current,
            new_status,
            payout,
            refunded,
            actor.id,
        )
        self._emit("orders:status", {"orderId": int(order.id), "currentStatus": new_status})
        self._notify(notification_tasks.notify_status_changed, order_id=int(order.id), status=new_status)
        return {"order": order, "changed": True}

    def _check_status_actor(self, order: Order, actor: Account, new_status: str) -> None:
        if actor.role == ROLE_MANAGER:
            return
        if (
            actor.role == ROLE_RIDER
            and order.rider_id is not None
            and int(order.rider_id) == int(actor.id)
            and new_status in (STATUS_PROCESSING, STATUS_DELIVERED)
        ):
            return
        raise Forbidden("Forbidden")

    def _pay_rider(self, order: Order) -> int:
        if order.rider_id is None:
            current_app.logger.warning("rider_payout_skipped_unassigned order_id=%s", order.id)
            return 0
        payout = (int(order.delivery_fee or 0) * self.rider_share_percent) // 100
        if payout <= 0:
            return 0
        post_txn(
            order.rider_id,
            payout,
            direction="in",
            kind="delivery_payout",
            reference=str(order.id),
            note=f"Delivery payout - order #{order.id}",
            commit=False,
        )
        return payout

    # -------------------------
    # Rider assignment and messages
    # -------------------------

    def assign_rider(self, order_id: int, rider_id) -> Order:
        try:
            rider = db.session.get(Account, int(rider_id))
        except (TypeError, ValueError):
            raise ValidationError("rider must be an account id")
        if rider is None or rider.role != ROLE_RIDER:
            raise NotFound("Rider not found")
        if rider.valid is not True:
            raise ValidationError("Rider is not approved")

        try:
            order = self._locked_order(order_id)
            if order.current_status in (STATUS_DELIVERED, STATUS_CANCELLED):
                raise InvalidTransition(f"Order is {order.current_status}; rider cannot be changed")
            order.rider_id = int(rider.id)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        current_app.logger.info("order_rider_assigned order_id=%s rider_id=%s", order.id, rider.id)
        self._emit("orders:assignRider", {"orderId": int(order.id), "rider": str(rider.id)})
        self._notify(notification_tasks.notify_rider_assigned, order_id=int(order.id))
        return order

    def post_message(self, order_id: int, author: Account, text, *, from_admin: bool = True) -> OrderMessage:
        body = (text or "").strip() if isinstance(text, str) else ""
        if not body:
            raise ValidationError("Message text is required")
        order = db.session.get(Order, int(order_id))
        if order is None:
            raise NotFound("Order not found")
        msg = OrderMessage(order_id=int(order.id), author_id=int(author.id), text=body[:4000], from_admin=bool(from_admin))
        try:
            db.session.add(msg)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        self._emit("orders:message", {"orderId": int(order.id), "message": msg.to_dict()})
        return msg
