"""Subjects, bodies and push copy for order notifications.

Each builder returns plain data; the notification tasks decide which channel
it goes out on.
"""

from __future__ import annotations

import os

from markupsafe import escape


def _order_code(order_id) -> str:
    return f"#{int(order_id):06d}"


def _client_url() -> str:
    return (os.getenv("CLIENT_APP_URL") or "https://mealsection.com").rstrip("/")


def _vendor_url() -> str:
    return (os.getenv("VENDOR_APP_URL") or "https://vendor.mealsection.com").rstrip("/")


def _rider_url() -> str:
    return (os.getenv("RIDER_APP_URL") or "https://rider.mealsection.com").rstrip("/")


def _layout(title: str, rows: list[tuple[str, str]], footer: str = "", link: tuple[str, str] | None = None) -> str:
    parts = [f"<h2>{escape(title)}</h2>", "<table>"]
    for label, value in rows:
        parts.append(f"<tr><td>{escape(label)}</td><td><strong>{escape(value)}</strong></td></tr>")
    parts.append("</table>")
    if footer:
        parts.append(f"<p>{escape(footer)}</p>")
    if link:
        parts.append(f'<p><a href="{escape(link[1])}">{escape(link[0])}</a></p>')
    parts.append("<p><small>This is an automated email from MealSection.</small></p>")
    return "\n".join(parts)


def naira(amount) -> str:
    return f"₦{int(amount or 0):,}"


def vendor_new_order(*, order_id, customer_name: str, item_count: int, total: int, address: str) -> dict:
    return {
        "subject": "New Order Received - MealSection",
        "html": _layout(
            f"New order {_order_code(order_id)}",
            [
                ("Customer", customer_name or "Customer"),
                ("Items", f"{item_count} item(s)"),
                ("Delivery Address", address),
                ("Order Total", naira(total)),
            ],
            "Please review and accept or reject this order as soon as possible.",
            ("View Order Details", f"{_vendor_url()}/order"),
        ),
        "push_title": "New Order Received!",
        "push_body": f"You have a new order for {item_count} item(s) - {naira(total)}",
    }


def rider_assignment(*, order_id, rider_name: str, address: str, phone: str, delivery_fee: int) -> dict:
    return {
        "subject": "New Delivery Assignment - MealSection",
        "html": _layout(
            f"Delivery {_order_code(order_id)} assigned to you",
            [
                ("Rider", rider_name),
                ("Delivery Address", address),
                ("Customer Phone", phone),
                ("Delivery Fee", naira(delivery_fee)),
            ],
            "Head to the vendor to pick up the order.",
            ("Open Rider Dashboard", _rider_url()),
        ),
        "push_title": "New Delivery Assignment!",
        "push_body": f"You have been assigned a new delivery to {address}",
    }


def riders_pack_decision(*, order_id, vendor_name: str, accepted: bool) -> dict:
    if accepted:
        return {
            "push_title": "New Delivery Available!",
            "push_body": f"Order {_order_code(order_id)} accepted by {vendor_name} - Ready for pickup",
            "type": "ORDER_ACCEPTED",
        }
    return {
        "push_title": "Order Rejected",
        "push_body": f"Order {_order_code(order_id)} was rejected by {vendor_name}",
        "type": "ORDER_REJECTED",
    }


def riders_order_available(*, order_id, university: str, address: str, delivery_fee: int) -> dict:
    return {
        "subject": "New Delivery Available - MealSection",
        "html": _layout(
            f"Order {_order_code(order_id)} is ready for pickup",
            [
                ("University", university),
                ("Delivery Address", address),
                ("Delivery Fee", naira(delivery_fee)),
            ],
            "All vendors have accepted this order.",
            ("Open Rider Dashboard", _rider_url()),
        ),
    }


def customer_status_update(*, order_id, status: str, rider_assigned: bool) -> dict:
    key = (status or "").strip().lower()
    subject = "Order Update - MealSection"
    message = "Your order status has been updated."
    if key == "processing":
        subject = "Your Order is Being Prepared!"
        message = "Your order has been accepted and is being prepared by the vendor."
    elif key == "delivered":
        subject = "Your Order Has Been Delivered!"
        message = "Your order has been successfully delivered. Enjoy your meal!"
    elif key == "cancelled":
        subject = "Your Order Was Cancelled"
        message = "Your order was cancelled and the full amount returned to your balance."
    elif rider_assigned:
        subject = "Rider Assigned to Your Order!"
        message = "A rider has been assigned and will pick up your order shortly."
    return {
        "subject": subject,
        "html": _layout(
            f"Order {_order_code(order_id)}",
            [("Status", status)],
            message,
            ("Track Your Order", f"{_client_url()}/orders"),
        ),
    }


def customer_picked_up(*, order_id, rider_name: str, address: str) -> dict:
    return {
        "subject": "Your Order Is On The Way! - MealSection",
        "html": _layout(
            f"Order {_order_code(order_id)} is on the way",
            [("Rider", rider_name), ("Delivery Address", address)],
            "Your rider has picked up your order.",
            ("Track Your Order", f"{_client_url()}/orders"),
        ),
        "push_title": "Your Order is On the Way!",
        "push_body": f"Your order has been picked up by {rider_name}. It will arrive soon!",
    }


def customer_order_rejected(*, order_id, refund_amount: int) -> dict:
    return {
        "subject": "Order Declined - Refund Processed - MealSection",
        "html": _layout(
            f"Order {_order_code(order_id)} was declined",
            [("Refunded", naira(refund_amount))],
            "Every vendor on this order declined it. The full amount has been returned to your balance.",
            ("Order Again", _client_url()),
        ),
    }


def operator_alert(*, title: str, details: dict) -> dict:
    return {
        "subject": f"[MealSection] {title}",
        "html": _layout(title, [(str(k), str(v)) for k, v in details.items()]),
    }
