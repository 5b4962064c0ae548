from __future__ import annotations

import tempfile
import time

from flask.testing import FlaskClient

from mealsection import create_app
from mealsection.extensions import db
from mealsection.integrations.realtime.base import Broadcaster
from mealsection.models import Account
from mealsection.utils.jwt_utils import create_access_token
from mealsection.utils.ledger import post_txn


PAYSTACK_TEST_SECRET = "sk_test_mealsection"


class RecordingBroadcaster(Broadcaster):
    name = "recording"

    def __init__(self):
        self.events = []
        self.fail = False

    def emit(self, event: str, payload: dict, *, room: str | None = None) -> None:
        if self.fail:
            raise RuntimeError("socket server unavailable")
        self.events.append((event, payload))

    def names(self) -> list[str]:
        return [name for name, _payload in self.events]


class ClosingClient(FlaskClient):
    """Buffers each response and closes it, as a WSGI server does after the body."""

    def open(self, *args, buffered=True, **kwargs):
        return super().open(*args, buffered=buffered, **kwargs)


def build_test_app(**overrides):
    broadcaster = RecordingBroadcaster()
    config = {
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "NOTIFICATIONS_MODE": "mock",
        "PAYMENTS_PROVIDER": "mock",
        "PAYSTACK_SECRET_KEY": PAYSTACK_TEST_SECRET,
        "PAYSTACK_RETRY_DELAY_SECONDS": 0,
        "WEBHOOK_LOG_DIR": tempfile.mkdtemp(prefix="mealsection-webhooks-"),
        "ADMIN_EMAIL": "ops@mealsection.test",
    }
    config.update(overrides)
    app = create_app(config, broadcaster=broadcaster)
    app.test_client_class = ClosingClient
    with app.app_context():
        db.create_all()
    return app, broadcaster


def make_account(role: str, *, balance: int = 0, valid=True, university: str = "UNILAG", **fields) -> int:
    """Create an account and fund it through the ledger. Returns the id."""
    suffix = time.time_ns()
    account = Account(
        role=role,
        name=fields.pop("name", f"{role.title()} {suffix % 10000}"),
        email=fields.pop("email", f"{role}-{suffix}@mealsection.test"),
        university=university,
        valid=valid if role in ("vendor", "rider") else None,
        **fields,
    )
    account.set_password("Passw0rd!")
    db.session.add(account)
    db.session.commit()
    if balance:
        post_txn(account.id, balance, direction="in", kind="admin_fund", reference="AdminFund", note="Test funding")
    return int(account.id)


def auth_header(account_id: int, role: str = "") -> dict:
    return {"Authorization": f"Bearer {create_access_token(account_id, role)}"}


def balance(account_id: int) -> int:
    db.session.expire_all()
    return int(db.session.get(Account, account_id).available_bal or 0)


def order_payload(*packs, subtotal: int = 4000, service_fee: int = 500, delivery_fee: int = 500) -> dict:
    return {
        "subtotal": subtotal,
        "serviceFee": service_fee,
        "deliveryFee": delivery_fee,
        "Address": "Hall 3, Room 12",
        "PhoneNumber": "08030000000",
        "university": "UNILAG",
        "OrderOption": "delivery",
        "packs": list(packs),
    }


def pack(vendor_id: int, store_name: str, *, name: str = "Pack 1", price: int = 2000, quantity: int = 1, category: str = "drinks") -> dict:
    body = {
        "name": name,
        "vendorName": store_name,
        "vendorId": vendor_id,
        "items": [
            {"name": "Item", "price": price, "quantity": quantity, "category": category, "vendorName": store_name},
        ],
    }
    if category in ("protein", "carbohydrate"):
        body["packType"] = "small"
    return body
