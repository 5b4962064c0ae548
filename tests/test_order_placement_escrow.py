from __future__ import annotations

import unittest

from mealsection.extensions import db
from mealsection.models import LedgerEntry, Order
from mealsection.services.order_service import validate_packs
from mealsection.errors import ValidationError
from tests.helpers import auth_header, balance, build_test_app, make_account, order_payload, pack


class PackValidationTestCase(unittest.TestCase):
    def _message(self, packs) -> str:
        with self.assertRaises(ValidationError) as ctx:
            validate_packs(packs)
        return ctx.exception.message

    def test_empty_packs(self):
        self.assertEqual(self._message([]), "No packs provided")

    def test_missing_vendor_name(self):
        self.assertEqual(self._message([{"name": "A", "items": [{"name": "x"}]}]), "Pack missing vendorName")

    def test_empty_pack_names_the_pack(self):
        msg = self._message([{"name": "Lunch", "vendorName": "Chef", "items": []}])
        self.assertIn('"Lunch"', msg)

    def test_protein_pack_needs_pack_type(self):
        packs = [
            {
                "name": "Lunch",
                "vendorName": "Chef",
                "items": [{"name": "Chicken", "price": 100, "quantity": 1, "category": "Protein"}],
            }
        ]
        self.assertIn("packType", self._message(packs))
        packs[0]["packType"] = "big"
        validate_packs(packs)

    def test_item_vendor_mismatch(self):
        packs = [
            {
                "name": "Lunch",
                "vendorName": "Chef",
                "items": [{"name": "Rice", "price": 100, "quantity": 1, "vendorName": "Other"}],
            }
        ]
        self.assertIn("Item vendor mismatch", self._message(packs))

    def test_first_failure_wins(self):
        packs = [
            {"name": "A", "vendorName": "Chef", "items": []},
            {"name": "B", "items": [{"name": "x"}]},
        ]
        self.assertIn('"A"', self._message(packs))


class OrderPlacementEscrowTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app, cls.broadcaster = build_test_app()
        cls.client = cls.app.test_client()
        with cls.app.app_context():
            cls.vendor_id = make_account("vendor", store_name="Mama Put")

    def test_placement_debits_total_once(self):
        with self.app.app_context():
            customer_id = make_account("customer", balance=5000)
        payload = order_payload(pack(self.vendor_id, "Mama Put"), subtotal=2000, service_fee=250, delivery_fee=250)
        res = self.client.post("/api/users/add-order", json=payload, headers=auth_header(customer_id))
        self.assertEqual(res.status_code, 201)
        order = (res.get_json(force=True) or {})["order"]
        self.assertEqual(order["currentStatus"], "Pending")
        self.assertEqual(order["total"], 2500)
        self.assertEqual(order["rider"], "Not assigned")
        self.assertIsNone(order["packs"][0]["accepted"])
        self.assertEqual(order["packs"][0]["vendorId"], self.vendor_id)

        with self.app.app_context():
            self.assertEqual(balance(customer_id), 2500)
            entries = LedgerEntry.query.filter_by(account_id=customer_id, kind="order_payment").all()
            self.assertEqual(len(entries), 1)
            self.assertEqual(entries[0].amount, 2500)
            self.assertEqual(entries[0].reference, str(order["id"]))
            self.assertEqual(entries[0].new_balance, 2500)

        self.assertIn("orders:new", self.broadcaster.names())

    def test_insufficient_balance_creates_nothing(self):
        with self.app.app_context():
            customer_id = make_account("customer", balance=1000)
            before = Order.query.count()
        payload = order_payload(pack(self.vendor_id, "Mama Put"), subtotal=2000, service_fee=250, delivery_fee=250)
        self.broadcaster.events.clear()
        res = self.client.post("/api/users/add-order", json=payload, headers=auth_header(customer_id))
        self.assertEqual(res.status_code, 400)
        self.assertEqual((res.get_json(force=True) or {}).get("error"), "INSUFFICIENT_BALANCE")
        with self.app.app_context():
            self.assertEqual(balance(customer_id), 1000)
            self.assertEqual(Order.query.count(), before)
        self.assertNotIn("orders:new", self.broadcaster.names())

    def test_negative_amount_rejected(self):
        with self.app.app_context():
            customer_id = make_account("customer", balance=1000)
        payload = order_payload(pack(self.vendor_id, "Mama Put"), subtotal=-5, service_fee=0, delivery_fee=0)
        res = self.client.post("/api/users/add-order", json=payload, headers=auth_header(customer_id))
        self.assertEqual(res.status_code, 400)
        with self.app.app_context():
            self.assertEqual(balance(customer_id), 1000)

    def test_vendor_cannot_place_order(self):
        payload = order_payload(pack(self.vendor_id, "Mama Put"))
        res = self.client.post("/api/users/add-order", json=payload, headers=auth_header(self.vendor_id))
        self.assertEqual(res.status_code, 403)

    def test_vendor_resolved_by_store_name(self):
        with self.app.app_context():
            customer_id = make_account("customer", balance=5000)
        body = pack(self.vendor_id, "Mama Put")
        body.pop("vendorId")
        res = self.client.post("/api/users/add-order", json=order_payload(body), headers=auth_header(customer_id))
        self.assertEqual(res.status_code, 201)
        order_id = (res.get_json(force=True) or {})["order"]["id"]
        with self.app.app_context():
            order = db.session.get(Order, order_id)
            self.assertEqual(order.packs[0].vendor_id, self.vendor_id)

    def test_order_visibility(self):
        with self.app.app_context():
            owner_id = make_account("customer", balance=5000)
            stranger_id = make_account("customer")
        res = self.client.post(
            "/api/users/add-order",
            json=order_payload(pack(self.vendor_id, "Mama Put")),
            headers=auth_header(owner_id),
        )
        order_id = (res.get_json(force=True) or {})["order"]["id"]
        self.assertEqual(self.client.get(f"/api/users/orders/{order_id}", headers=auth_header(owner_id)).status_code, 200)
        self.assertEqual(self.client.get(f"/api/users/orders/{order_id}", headers=auth_header(self.vendor_id)).status_code, 200)
        self.assertEqual(self.client.get(f"/api/users/orders/{order_id}", headers=auth_header(stranger_id)).status_code, 403)

        listing = self.client.get("/api/users/orders", headers=auth_header(owner_id)).get_json(force=True)
        self.assertEqual([o["id"] for o in listing["orders"]], [order_id])
        self.assertEqual(self.client.get("/api/users/orders", headers=auth_header(stranger_id)).get_json(force=True)["total"], 0)


if __name__ == "__main__":
    unittest.main()
