from __future__ import annotations

import unittest

from mealsection.models import LedgerEntry
from mealsection.services.order_service import can_transition
from tests.helpers import auth_header, balance, build_test_app, make_account, order_payload, pack


class TransitionTableTestCase(unittest.TestCase):
    def test_allowed_transitions(self):
        self.assertTrue(can_transition("Pending", "Processing"))
        self.assertTrue(can_transition("Pending", "Cancelled"))
        self.assertTrue(can_transition("Processing", "Delivered"))
        self.assertFalse(can_transition("Pending", "Delivered"))
        self.assertFalse(can_transition("Delivered", "Pending"))
        self.assertFalse(can_transition("Cancelled", "Processing"))
        self.assertFalse(can_transition("Processing", "Cancelled"))


class OrderStatusFlowTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app, cls.broadcaster = build_test_app()
        cls.client = cls.app.test_client()
        with cls.app.app_context():
            cls.manager_id = make_account("manager")
            cls.vendor_id = make_account("vendor", store_name="Campus Grill")
            cls.rider_id = make_account("rider")
            cls.other_rider_id = make_account("rider")

    def _place(self, *, delivery_fee: int = 400):
        with self.app.app_context():
            customer_id = make_account("customer", balance=10000)
        res = self.client.post(
            "/api/users/add-order",
            json=order_payload(pack(self.vendor_id, "Campus Grill"), subtotal=3000, service_fee=100, delivery_fee=delivery_fee),
            headers=auth_header(customer_id),
        )
        self.assertEqual(res.status_code, 201)
        return customer_id, (res.get_json(force=True) or {})["order"]["id"]

    def _accept(self, order_id: int):
        res = self.client.put(
            f"/api/users/orders/{order_id}/vendor/{self.vendor_id}/accept",
            json={"accepted": True},
            headers=auth_header(self.vendor_id),
        )
        self.assertEqual(res.status_code, 200)

    def _assign(self, order_id: int, rider_id: int):
        return self.client.put(
            f"/api/users/orders/{order_id}/assign-rider",
            json={"rider": rider_id},
            headers=auth_header(self.manager_id),
        )

    def _status(self, order_id: int, status: str, *, actor: int):
        return self.client.put(
            f"/api/users/orders/{order_id}/updateStatus",
            json={"currentStatus": status},
            headers=auth_header(actor),
        )

    def test_delivery_pays_rider_share_of_fee(self):
        _customer, order_id = self._place(delivery_fee=400)
        self._accept(order_id)
        res = self._assign(order_id, self.rider_id)
        self.assertEqual(res.status_code, 200)
        self.assertEqual((res.get_json(force=True) or {})["order"]["rider"], str(self.rider_id))
        self.assertIn(("orders:assignRider", {"orderId": order_id, "rider": str(self.rider_id)}), self.broadcaster.events)

        with self.app.app_context():
            before = balance(self.rider_id)
        self.assertEqual(self._status(order_id, "Processing", actor=self.rider_id).status_code, 200)
        res = self._status(order_id, "Delivered", actor=self.rider_id)
        self.assertEqual(res.status_code, 200)
        self.assertEqual((res.get_json(force=True) or {})["order"]["currentStatus"], "Delivered")

        res = self._status(order_id, "Delivered", actor=self.rider_id)
        self.assertEqual(res.status_code, 200)
        self.assertFalse((res.get_json(force=True) or {})["changed"])

        with self.app.app_context():
            self.assertEqual(balance(self.rider_id), before + 200)
            payouts = LedgerEntry.query.filter_by(
                account_id=self.rider_id, kind="delivery_payout", reference=str(order_id)
            ).count()
            self.assertEqual(payouts, 1)

    def test_pending_cannot_jump_to_delivered(self):
        _customer, order_id = self._place()
        res = self._status(order_id, "Delivered", actor=self.manager_id)
        self.assertEqual(res.status_code, 409)
        self.assertEqual((res.get_json(force=True) or {}).get("error"), "INVALID_STATUS_TRANSITION")

    def test_unknown_status_is_rejected(self):
        _customer, order_id = self._place()
        self.assertEqual(self._status(order_id, "Lost", actor=self.manager_id).status_code, 400)

    def test_processing_requires_an_accepted_pack(self):
        _customer, order_id = self._place()
        self.assertEqual(self._status(order_id, "Processing", actor=self.manager_id).status_code, 409)

    def test_manager_cancel_refunds_full_total(self):
        customer_id, order_id = self._place(delivery_fee=400)
        with self.app.app_context():
            self.assertEqual(balance(customer_id), 10000 - 3500)
        res = self._status(order_id, "Cancelled", actor=self.manager_id)
        self.assertEqual(res.status_code, 200)
        with self.app.app_context():
            self.assertEqual(balance(customer_id), 10000)
        self.assertEqual(self._status(order_id, "Processing", actor=self.manager_id).status_code, 409)

    def test_cancel_refused_once_a_pack_is_accepted(self):
        _customer, order_id = self._place()
        self._accept(order_id)
        self.assertEqual(self._status(order_id, "Cancelled", actor=self.manager_id).status_code, 409)

    def test_processing_order_cannot_be_cancelled(self):
        _customer, order_id = self._place()
        self._accept(order_id)
        self.assertEqual(self._status(order_id, "Processing", actor=self.manager_id).status_code, 200)
        res = self._status(order_id, "Cancelled", actor=self.manager_id)
        self.assertEqual(res.status_code, 409)
        self.assertEqual((res.get_json(force=True) or {}).get("error"), "INVALID_STATUS_TRANSITION")

    def test_only_the_assigned_rider_moves_the_order(self):
        _customer, order_id = self._place()
        self._accept(order_id)
        self.assertEqual(self._assign(order_id, self.rider_id).status_code, 200)
        self.assertEqual(self._status(order_id, "Processing", actor=self.other_rider_id).status_code, 403)
        self.assertEqual(self._status(order_id, "Cancelled", actor=self.rider_id).status_code, 403)

    def test_unapproved_rider_cannot_be_assigned(self):
        with self.app.app_context():
            pending_rider = make_account("rider", valid=None)
        _customer, order_id = self._place()
        self.assertEqual(self._assign(order_id, pending_rider).status_code, 400)
        self.assertEqual(self._assign(order_id, self.vendor_id).status_code, 404)

    def test_messages_on_order(self):
        customer_id, order_id = self._place()
        res = self.client.post(
            f"/api/users/orders/{order_id}/message",
            json={"text": "Rider is 5 minutes away"},
            headers=auth_header(self.manager_id),
        )
        self.assertEqual(res.status_code, 201)
        res = self.client.get(f"/api/users/orders/{order_id}/messages", headers=auth_header(customer_id))
        messages = (res.get_json(force=True) or {})["messages"]
        self.assertEqual(len(messages), 1)
        self.assertEqual(
            self.client.post(
                f"/api/users/orders/{order_id}/message", json={"text": "  "}, headers=auth_header(self.manager_id)
            ).status_code,
            400,
        )


if __name__ == "__main__":
    unittest.main()
