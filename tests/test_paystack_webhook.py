from __future__ import annotations

import hashlib
import hmac
import json
import os
import tempfile
import time
import unittest
from unittest.mock import patch

from sqlalchemy.exc import IntegrityError

from mealsection.integrations.messaging.mock_provider import MockMessagingProvider
from mealsection.models import LedgerEntry, ProcessedPaystackRef, WebhookEvent
from mealsection.services.payment_service import compute_credit_amount, verify_signature
from tests.helpers import PAYSTACK_TEST_SECRET, balance, build_test_app, make_account


def _sign(raw: bytes, secret: str = PAYSTACK_TEST_SECRET) -> str:
    return hmac.new(secret.encode("utf-8"), raw, hashlib.sha512).hexdigest()


class CreditAmountTestCase(unittest.TestCase):
    def test_metadata_amount_wins(self):
        self.assertEqual(compute_credit_amount({"amount": 510000, "metadata": {"amount": 5000}}), 5000)

    def test_fee_estimate_without_metadata(self):
        # 5000 charged: fee = 75 + 100
        self.assertEqual(compute_credit_amount({"amount": 500000}), 4825)
        # 1000 charged: fee = 15, no flat part below 2500
        self.assertEqual(compute_credit_amount({"amount": 100000}), 985)

    def test_non_positive_metadata_falls_back(self):
        self.assertEqual(compute_credit_amount({"amount": 100000, "metadata": {"amount": 0}}), 985)

    def test_signature_is_constant_time_hex_compare(self):
        raw = b'{"event":"charge.success"}'
        self.assertTrue(verify_signature(raw, _sign(raw), PAYSTACK_TEST_SECRET))
        self.assertFalse(verify_signature(raw, _sign(raw, "other"), PAYSTACK_TEST_SECRET))
        self.assertFalse(verify_signature(raw, None, PAYSTACK_TEST_SECRET))


class PaystackWebhookTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app, cls.broadcaster = build_test_app()
        cls.client = cls.app.test_client()

    def setUp(self):
        MockMessagingProvider.reset()

    def _payload(self, email: str, reference: str, *, amount_kobo: int = 500000, metadata=None, event="charge.success") -> bytes:
        data = {"reference": reference, "amount": amount_kobo, "customer": {"email": email}}
        if metadata is not None:
            data["metadata"] = metadata
        return json.dumps({"event": event, "data": data}).encode("utf-8")

    def _post(self, raw: bytes, *, signature: str | None = None, path: str = "/webhook/paystack"):
        return self.client.post(
            path,
            data=raw,
            content_type="application/json",
            headers={"X-Paystack-Signature": signature if signature is not None else _sign(raw)},
        )

    def _customer(self) -> tuple[int, str]:
        email = f"payer-{time.time_ns()}@mealsection.test"
        with self.app.app_context():
            return make_account("customer", email=email), email

    def test_bad_signature_changes_nothing(self):
        customer_id, email = self._customer()
        raw = self._payload(email, f"ref-{time.time_ns()}")
        res = self._post(raw, signature=_sign(raw, "wrong-secret"))
        self.assertEqual(res.status_code, 401)
        with self.app.app_context():
            self.assertEqual(balance(customer_id), 0)
            event = WebhookEvent.query.order_by(WebhookEvent.id.desc()).first()
            self.assertEqual(event.status, "invalid_signature")

    def test_replay_credits_once(self):
        customer_id, email = self._customer()
        reference = f"ref-{time.time_ns()}"
        raw = self._payload(email, reference, metadata={"amount": 5000})

        res = self._post(raw)
        self.assertEqual(res.status_code, 200)
        self.assertEqual((res.get_json(force=True) or {}).get("amount"), 5000)

        res = self._post(raw, path="/api/webhooks/paystack")
        self.assertEqual(res.status_code, 200)
        self.assertEqual((res.get_json(force=True) or {}).get("message"), "Already processed")

        with self.app.app_context():
            self.assertEqual(balance(customer_id), 5000)
            self.assertEqual(ProcessedPaystackRef.query.filter_by(reference=reference).count(), 1)
            topups = LedgerEntry.query.filter_by(account_id=customer_id, kind="wallet_topup").all()
            self.assertEqual(len(topups), 1)
            self.assertEqual(topups[0].reference, reference)

    def test_fee_fallback_without_metadata(self):
        customer_id, email = self._customer()
        res = self._post(self._payload(email, f"ref-{time.time_ns()}", amount_kobo=500000))
        self.assertEqual(res.status_code, 200)
        with self.app.app_context():
            self.assertEqual(balance(customer_id), 4825)

    def test_unknown_email_is_not_found(self):
        reference = f"ref-{time.time_ns()}"
        res = self._post(self._payload("ghost@mealsection.test", reference))
        self.assertEqual(res.status_code, 404)
        with self.app.app_context():
            self.assertIsNone(ProcessedPaystackRef.query.filter_by(reference=reference).first())

    def test_other_events_are_ignored(self):
        _customer_id, email = self._customer()
        res = self._post(self._payload(email, f"ref-{time.time_ns()}", event="transfer.success"))
        self.assertEqual(res.status_code, 200)
        self.assertEqual((res.get_json(force=True) or {}).get("message"), "Ignored")

    def test_raw_body_is_audited_before_processing(self):
        _customer_id, email = self._customer()
        reference = f"ref-audit-{time.time_ns()}"
        self._post(self._payload(email, reference), signature="bogus")
        path = os.path.join(self.app.config["WEBHOOK_LOG_DIR"], "paystack_webhook.log")
        with open(path, encoding="utf-8") as fh:
            self.assertIn(reference, fh.read())

    def test_unexpected_failure_returns_500_and_alerts_operator(self):
        customer_id, email = self._customer()
        raw = self._payload(email, f"ref-{time.time_ns()}", metadata={"amount": 700})
        with patch("mealsection.services.payment_service.post_txn", side_effect=RuntimeError("db went away")):
            res = self._post(raw)
        self.assertEqual(res.status_code, 500)
        with self.app.app_context():
            self.assertEqual(balance(customer_id), 0)
            event = WebhookEvent.query.order_by(WebhookEvent.id.desc()).first()
            self.assertEqual(event.status, "failed")
            self.assertIn("db went away", event.error)
        alerts = [m for m in MockMessagingProvider.outbox if m["to"] == "ops@mealsection.test"]
        self.assertEqual(len(alerts), 1)

        # The processor retries and the credit goes through.
        res = self._post(raw)
        self.assertEqual(res.status_code, 200)
        with self.app.app_context():
            self.assertEqual(balance(customer_id), 700)

    def test_event_insert_failure_alerts_operator(self):
        _customer_id, email = self._customer()
        raw = self._payload(email, f"ref-{time.time_ns()}", metadata={"amount": 300})
        with patch("mealsection.segments.segment_payments.record_webhook", side_effect=RuntimeError("disk full")):
            res = self._post(raw)
        self.assertEqual(res.status_code, 500)
        self.assertEqual((res.get_json(force=True) or {}).get("error"), "WEBHOOK_HANDLER_FAILED")
        alerts = [m for m in MockMessagingProvider.outbox if m["to"] == "ops@mealsection.test"]
        self.assertEqual(len(alerts), 1)
        self.assertIn("disk full", alerts[0]["body"])

    def test_concurrent_duplicate_keeps_reference_on_event(self):
        customer_id, email = self._customer()
        reference = f"ref-race-{time.time_ns()}"
        raw = self._payload(email, reference, metadata={"amount": 900})
        # Another delivery of the same reference committed between the check and the insert.
        clash = IntegrityError("INSERT INTO processed_paystack_refs", {}, Exception("UNIQUE constraint failed"))
        with patch("mealsection.services.payment_service.post_txn", side_effect=clash):
            res = self._post(raw)
        self.assertEqual(res.status_code, 200)
        self.assertEqual((res.get_json(force=True) or {}).get("message"), "Already processed")
        with self.app.app_context():
            self.assertEqual(balance(customer_id), 0)
            event = WebhookEvent.query.order_by(WebhookEvent.id.desc()).first()
            self.assertEqual(event.status, "duplicate")
            self.assertEqual(event.reference, reference)
            self.assertEqual(event.event, "charge.success")


class PaystackWebhookUnwritableLogTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        handle, cls.log_path = tempfile.mkstemp(prefix="mealsection-not-a-dir-")
        os.close(handle)
        cls.app, cls.broadcaster = build_test_app(WEBHOOK_LOG_DIR=cls.log_path)
        cls.client = cls.app.test_client()

    @classmethod
    def tearDownClass(cls):
        os.unlink(cls.log_path)

    def test_credit_goes_through_without_the_log_file(self):
        email = f"payer-{time.time_ns()}@mealsection.test"
        with self.app.app_context():
            customer_id = make_account("customer", email=email)
        data = {"reference": f"ref-{time.time_ns()}", "amount": 510000, "customer": {"email": email}, "metadata": {"amount": 5000}}
        raw = json.dumps({"event": "charge.success", "data": data}).encode("utf-8")
        res = self.client.post(
            "/webhook/paystack",
            data=raw,
            content_type="application/json",
            headers={"X-Paystack-Signature": _sign(raw)},
        )
        self.assertEqual(res.status_code, 200)
        with self.app.app_context():
            self.assertEqual(balance(customer_id), 5000)
            self.assertEqual(WebhookEvent.query.order_by(WebhookEvent.id.desc()).first().status, "processed")


class PaystackWebhookMissingSecretTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app, cls.broadcaster = build_test_app(PAYSTACK_SECRET_KEY="")
        cls.client = cls.app.test_client()

    def test_missing_secret_is_server_error(self):
        raw = b'{"event":"charge.success","data":{}}'
        res = self.client.post("/webhook/paystack", data=raw, content_type="application/json", headers={"X-Paystack-Signature": "x"})
        self.assertEqual(res.status_code, 500)


if __name__ == "__main__":
    unittest.main()
