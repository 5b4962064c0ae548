from __future__ import annotations

import os
import unittest
from unittest.mock import patch

from flask import Flask

from mealsection.utils.observability import (
    _before_send_scrub,
    get_request_id,
    init_sentry,
    install_request_observers,
    report_exception,
)


class SentryOptionalInitTestCase(unittest.TestCase):
    def test_sentry_init_is_noop_without_dsn(self):
        app = Flask(__name__)
        with patch.dict(os.environ, {"SENTRY_DSN": ""}, clear=False):
            init_sentry(app)

    def test_report_exception_is_noop_without_dsn(self):
        with patch.dict(os.environ, {"SENTRY_DSN": ""}, clear=False):
            report_exception(RuntimeError("boom"))

    def test_scrub_redacts_auth_and_signature_headers(self):
        event = {
            "request": {
                "headers": {
                    "Authorization": "Bearer abc",
                    "X-Paystack-Signature": "deadbeef",
                    "Accept": "application/json",
                }
            }
        }
        scrubbed = _before_send_scrub(event, {})
        headers = scrubbed["request"]["headers"]
        self.assertEqual(headers["Authorization"], "[REDACTED]")
        self.assertEqual(headers["X-Paystack-Signature"], "[REDACTED]")
        self.assertEqual(headers["Accept"], "application/json")

    def test_scrub_redacts_login_password(self):
        event = {"request": {"headers": {}, "data": {"email": "a@b.c", "password": "hunter22"}}}
        scrubbed = _before_send_scrub(event, {})
        self.assertEqual(scrubbed["request"]["data"]["password"], "[REDACTED]")
        self.assertEqual(scrubbed["request"]["data"]["email"], "a@b.c")


class RequestIdHeaderTestCase(unittest.TestCase):
    def setUp(self):
        self.app = Flask(__name__)
        install_request_observers(self.app)

        @self.app.get("/ping")
        def _ping():
            return {"request_id": get_request_id()}

        self.client = self.app.test_client()

    def test_incoming_request_id_is_echoed(self):
        res = self.client.get("/ping", headers={"X-Request-Id": "req-abc"})
        self.assertEqual(res.headers.get("X-Request-Id"), "req-abc")
        self.assertEqual((res.get_json(force=True) or {}).get("request_id"), "req-abc")

    def test_request_id_is_generated(self):
        res = self.client.get("/ping")
        self.assertTrue(res.headers.get("X-Request-Id"))

    def test_request_id_outside_request_is_empty(self):
        self.assertEqual(get_request_id(), "")


if __name__ == "__main__":
    unittest.main()
