from __future__ import annotations

import unittest

from tests.helpers import auth_header, build_test_app, make_account


class ApiErrorContractTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app, cls.broadcaster = build_test_app()
        cls.client = cls.app.test_client()
        with cls.app.app_context():
            cls.customer_id = make_account("customer")

    def _assert_error_shape(self, res, status: int):
        self.assertEqual(res.status_code, status)
        self.assertTrue(res.is_json)
        body = res.get_json(force=True) or {}
        self.assertFalse(bool(body.get("ok", True)))
        self.assertTrue(str(body.get("error") or "").strip())
        self.assertTrue(str(body.get("message") or "").strip())
        self.assertEqual(int(body.get("status") or 0), status)
        self.assertTrue(str(body.get("trace_id") or "").strip())
        return body

    def test_unknown_api_route_returns_json_error_shape(self):
        res = self.client.get("/api/does-not-exist")
        self._assert_error_shape(res, 404)

    def test_missing_token_is_unauthorized(self):
        res = self.client.get("/api/users/orders")
        body = self._assert_error_shape(res, 401)
        self.assertEqual(body["error"], "UNAUTHORIZED")

    def test_validation_error_carries_code(self):
        res = self.client.post(
            "/api/users/add-order",
            json={"subtotal": 100, "serviceFee": 0, "packs": []},
            headers=auth_header(self.customer_id),
        )
        body = self._assert_error_shape(res, 400)
        self.assertEqual(body["error"], "VALIDATION_ERROR")
        self.assertEqual(body["message"], "No packs provided")

    def test_request_id_is_echoed(self):
        res = self.client.get("/api/health", headers={"X-Request-Id": "trace_abc123"})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.headers.get("X-Request-Id"), "trace_abc123")
        body = res.get_json(force=True) or {}
        self.assertEqual(body["payments"]["provider"], "mock")
        self.assertEqual(body["realtime"], "recording")


if __name__ == "__main__":
    unittest.main()
