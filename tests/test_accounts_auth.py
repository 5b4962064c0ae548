from __future__ import annotations

import time
import unittest

import jwt

from mealsection.utils.jwt_utils import bearer_token, create_access_token, decode_access_token
from tests.helpers import auth_header, build_test_app, make_account


class AccountsAuthTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app, cls.broadcaster = build_test_app()
        cls.client = cls.app.test_client()
        with cls.app.app_context():
            cls.manager_id = make_account("manager")

    def _email(self, prefix: str) -> str:
        return f"{prefix}-{time.time_ns()}@mealsection.test"

    def test_customer_signup_returns_token_and_login_works(self):
        email = self._email("customer")
        res = self.client.post(
            "/api/accounts/signup",
            json={"role": "customer", "name": "Ada", "email": email, "password": "Passw0rd!", "university": "UNILAG"},
        )
        self.assertEqual(res.status_code, 201)
        body = res.get_json(force=True) or {}
        self.assertTrue(body.get("token"))
        self.assertEqual(body["account"]["availableBal"], 0)

        res = self.client.post("/api/accounts/login", json={"email": email, "password": "Passw0rd!", "fcmToken": "tok-1"})
        self.assertEqual(res.status_code, 200)
        token = (res.get_json(force=True) or {}).get("token")
        me = self.client.get("/api/accounts/me", headers={"Authorization": f"Bearer {token}"})
        self.assertEqual(me.status_code, 200)
        self.assertEqual(me.get_json(force=True)["account"]["email"], email)

    def test_duplicate_email_is_conflict(self):
        email = self._email("dup")
        payload = {"role": "customer", "name": "Dup", "email": email, "password": "Passw0rd!"}
        self.assertEqual(self.client.post("/api/accounts/signup", json=payload).status_code, 201)
        res = self.client.post("/api/accounts/signup", json=payload)
        self.assertEqual(res.status_code, 409)
        self.assertEqual((res.get_json(force=True) or {}).get("error"), "EMAIL_TAKEN")

    def test_vendor_login_gated_on_approval(self):
        email = self._email("vendor")
        res = self.client.post(
            "/api/accounts/signup",
            json={"role": "vendor", "name": "Chef", "storeName": "Chef Kitchen", "email": email, "password": "Passw0rd!"},
        )
        self.assertEqual(res.status_code, 201)
        body = res.get_json(force=True) or {}
        self.assertNotIn("token", body)
        vendor_id = body["account"]["id"]
        self.assertIsNone(body["account"]["valid"])

        res = self.client.post("/api/accounts/login", json={"email": email, "password": "Passw0rd!"})
        self.assertEqual(res.status_code, 403)
        self.assertEqual((res.get_json(force=True) or {}).get("error"), "ACCOUNT_PENDING")

        res = self.client.patch(f"/api/vendors/{vendor_id}/approve", json={"valid": False}, headers=auth_header(self.manager_id))
        self.assertEqual(res.status_code, 200)
        res = self.client.post("/api/accounts/login", json={"email": email, "password": "Passw0rd!"})
        self.assertEqual((res.get_json(force=True) or {}).get("error"), "ACCOUNT_REJECTED")

        res = self.client.patch(f"/api/accounts/{vendor_id}/approve", json={"valid": True}, headers=auth_header(self.manager_id))
        self.assertEqual(res.status_code, 200)
        res = self.client.post("/api/accounts/login", json={"email": email, "password": "Passw0rd!"})
        self.assertEqual(res.status_code, 200)

    def test_approval_requires_manager(self):
        with self.app.app_context():
            rider_id = make_account("rider", valid=None)
            customer_id = make_account("customer")
        res = self.client.patch(f"/api/riders/{rider_id}/approve", json={"valid": True}, headers=auth_header(customer_id))
        self.assertEqual(res.status_code, 403)

    def test_approve_route_rejects_wrong_role(self):
        with self.app.app_context():
            rider_id = make_account("rider", valid=None)
        res = self.client.patch(f"/api/vendors/{rider_id}/approve", json={"valid": True}, headers=auth_header(self.manager_id))
        self.assertEqual(res.status_code, 404)

    def test_bad_password_is_unauthorized(self):
        res = self.client.post("/api/accounts/login", json={"email": "nobody@mealsection.test", "password": "nope"})
        self.assertEqual(res.status_code, 401)

    def test_manager_signup_is_refused(self):
        res = self.client.post(
            "/api/accounts/signup",
            json={"role": "manager", "name": "Boss", "email": self._email("boss"), "password": "Passw0rd!"},
        )
        self.assertEqual(res.status_code, 403)


class AccessTokenTestCase(unittest.TestCase):
    def test_round_trip_yields_account_id(self):
        self.assertEqual(decode_access_token(create_access_token(42, "rider")), 42)

    def test_expired_token_is_rejected(self):
        token = create_access_token(42, "rider", ttl_seconds=-30)
        self.assertIsNone(decode_access_token(token))

    def test_foreign_issuer_is_rejected(self):
        token = jwt.encode({"sub": "42", "iss": "elsewhere", "exp": int(time.time()) + 60}, "dev-secret", algorithm="HS256")
        self.assertIsNone(decode_access_token(token))

    def test_bearer_parsing(self):
        self.assertEqual(bearer_token("Bearer abc"), "abc")
        self.assertIsNone(bearer_token("Token abc"))
        self.assertIsNone(bearer_token(None))


if __name__ == "__main__":
    unittest.main()
