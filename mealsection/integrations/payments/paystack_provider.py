from __future__ import annotations

from urllib.parse import quote

import requests

from mealsection.integrations.payments.base import (
    REFERENCE_NOT_FOUND,
    VERIFY_FAILED,
    PaymentsProvider,
    PaymentVerification,
)


DEFAULT_VERIFY_URL = "https://api.paystack.co/transaction/verify/"


def _kobo(raw) -> int:
    try:
        return int(raw or 0)
    except (TypeError, ValueError):
        return 0


class PaystackPaymentsProvider(PaymentsProvider):
    """Pull verification against Paystack's ``GET /transaction/verify/:reference``."""

    name = "paystack"

    def __init__(self, secret_key: str, verify_url: str = DEFAULT_VERIFY_URL, timeout: int = 25):
        self.verify_url = verify_url if verify_url.endswith("/") else verify_url + "/"
        self.timeout = timeout
        self._session = requests.Session()
        self._session.headers.update({"Authorization": f"Bearer {secret_key}", "Accept": "application/json"})

    def verify(self, reference: str) -> PaymentVerification:
        ref = (reference or "").strip()
        try:
            resp = self._session.get(f"{self.verify_url}{quote(ref, safe='')}", timeout=self.timeout)
            body = resp.json() if resp.content else {}
        except requests.RequestException as e:
            raise RuntimeError(f"{VERIFY_FAILED}:{e}") from e
        except ValueError:
            raise RuntimeError(f"{VERIFY_FAILED}:non-JSON response (HTTP {resp.status_code})")

        if not resp.ok or body.get("status") is not True:
            msg = str(body.get("message") or f"HTTP {resp.status_code}").strip()
            code = REFERENCE_NOT_FOUND if "reference not found" in msg.lower() else VERIFY_FAILED
            raise RuntimeError(f"{code}:{msg}")

        data = body.get("data") or {}
        return PaymentVerification(
            reference=str(data.get("reference") or ref),
            status=str(data.get("status") or "").strip().lower(),
            amount_kobo=_kobo(data.get("amount")),
            customer_email=str((data.get("customer") or {}).get("email") or "").strip().lower(),
            currency=str(data.get("currency") or "NGN").strip().upper(),
            raw=body,
        )
