from __future__ import annotations

import os

from mealsection.integrations.messaging.base import MessagingProvider, MessageResult


class MockMessagingProvider(MessagingProvider):
    name = "mock"
    outbox: list[dict] = []

    @classmethod
    def reset(cls) -> None:
        cls.outbox.clear()

    def _force_failure(self, message: str) -> bool:
        msg = (message or "").lower()
        return "[fail]" in msg or (os.getenv("MOCK_NOTIFY_FORCE_FAIL") or "").strip() == "1"

    def send_push(self, *, token: str, title: str, body: str, data: dict | None = None) -> MessageResult:
        if self._force_failure(body):
            return MessageResult(ok=False, code="PUSH_PROVIDER_DOWN", message="mock forced failure")
        self.outbox.append({"channel": "push", "to": token, "title": title, "body": body, "data": dict(data or {})})
        return MessageResult(ok=True, code="OK", message="mock_sent", raw={"to": token})

    def send_email(self, *, to: str, subject: str, html: str) -> MessageResult:
        if self._force_failure(html):
            return MessageResult(ok=False, code="EMAIL_PROVIDER_DOWN", message="mock forced failure")
        self.outbox.append({"channel": "email", "to": to, "title": subject, "body": html})
        return MessageResult(ok=True, code="OK", message="mock_sent", raw={"to": to})
