from __future__ import annotations

from dataclasses import dataclass


# Push token the device no longer owns; the account's token should be cleared.
INVALID_TOKEN = "INVALID_TOKEN"


@dataclass
class MessageResult:
    ok: bool
    code: str = ""
    message: str = ""
    raw: dict | None = None


class MessagingProvider:
    """Outbound push (to a device token) and email (to an address)."""

    name = "unknown"

    def send_push(self, *, token: str, title: str, body: str, data: dict | None = None) -> MessageResult:
        raise NotImplementedError

    def send_email(self, *, to: str, subject: str, html: str) -> MessageResult:
        raise NotImplementedError
