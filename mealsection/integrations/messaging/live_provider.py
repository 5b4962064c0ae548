from __future__ import annotations

import json
import smtplib
from email.message import EmailMessage

import firebase_admin
from firebase_admin import credentials, exceptions, messaging

from mealsection.integrations.messaging.base import INVALID_TOKEN, MessagingProvider, MessageResult


_FIREBASE_APP_NAME = "mealsection"


def _firebase_app(service_account: str):
    try:
        return firebase_admin.get_app(_FIREBASE_APP_NAME)
    except ValueError:
        pass
    raw = (service_account or "").strip()
    # Either a path to the key file or the key JSON itself.
    cert = credentials.Certificate(json.loads(raw) if raw.startswith("{") else raw)
    return firebase_admin.initialize_app(cert, name=_FIREBASE_APP_NAME)


class LiveMessagingProvider(MessagingProvider):
    """FCM push through firebase-admin, email over SMTP."""

    name = "live"

    def __init__(
        self,
        *,
        smtp_host: str,
        smtp_port: int,
        smtp_user: str,
        smtp_pass: str,
        smtp_from: str,
        firebase_service_account: str = "",
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_pass = smtp_pass
        self.smtp_from = smtp_from
        self.firebase_service_account = firebase_service_account

    def send_push(self, *, token: str, title: str, body: str, data: dict | None = None) -> MessageResult:
        if not self.firebase_service_account:
            return MessageResult(ok=False, code="PUSH_NOT_CONFIGURED", message="missing FIREBASE_SERVICE_ACCOUNT")
        app = _firebase_app(self.firebase_service_account)
        msg = messaging.Message(
            notification=messaging.Notification(title=title, body=body),
            data={str(k): str(v) for k, v in (data or {}).items()},
            token=token,
        )
        try:
            message_id = messaging.send(msg, app=app)
        except messaging.UnregisteredError as e:
            return MessageResult(ok=False, code=INVALID_TOKEN, message=str(e)[:200])
        except exceptions.FirebaseError as e:
            return MessageResult(ok=False, code="PUSH_SEND_FAILED", message=str(e)[:200])
        return MessageResult(ok=True, code="OK", message="sent", raw={"message_id": message_id})

    def send_email(self, *, to: str, subject: str, html: str) -> MessageResult:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.smtp_from
        msg["To"] = to
        msg.set_content("This message requires an HTML capable mail client.")
        msg.add_alternative(html, subtype="html")
        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=10) as server:
                server.ehlo()
                if server.has_extn("starttls"):
                    server.starttls()
                    server.ehlo()
                if self.smtp_user and self.smtp_pass:
                    server.login(self.smtp_user, self.smtp_pass)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            return MessageResult(ok=False, code="EMAIL_SEND_FAILED", message=str(e)[:200])
        return MessageResult(ok=True, code="OK", message="sent", raw={"to": to})
