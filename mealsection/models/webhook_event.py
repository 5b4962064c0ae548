from datetime import datetime

from mealsection.extensions import db


WEBHOOK_STATUSES = (
    "received",
    "invalid_signature",
    "invalid_payload",
    "ignored",
    "duplicate",
    "unknown_account",
    "processed",
    "failed",
)


class WebhookEvent(db.Model):
    """One inbound Paystack delivery, stored before its signature is checked."""

    __tablename__ = "webhook_events"

    id = db.Column(db.Integer, primary_key=True)
    provider = db.Column(db.String(32), nullable=False, default="paystack")
    event = db.Column(db.String(64), nullable=True)
    reference = db.Column(db.String(128), nullable=True, index=True)
    status = db.Column(db.String(32), nullable=False, default="received")

    # Set once the delivery has credited a wallet.
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=True)
    credited_amount = db.Column(db.Integer, nullable=True)

    request_id = db.Column(db.String(64), nullable=True)
    body_sha256 = db.Column(db.String(64), nullable=True)
    raw_body = db.Column(db.Text, nullable=True)
    error = db.Column(db.Text, nullable=True)

    received_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    handled_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self):
        return {
            "id": int(self.id),
            "provider": self.provider,
            "event": self.event or "",
            "reference": self.reference or "",
            "status": self.status,
            "accountId": self.account_id,
            "creditedAmount": self.credited_amount,
            "requestId": self.request_id or "",
            "error": self.error or "",
            "receivedAt": self.received_at.isoformat() if self.received_at else None,
            "handledAt": self.handled_at.isoformat() if self.handled_at else None,
        }
