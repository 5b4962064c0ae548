from datetime import datetime

from mealsection.extensions import db


class Withdrawal(db.Model):
    """Payout request from a vendor or rider balance.

    The amount is debited when the request is created. ``status`` stays None
    while pending; True means paid out, False means rejected and refunded.
    """

    __tablename__ = "withdrawals"

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)
    account_role = db.Column(db.String(16), nullable=False, index=True)
    account_name = db.Column(db.String(160), nullable=False, default="")
    amount = db.Column(db.Integer, nullable=False)
    status = db.Column(db.Boolean, nullable=True)
    resolved_by = db.Column(db.Integer, nullable=True)
    resolved_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

    def to_dict(self) -> dict:
        payload = {
            "id": int(self.id),
            "accountId": int(self.account_id),
            "accountName": self.account_name or "",
            "amount": int(self.amount or 0),
            "status": self.status,
            "date": self.created_at.isoformat() if self.created_at else None,
            "resolvedAt": self.resolved_at.isoformat() if self.resolved_at else None,
        }
        if self.account_role == "rider":
            payload["riderId"] = int(self.account_id)
            payload["riderName"] = self.account_name or ""
        else:
            payload["vendorId"] = int(self.account_id)
            payload["vendorName"] = self.account_name or ""
        return payload
