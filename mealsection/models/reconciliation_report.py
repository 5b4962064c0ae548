import json
from datetime import datetime

from mealsection.extensions import db


class ReconciliationReport(db.Model):
    """A saved ledger replay: which balances disagreed with their history."""

    __tablename__ = "reconciliation_reports"

    id = db.Column(db.Integer, primary_key=True)
    trigger = db.Column(db.String(16), nullable=False, default="api")  # api | cli
    role = db.Column(db.String(16), nullable=True)
    account_count = db.Column(db.Integer, nullable=False, default=0)
    drift_count = db.Column(db.Integer, nullable=False, default=0)
    net_drift = db.Column(db.Integer, nullable=False, default=0)
    drift_items_json = db.Column(db.Text, nullable=True)
    requested_by = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    def drift_items(self) -> list:
        return json.loads(self.drift_items_json or "[]")

    def to_dict(self):
        return {
            "id": int(self.id),
            "trigger": self.trigger,
            "role": self.role or "",
            "accountCount": int(self.account_count or 0),
            "driftCount": int(self.drift_count or 0),
            "netDrift": int(self.net_drift or 0),
            "driftItems": self.drift_items(),
            "requestedBy": self.requested_by,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
