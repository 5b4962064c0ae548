from datetime import datetime

from mealsection.extensions import db


class LedgerEntry(db.Model):
    """Append-only balance history; one row per balance mutation."""

    __tablename__ = "ledger_entries"

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)

    # Order id for order flows, processor reference for top-ups, or a marker
    # such as "AdminFund" / "withdrawal:<id>".
    reference = db.Column(db.String(128), nullable=False, default="", index=True)
    amount = db.Column(db.Integer, nullable=False)
    direction = db.Column(db.String(8), nullable=False)  # in | out
    kind = db.Column(db.String(32), nullable=False, default="adjustment", index=True)
    description = db.Column(db.String(255), nullable=True)

    previous_balance = db.Column(db.Integer, nullable=False, default=0)
    new_balance = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "orderId": self.reference or "",
            "price": int(self.amount or 0),
            "type": self.direction,
            "kind": self.kind or "",
            "description": self.description or "",
            "previousBalance": int(self.previous_balance or 0),
            "newBalance": int(self.new_balance or 0),
            "timestamp": self.created_at.isoformat() if self.created_at else None,
        }
