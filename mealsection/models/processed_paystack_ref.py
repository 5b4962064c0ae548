from datetime import datetime

from mealsection.extensions import db


class ProcessedPaystackRef(db.Model):
    __tablename__ = "processed_paystack_refs"

    id = db.Column(db.Integer, primary_key=True)
    reference = db.Column(db.String(128), nullable=False, unique=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=True, index=True)
    amount = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
