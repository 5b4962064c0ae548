from datetime import datetime

from werkzeug.security import generate_password_hash, check_password_hash

from mealsection.extensions import db


ROLE_CUSTOMER = "customer"
ROLE_VENDOR = "vendor"
ROLE_RIDER = "rider"
ROLE_MANAGER = "manager"

ROLES = (ROLE_CUSTOMER, ROLE_VENDOR, ROLE_RIDER, ROLE_MANAGER)

# Vendors and riders must be approved by a manager before they can sign in.
APPROVAL_ROLES = (ROLE_VENDOR, ROLE_RIDER)


class Account(db.Model):
    __tablename__ = "accounts"

    id = db.Column(db.Integer, primary_key=True)

    role = db.Column(db.String(16), nullable=False, default=ROLE_CUSTOMER, index=True)
    name = db.Column(db.String(120), nullable=False, default="")
    email = db.Column(db.String(255), unique=True, index=True, nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    university = db.Column(db.String(120), nullable=True, index=True)

    password_hash = db.Column(db.String(255), nullable=False)

    # Whole naira; only ever mutated through utils.ledger.post_txn.
    available_bal = db.Column(db.Integer, nullable=False, default=0)

    # Tri-state approval: None = pending review, True = approved, False = rejected.
    valid = db.Column(db.Boolean, nullable=True)

    fcm_token = db.Column(db.String(512), nullable=True)

    store_name = db.Column(db.String(160), nullable=True, index=True)
    bank_name = db.Column(db.String(120), nullable=True)
    account_number = db.Column(db.String(32), nullable=True)
    account_name = db.Column(db.String(160), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def set_password(self, raw_password: str) -> None:
        self.password_hash = generate_password_hash(raw_password)

    def check_password(self, raw_password: str) -> bool:
        return check_password_hash(self.password_hash, raw_password)

    @property
    def display_name(self) -> str:
        if self.role == ROLE_VENDOR and self.store_name:
            return self.store_name
        return self.name or self.email

    def to_dict(self) -> dict:
        payload = {
            "id": int(self.id),
            "role": self.role or ROLE_CUSTOMER,
            "name": self.name or "",
            "email": self.email,
            "phone": self.phone or "",
            "university": self.university or "",
            "availableBal": int(self.available_bal or 0),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if self.role in APPROVAL_ROLES:
            payload["valid"] = self.valid
        if self.role == ROLE_VENDOR:
            payload.update(
                {
                    "storeName": self.store_name or "",
                    "bankName": self.bank_name or "",
                    "accountNumber": self.account_number or "",
                    "accountName": self.account_name or "",
                }
            )
        return payload
