from datetime import datetime

from mealsection.extensions import db


STATUS_PENDING = "Pending"
STATUS_PROCESSING = "Processing"
STATUS_DELIVERED = "Delivered"
STATUS_CANCELLED = "Cancelled"

ORDER_STATUSES = (STATUS_PENDING, STATUS_PROCESSING, STATUS_DELIVERED, STATUS_CANCELLED)

PACK_TYPES = ("small", "big")


class Order(db.Model):
    __tablename__ = "orders"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)

    subtotal = db.Column(db.Integer, nullable=False, default=0)
    service_fee = db.Column(db.Integer, nullable=False, default=0)
    delivery_fee = db.Column(db.Integer, nullable=False, default=0)

    university = db.Column(db.String(120), nullable=False, default="Not provided", index=True)
    address = db.Column(db.String(255), nullable=False, default="Not provided")
    phone_number = db.Column(db.String(32), nullable=False, default="Not provided")
    order_option = db.Column(db.String(64), nullable=True)
    delivery_note = db.Column(db.Text, nullable=True)
    vendor_note = db.Column(db.Text, nullable=True)

    current_status = db.Column(db.String(16), nullable=False, default=STATUS_PENDING, index=True)
    rider_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    packs = db.relationship(
        "OrderPack",
        backref="order",
        lazy="selectin",
        order_by="OrderPack.id",
        cascade="all, delete-orphan",
    )
    messages = db.relationship(
        "OrderMessage",
        backref="order",
        lazy="selectin",
        order_by="OrderMessage.id",
        cascade="all, delete-orphan",
    )

    @property
    def total(self) -> int:
        return int(self.subtotal or 0) + int(self.service_fee or 0) + int(self.delivery_fee or 0)

    def to_dict(self, *, include_messages: bool = False) -> dict:
        payload = {
            "id": int(self.id),
            "userId": int(self.user_id),
            "subtotal": int(self.subtotal or 0),
            "serviceFee": int(self.service_fee or 0),
            "deliveryFee": int(self.delivery_fee or 0),
            "total": self.total,
            "university": self.university or "Not provided",
            "Address": self.address or "Not provided",
            "PhoneNumber": self.phone_number or "Not provided",
            "OrderOption": self.order_option or "",
            "deliveryNote": self.delivery_note or "",
            "vendorNote": self.vendor_note or "",
            "currentStatus": self.current_status or STATUS_PENDING,
            "rider": str(self.rider_id) if self.rider_id is not None else "Not assigned",
            "packs": [p.to_dict() for p in self.packs],
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_messages:
            payload["messages"] = [m.to_dict() for m in self.messages]
        return payload


class OrderPack(db.Model):
    __tablename__ = "order_packs"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    name = db.Column(db.String(120), nullable=False)
    vendor_name = db.Column(db.String(160), nullable=False)
    vendor_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=True, index=True)
    pack_type = db.Column(db.String(8), nullable=True)

    # None = awaiting the vendor, True = accepted, False = rejected.
    accepted = db.Column(db.Boolean, nullable=True)
    decided_at = db.Column(db.DateTime, nullable=True)

    items = db.relationship(
        "OrderPackItem",
        backref="pack",
        lazy="selectin",
        order_by="OrderPackItem.id",
        cascade="all, delete-orphan",
    )

    def line_total(self) -> int:
        return sum(int(i.price or 0) * int(i.quantity or 0) for i in self.items)

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "name": self.name,
            "vendorName": self.vendor_name,
            "vendorId": int(self.vendor_id) if self.vendor_id is not None else None,
            "packType": self.pack_type,
            "accepted": self.accepted,
            "items": [i.to_dict() for i in self.items],
        }


class OrderPackItem(db.Model):
    __tablename__ = "order_pack_items"

    id = db.Column(db.Integer, primary_key=True)
    pack_id = db.Column(db.Integer, db.ForeignKey("order_packs.id"), nullable=False, index=True)

    name = db.Column(db.String(160), nullable=False)
    price = db.Column(db.Integer, nullable=False, default=0)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    image = db.Column(db.String(1024), nullable=True)
    category = db.Column(db.String(64), nullable=True)
    vendor_name = db.Column(db.String(160), nullable=True)
    vendor_id = db.Column(db.Integer, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "name": self.name,
            "price": int(self.price or 0),
            "quantity": int(self.quantity or 0),
            "image": self.image or "",
            "category": self.category or "",
            "vendorName": self.vendor_name or "",
            "vendorId": self.vendor_id,
        }


class OrderMessage(db.Model):
    __tablename__ = "order_messages"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    author_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=True)
    text = db.Column(db.Text, nullable=False)
    from_admin = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "orderId": int(self.order_id),
            "text": self.text,
            "fromAdmin": bool(self.from_admin),
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
