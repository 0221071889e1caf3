from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z


class Order(db.Model):
    """
    Customer order created at checkout.

    Receiver info, voucher code and every item are by-value
    snapshots; later profile, catalog or voucher edits never rewrite them.

    INVARIANTS:
    - total_price == subtotal - discount_amount, 0 <= discount_amount <= subtotal
    - status in pending/confirmed/completed/cancelled, changed only by
      order_lifecycle_service
    - status == cancelled implies a non-empty cancel_reason
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_user_status", "user_id", "status"),
        db.Index("ix_orders_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # Price snapshot, fixed at creation
    subtotal = db.Column(db.Integer, nullable=False)
    discount_amount = db.Column(db.Integer, nullable=False, default=0)
    total_price = db.Column(db.Integer, nullable=False)

    voucher_id = db.Column(db.Integer, db.ForeignKey("vouchers.id", ondelete="SET NULL"), nullable=True, index=True)
    voucher_code = db.Column(db.String(32), nullable=True)

    payment_method = db.Column(db.String(16), nullable=False, default="cod")

    receiver_name = db.Column(db.String(120), nullable=False)
    receiver_phone = db.Column(db.String(32), nullable=False)
    shipping_address = db.Column(db.String(255), nullable=False)

    # Lifecycle
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    cancel_reason = db.Column(db.String(255), nullable=True)
    cancelled_by_role = db.Column(db.String(16), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    # Items are written with the order and never deleted with it
    items = db.relationship(
        "OrderItem",
        back_populates="order",
        cascade="save-update, merge",
        order_by="OrderItem.id",
        lazy=True,
    )
    user = db.relationship("User", backref=db.backref("orders", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "subtotal": self.subtotal,
            "discount_amount": self.discount_amount,
            "total_price": self.total_price,
            "voucher_id": self.voucher_id,
            "voucher_code": self.voucher_code,
            "payment_method": self.payment_method,
            "receiver_name": self.receiver_name,
            "receiver_phone": self.receiver_phone,
            "shipping_address": self.shipping_address,
            "status": self.status,
            "cancel_reason": self.cancel_reason,
            "cancelled_by_role": self.cancelled_by_role,
            "created_at": to_utc_z(self.created_at),
            "confirmed_at": to_utc_z(self.confirmed_at) if self.confirmed_at else None,
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """Immutable snapshot of a cart line at checkout."""
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    # Catalog identity kept for reporting; name/image are copied by value
    product_id = db.Column(db.Integer, nullable=True)
    product_name = db.Column(db.String(255), nullable=False)
    product_image = db.Column(db.String(255), nullable=True)

    size = db.Column(db.String(32), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    base_price = db.Column(db.Integer, nullable=False)
    toppings = db.Column(db.JSON, nullable=False, default=list)
    topping_total = db.Column(db.Integer, nullable=False, default=0)
    total_price = db.Column(db.Integer, nullable=False)

    note = db.Column(db.String(500), nullable=True)
    sugar_level = db.Column(db.String(8), nullable=True)
    ice_level = db.Column(db.String(8), nullable=True)

    order = db.relationship("Order", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_image": self.product_image,
            "size": self.size,
            "quantity": self.quantity,
            "base_price": self.base_price,
            "toppings": self.toppings or [],
            "topping_total": self.topping_total,
            "total_price": self.total_price,
            "note": self.note,
            "sugar_level": self.sugar_level,
            "ice_level": self.ice_level,
        }


class OrderEvent(db.Model):
    """
    Append-only change log for orders.

    One row per lifecycle transition (including creation), written in the
    same transaction as the transition. Clients that missed a push notice
    pull from here with a `since` cursor.
    """
    __tablename__ = "order_events"
    __table_args__ = (
        db.Index("ix_order_events_order_id", "order_id", "id"),
        db.Index("ix_order_events_user_id", "user_id", "id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    event_type = db.Column(db.String(32), nullable=False)
    from_status = db.Column(db.String(16), nullable=True)
    to_status = db.Column(db.String(16), nullable=False)

    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    actor_role = db.Column(db.String(16), nullable=True)
    note = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "user_id": self.user_id,
            "event_type": self.event_type,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "actor_user_id": self.actor_user_id,
            "actor_role": self.actor_role,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }
