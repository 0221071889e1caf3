from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z

SUGAR_ICE_LEVELS = ("0%", "50%", "100%")
DEFAULT_LEVEL = "100%"


class CartItem(db.Model):
    """
    One configured product in a customer's cart.

    INVARIANT: total_price == (base_price + topping_total) * quantity,
    where base_price and toppings are snapshots taken when the item was added.
    """
    __tablename__ = "cart_items"
    __table_args__ = (
        db.Index("ix_cart_items_user_created", "user_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    size = db.Column(db.String(32), nullable=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)

    # Unit price incl. size upcharge, frozen at add time
    base_price = db.Column(db.Integer, nullable=False)
    toppings = db.Column(db.JSON, nullable=False, default=list)
    topping_total = db.Column(db.Integer, nullable=False, default=0)
    total_price = db.Column(db.Integer, nullable=False)

    note = db.Column(db.String(500), nullable=True)
    sugar_level = db.Column(db.String(8), nullable=False, default=DEFAULT_LEVEL)
    ice_level = db.Column(db.String(8), nullable=False, default=DEFAULT_LEVEL)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        product = self.product
        return {
            "id": self.id,
            "user_id": self.user_id,
            "product": {
                "id": product.id,
                "name": product.name,
                "image": product.image,
            } if product else None,
            "size": self.size,
            "quantity": self.quantity,
            "base_price": self.base_price,
            "toppings": self.toppings or [],
            "topping_total": self.topping_total,
            "total_price": self.total_price,
            "note": self.note,
            "sugar_level": self.sugar_level,
            "ice_level": self.ice_level,
            "created_at": to_utc_z(self.created_at),
        }
