from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z


class Product(db.Model):
    """
    Catalog product as seen by the pricing engine.

    Read-only to the engine: cart items copy price fields at creation time,
    so later price edits never reach an existing cart line or order.
    """
    __tablename__ = "products"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)

    # Opaque storage reference, resolved to a URL by the file store
    image = db.Column(db.String(255), nullable=True)

    # Smallest currency unit
    price = db.Column(db.Integer, nullable=False)
    sale_price = db.Column(db.Integer, nullable=True)

    # Ordered size tiers, e.g. ["M", "L", "XL"]; first tier carries no upcharge
    sizes = db.Column(db.JSON, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "image": self.image,
            "price": self.price,
            "sale_price": self.sale_price,
            "sizes": self.sizes or [],
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Topping(db.Model):
    """Fixed-price add-on. Cart and order lines keep a snapshot, never a live reference."""
    __tablename__ = "toppings"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    price = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def snapshot(self) -> dict:
        return {"id": self.id, "name": self.name, "price": self.price}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "price": self.price,
            "is_active": self.is_active,
        }
