# Overview: Customer cart operations; prices are snapshotted when an item is added.

"""
Cart Service

Snapshots: once an item is in the cart, the cart is the source of truth.
base_price (incl. size upcharge), the topping list and both totals are frozen
at add time; later catalog price edits do not reach existing cart items.
Changing one item's quantity never touches another item.
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import CartItem, Product, Topping
from ..models.cart import SUGAR_ICE_LEVELS, DEFAULT_LEVEL
from ..validation import ValidationError
from . import pricing_service
from .concurrency import lock_for_update, run_with_retry


class CartError(Exception):
    """Raised for cart operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def _validate_level(value: str | None, name: str) -> str:
    if value is None or value == "":
        return DEFAULT_LEVEL
    if value not in SUGAR_ICE_LEVELS:
        raise ValidationError(f"{name} must be one of: {', '.join(SUGAR_ICE_LEVELS)}")
    return value


def _load_toppings(topping_ids) -> list[Topping]:
    ids = list(dict.fromkeys(topping_ids or []))
    if not ids:
        return []
    toppings = (
        db.session.query(Topping)
        .filter(Topping.id.in_(ids), Topping.is_active.is_(True))
        .all()
    )
    found = {t.id: t for t in toppings}
    missing = [tid for tid in ids if tid not in found]
    if missing:
        raise CartError("Topping not available", details={"topping_ids": missing})
    # Keep the customer's selection order
    return [found[tid] for tid in ids]


def add_to_cart(
    user_id: int,
    product_id: int,
    *,
    quantity: int = 1,
    size: str | None = None,
    topping_ids=None,
    note: str | None = None,
    sugar_level: str | None = None,
    ice_level: str | None = None,
) -> CartItem:
    """Configure a product and add it as a new cart line."""
    quantity = pricing_service.validate_quantity(quantity)
    sugar = _validate_level(sugar_level, "sugar_level")
    ice = _validate_level(ice_level, "ice_level")

    product = db.session.query(Product).filter_by(id=product_id).first()
    if product is None or not product.is_active:
        raise CartError("Product not found", details={"product_id": product_id})

    size_name, size_index = pricing_service.resolve_size_index(product.sizes, size)
    toppings = _load_toppings(topping_ids)

    priced = pricing_service.price_line_item(
        pricing_service.unit_price(product.price, product.sale_price),
        size_index,
        [t.price for t in toppings],
        quantity,
        step=current_app.config["SIZE_UPCHARGE"],
    )

    item = CartItem(
        user_id=user_id,
        product_id=product.id,
        size=size_name,
        quantity=quantity,
        base_price=priced.unit_price,
        toppings=[t.snapshot() for t in toppings],
        topping_total=priced.topping_total,
        total_price=priced.line_total,
        note=(note or "").strip() or None,
        sugar_level=sugar,
        ice_level=ice,
    )
    db.session.add(item)
    db.session.commit()
    return item


def _get_owned_item(user_id: int, item_id: int, *, lock: bool = False) -> CartItem:
    q = db.session.query(CartItem).filter_by(id=item_id, user_id=user_id)
    if lock:
        q = lock_for_update(q)
    item = q.first()
    if item is None:
        raise CartError("Cart item not found", details={"item_id": item_id})
    return item


def update_quantity(user_id: int, item_id: int, quantity: int) -> CartItem:
    """Change one line's quantity and reprice it from its own snapshot."""
    quantity = pricing_service.validate_quantity(quantity)

    def _op():
        item = _get_owned_item(user_id, item_id, lock=True)
        item.quantity = quantity
        item.total_price = pricing_service.reprice_quantity(
            item.base_price, item.topping_total, quantity
        )
        db.session.commit()
        return item

    return run_with_retry(_op)


def remove_item(user_id: int, item_id: int) -> None:
    item = _get_owned_item(user_id, item_id)
    db.session.delete(item)
    db.session.commit()


def list_cart(user_id: int) -> list[CartItem]:
    """Newest first, as the cart screen shows it."""
    return (
        db.session.query(CartItem)
        .filter_by(user_id=user_id)
        .order_by(CartItem.created_at.desc(), CartItem.id.desc())
        .all()
    )


def get_cart_summary(user_id: int) -> dict:
    items = list_cart(user_id)
    return {
        "items": [i.to_dict() for i in items],
        "count": len(items),
        "quantity": sum(i.quantity for i in items),
        "subtotal": pricing_service.cart_subtotal(items),
    }
