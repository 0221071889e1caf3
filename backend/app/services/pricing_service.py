# Overview: Pure pricing rules for cart lines, cart subtotals and voucher discounts.

"""
Pricing Service

Every function here is pure: no database, no clock, no Flask context.
Money is always an int in the smallest currency unit.

LINE ITEM:
    unit_price   = sale_price if set, else price
    size_upcharge = size_index * step            (index 0 = no upcharge)
    line_total   = (unit_price + size_upcharge + sum(toppings)) * quantity

CART:
    subtotal = sum of each stored line total (snapshots, never re-derived)

DISCOUNT:
    percent -> floor(subtotal * value / 100)
    fixed   -> value (not capped here; apply_discount clamps to the subtotal)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from ..validation import ValidationError, DISCOUNT_TYPES

DISCOUNT_PERCENT = "percent"
DISCOUNT_FIXED = "fixed"


@dataclass(frozen=True)
class LinePrice:
    unit_price: int        # base + size upcharge, the cart's base_price snapshot
    topping_total: int
    quantity: int
    line_total: int


@dataclass(frozen=True)
class OrderTotals:
    subtotal: int
    discount_amount: int
    total_price: int


def _require_amount(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer amount")
    if value < 0:
        raise ValidationError(f"{name} must be >= 0")
    return value


def validate_quantity(quantity) -> int:
    """Quantity must be a positive integer; zero or negative is never accepted."""
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError("quantity must be an integer")
    if quantity < 1:
        raise ValidationError("quantity must be at least 1")
    return quantity


def unit_price(price: int, sale_price: int | None = None) -> int:
    """List price, or the sale price whenever one is set."""
    if sale_price is not None:
        return _require_amount(sale_price, "sale_price")
    return _require_amount(price, "price")


def size_upcharge(size_index: int | None, step: int) -> int:
    if not size_index or size_index < 0:
        return 0
    return size_index * step


def resolve_size_index(sizes: Sequence[str] | None, size: str | None) -> tuple[str | None, int]:
    """
    Map a chosen size tier to (size_name, index).

    - product without tiers -> (None, 0), any requested size is ignored
    - no size chosen on a sized product -> first tier
    - unknown tier name -> ValidationError
    """
    if not sizes:
        return None, 0
    if size is None or size == "":
        return sizes[0], 0
    try:
        return size, list(sizes).index(size)
    except ValueError:
        raise ValidationError(f"Unknown size '{size}'. Must be one of: {', '.join(sizes)}")


def price_line_item(
    base_price: int,
    size_index: int | None,
    topping_prices: Iterable[int],
    quantity: int,
    *,
    step: int,
) -> LinePrice:
    """
    Price one configured line.

    Topping prices are added once per unit and do not scale with size.
    """
    base = _require_amount(base_price, "base_price")
    quantity = validate_quantity(quantity)
    toppings = sum(_require_amount(p, "topping price") for p in topping_prices)

    unit = base + size_upcharge(size_index, step)
    return LinePrice(
        unit_price=unit,
        topping_total=toppings,
        quantity=quantity,
        line_total=(unit + toppings) * quantity,
    )


def reprice_quantity(unit: int, topping_total: int, quantity: int) -> int:
    """Line total for a quantity change, from the stored snapshots only."""
    quantity = validate_quantity(quantity)
    return (unit + topping_total) * quantity


def cart_subtotal(items: Iterable) -> int:
    """Sum of stored line totals. Accepts model rows or dicts with total_price."""
    total = 0
    for item in items:
        total += item["total_price"] if isinstance(item, dict) else item.total_price
    return total


def calculate_discount(discount_type: str, discount_value: int, subtotal: int) -> int:
    if discount_type not in DISCOUNT_TYPES:
        raise ValidationError(f"Unknown discount type '{discount_type}'")
    _require_amount(discount_value, "discount_value")
    _require_amount(subtotal, "subtotal")

    if discount_type == DISCOUNT_PERCENT:
        return (subtotal * discount_value) // 100
    return discount_value


def calculate_voucher_discount(voucher, subtotal: int) -> int:
    return calculate_discount(voucher.discount_type, voucher.discount_value, subtotal)


def apply_discount(subtotal: int, discount: int) -> OrderTotals:
    """
    Final order totals.

    A discount above the subtotal makes the order free; it never produces a
    negative total or a refund, and the stored discount equals what was
    actually taken off.
    """
    _require_amount(subtotal, "subtotal")
    _require_amount(discount, "discount")
    applied = min(discount, subtotal)
    return OrderTotals(
        subtotal=subtotal,
        discount_amount=applied,
        total_price=subtotal - applied,
    )
