# Overview: Checkout; turns a customer's cart into a pending order in one transaction.

"""
Checkout Service

CheckoutDraft holds the request-scoped choices (voucher, payment method,
receiver override). The engine keeps nothing between calls: the voucher is
re-validated and the discount recomputed from the freshest cart and order
history every time a quote or checkout runs.

ATOMICITY: order row, order items, cart clear and the order.created event
are flushed into one session and committed once. Any failure rolls all of it
back, so a customer never sees an order without items.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..extensions import db
from ..models import CartItem, Order, OrderItem, User, Voucher
from ..models.auth import ROLE_CUSTOMER
from ..validation import ValidationError
from . import change_feed_service, pricing_service, voucher_service
from .concurrency import run_with_retry
from .order_lifecycle_service import STATUS_PENDING
from .voucher_service import REASON_MESSAGES, VoucherError

PAYMENT_METHODS = ("cod", "momo", "bank")

TEXT_FIELDS = ("payment_method", "voucher_code", "receiver_name", "receiver_phone", "shipping_address")


class CheckoutError(Exception):
    """Raised when a checkout precondition fails."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


@dataclass
class CheckoutDraft:
    payment_method: str = "cod"
    voucher_id: int | None = None
    voucher_code: str | None = None
    receiver_name: str | None = None
    receiver_phone: str | None = None
    shipping_address: str | None = None

    @classmethod
    def from_payload(cls, data: dict) -> "CheckoutDraft":
        voucher_id = data.get("voucher_id")
        if voucher_id is not None and (isinstance(voucher_id, bool) or not isinstance(voucher_id, int)):
            raise ValidationError("voucher_id must be an integer")
        for key in TEXT_FIELDS:
            value = data.get(key)
            if value is not None and not isinstance(value, str):
                raise ValidationError(f"{key} must be a string")
        return cls(
            payment_method=data.get("payment_method") or "cod",
            voucher_id=voucher_id,
            voucher_code=data.get("voucher_code") or None,
            receiver_name=data.get("receiver_name"),
            receiver_phone=data.get("receiver_phone"),
            shipping_address=data.get("shipping_address"),
        )

    @property
    def has_voucher(self) -> bool:
        return self.voucher_id is not None or bool(self.voucher_code)


@dataclass(frozen=True)
class Quote:
    subtotal: int
    discount_amount: int
    total_price: int
    voucher: Voucher | None

    def to_dict(self) -> dict:
        return {
            "subtotal": self.subtotal,
            "discount_amount": self.discount_amount,
            "total_price": self.total_price,
            "voucher": self.voucher.to_dict() if self.voucher else None,
        }


def _resolve_voucher(draft: CheckoutDraft) -> Voucher | None:
    if not draft.has_voucher:
        return None
    try:
        if draft.voucher_id is not None:
            return voucher_service.get_voucher(draft.voucher_id)
        return voucher_service.get_voucher_by_code(draft.voucher_code)
    except VoucherError as e:
        raise CheckoutError(str(e), details=e.details)


def _price_cart(user_id: int, items: list[CartItem], draft: CheckoutDraft, current_hour: int | None) -> Quote:
    subtotal = pricing_service.cart_subtotal(items)
    voucher = _resolve_voucher(draft)
    if voucher is None:
        totals = pricing_service.apply_discount(subtotal, 0)
        return Quote(totals.subtotal, totals.discount_amount, totals.total_price, None)

    reasons = voucher_service.check_voucher(voucher, user_id, subtotal, current_hour)
    if reasons:
        raise CheckoutError(
            REASON_MESSAGES[reasons[0]],
            details={"voucher_id": voucher.id, "code": voucher.code, "reasons": reasons},
        )

    discount = pricing_service.calculate_voucher_discount(voucher, subtotal)
    totals = pricing_service.apply_discount(subtotal, discount)
    return Quote(totals.subtotal, totals.discount_amount, totals.total_price, voucher)


def _load_cart(user_id: int) -> list[CartItem]:
    return (
        db.session.query(CartItem)
        .filter_by(user_id=user_id)
        .order_by(CartItem.created_at.asc(), CartItem.id.asc())
        .all()
    )


def quote(user_id: int, draft: CheckoutDraft, current_hour: int | None = None) -> Quote:
    """Price the current cart with the draft's voucher without writing anything."""
    return _price_cart(user_id, _load_cart(user_id), draft, current_hour)


def _receiver(user: User, draft: CheckoutDraft) -> tuple[str, str, str]:
    name = (draft.receiver_name or user.full_name or "").strip()
    phone = (draft.receiver_phone or user.phone or "").strip()
    address = (draft.shipping_address or user.address or "").strip()
    missing = [
        field for field, value in (
            ("receiver_name", name), ("receiver_phone", phone), ("shipping_address", address)
        ) if not value
    ]
    if missing:
        raise ValidationError(f"Complete your profile before checkout (missing: {', '.join(missing)})")
    return name, phone, address


def checkout(user_id: int | None, draft: CheckoutDraft, current_hour: int | None = None) -> Order:
    """
    Create a pending order from the customer's cart.

    Raises:
        ValidationError: bad payment method or incomplete receiver info
        CheckoutError: empty cart, unknown or ineligible voucher
        StorageUnavailableError: storage kept failing; nothing was written
    """
    if user_id is None:
        raise CheckoutError("Sign in to place an order")
    if draft.payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}")

    def _op():
        user = db.session.query(User).filter_by(id=user_id).first()
        if user is None or not user.is_active:
            raise CheckoutError("Sign in to place an order")
        name, phone, address = _receiver(user, draft)

        items = _load_cart(user_id)
        if not items:
            raise CheckoutError("Your cart is empty")

        priced = _price_cart(user_id, items, draft, current_hour)

        order = Order(
            user_id=user_id,
            subtotal=priced.subtotal,
            discount_amount=priced.discount_amount,
            total_price=priced.total_price,
            voucher_id=priced.voucher.id if priced.voucher else None,
            voucher_code=priced.voucher.code if priced.voucher else None,
            payment_method=draft.payment_method,
            receiver_name=name,
            receiver_phone=phone,
            shipping_address=address,
            status=STATUS_PENDING,
        )
        db.session.add(order)
        db.session.flush()

        for item in items:
            product = item.product
            db.session.add(OrderItem(
                order_id=order.id,
                product_id=item.product_id,
                product_name=product.name if product else "",
                product_image=product.image if product else None,
                size=item.size,
                quantity=item.quantity,
                base_price=item.base_price,
                toppings=list(item.toppings or []),
                topping_total=item.topping_total,
                total_price=item.total_price,
                note=item.note,
                sugar_level=item.sugar_level,
                ice_level=item.ice_level,
            ))
            db.session.delete(item)

        event = change_feed_service.record_event(
            order,
            event_type="order.created",
            from_status=None,
            actor_user_id=user_id,
            actor_role=ROLE_CUSTOMER,
        )
        db.session.commit()
        return order, event

    order, event = run_with_retry(_op)
    change_feed_service.publish_event(event)
    return order
