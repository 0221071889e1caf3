# Overview: Voucher eligibility resolver plus voucher catalog and wallet operations.

"""
Voucher Service

ELIGIBILITY (every predicate must hold):
1. is_active
2. for_new_user -> the user has no order whose status is not 'cancelled'
   (a cancelled-only history still counts as new; an unknown user never does)
3. min_order_value set -> subtotal >= min_order_value
4. start_hour and end_hour both set -> current local hour inside the window:
       start <  end : start <= hour < end         (half-open, exact)
       start >  end : hour >= start or hour < end  (wraps past midnight)
       start == end : empty window, never eligible
   either bound missing -> always time-eligible
5. max_usage_per_user set -> the user's non-cancelled orders with this
   voucher are below the limit

No ranking: every eligible voucher is returned and the customer picks one.
Eligibility is never cached; load_available_vouchers re-reads the catalog and
order history on every call.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Voucher, SavedVoucher, Order
from ..validation import ConflictError, normalize_voucher_code
from app.time_utils import local_hour

# Ineligibility reason codes
INACTIVE = "INACTIVE"
NOT_NEW_USER = "NOT_NEW_USER"
BELOW_MIN_ORDER = "BELOW_MIN_ORDER"
OUTSIDE_HOURS = "OUTSIDE_HOURS"
USAGE_LIMIT_REACHED = "USAGE_LIMIT_REACHED"

REASON_MESSAGES = {
    INACTIVE: "This voucher is no longer available",
    NOT_NEW_USER: "This voucher is for first orders only",
    BELOW_MIN_ORDER: "Order total is below the voucher minimum",
    OUTSIDE_HOURS: "This voucher can't be used at this time of day",
    USAGE_LIMIT_REACHED: "You have already used this voucher",
}


class VoucherError(Exception):
    """Raised for voucher operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


# ---------------------------------------------------------------------------
# Pure rules
# ---------------------------------------------------------------------------

def is_within_hour_window(start_hour: int | None, end_hour: int | None, hour: int) -> bool:
    if start_hour is None or end_hour is None:
        return True
    if start_hour < end_hour:
        return start_hour <= hour < end_hour
    if start_hour > end_hour:
        return hour >= start_hour or hour < end_hour
    return False


def ineligibility_reasons(
    voucher,
    *,
    is_new_user: bool,
    subtotal: int,
    current_hour: int,
    usage_count: int = 0,
) -> list[str]:
    """Every rule `voucher` fails for this user/cart/hour; empty means eligible."""
    reasons = []
    if not voucher.is_active:
        reasons.append(INACTIVE)
    if voucher.for_new_user and not is_new_user:
        reasons.append(NOT_NEW_USER)
    if voucher.min_order_value and subtotal < voucher.min_order_value:
        reasons.append(BELOW_MIN_ORDER)
    if not is_within_hour_window(voucher.start_hour, voucher.end_hour, current_hour):
        reasons.append(OUTSIDE_HOURS)
    limit = getattr(voucher, "max_usage_per_user", None)
    if limit is not None and usage_count >= limit:
        reasons.append(USAGE_LIMIT_REACHED)
    return reasons


def is_voucher_eligible(voucher, **kwargs) -> bool:
    return not ineligibility_reasons(voucher, **kwargs)


def filter_eligible_vouchers(
    vouchers,
    *,
    is_new_user: bool,
    subtotal: int,
    current_hour: int,
    usage_counts: dict[int, int] | None = None,
) -> list:
    usage_counts = usage_counts or {}
    return [
        v for v in vouchers
        if is_voucher_eligible(
            v,
            is_new_user=is_new_user,
            subtotal=subtotal,
            current_hour=current_hour,
            usage_count=usage_counts.get(v.id, 0),
        )
    ]


# ---------------------------------------------------------------------------
# Reads at decision time
# ---------------------------------------------------------------------------

def current_local_hour() -> int:
    return local_hour(current_app.config["STORE_TIMEZONE"])


def is_new_user(user_id: int | None) -> bool:
    """True when the user has no non-cancelled order. Unknown users are never new."""
    if user_id is None:
        return False
    count = (
        db.session.query(db.func.count(Order.id))
        .filter(Order.user_id == user_id, Order.status != "cancelled")
        .scalar()
    )
    return (count or 0) == 0


def voucher_usage_counts(user_id: int | None) -> dict[int, int]:
    if user_id is None:
        return {}
    rows = (
        db.session.query(Order.voucher_id, db.func.count(Order.id))
        .filter(
            Order.user_id == user_id,
            Order.voucher_id.isnot(None),
            Order.status != "cancelled",
        )
        .group_by(Order.voucher_id)
        .all()
    )
    return {voucher_id: count for voucher_id, count in rows}


def check_voucher(voucher: Voucher, user_id: int | None, subtotal: int, current_hour: int | None = None) -> list[str]:
    """Re-evaluate one voucher against fresh history; returns ineligibility reasons."""
    if current_hour is None:
        current_hour = current_local_hour()
    return ineligibility_reasons(
        voucher,
        is_new_user=is_new_user(user_id),
        subtotal=subtotal,
        current_hour=current_hour,
        usage_count=voucher_usage_counts(user_id).get(voucher.id, 0),
    )


def load_available_vouchers(user_id: int | None, subtotal: int, current_hour: int | None = None) -> list[Voucher]:
    """Active vouchers this user may apply to a cart of `subtotal` right now."""
    if current_hour is None:
        current_hour = current_local_hour()

    vouchers = (
        db.session.query(Voucher)
        .filter(Voucher.is_active.is_(True))
        .order_by(Voucher.created_at.desc(), Voucher.id.desc())
        .all()
    )
    return filter_eligible_vouchers(
        vouchers,
        is_new_user=is_new_user(user_id),
        subtotal=subtotal,
        current_hour=current_hour,
        usage_counts=voucher_usage_counts(user_id),
    )


# ---------------------------------------------------------------------------
# Catalog (admin)
# ---------------------------------------------------------------------------

def get_voucher(voucher_id: int) -> Voucher:
    voucher = db.session.query(Voucher).filter_by(id=voucher_id).first()
    if voucher is None:
        raise VoucherError("Voucher not found", details={"voucher_id": voucher_id})
    return voucher


def get_voucher_by_code(code: str) -> Voucher:
    normalized = normalize_voucher_code(code)
    voucher = db.session.query(Voucher).filter_by(code=normalized).first()
    if voucher is None:
        raise VoucherError("Voucher code not found", details={"code": normalized})
    return voucher


def list_vouchers(active_only: bool = False) -> list[Voucher]:
    q = db.session.query(Voucher)
    if active_only:
        q = q.filter_by(is_active=True)
    return q.order_by(Voucher.created_at.desc(), Voucher.id.desc()).all()


def _ensure_code_free(code: str, exclude_id: int | None = None) -> None:
    q = db.session.query(Voucher).filter(Voucher.code == code)
    if exclude_id is not None:
        q = q.filter(Voucher.id != exclude_id)
    if q.first() is not None:
        raise ConflictError(f"Voucher code '{code}' already exists")


def create_voucher(*, patch: dict) -> Voucher:
    """Create a voucher from a validated patch (see enforce_rules_voucher)."""
    _ensure_code_free(patch["code"])
    voucher = Voucher(**patch)
    db.session.add(voucher)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"Voucher code '{patch['code']}' already exists")
    return voucher


def update_voucher(voucher_id: int, *, patch: dict) -> Voucher:
    voucher = get_voucher(voucher_id)
    if "code" in patch:
        _ensure_code_free(patch["code"], exclude_id=voucher.id)
    for key, value in patch.items():
        setattr(voucher, key, value)
    db.session.commit()
    return voucher


def set_voucher_active(voucher_id: int, is_active: bool) -> Voucher:
    voucher = get_voucher(voucher_id)
    voucher.is_active = bool(is_active)
    db.session.commit()
    return voucher


def delete_voucher(voucher_id: int) -> None:
    """
    Remove a voucher from the catalog.

    Orders keep their by-value discount and voucher_code; only the
    reference is cleared.
    """
    voucher = get_voucher(voucher_id)
    db.session.query(Order).filter(Order.voucher_id == voucher.id).update(
        {Order.voucher_id: None}, synchronize_session=False
    )
    db.session.query(SavedVoucher).filter(SavedVoucher.voucher_id == voucher.id).delete(
        synchronize_session=False
    )
    db.session.delete(voucher)
    db.session.commit()


# ---------------------------------------------------------------------------
# Wallet (customer)
# ---------------------------------------------------------------------------

def save_voucher(user_id: int, voucher_id: int) -> SavedVoucher:
    voucher = get_voucher(voucher_id)
    if not voucher.is_active:
        raise VoucherError("This voucher is no longer available", details={"voucher_id": voucher_id})

    existing = db.session.query(SavedVoucher).filter_by(user_id=user_id, voucher_id=voucher_id).first()
    if existing is not None:
        raise VoucherError("Voucher already saved", details={"voucher_id": voucher_id})

    saved = SavedVoucher(user_id=user_id, voucher_id=voucher_id)
    db.session.add(saved)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise VoucherError("Voucher already saved", details={"voucher_id": voucher_id})
    return saved


def list_saved_vouchers(user_id: int) -> list[SavedVoucher]:
    return (
        db.session.query(SavedVoucher)
        .filter_by(user_id=user_id)
        .order_by(SavedVoucher.created_at.desc(), SavedVoucher.id.desc())
        .all()
    )
