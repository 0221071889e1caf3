# Overview: Order lifecycle state machine; the only code allowed to change Order.status.

"""
Order Lifecycle Service

================================================================================
STATE MACHINE:
    checkout -> pending -> confirmed -> completed
                   |           |
                   +-----------+--> cancelled

    pending   -> confirmed   admin
    pending   -> cancelled   customer (owner) or admin, reason required
    confirmed -> completed   admin
    confirmed -> cancelled   admin, reason required

RULES:
1. completed and cancelled are terminal; nothing leaves them
2. No state is re-entered and no transition goes backwards
3. A customer may cancel only while pending, and only their own order
4. Any non-empty cancel reason is stored verbatim; the vocabulary lives in the UI
5. Price fields (subtotal, discount, total, items) are never touched here
6. Every accepted transition appends an OrderEvent in the same transaction and
   is published on the change feed after commit
================================================================================
"""

from __future__ import annotations

from ..extensions import db
from ..models import Order
from ..models.auth import ROLE_ADMIN, ROLE_CUSTOMER
from . import change_feed_service
from .concurrency import lock_for_update, run_with_retry
from app.time_utils import utcnow


STATUS_PENDING = "pending"
STATUS_CONFIRMED = "confirmed"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"

VALID_STATUSES = {STATUS_PENDING, STATUS_CONFIRMED, STATUS_COMPLETED, STATUS_CANCELLED}

# (from, to) -> roles allowed to trigger it
TRANSITIONS: dict[tuple[str, str], frozenset[str]] = {
    (STATUS_PENDING, STATUS_CONFIRMED): frozenset({ROLE_ADMIN}),
    (STATUS_PENDING, STATUS_CANCELLED): frozenset({ROLE_CUSTOMER, ROLE_ADMIN}),
    (STATUS_CONFIRMED, STATUS_COMPLETED): frozenset({ROLE_ADMIN}),
    (STATUS_CONFIRMED, STATUS_CANCELLED): frozenset({ROLE_ADMIN}),
}

# Error codes carried by OrderLifecycleError
INVALID_STATUS = "INVALID_STATUS"
INVALID_TRANSITION = "INVALID_TRANSITION"
ACTOR_NOT_ALLOWED = "ACTOR_NOT_ALLOWED"
NOT_ORDER_OWNER = "NOT_ORDER_OWNER"
ORDER_NOT_FOUND = "ORDER_NOT_FOUND"
CANCEL_REASON_REQUIRED = "CANCEL_REASON_REQUIRED"
CANCEL_REASON_TOO_LONG = "CANCEL_REASON_TOO_LONG"

# Matches orders.cancel_reason and order_events.note
MAX_CANCEL_REASON_LENGTH = 255


class OrderLifecycleError(ValueError):
    """
    Raised when a transition is rejected.

    `code` distinguishes the kinds of rejection so callers can map them to
    specific messages. The stored order is untouched whenever this is raised.
    """

    def __init__(self, message: str, code: str, details: dict | None = None):
        super().__init__(message)
        self.code = code
        self.details = details or {}


def validate_status(status: str) -> None:
    if status not in VALID_STATUSES:
        raise OrderLifecycleError(
            f"Invalid status '{status}'. Must be one of: {', '.join(sorted(VALID_STATUSES))}",
            INVALID_STATUS,
        )


def can_transition(from_status: str, to_status: str, actor_role: str | None = None) -> bool:
    """
    Check a transition against the table.

    actor_role=None checks the edge only; otherwise the role must be allowed too.
    Same-state "transitions" are never valid.
    """
    validate_status(from_status)
    validate_status(to_status)

    allowed = TRANSITIONS.get((from_status, to_status))
    if allowed is None:
        return False
    if actor_role is None:
        return True
    return actor_role in allowed


def next_statuses(from_status: str, actor_role: str | None = None) -> list[str]:
    """Statuses reachable from `from_status`, optionally for one role (used for UI actions)."""
    validate_status(from_status)
    return sorted(
        to for (frm, to), roles in TRANSITIONS.items()
        if frm == from_status and (actor_role is None or actor_role in roles)
    )


def _normalize_reason(reason: str | None) -> str:
    if reason is None or not str(reason).strip():
        raise OrderLifecycleError("Select a cancellation reason", CANCEL_REASON_REQUIRED)
    reason = str(reason)
    if len(reason) > MAX_CANCEL_REASON_LENGTH:
        raise OrderLifecycleError(
            f"Cancellation reason must be at most {MAX_CANCEL_REASON_LENGTH} characters",
            CANCEL_REASON_TOO_LONG,
            details={"max_length": MAX_CANCEL_REASON_LENGTH},
        )
    return reason


def _check_transition(order: Order, to_status: str, actor_user_id: int | None, actor_role: str) -> None:
    from_status = order.status

    if actor_role == ROLE_CUSTOMER and order.user_id != actor_user_id:
        raise OrderLifecycleError(
            f"Order {order.id} does not belong to this customer",
            NOT_ORDER_OWNER,
        )

    if (from_status, to_status) not in TRANSITIONS:
        raise OrderLifecycleError(
            f"Cannot move order {order.id} from '{from_status}' to '{to_status}'",
            INVALID_TRANSITION,
            details={"from_status": from_status, "to_status": to_status},
        )

    if not can_transition(from_status, to_status, actor_role):
        if actor_role == ROLE_CUSTOMER and to_status == STATUS_CANCELLED:
            message = "This order is already being prepared; only the shop can cancel it now"
        else:
            message = f"Role '{actor_role}' cannot move an order from '{from_status}' to '{to_status}'"
        raise OrderLifecycleError(
            message,
            ACTOR_NOT_ALLOWED,
            details={"from_status": from_status, "to_status": to_status, "actor_role": actor_role},
        )


def transition_order(
    order_id: int,
    to_status: str,
    *,
    actor_user_id: int | None,
    actor_role: str,
    reason: str | None = None,
) -> Order:
    """
    Apply one lifecycle transition atomically.

    The row is re-read (and locked where the DB supports it) inside the unit
    of work; a concurrent writer bumps version_id, the commit fails with
    StaleDataError, and the retry re-reads the winner's status, so a lost
    race ends as INVALID_TRANSITION instead of overwriting the other actor.

    Raises:
        OrderLifecycleError: not found, illegal edge, wrong actor, missing reason
        StorageUnavailableError: storage kept failing; nothing was written
    """
    validate_status(to_status)
    if actor_user_id is None:
        raise OrderLifecycleError("Sign in to change an order", ACTOR_NOT_ALLOWED)
    if actor_role not in (ROLE_CUSTOMER, ROLE_ADMIN):
        raise OrderLifecycleError(f"Unknown actor role '{actor_role}'", ACTOR_NOT_ALLOWED)

    cancel_reason = _normalize_reason(reason) if to_status == STATUS_CANCELLED else None

    def _op():
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if order is None:
            raise OrderLifecycleError(f"Order {order_id} not found", ORDER_NOT_FOUND)

        _check_transition(order, to_status, actor_user_id, actor_role)

        from_status = order.status
        now = utcnow()
        order.status = to_status
        if to_status == STATUS_CONFIRMED:
            order.confirmed_at = now
        elif to_status == STATUS_COMPLETED:
            order.completed_at = now
        elif to_status == STATUS_CANCELLED:
            order.cancel_reason = cancel_reason
            order.cancelled_by_role = actor_role
            order.cancelled_at = now

        event = change_feed_service.record_event(
            order,
            event_type=f"order.{to_status}",
            from_status=from_status,
            actor_user_id=actor_user_id,
            actor_role=actor_role,
            note=cancel_reason,
        )
        db.session.commit()
        return order, event

    order, event = run_with_retry(_op)
    change_feed_service.publish_event(event)
    return order


def confirm_order(order_id: int, *, admin_user_id: int) -> Order:
    """pending -> confirmed (admin)."""
    return transition_order(
        order_id, STATUS_CONFIRMED, actor_user_id=admin_user_id, actor_role=ROLE_ADMIN
    )


def complete_order(order_id: int, *, admin_user_id: int) -> Order:
    """confirmed -> completed (admin)."""
    return transition_order(
        order_id, STATUS_COMPLETED, actor_user_id=admin_user_id, actor_role=ROLE_ADMIN
    )


def cancel_order(order_id: int, *, actor_user_id: int, actor_role: str, reason: str) -> Order:
    """pending -> cancelled (owner or admin), confirmed -> cancelled (admin)."""
    return transition_order(
        order_id,
        STATUS_CANCELLED,
        actor_user_id=actor_user_id,
        actor_role=actor_role,
        reason=reason,
    )


def get_order(order_id: int, *, user_id: int | None = None) -> Order:
    """
    Load an order. user_id scopes the read to its owner (customer views);
    another customer's order reads as not found.
    """
    q = db.session.query(Order).filter_by(id=order_id)
    if user_id is not None:
        q = q.filter_by(user_id=user_id)
    order = q.first()
    if order is None:
        raise OrderLifecycleError(f"Order {order_id} not found", ORDER_NOT_FOUND)
    return order


def list_orders(status: str | None = None, *, user_id: int | None = None) -> list[Order]:
    """Newest first. user_id=None lists every customer's orders (admin)."""
    q = db.session.query(Order)
    if user_id is not None:
        q = q.filter(Order.user_id == user_id)
    if status:
        validate_status(status)
        q = q.filter(Order.status == status)
    return q.order_by(Order.created_at.desc(), Order.id.desc()).all()


def list_orders_for_user(user_id: int, status: str | None = None) -> list[Order]:
    return list_orders(status, user_id=user_id)
