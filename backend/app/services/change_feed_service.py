# Overview: Records order change events and fans them out on the change feed.

"""
Order Change Propagation

CONTRACT:
1. Every order transition (including creation) appends one OrderEvent row in
   the same DB transaction as the transition itself (record_event).
2. Only after that transaction commits is a ChangeNotice published, on
   order:<id>, user:<owner>:orders and orders:admin (publish_event).
   A rolled-back transition therefore never produces a notice.
3. Push delivery is best effort. The event log is the pull source for
   clients that missed a notice (list_changes with a `since` cursor).
"""

from __future__ import annotations

from ..extensions import db, change_feed
from ..models import Order, OrderEvent
from ..change_feed import ADMIN_CHANNEL, ChangeNotice, order_channel, user_channel
from app.time_utils import utcnow

MAX_CHANGES_PAGE = 200


def record_event(
    order: Order,
    *,
    event_type: str,
    from_status: str | None,
    actor_user_id: int | None,
    actor_role: str | None,
    note: str | None = None,
) -> OrderEvent:
    """Append a change event for `order` to the current session (no commit)."""
    ev = OrderEvent(
        order_id=order.id,
        user_id=order.user_id,
        event_type=event_type,
        from_status=from_status,
        to_status=order.status,
        actor_user_id=actor_user_id,
        actor_role=actor_role,
        note=note,
        occurred_at=utcnow(),
    )
    db.session.add(ev)
    db.session.flush()
    return ev


def channels_for(order_id: int, user_id: int) -> list[str]:
    return [order_channel(order_id), user_channel(user_id), ADMIN_CHANNEL]


def publish_event(event: OrderEvent) -> int:
    """
    Publish a committed event to every interested channel.

    Returns the number of successful deliveries (0 is not an error).
    """
    notice = ChangeNotice(
        event_id=event.id,
        order_id=event.order_id,
        user_id=event.user_id,
        event_type=event.event_type,
        status=event.to_status,
    )
    delivered = 0
    for channel in channels_for(event.order_id, event.user_id):
        delivered += change_feed.publish(channel, notice)
    return delivered


def subscribe_order(order_id: int, callback):
    return change_feed.subscribe(order_channel(order_id), callback)


def subscribe_user_orders(user_id: int, callback):
    return change_feed.subscribe(user_channel(user_id), callback)


def subscribe_all_orders(callback):
    return change_feed.subscribe(ADMIN_CHANNEL, callback)


def list_changes(
    since_id: int = 0,
    *,
    order_id: int | None = None,
    user_id: int | None = None,
    limit: int = 100,
) -> list[OrderEvent]:
    """
    Events after the `since_id` cursor, oldest first.

    user_id restricts to one customer's orders; None (admin) returns all.
    """
    limit = max(1, min(limit, MAX_CHANGES_PAGE))
    q = db.session.query(OrderEvent).filter(OrderEvent.id > (since_id or 0))
    if order_id is not None:
        q = q.filter(OrderEvent.order_id == order_id)
    if user_id is not None:
        q = q.filter(OrderEvent.user_id == user_id)
    return q.order_by(OrderEvent.id.asc()).limit(limit).all()


def latest_event_id() -> int:
    last = db.session.query(db.func.max(OrderEvent.id)).scalar()
    return last or 0
