"""
Change feed tests.

Verifies:
- Hub fan-out, cancellation and failure isolation
- Queue-backed subscribers used by the event stream
- The event log as a pull source with a cursor
"""

import logging

import pytest

from app.change_feed import (
    ADMIN_CHANNEL,
    ChangeFeedHub,
    ChangeNotice,
    QueueSubscriber,
    order_channel,
    user_channel,
)
from app.models.auth import ROLE_ADMIN
from app.services import change_feed_service, order_lifecycle_service

from conftest import make_order


def notice(event_id=1, order_id=7, user_id=3, status="pending"):
    return ChangeNotice(event_id=event_id, order_id=order_id, user_id=user_id, event_type=f"order.{status}", status=status)


# =============================================================================
# HUB
# =============================================================================


class TestChangeFeedHub:

    def test_channel_names(self):
        assert order_channel(7) == "order:7"
        assert user_channel(3) == "user:3:orders"
        assert ADMIN_CHANNEL == "orders:admin"

    def test_publish_reaches_channel_subscribers_only(self):
        hub = ChangeFeedHub()
        mine, other = [], []
        hub.subscribe("order:7", mine.append)
        hub.subscribe("order:8", other.append)

        delivered = hub.publish("order:7", notice())

        assert delivered == 1
        assert mine == [notice()]
        assert other == []

    def test_publish_without_subscribers(self):
        assert ChangeFeedHub().publish("order:1", notice()) == 0

    def test_cancel_stops_delivery(self):
        hub = ChangeFeedHub()
        received = []
        sub = hub.subscribe("order:7", received.append)
        sub.cancel()
        sub.cancel()

        hub.publish("order:7", notice())

        assert received == []
        assert not sub.active
        assert hub.subscriber_count("order:7") == 0

    def test_subscription_context_manager(self):
        hub = ChangeFeedHub()
        with hub.subscribe("order:7", lambda n: None):
            assert hub.subscriber_count("order:7") == 1
        assert hub.subscriber_count("order:7") == 0

    def test_failing_callback_is_isolated(self, caplog):
        hub = ChangeFeedHub()
        received = []

        def broken(_notice):
            raise RuntimeError("socket closed")

        hub.subscribe("order:7", broken)
        hub.subscribe("order:7", received.append)

        with caplog.at_level(logging.WARNING, logger="app.change_feed"):
            delivered = hub.publish("order:7", notice())

        assert delivered == 1
        assert received == [notice()]
        assert "could not be delivered" in caplog.text

    def test_reset(self):
        hub = ChangeFeedHub()
        hub.subscribe(ADMIN_CHANNEL, lambda n: None)
        hub.reset()
        assert hub.subscriber_count(ADMIN_CHANNEL) == 0

    def test_notice_to_dict(self):
        assert notice(event_id=5).to_dict() == {
            "event_id": 5,
            "order_id": 7,
            "user_id": 3,
            "event_type": "order.pending",
            "status": "pending",
        }


class TestQueueSubscriber:

    def test_buffers_notices(self):
        hub = ChangeFeedHub()
        with QueueSubscriber(hub, "order:7") as sub:
            hub.publish("order:7", notice(event_id=1))
            hub.publish("order:7", notice(event_id=2))
            assert sub.get(timeout=0.01).event_id == 1
            assert sub.get(timeout=0.01).event_id == 2
            assert sub.get(timeout=0.01) is None
        assert hub.subscriber_count("order:7") == 0

    def test_full_queue_drops_without_failing_publisher(self, caplog):
        hub = ChangeFeedHub()
        with QueueSubscriber(hub, "order:7", maxsize=1) as sub:
            with caplog.at_level(logging.INFO, logger="app.change_feed"):
                assert hub.publish("order:7", notice(event_id=1)) == 1
                assert hub.publish("order:7", notice(event_id=2)) == 1
            assert sub.get(timeout=0.01).event_id == 1
            assert sub.get(timeout=0.01) is None

        assert "could not be delivered" not in caplog.text
        assert "dropped notice 2" in caplog.text
        assert all(record.exc_info is None for record in caplog.records)


# =============================================================================
# EVENT LOG
# =============================================================================


class TestEventLog:

    def test_transition_events_and_cursor(self, db_session, customer, admin):
        order = make_order(db_session, customer)
        assert change_feed_service.latest_event_id() == 0

        order_lifecycle_service.confirm_order(order.id, admin_user_id=admin.id)
        cursor = change_feed_service.latest_event_id()
        order_lifecycle_service.complete_order(order.id, admin_user_id=admin.id)

        everything = change_feed_service.list_changes(0)
        assert [e.to_status for e in everything] == ["confirmed", "completed"]

        after = change_feed_service.list_changes(cursor)
        assert [e.to_status for e in after] == ["completed"]

    def test_filters(self, db_session, customer, other_customer, admin):
        mine = make_order(db_session, customer)
        theirs = make_order(db_session, other_customer)
        order_lifecycle_service.confirm_order(mine.id, admin_user_id=admin.id)
        order_lifecycle_service.confirm_order(theirs.id, admin_user_id=admin.id)

        assert [e.order_id for e in change_feed_service.list_changes(0, user_id=customer.id)] == [mine.id]
        assert [e.order_id for e in change_feed_service.list_changes(0, order_id=theirs.id)] == [theirs.id]
        assert len(change_feed_service.list_changes(0)) == 2

    def test_limit(self, db_session, customer, admin):
        for _ in range(3):
            order = make_order(db_session, customer)
            order_lifecycle_service.confirm_order(order.id, admin_user_id=admin.id)

        assert len(change_feed_service.list_changes(0, limit=2)) == 2
        assert len(change_feed_service.list_changes(0, limit=0)) == 1

    def test_publish_fans_out_to_three_channels(self, db_session, customer, admin):
        order = make_order(db_session, customer)
        seen = {}
        for channel in (order_channel(order.id), user_channel(customer.id), ADMIN_CHANNEL):
            seen[channel] = []
            change_feed_service.change_feed.subscribe(channel, seen[channel].append)

        order_lifecycle_service.cancel_order(
            order.id, actor_user_id=admin.id, actor_role=ROLE_ADMIN, reason="Hết nguyên liệu"
        )

        for channel, received in seen.items():
            assert [n.status for n in received] == ["cancelled"], channel

    def test_event_to_dict(self, db_session, customer, admin):
        order = make_order(db_session, customer)
        order_lifecycle_service.cancel_order(
            order.id, actor_user_id=admin.id, actor_role=ROLE_ADMIN, reason="Quán đóng cửa"
        )
        data = change_feed_service.list_changes(0)[0].to_dict()
        assert data["event_type"] == "order.cancelled"
        assert data["from_status"] == "pending"
        assert data["note"] == "Quán đóng cửa"

    @pytest.mark.parametrize("helper,arg", [
        ("subscribe_order", 1),
        ("subscribe_user_orders", 1),
    ])
    def test_subscribe_helpers(self, db_session, helper, arg):
        sub = getattr(change_feed_service, helper)(arg, lambda n: None)
        assert sub.active
        sub.cancel()

    def test_subscribe_all_orders(self, db_session):
        sub = change_feed_service.subscribe_all_orders(lambda n: None)
        assert change_feed_service.change_feed.subscriber_count(ADMIN_CHANNEL) == 1
        sub.cancel()
