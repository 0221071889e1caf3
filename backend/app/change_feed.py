# Overview: In-process publish/subscribe hub for order change notices.

"""
Order Change Feed Hub

Subscribers register a callback on a channel and receive a ChangeNotice every
time an order row on that channel changes. A notice only says "this row
changed"; consumers re-fetch the order (or pull /changes) to see the new state.

CHANNELS:
    order:<order_id>        - one order (customer or admin detail view)
    user:<user_id>:orders   - every order owned by one customer
    orders:admin            - every order of every status (admin list view)

DELIVERY:
- At-least-once from the publisher's point of view; a subscriber that is not
  connected simply misses the notice and must resynchronise by pulling.
- A failing callback is logged and skipped. It never fails the publisher.
"""

from __future__ import annotations

import logging
import queue
from collections import defaultdict
from dataclasses import dataclass
from threading import RLock
from typing import Callable

logger = logging.getLogger(__name__)

ADMIN_CHANNEL = "orders:admin"


def order_channel(order_id: int) -> str:
    return f"order:{order_id}"


def user_channel(user_id: int) -> str:
    return f"user:{user_id}:orders"


@dataclass(frozen=True)
class ChangeNotice:
    """Notification that an order row changed."""
    event_id: int
    order_id: int
    user_id: int
    event_type: str
    status: str

    def to_dict(self) -> dict:
        return {
            "event_id": self.event_id,
            "order_id": self.order_id,
            "user_id": self.user_id,
            "event_type": self.event_type,
            "status": self.status,
        }


class Subscription:
    """Cancellation handle returned by ChangeFeedHub.subscribe()."""

    def __init__(self, hub: "ChangeFeedHub", channel: str, callback: Callable[[ChangeNotice], None]):
        self._hub = hub
        self.channel = channel
        self.callback = callback
        self.active = True

    def cancel(self) -> None:
        if self.active:
            self._hub._remove(self)
            self.active = False

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.cancel()


class ChangeFeedHub:
    def __init__(self):
        self._subscribers: dict[str, list[Subscription]] = defaultdict(list)
        self._lock = RLock()

    def subscribe(self, channel: str, callback: Callable[[ChangeNotice], None]) -> Subscription:
        sub = Subscription(self, channel, callback)
        with self._lock:
            self._subscribers[channel].append(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._subscribers.get(sub.channel)
            if not subs:
                return
            if sub in subs:
                subs.remove(sub)
            if not subs:
                del self._subscribers[sub.channel]

    def subscriber_count(self, channel: str) -> int:
        with self._lock:
            return len(self._subscribers.get(channel, []))

    def publish(self, channel: str, notice: ChangeNotice) -> int:
        """
        Deliver a notice to every subscriber of a channel.

        Returns the number of callbacks that completed without raising.
        """
        with self._lock:
            subs = list(self._subscribers.get(channel, []))

        delivered = 0
        for sub in subs:
            try:
                sub.callback(notice)
                delivered += 1
            except Exception:
                logger.warning(
                    "Change notice %s for order %s could not be delivered on %s",
                    notice.event_id, notice.order_id, channel, exc_info=True,
                )
        return delivered

    def reset(self) -> None:
        with self._lock:
            self._subscribers.clear()


class QueueSubscriber:
    """
    Buffers notices from one channel into a queue for a blocking consumer
    (the SSE stream). Use as a context manager so the subscription is
    always cancelled when the stream closes.
    """

    def __init__(self, hub: ChangeFeedHub, channel: str, maxsize: int = 100):
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self._channel = channel
        self._subscription = hub.subscribe(channel, self._put)

    def _put(self, notice: ChangeNotice) -> None:
        # A slow stream drops notices; the client resyncs with a pull
        try:
            self._queue.put_nowait(notice)
        except queue.Full:
            logger.info("Stream queue full on %s, dropped notice %s", self._channel, notice.event_id)

    def get(self, timeout: float | None = None) -> ChangeNotice | None:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self) -> None:
        self._subscription.cancel()

    def __enter__(self) -> "QueueSubscriber":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
