"""Non-blocking delivery of generation events to UI listeners."""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Any, List

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Notification:
    channel: str  # e.g. "chat:stream", "rag:sources", "pull:progress"
    payload: Any


class Subscription:
    """Bounded mailbox of one listener."""

    def __init__(self, broadcaster: "EventBroadcaster", maxsize: int) -> None:
        self._broadcaster = broadcaster
        self._queue: "queue.Queue[Notification]" = queue.Queue(maxsize=maxsize)
        self.dropped = 0

    def offer(self, notification: Notification) -> None:
        """Enqueue without blocking, evicting the oldest entry when full."""
        while True:
            try:
                self._queue.put_nowait(notification)
                return
            except queue.Full:
                try:
                    self._queue.get_nowait()
                    self.dropped += 1
                except queue.Empty:
                    pass

    def get(self, timeout: float | None = None) -> Notification:
        return self._queue.get(timeout=timeout)

    def drain(self) -> List[Notification]:
        items: List[Notification] = []
        while True:
            try:
                items.append(self._queue.get_nowait())
            except queue.Empty:
                return items

    def close(self) -> None:
        self._broadcaster.unsubscribe(self)


class EventBroadcaster:
    """Fan-out of notifications; publishing never waits on a slow listener."""

    def __init__(self, maxsize: int = 1024) -> None:
        self._maxsize = maxsize
        self._lock = threading.Lock()
        self._subscriptions: List[Subscription] = []

    def subscribe(self, maxsize: int | None = None) -> Subscription:
        subscription = Subscription(self, maxsize or self._maxsize)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def publish(self, channel: str, payload: Any) -> None:
        notification = Notification(channel, payload)
        with self._lock:
            subscriptions = list(self._subscriptions)
        for subscription in subscriptions:
            subscription.offer(notification)
        LOGGER.debug("Published %s to %d listeners", channel, len(subscriptions))
