"""
Lifecycle event broadcast bus.

Fans each lifecycle event out to every connected observer without ever
waiting on one of them. Every observer owns a Subscription with a small
bounded inbox; broadcast does a non-blocking try-enqueue into each inbox and
drops the event for observers whose inbox is full (best-effort, at-most-once).

Usage:
    bus = EventBus(inbox_size=10)

    # Producer (channel supervisor):
    bus.broadcast(LifecycleEvent(channel_id=1, kind=EventKind.CLOSED))

    # Consumer (one per observer connection):
    async with bus.listen() as subscription:
        while (event := await subscription.get()) is not None:
            await transport.send(event)
"""

import asyncio
import itertools
import logging
import threading
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Optional

from hlsrelay.events.models import LifecycleEvent
from hlsrelay.events.rwlock import ReadWriteLock

logger = logging.getLogger(__name__)

DEFAULT_INBOX_SIZE = 10

_subscription_ids = itertools.count(1)


class Subscription:
    """
    One observer's bounded inbox.

    Written to only through ``offer`` (by the bus, while registered) and read
    only by that observer's event stream. Once closed it accepts nothing and
    ``get`` returns None.
    """

    def __init__(self, maxsize: int = DEFAULT_INBOX_SIZE, label: Optional[str] = None):
        self.id = next(_subscription_ids)
        self.label = label or f"subscriber-{self.id}"
        self.created_at = time.time()
        self._inbox: asyncio.Queue[Optional[LifecycleEvent]] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

        # Metrics
        self.accepted = 0
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def capacity(self) -> int:
        return self._inbox.maxsize

    @property
    def pending(self) -> int:
        """Events waiting in the inbox."""
        return self._inbox.qsize()

    def offer(self, event: LifecycleEvent) -> bool:
        """
        Try to enqueue without blocking.

        Returns False if the inbox is full or closed; the event is then lost
        for this observer.
        """
        if self._closed:
            return False
        try:
            self._inbox.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            return False
        self.accepted += 1
        return True

    async def get(self, timeout: Optional[float] = None) -> Optional[LifecycleEvent]:
        """
        Wait for the next event.

        Returns None once the subscription is closed. Raises
        ``asyncio.TimeoutError`` if ``timeout`` elapses with nothing queued.
        """
        if self._closed:
            return None
        if timeout is None:
            event = await self._inbox.get()
        else:
            event = await asyncio.wait_for(self._inbox.get(), timeout=timeout)
        if event is None or self._closed:
            return None
        return event

    def close(self) -> None:
        """
        Close the inbox and wake a waiting reader.

        Must only be called after the subscription left the bus registry.
        """
        if self._closed:
            return
        self._closed = True
        try:
            self._inbox.put_nowait(None)
        except asyncio.QueueFull:
            # A full inbox means no reader is parked in get()
            pass

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "pending": self.pending,
            "capacity": self.capacity,
            "accepted": self.accepted,
            "dropped": self.dropped,
            "connected_seconds": round(time.time() - self.created_at, 1),
        }

    def __repr__(self) -> str:
        return f"<Subscription {self.label} pending={self.pending} closed={self._closed}>"


class EventBus:
    """
    Registry of live subscriptions plus non-blocking fan-out.

    The registry is guarded by a read/write lock: subscribe and unsubscribe
    take it exclusively, broadcast takes it shared. The lock is never held
    across an await or a transport write.
    """

    def __init__(self, inbox_size: int = DEFAULT_INBOX_SIZE, log_drops: bool = True):
        """
        Initialize the bus.

        Args:
            inbox_size: Capacity of each subscriber inbox.
            log_drops: Log a DEBUG line for every event dropped on a full inbox.
        """
        self._inbox_size = inbox_size
        self._log_drops = log_drops
        self._subscribers: dict[Subscription, bool] = {}
        self._lock = ReadWriteLock()

        # Metrics; broadcasts may run concurrently under the shared lock
        self._stats_lock = threading.Lock()
        self._broadcasts = 0
        self._delivered = 0
        self._dropped = 0

    @property
    def inbox_size(self) -> int:
        return self._inbox_size

    def subscribe(self, label: Optional[str] = None) -> Subscription:
        """Create, register and return a new subscription."""
        subscription = Subscription(maxsize=self._inbox_size, label=label)
        with self._lock.write_locked():
            self._subscribers[subscription] = True
            total = len(self._subscribers)
        logger.info(f"[SSE] Client connected ({subscription.label}). Total clients: {total}")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        """
        Remove a subscription from the registry.

        Idempotent: unknown or already-removed subscriptions are ignored.

        Returns:
            True if the subscription was registered.
        """
        with self._lock.write_locked():
            removed = self._subscribers.pop(subscription, None) is not None
            total = len(self._subscribers)
        if removed:
            logger.info(
                f"[SSE] Client disconnected ({subscription.label}). Total clients: {total}"
            )
        return removed

    def release(self, subscription: Subscription) -> None:
        """Unsubscribe, then close the inbox. Order matters."""
        self.unsubscribe(subscription)
        subscription.close()

    def is_subscribed(self, subscription: Subscription) -> bool:
        with self._lock.read_locked():
            return subscription in self._subscribers

    @property
    def subscriber_count(self) -> int:
        with self._lock.read_locked():
            return len(self._subscribers)

    def broadcast(self, event: LifecycleEvent) -> int:
        """
        Offer an event to every registered subscription.

        Never blocks on a subscriber: full inboxes drop the event.

        Returns:
            Number of subscriptions that accepted the event.
        """
        delivered = 0
        dropped = 0

        with self._lock.read_locked():
            total = len(self._subscribers)
            if total:
                logger.info(
                    f"[SSE] Broadcasting event: type={event.kind.value}, "
                    f"channelId={event.channel_id} to {total} clients"
                )
            for subscription in self._subscribers:
                if subscription.offer(event):
                    delivered += 1
                else:
                    dropped += 1
                    if self._log_drops:
                        logger.debug(
                            f"[SSE] Dropped event for {subscription.label} "
                            f"(inbox full, {subscription.dropped} dropped so far)"
                        )

        with self._stats_lock:
            self._broadcasts += 1
            self._delivered += delivered
            self._dropped += dropped

        return delivered

    @asynccontextmanager
    async def listen(self, label: Optional[str] = None) -> AsyncIterator[Subscription]:
        """Subscribe for the duration of the block; released on exit or cancel."""
        subscription = self.subscribe(label=label)
        try:
            yield subscription
        finally:
            self.release(subscription)

    def close_all(self) -> int:
        """Release every subscription (shutdown). Returns how many were released."""
        with self._lock.write_locked():
            subscriptions = list(self._subscribers)
            self._subscribers.clear()
        for subscription in subscriptions:
            subscription.close()
        if subscriptions:
            logger.info(f"[SSE] Closed {len(subscriptions)} client subscriptions")
        return len(subscriptions)

    def get_stats(self) -> dict[str, Any]:
        """Get bus statistics."""
        with self._lock.read_locked():
            subscribers = [s.to_dict() for s in self._subscribers]
        with self._stats_lock:
            return {
                "subscribers": len(subscribers),
                "inbox_size": self._inbox_size,
                "total_broadcasts": self._broadcasts,
                "total_delivered": self._delivered,
                "total_dropped": self._dropped,
                "clients": subscribers,
            }
