"""
HLSRelay Events Module

Channel lifecycle events and their fan-out to connected observers.

Components:
- LifecycleEvent / EventKind: Event value types
- EventBus: Subscriber registry with non-blocking broadcast
- Subscription: Per-observer bounded inbox
- ReadWriteLock: Registry lock
"""

from hlsrelay.events.bus import DEFAULT_INBOX_SIZE, EventBus, Subscription
from hlsrelay.events.models import EventKind, LifecycleEvent
from hlsrelay.events.rwlock import ReadWriteLock

__all__ = [
    "DEFAULT_INBOX_SIZE",
    "EventBus",
    "EventKind",
    "LifecycleEvent",
    "ReadWriteLock",
    "Subscription",
]
