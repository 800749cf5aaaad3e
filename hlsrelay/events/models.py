"""Lifecycle event value types."""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class EventKind(str, Enum):
    """What happened to a channel's engine process."""
    STARTED = "started"
    CLOSED = "closed"
    ERRORED = "errored"


@dataclass(frozen=True)
class LifecycleEvent:
    """A notification about one channel; no identity beyond its fields."""

    channel_id: int
    kind: EventKind

    def to_dict(self) -> dict[str, Any]:
        """Wire form carried by the event stream."""
        return {"channelId": self.channel_id, "eventType": self.kind.value}
