"""
HLSRelay Streaming Module

Keeps each channel's FFmpeg process running and its output directory tidy.

Components:
- ChannelSupervisor: Restart-on-exit loop for one channel
- SupervisorGroup: One supervisor task per configured channel
- RestartPolicy: Capped exponential spacing between restarts
- OutputCleaner: Removes a channel's stale segments and manifest
"""

from hlsrelay.streaming.cleaner import (
    DEFAULT_SEGMENT_EXTENSIONS,
    CleanupResult,
    OutputCleaner,
)
from hlsrelay.streaming.supervisor import (
    ChannelSupervisor,
    RestartPolicy,
    SupervisorGroup,
    SupervisorState,
)

__all__ = [
    # Cleanup
    "DEFAULT_SEGMENT_EXTENSIONS",
    "CleanupResult",
    "OutputCleaner",
    # Supervision
    "ChannelSupervisor",
    "RestartPolicy",
    "SupervisorGroup",
    "SupervisorState",
]
