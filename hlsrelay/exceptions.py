"""
Error taxonomy for HLSRelay.

Only FatalBootstrapError is allowed to end the process. Everything else is
logged where it happens and confined to one channel or one observer.
"""

from pathlib import Path
from typing import Optional


class HLSRelayError(Exception):
    """Base class for HLSRelay errors."""


class FatalBootstrapError(HLSRelayError):
    """A required directory could not be created at startup."""

    def __init__(self, path: Path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to create directory {path}: {reason}")


class EngineRunError(HLSRelayError):
    """The transcoding process exited non-zero or could not be started."""

    def __init__(
        self,
        channel_id: int,
        exit_code: Optional[int] = None,
        message: Optional[str] = None,
    ):
        self.channel_id = channel_id
        self.exit_code = exit_code
        if message is None:
            message = f"FFmpeg exited with code {exit_code}"
        super().__init__(f"Channel {channel_id}: {message}")


class CleanupError(HLSRelayError):
    """A single output file could not be removed."""

    def __init__(self, path: Path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to remove {path}: {reason}")
