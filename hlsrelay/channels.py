"""
Channel descriptors.

A descriptor is the static, immutable configuration of one channel. They are
built once at startup from the resolved configuration and shared with the
supervisor, the cleaner and the status API for the process lifetime.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from hlsrelay.config import HLSRelayConfig

SEGMENT_BASENAME = "stream"


@dataclass(frozen=True)
class ChannelDescriptor:
    """Static configuration for one channel."""

    index: int
    source_address: str
    output_dir: Path
    manifest_path: Path
    log_path: Path

    def __post_init__(self) -> None:
        if self.index < 0:
            raise ValueError(f"Channel index must be >= 0, got {self.index}")

    @property
    def segment_prefix(self) -> str:
        """
        Filename prefix shared by all of this channel's segments.

        Ends with a delimiter so channel 1 never matches channel 10's files.
        """
        return f"{SEGMENT_BASENAME}_{self.index}_"

    def segment_pattern(self, extension: str = ".m4s") -> Path:
        """FFmpeg ``hls_segment_filename`` pattern."""
        return self.output_dir / f"{self.segment_prefix}%03d{extension}"

    @property
    def init_segment_name(self) -> str:
        """fMP4 init segment name, relative to the manifest directory."""
        return f"{self.segment_prefix}init.mp4"

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "source_address": self.source_address,
            "output_dir": str(self.output_dir),
            "manifest_path": str(self.manifest_path),
            "log_path": str(self.log_path),
        }


def build_descriptors(config: HLSRelayConfig) -> list[ChannelDescriptor]:
    """
    Resolve the channel layout from configuration.

    Channel ``i`` reads UDP port ``udp_base_port + i`` on ``source_host``.
    """
    output_dir = Path(config.paths.output_dir)
    log_dir = Path(config.paths.log_dir)
    channels = config.channels

    descriptors = []
    for index in range(channels.count):
        port = channels.udp_base_port + index
        descriptors.append(
            ChannelDescriptor(
                index=index,
                source_address=(
                    f"udp://{channels.source_host}:{port}"
                    f"?timeout={channels.udp_timeout_us}"
                ),
                output_dir=output_dir,
                manifest_path=output_dir / f"{SEGMENT_BASENAME}{index}.m3u8",
                log_path=log_dir / f"channel_{index}.log",
            )
        )
    return descriptors
