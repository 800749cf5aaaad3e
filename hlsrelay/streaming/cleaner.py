"""
Output cleanup between engine runs.

Removes a channel's leftover HLS segments and manifest before the engine is
started again, so clients never see a playlist that mixes two runs. The
static file server may be reading the same files; a deletion that races a
read only costs that client a transient 404.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from hlsrelay.channels import ChannelDescriptor
from hlsrelay.exceptions import CleanupError

logger = logging.getLogger(__name__)

DEFAULT_SEGMENT_EXTENSIONS = (".m4s", ".ts", ".mp4")


@dataclass
class CleanupResult:
    """Outcome of one cleanup pass."""

    removed: list[Path] = field(default_factory=list)
    errors: list[CleanupError] = field(default_factory=list)
    manifest_removed: bool = False

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "removed": len(self.removed),
            "manifest_removed": self.manifest_removed,
            "errors": [str(e) for e in self.errors],
        }


class OutputCleaner:
    """Deletes one channel's segment files and manifest."""

    def __init__(self, extensions: Optional[Iterable[str]] = None):
        exts = extensions if extensions is not None else DEFAULT_SEGMENT_EXTENSIONS
        self.extensions = tuple(e if e.startswith(".") else f".{e}" for e in exts)

    def matches(self, name: str, prefix: str) -> bool:
        """True if ``name`` is one of this channel's segment files."""
        return name.startswith(prefix) and name.endswith(self.extensions)

    def clean(self, output_dir: Path, manifest_path: Path, prefix: str) -> CleanupResult:
        """
        Remove matching segments from ``output_dir`` and then the manifest.

        Never raises for filesystem errors: each failure is logged and
        recorded in the result, and the remaining files are still removed.
        """
        result = CleanupResult()
        output_dir = Path(output_dir)

        try:
            entries = list(output_dir.iterdir())
        except FileNotFoundError:
            entries = []
        except OSError as e:
            error = CleanupError(output_dir, str(e))
            logger.error(str(error))
            result.errors.append(error)
            entries = []

        for path in entries:
            if not self.matches(path.name, prefix):
                continue
            self._remove(path, result)

        manifest_path = Path(manifest_path)
        if self._remove(manifest_path, result, count=False):
            result.manifest_removed = True

        if result.removed or result.manifest_removed:
            logger.debug(
                f"Cleaned {len(result.removed)} segments for prefix {prefix!r} "
                f"in {output_dir}"
            )
        return result

    def clean_channel(self, descriptor: ChannelDescriptor) -> CleanupResult:
        """Clean the output belonging to ``descriptor``."""
        return self.clean(
            descriptor.output_dir,
            descriptor.manifest_path,
            descriptor.segment_prefix,
        )

    def _remove(self, path: Path, result: CleanupResult, count: bool = True) -> bool:
        try:
            if path.is_dir():
                return False
            path.unlink()
        except FileNotFoundError:
            # Already gone: FFmpeg's delete_segments or a concurrent pass
            return False
        except OSError as e:
            error = CleanupError(path, str(e))
            logger.warning(str(error))
            result.errors.append(error)
            return False
        if count:
            result.removed.append(path)
        return True
