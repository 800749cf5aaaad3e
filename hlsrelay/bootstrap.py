"""
One-time filesystem bootstrap.

The output and log directories must exist before any supervisor starts.
Failure here is the only fatal error in the application.
"""

import logging
from pathlib import Path

from hlsrelay.config import HLSRelayConfig
from hlsrelay.exceptions import FatalBootstrapError

logger = logging.getLogger(__name__)


def ensure_directory(path: Path) -> Path:
    """Create ``path`` (and parents) if missing."""
    path = Path(path)
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise FatalBootstrapError(path, str(e)) from e
    if not path.is_dir():
        raise FatalBootstrapError(path, "exists and is not a directory")
    return path


def bootstrap_directories(config: HLSRelayConfig) -> tuple[Path, Path]:
    """
    Create the output and log directories.

    Raises:
        FatalBootstrapError: Either directory could not be created.
    """
    output_dir = ensure_directory(Path(config.paths.output_dir))
    log_dir = ensure_directory(Path(config.paths.log_dir))
    logger.info(f"Output directory: {output_dir.resolve()}")
    logger.info(f"Channel log directory: {log_dir.resolve()}")
    return output_dir, log_dir
