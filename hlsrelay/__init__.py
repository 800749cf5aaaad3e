"""
HLSRelay - Live UDP to HLS channel supervisor

Keeps a fixed set of live channels converted from UDP MPEG-TS into HLS:
- One FFmpeg process per channel, restarted whenever it exits
- Stale segments and manifests removed before every restart
- Channel lifecycle events pushed to observers over Server-Sent Events
"""

__version__ = "1.0.0"
__author__ = "HLSRelay Contributors"
__license__ = "MIT"

from hlsrelay.config import get_config, load_config

__all__ = [
    "__version__",
    "get_config",
    "load_config",
]
