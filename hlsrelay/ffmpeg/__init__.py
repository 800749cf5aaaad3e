"""
HLSRelay FFmpeg Module

Builds and runs the FFmpeg process that turns a channel's UDP source into
HLS output.
"""

from hlsrelay.ffmpeg.engine import FFmpegEngine, TranscodeEngine

__all__ = [
    "FFmpegEngine",
    "TranscodeEngine",
]
