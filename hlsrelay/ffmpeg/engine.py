"""
FFmpeg transcoding engine.

Starts one FFmpeg process that reads a channel's UDP source and writes an
HLS manifest plus fMP4 segments, duplicates the process output to the
channel log file and the console, and waits for the process to exit.
"""

import asyncio
import logging
import shlex
import sys
from abc import ABC, abstractmethod
from typing import BinaryIO, Optional

from hlsrelay.channels import ChannelDescriptor
from hlsrelay.config import FFmpegConfig, HLSConfig
from hlsrelay.exceptions import EngineRunError

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 4096


class TranscodeEngine(ABC):
    """Something that converts a channel's source until it stops."""

    @abstractmethod
    async def run(self, descriptor: ChannelDescriptor) -> int:
        """
        Run the engine for one channel until it terminates.

        Returns:
            Process exit code.

        Raises:
            EngineRunError: The engine could not be started.
        """

    def running_pids(self) -> dict[int, int]:
        """OS process IDs of running engines, keyed by channel index."""
        return {}


class FFmpegEngine(TranscodeEngine):
    """
    Runs FFmpeg as an asyncio subprocess.

    Usage:
        engine = FFmpegEngine(config.ffmpeg, config.hls)
        exit_code = await engine.run(descriptor)  # blocks for hours
    """

    def __init__(
        self,
        ffmpeg: Optional[FFmpegConfig] = None,
        hls: Optional[HLSConfig] = None,
        stop_timeout: float = 5.0,
        console: Optional[BinaryIO] = None,
    ):
        """
        Initialize the engine.

        Args:
            ffmpeg: FFmpeg invocation settings
            hls: HLS muxer settings
            stop_timeout: Grace period after SIGTERM before SIGKILL on shutdown
            console: Binary stream that receives a copy of FFmpeg's output
                (defaults to this process's stdout)
        """
        self.ffmpeg = ffmpeg or FFmpegConfig()
        self.hls = hls or HLSConfig()
        self.stop_timeout = stop_timeout
        self._console = console
        self._pids: dict[int, int] = {}

    def running_pids(self) -> dict[int, int]:
        return dict(self._pids)

    @property
    def segment_extension(self) -> str:
        return ".m4s" if self.hls.segment_type == "fmp4" else ".ts"

    def build_command(self, descriptor: ChannelDescriptor) -> list[str]:
        """Build the FFmpeg argument list for a channel."""
        ff = self.ffmpeg
        hls = self.hls

        cmd = [ff.path, "-hide_banner"]
        if ff.log_level:
            cmd += ["-loglevel", ff.log_level]

        cmd += ["-i", descriptor.source_address]

        # Video is copied as-is; audio is re-encoded with resync to avoid gaps
        cmd += ["-c:v", ff.video_codec]
        cmd += [
            "-c:a", ff.audio_codec,
            "-b:a", ff.audio_bitrate,
            "-ar", str(ff.audio_sample_rate),
            "-ac", str(ff.audio_channels),
        ]
        if ff.audio_filter:
            cmd += ["-af", ff.audio_filter]

        cmd += [
            "-f", "hls",
            "-hls_time", str(hls.time),
            "-hls_list_size", str(hls.list_size),
            "-hls_flags", hls.flags,
            "-hls_segment_type", hls.segment_type,
        ]
        if hls.segment_type == "fmp4":
            cmd += ["-hls_fmp4_init_filename", descriptor.init_segment_name]
        cmd += [
            "-hls_segment_filename",
            str(descriptor.segment_pattern(self.segment_extension)),
        ]

        if ff.extra_flags:
            cmd += shlex.split(ff.extra_flags)

        cmd += ["-y", str(descriptor.manifest_path)]
        return cmd

    async def run(self, descriptor: ChannelDescriptor) -> int:
        command = self.build_command(descriptor)
        channel_id = descriptor.index

        try:
            log_file = open(descriptor.log_path, "ab")
        except OSError as e:
            raise EngineRunError(
                channel_id, message=f"cannot open log file {descriptor.log_path}: {e}"
            ) from e

        try:
            try:
                process = await asyncio.create_subprocess_exec(
                    *command,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.STDOUT,
                )
            except OSError as e:
                raise EngineRunError(
                    channel_id, message=f"failed to start FFmpeg: {e}"
                ) from e

            self._pids[channel_id] = process.pid
            logger.info(
                f"[Channel {channel_id}] Started FFmpeg (PID {process.pid}) "
                f"reading {descriptor.source_address}"
            )
            logger.debug(f"[Channel {channel_id}] Command: {shlex.join(command)}")

            try:
                await self._pump_output(process, log_file)
                return await process.wait()
            except BaseException:
                # Never leave FFmpeg running once this run is over
                await self._terminate(process, channel_id)
                raise
        finally:
            self._pids.pop(channel_id, None)
            log_file.close()

    async def _pump_output(self, process: asyncio.subprocess.Process, log_file: BinaryIO) -> None:
        """Copy process output to the channel log and the console until EOF."""
        console = self._console
        if console is None:
            console = getattr(sys.stdout, "buffer", None)

        while True:
            chunk = await process.stdout.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            log_file.write(chunk)
            log_file.flush()
            if console is not None:
                try:
                    console.write(chunk)
                    console.flush()
                except (OSError, ValueError):
                    # Console closed or detached; the log file still has it
                    console = None

    async def _terminate(self, process: asyncio.subprocess.Process, channel_id: int) -> None:
        """Stop a running FFmpeg, escalating to SIGKILL after the grace period."""
        if process.returncode is not None:
            return
        try:
            process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=self.stop_timeout)
                logger.info(f"[Channel {channel_id}] Terminated FFmpeg")
            except asyncio.TimeoutError:
                process.kill()
                await process.wait()
                logger.warning(f"[Channel {channel_id}] Force killed FFmpeg")
        except ProcessLookupError:
            pass
