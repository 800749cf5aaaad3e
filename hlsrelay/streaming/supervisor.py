"""
Channel supervisors.

Each channel gets one supervisor task that keeps its FFmpeg process alive
for the lifetime of the server:

    RUNNING ──engine exits──▶ CLEANING ──event sent──▶ RESTARTING ──delay──▶ RUNNING

Engine failures are logged and followed by cleanup and a restart; they never
stop the loop or touch other channels. Restarts are spaced with a capped
exponential backoff so a source that is down does not spin FFmpeg in a
tight loop.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from hlsrelay.channels import ChannelDescriptor, build_descriptors
from hlsrelay.config import HLSRelayConfig
from hlsrelay.events.bus import EventBus
from hlsrelay.events.models import EventKind, LifecycleEvent
from hlsrelay.exceptions import EngineRunError
from hlsrelay.ffmpeg.engine import FFmpegEngine, TranscodeEngine
from hlsrelay.streaming.cleaner import OutputCleaner

logger = logging.getLogger(__name__)


class SupervisorState(str, Enum):
    """Where a supervisor is in its restart loop."""
    IDLE = "idle"
    RUNNING = "running"
    CLEANING = "cleaning"
    RESTARTING = "restarting"
    STOPPED = "stopped"


@dataclass
class RestartPolicy:
    """Minimum spacing between engine restarts."""

    backoff_base: float = 0.5
    backoff_max: float = 5.0
    stable_after: float = 30.0  # A run at least this long resets the backoff

    def delay(self, short_runs: int) -> float:
        """Delay before the next start after ``short_runs`` consecutive short runs."""
        if self.backoff_base <= 0:
            return 0.0
        delay = self.backoff_base * (2 ** min(short_runs, 16))
        return min(delay, self.backoff_max)


class ChannelSupervisor:
    """Restart-on-exit loop for one channel."""

    def __init__(
        self,
        descriptor: ChannelDescriptor,
        engine: TranscodeEngine,
        bus: EventBus,
        cleaner: Optional[OutputCleaner] = None,
        policy: Optional[RestartPolicy] = None,
        emit_started: bool = False,
        report_errors: bool = False,
    ):
        """
        Initialize the supervisor.

        Args:
            descriptor: Channel being supervised
            engine: Engine that runs the channel until it stops
            bus: Where lifecycle events are broadcast
            cleaner: Removes stale output before each restart
            policy: Restart spacing
            emit_started: Also broadcast a ``started`` event on each launch
            report_errors: Broadcast ``errored`` instead of ``closed`` when
                the engine fails
        """
        self.descriptor = descriptor
        self.engine = engine
        self.bus = bus
        self.cleaner = cleaner or OutputCleaner()
        self.policy = policy or RestartPolicy()
        self.emit_started = emit_started
        self.report_errors = report_errors

        self.state = SupervisorState.IDLE
        self._short_runs = 0

        # Metrics
        self.restart_count = 0
        self.failure_count = 0
        self.last_exit_code: Optional[int] = None
        self.last_error: Optional[str] = None
        self.last_started_at: Optional[float] = None
        self.last_ended_at: Optional[float] = None

    @property
    def channel_id(self) -> int:
        return self.descriptor.index

    def _set_state(self, state: SupervisorState) -> None:
        if state != self.state:
            logger.debug(f"[Channel {self.channel_id}] {self.state.value} -> {state.value}")
            self.state = state

    async def run(self) -> None:
        """Supervise the channel forever; returns only by cancellation."""
        logger.info(
            f"[Channel {self.channel_id}] Supervisor started for "
            f"{self.descriptor.source_address}"
        )

        # Leftovers from a previous server run
        self.cleaner.clean_channel(self.descriptor)

        try:
            while True:
                try:
                    await self.run_iteration()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    self._short_runs += 1
                    logger.error(
                        f"[Channel {self.channel_id}] Supervisor iteration failed: {e}",
                        exc_info=True,
                    )

                self._set_state(SupervisorState.RESTARTING)
                delay = self.next_delay()
                if delay > 0:
                    logger.debug(
                        f"[Channel {self.channel_id}] Restarting in {delay:.2f}s"
                    )
                await asyncio.sleep(delay)
        except asyncio.CancelledError:
            logger.info(f"[Channel {self.channel_id}] Supervisor cancelled")
            raise
        finally:
            self._set_state(SupervisorState.STOPPED)

    def next_delay(self) -> float:
        """Delay the policy prescribes before the next engine start."""
        return self.policy.delay(self._short_runs)

    async def run_iteration(self) -> LifecycleEvent:
        """
        Run the engine once, clean up after it and announce the exit.

        Returns:
            The event that was broadcast for this exit.
        """
        channel_id = self.channel_id
        self._set_state(SupervisorState.RUNNING)
        self.last_started_at = time.time()
        started = time.monotonic()

        if self.emit_started:
            self.bus.broadcast(LifecycleEvent(channel_id=channel_id, kind=EventKind.STARTED))

        error: Optional[EngineRunError] = None
        try:
            exit_code = await self.engine.run(self.descriptor)
            self.last_exit_code = exit_code
            if exit_code != 0:
                error = EngineRunError(channel_id, exit_code=exit_code)
        except EngineRunError as e:
            self.last_exit_code = e.exit_code
            error = e
        except Exception as e:
            self.last_exit_code = None
            error = EngineRunError(channel_id, message=f"engine failed: {e}")
            logger.debug(f"[Channel {channel_id}] Engine traceback", exc_info=True)

        duration = time.monotonic() - started
        self.last_ended_at = time.time()
        logger.info(
            f"[Channel {channel_id}] Stream ended after {duration:.1f}s "
            f"(source {self.descriptor.source_address})"
        )
        if error is not None:
            self.failure_count += 1
            self.last_error = str(error)
            logger.error(str(error))
        else:
            self.last_error = None

        self._set_state(SupervisorState.CLEANING)
        result = self.cleaner.clean_channel(self.descriptor)
        if not result.ok:
            logger.warning(
                f"[Channel {channel_id}] Cleanup left {len(result.errors)} files behind"
            )

        if error is not None and self.report_errors:
            kind = EventKind.ERRORED
        else:
            kind = EventKind.CLOSED
        event = LifecycleEvent(channel_id=channel_id, kind=kind)
        self.bus.broadcast(event)

        self.restart_count += 1
        if duration >= self.policy.stable_after:
            self._short_runs = 0
        else:
            self._short_runs += 1

        return event

    def get_status(self) -> dict[str, Any]:
        """Get supervisor status."""
        return {
            "channel_id": self.channel_id,
            "state": self.state.value,
            "source_address": self.descriptor.source_address,
            "manifest_path": str(self.descriptor.manifest_path),
            "restart_count": self.restart_count,
            "failure_count": self.failure_count,
            "last_exit_code": self.last_exit_code,
            "last_error": self.last_error,
            "last_started_at": self.last_started_at,
            "last_ended_at": self.last_ended_at,
        }


class SupervisorGroup:
    """
    Owns one supervisor task per channel.

    Channels are independent: one channel's task failing is logged and
    leaves the others running.
    """

    def __init__(self, supervisors: list[ChannelSupervisor]):
        self._supervisors: dict[int, ChannelSupervisor] = {
            s.channel_id: s for s in supervisors
        }
        self._tasks: dict[int, asyncio.Task] = {}
        self._is_running = False

    @classmethod
    def from_config(
        cls,
        config: HLSRelayConfig,
        bus: EventBus,
        engine: Optional[TranscodeEngine] = None,
        descriptors: Optional[list[ChannelDescriptor]] = None,
    ) -> "SupervisorGroup":
        """Build supervisors for every configured channel."""
        if descriptors is None:
            descriptors = build_descriptors(config)
        if engine is None:
            engine = FFmpegEngine(
                config.ffmpeg,
                config.hls,
                stop_timeout=config.supervisor.stop_timeout,
            )
        cleaner = OutputCleaner(config.hls.segment_extensions)
        policy = RestartPolicy(
            backoff_base=config.supervisor.backoff_base,
            backoff_max=config.supervisor.backoff_max,
            stable_after=config.supervisor.stable_after,
        )
        return cls([
            ChannelSupervisor(
                descriptor,
                engine,
                bus,
                cleaner=cleaner,
                policy=policy,
                emit_started=config.events.emit_started,
                report_errors=config.events.report_errors,
            )
            for descriptor in descriptors
        ])

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def supervisors(self) -> list[ChannelSupervisor]:
        return list(self._supervisors.values())

    def get(self, channel_id: int) -> Optional[ChannelSupervisor]:
        return self._supervisors.get(channel_id)

    async def start(self) -> None:
        """Start every supervisor task."""
        if self._is_running:
            return
        self._is_running = True

        for channel_id, supervisor in self._supervisors.items():
            task = asyncio.create_task(supervisor.run(), name=f"channel-{channel_id}")
            task.add_done_callback(self._on_task_done)
            self._tasks[channel_id] = task

        logger.info(f"Supervisor group started ({len(self._tasks)} channels)")

    async def stop(self) -> None:
        """Cancel every supervisor task and wait for engines to shut down."""
        if not self._is_running:
            return
        self._is_running = False

        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

        logger.info("Supervisor group stopped")

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Supervisor task {task.get_name()} died: {exc!r}")
        else:
            logger.warning(f"Supervisor task {task.get_name()} exited")

    def get_status(self) -> list[dict[str, Any]]:
        """Status of every channel, ordered by index."""
        return [
            self._supervisors[channel_id].get_status()
            for channel_id in sorted(self._supervisors)
        ]
