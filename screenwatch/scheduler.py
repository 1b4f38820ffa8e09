"""Sampling scheduler driving the capture and tick cadences.

Two independent periodic tasks run against the monitoring engine:

- Capture cadence (default every 30s): grab a frame, classify it, update
  the session. Each cycle runs as its own task so a slow camera or model
  never delays the cadence.
- Tick cadence (every 60s): recompute elapsed time, end silent sessions,
  enforce policy.

Time comes from an injectable clock so tests can advance it by hand.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol

from screenwatch.engine import MonitoringEngine
from screenwatch.exceptions import ClassifierUnavailableError
from screenwatch.models import LockReason, SessionSnapshot
from screenwatch.sensors.directory import FrameSource

logger = logging.getLogger(__name__)

DEFAULT_DETECTION_INTERVAL_MS = 30_000
TICK_INTERVAL_MS = 60_000

# Capture cycles allowed to pile up behind a hung sensor
MAX_PENDING_CYCLES = 4


class Clock(Protocol):
    """Source of local time and of waiting."""

    def now(self) -> datetime:
        ...

    async def sleep(self, seconds: float) -> None:
        ...


class SystemClock:
    """Wall-clock time and real asyncio sleeps."""

    def now(self) -> datetime:
        return datetime.now()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


@dataclass
class SchedulerConfig:
    """Configuration for the sampling scheduler."""

    detection_interval_ms: int = DEFAULT_DETECTION_INTERVAL_MS
    tick_interval_ms: int = TICK_INTERVAL_MS


class SamplingScheduler:
    """Runs the capture and tick cadences for the lifetime of monitoring."""

    def __init__(
        self,
        engine: MonitoringEngine,
        sensor: FrameSource,
        clock: Optional[Clock] = None,
        config: Optional[SchedulerConfig] = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            engine: Engine receiving frames and ticks
            sensor: Frame source polled on the capture cadence
            clock: Time source (default: SystemClock)
            config: Cadence configuration
        """
        self.engine = engine
        self.sensor = sensor
        self.clock = clock or SystemClock()
        self.config = config or SchedulerConfig()
        self._tasks: list[asyncio.Task] = []
        self._cycles: set[asyncio.Task] = set()
        self._running = False
        self._capture_failures = 0
        self._cycle_errors = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def stats(self) -> dict[str, int]:
        return {
            "capture_failures": self._capture_failures,
            "cycle_errors": self._cycle_errors,
        }

    async def start(self) -> None:
        """Start both cadences.

        Raises:
            ClassifierUnavailableError: If the classifier is not ready
        """
        if self._running:
            logger.info("Monitoring already active")
            return

        if not self.engine.gateway.is_ready():
            raise ClassifierUnavailableError("Classifier not ready, monitoring not started")

        self.engine.resume()
        self._running = True
        self._tasks = [
            asyncio.create_task(self._capture_loop(), name="screenwatch-capture"),
            asyncio.create_task(self._tick_loop(), name="screenwatch-tick"),
        ]
        logger.info(
            f"Monitoring started (capture every {self.config.detection_interval_ms}ms, "
            f"tick every {self.config.tick_interval_ms}ms)"
        )

    async def stop(self) -> None:
        """Stop both cadences and end the active session.

        Idempotent. In-flight capture cycles are cancelled; a capture that
        resolves afterwards is discarded by the engine.
        """
        if not self._running:
            return
        self._running = False

        tasks = self._tasks + list(self._cycles)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks = []
        self._cycles.clear()

        await self.engine.shutdown(self.clock.now())
        logger.info("Monitoring stopped")

    async def run_capture_cycle(self) -> Optional[SessionSnapshot]:
        """Capture one frame and feed it to the engine.

        Never raises (except cancellation): failures are logged and the
        cycle becomes a no-op.
        """
        try:
            frame = await self.sensor.capture()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._capture_failures += 1
            logger.warning(f"Frame capture failed: {e}")
            return None

        try:
            return await self.engine.handle_frame(frame, self.clock.now())
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._cycle_errors += 1
            logger.error(f"Capture cycle failed: {e}")
            return None

    async def run_tick(self) -> Optional[LockReason]:
        """Run one tick against the engine. Never raises (except cancellation)."""
        try:
            return await self.engine.tick(self.clock.now())
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._cycle_errors += 1
            logger.error(f"Tick failed: {e}")
            return None

    def _spawn_cycle(self) -> None:
        if len(self._cycles) >= MAX_PENDING_CYCLES:
            logger.warning(f"{len(self._cycles)} capture cycles pending, skipping this one")
            return
        task = asyncio.create_task(self.run_capture_cycle())
        self._cycles.add(task)
        task.add_done_callback(self._cycles.discard)

    async def _capture_loop(self) -> None:
        interval = self.config.detection_interval_ms / 1000
        while True:
            await self.clock.sleep(interval)
            self._spawn_cycle()

    async def _tick_loop(self) -> None:
        interval = self.config.tick_interval_ms / 1000
        while True:
            await self.clock.sleep(interval)
            await self.run_tick()
