"""Shared fixtures and test doubles."""

import asyncio
from datetime import datetime, time, timedelta
from typing import Optional

import pytest

from screenwatch.exceptions import CaptureError, ClassificationError
from screenwatch.models import AgeGroup, ClassificationEvent, Frame, RawPrediction
from screenwatch.policies.models import AgeGroupPolicy, DEFAULT_POLICIES

# Saturday noon: well before any default bedtime
T0 = datetime(2025, 3, 1, 12, 0, 0)


def at(minutes: float = 0, seconds: float = 0) -> datetime:
    """Timestamp relative to T0."""
    return T0 + timedelta(minutes=minutes, seconds=seconds)


def event(age_group: AgeGroup, when: datetime, confidence: float = 90.0) -> ClassificationEvent:
    return ClassificationEvent(age_group=age_group, confidence=confidence, observed_at=when)


async def settle(rounds: int = 50) -> None:
    """Let pending tasks run until they block."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class ManualClock:
    """Clock whose time only moves when a test advances it."""

    def __init__(self, start: datetime = T0) -> None:
        self._now = start
        self._seq = 0
        self._sleepers: list[tuple[datetime, int, asyncio.Future]] = []

    def now(self) -> datetime:
        return self._now

    async def sleep(self, seconds: float) -> None:
        future = asyncio.get_running_loop().create_future()
        self._seq += 1
        self._sleepers.append((self._now + timedelta(seconds=seconds), self._seq, future))
        await future

    async def advance(self, seconds: float) -> None:
        """Move time forward, waking sleepers in order."""
        target = self._now + timedelta(seconds=seconds)
        while True:
            await settle()
            due = [s for s in self._sleepers if s[0] <= target]
            if not due:
                break
            wake_at, seq, future = min(due, key=lambda s: (s[0], s[1]))
            self._sleepers = [s for s in self._sleepers if s[1] != seq]
            self._now = wake_at
            if not future.done():
                future.set_result(None)
        self._now = target
        await settle()


class FakeSource:
    """Classification source returning a fixed prediction."""

    def __init__(
        self,
        prediction: Optional[RawPrediction] = None,
        ready: bool = True,
        error: Optional[Exception] = None,
    ) -> None:
        self.prediction = prediction or RawPrediction(label="4to6", confidence=90.0)
        self.ready = ready
        self.error = error
        self.gate: Optional[asyncio.Event] = None
        self.calls = 0

    def is_ready(self) -> bool:
        return self.ready

    async def classify(self, frame: Frame) -> RawPrediction:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.prediction


class FakeSensor:
    """Frame source that can fail or hang on demand."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.gate: Optional[asyncio.Event] = None
        self.captures = 0

    async def capture(self) -> Frame:
        self.captures += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise CaptureError("camera unplugged")
        return Frame(data=b"jpeg", width=160, height=160, source="fake")


@pytest.fixture()
def policies() -> dict[AgeGroup, AgeGroupPolicy]:
    """Default policy table with a 60-minute, 23:59 policy for 4to6."""
    table = dict(DEFAULT_POLICIES)
    table[AgeGroup.PRESCHOOL] = AgeGroupPolicy(
        AgeGroup.PRESCHOOL, 60, time(23, 59), True, "Preschool"
    )
    return table


@pytest.fixture()
def source() -> FakeSource:
    return FakeSource()


@pytest.fixture()
def failing_source() -> FakeSource:
    return FakeSource(error=ClassificationError("model crashed"))
