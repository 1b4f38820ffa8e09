"""Offline replay of recorded predictions through the engine.

Feeds a JSON-lines file of timestamped classifier outputs through the real
gateway, session manager and enforcer on a simulated clock, with a tick
every minute. Useful to dry-run a policy table against a day of data.

Input format, one object per line:

    {"at": "2025-03-01T19:02:30", "label": "4to6", "confidence": 91.0}

Timestamps with a UTC offset are converted to naive local time.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterable, Optional

from screenwatch.classifier.gateway import ClassifierGateway, DEFAULT_CONFIDENCE_THRESHOLD
from screenwatch.engine import MonitoringEngine
from screenwatch.models import (
    AgeGroup,
    EndReason,
    LockReason,
    RawPrediction,
    SessionSnapshot,
)
from screenwatch.policies.models import AgeGroupPolicy, DEFAULT_POLICIES
from screenwatch.scheduler import TICK_INTERVAL_MS
from screenwatch.session.manager import DEFAULT_SILENCE_TIMEOUT, SessionManager

logger = logging.getLogger(__name__)


@dataclass
class TimelineEntry:
    """Something that happened during a replay."""

    at: datetime
    kind: str  # "session_started", "session_ended", "lock"
    age_group: Optional[AgeGroup]
    detail: str


@dataclass
class ReplayResult:
    """Outcome of a replay run."""

    timeline: list[TimelineEntry] = field(default_factory=list)
    sessions: list[SessionSnapshot] = field(default_factory=list)
    stats: dict[str, int] = field(default_factory=dict)

    @property
    def locks(self) -> list[TimelineEntry]:
        return [e for e in self.timeline if e.kind == "lock"]


def parse_lines(lines: Iterable[str]) -> list[tuple[datetime, RawPrediction]]:
    """Parse JSON-lines replay input, sorted by timestamp.

    Raises:
        ValueError: On a line that is not a valid prediction record
    """
    records = []
    for lineno, line in enumerate(lines, start=1):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        try:
            data = json.loads(line)
            at = datetime.fromisoformat(data["at"])
            if at.tzinfo is not None:
                # Engine time is naive local time
                at = at.astimezone().replace(tzinfo=None)
            prediction = RawPrediction(
                label=str(data["label"]),
                confidence=data.get("confidence", 0.0),
            )
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Line {lineno}: invalid prediction record ({e})") from e
        records.append((at, prediction))

    records.sort(key=lambda r: r[0])
    return records


def load_predictions(path: Path) -> list[tuple[datetime, RawPrediction]]:
    """Load a replay file."""
    with open(path, encoding="utf-8") as f:
        return parse_lines(f)


async def replay(
    records: list[tuple[datetime, RawPrediction]],
    policies: Optional[dict[AgeGroup, AgeGroupPolicy]] = None,
    confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
    silence_timeout: timedelta = DEFAULT_SILENCE_TIMEOUT,
) -> ReplayResult:
    """Run predictions through a fresh engine on simulated time.

    Ticks fire every minute from the first prediction on, and keep firing
    after the last one until its session has ended on silence.
    """
    policies = policies or dict(DEFAULT_POLICIES)
    result = ReplayResult()
    if not records:
        return result

    gateway = ClassifierGateway(None, policies, confidence_threshold)
    sessions = SessionManager(policies, silence_timeout)
    engine = MonitoringEngine(gateway, sessions)

    clock = {"now": records[0][0]}
    seen_ids: set[str] = set()

    def on_update(snapshot: Optional[SessionSnapshot]) -> None:
        if snapshot is not None and snapshot.id not in seen_ids:
            seen_ids.add(snapshot.id)
            result.timeline.append(TimelineEntry(
                at=clock["now"],
                kind="session_started",
                age_group=snapshot.age_group,
                detail=f"confidence {snapshot.confidence:.1f}%, limit {snapshot.limit_minutes} min",
            ))

    def on_end(snapshot: SessionSnapshot, reason: EndReason, ended_at: datetime) -> None:
        result.sessions.append(snapshot)
        result.timeline.append(TimelineEntry(
            at=ended_at,
            kind="session_ended",
            age_group=snapshot.age_group,
            detail=f"{reason.value} after {snapshot.elapsed_minutes} min",
        ))

    def on_lock(reason: LockReason) -> None:
        current = engine.current_session
        result.timeline.append(TimelineEntry(
            at=clock["now"],
            kind="lock",
            age_group=current.age_group if current else None,
            detail=f"{reason.value} at {current.elapsed_minutes if current else 0} min",
        ))

    engine.subscribe(on_update)
    sessions.subscribe_ended(on_end)
    engine.on_lock_required(on_lock)

    tick_step = timedelta(milliseconds=TICK_INTERVAL_MS)
    next_tick = records[0][0] + tick_step

    for at, prediction in records:
        while next_tick <= at:
            clock["now"] = next_tick
            await engine.tick(next_tick)
            next_tick += tick_step

        clock["now"] = at
        await engine.handle_prediction(prediction, at)

    # Drain: keep ticking until the trailing session times out
    deadline = records[-1][0] + silence_timeout + 2 * tick_step
    while engine.current_session is not None and next_tick <= deadline:
        clock["now"] = next_tick
        await engine.tick(next_tick)
        next_tick += tick_step

    await engine.shutdown(clock["now"])
    result.stats = engine.stats
    logger.debug(f"Replay finished: {len(result.timeline)} timeline entries")
    return result
