"""Core data types flowing through the session and enforcement engine."""

from dataclasses import dataclass
from datetime import datetime, time
from enum import Enum
from typing import Optional


class AgeGroup(Enum):
    """Closed set of brackets the classifier can predict."""

    TODDLER = "1to3"
    PRESCHOOL = "4to6"
    EARLY_ELEMENTARY = "7to9"
    LATE_ELEMENTARY = "10to12"
    MIDDLE_SCHOOL = "13to15"
    ADULTS = "adults"


class LockReason(Enum):
    """Why the device has to be locked."""

    SCREEN_TIME_EXCEEDED = "screen_time"
    BEDTIME = "bedtime"


class SessionState(Enum):
    ACTIVE = "active"
    ENDING = "ending"
    ENDED = "ended"


class EndReason(Enum):
    """Why a session stopped being tracked."""

    SILENCE_TIMEOUT = "silence_timeout"
    SUPERSEDED = "superseded"
    MONITORING_STOPPED = "monitoring_stopped"


@dataclass(frozen=True)
class Frame:
    """A single captured camera image.

    The engine never looks inside a frame; it is handed as-is from the
    sensor to the classification source.
    """

    data: bytes
    width: int = 0
    height: int = 0
    source: str = ""


@dataclass(frozen=True)
class RawPrediction:
    """Unfiltered classifier output.

    Attributes:
        label: Bracket label as reported by the model (may be unknown)
        confidence: Confidence in percent, expected in [0, 100]
    """

    label: str
    confidence: float


@dataclass(frozen=True)
class ClassificationEvent:
    """An accepted child classification."""

    age_group: AgeGroup
    confidence: float
    observed_at: datetime


@dataclass(frozen=True)
class SessionSnapshot:
    """Immutable view of a session handed to observers."""

    id: str
    age_group: AgeGroup
    started_at: datetime
    last_observed_at: datetime
    elapsed_minutes: int
    limit_minutes: int
    bedtime: time
    lock_episode_raised: bool
    state: SessionState
    confidence: float
    lock_reason: Optional[LockReason] = None

    @property
    def remaining_minutes(self) -> Optional[int]:
        """Minutes left in the budget, or None for unmonitored groups."""
        if self.limit_minutes <= 0:
            return None
        return max(0, self.limit_minutes - self.elapsed_minutes)


@dataclass
class Session:
    """The continuous tracked presence of one child age group.

    Mutated only by the session manager (and the enforcer's lock flag),
    always under the engine's serialization lock.
    """

    id: str
    age_group: AgeGroup
    started_at: datetime
    last_observed_at: datetime
    limit_minutes: int
    bedtime: time
    confidence: float = 0.0
    elapsed_minutes: int = 0
    lock_episode_raised: bool = False
    lock_reason: Optional[LockReason] = None
    state: SessionState = SessionState.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.state == SessionState.ACTIVE

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            id=self.id,
            age_group=self.age_group,
            started_at=self.started_at,
            last_observed_at=self.last_observed_at,
            elapsed_minutes=self.elapsed_minutes,
            limit_minutes=self.limit_minutes,
            bedtime=self.bedtime,
            lock_episode_raised=self.lock_episode_raised,
            state=self.state,
            confidence=self.confidence,
            lock_reason=self.lock_reason,
        )
