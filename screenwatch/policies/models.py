"""Data models for per-age-group screen-time policies."""

from dataclasses import dataclass
from datetime import time

from screenwatch.exceptions import ConfigError
from screenwatch.models import AgeGroup


@dataclass(frozen=True)
class AgeGroupPolicy:
    """Screen-time rules for one age bracket.

    Attributes:
        age_group: Bracket this policy applies to
        limit_minutes: Daily screen-time budget; 0 means the group is not monitored
        bedtime: Local wall-clock time after which the device must be locked
        is_child: False for brackets that never start a session (adults)
        description: Human-readable label
    """

    age_group: AgeGroup
    limit_minutes: int
    bedtime: time
    is_child: bool = True
    description: str = ""


def parse_clock(value: str) -> time:
    """Parse an "HH:MM" string into a time of day.

    Raises:
        ConfigError: If the value is not a valid 24-hour clock time
    """
    try:
        hour_str, minute_str = value.strip().split(":")
        return time(int(hour_str), int(minute_str))
    except (AttributeError, ValueError) as e:
        raise ConfigError(f"Invalid clock time {value!r}, expected HH:MM") from e


DEFAULT_POLICIES: dict[AgeGroup, AgeGroupPolicy] = {
    AgeGroup.TODDLER: AgeGroupPolicy(
        AgeGroup.TODDLER, 45, time(20, 0), True, "Toddler Group (1-3 years)"
    ),
    AgeGroup.PRESCHOOL: AgeGroupPolicy(
        AgeGroup.PRESCHOOL, 60, time(20, 30), True, "Preschool Group (4-6 years)"
    ),
    AgeGroup.EARLY_ELEMENTARY: AgeGroupPolicy(
        AgeGroup.EARLY_ELEMENTARY, 90, time(21, 0), True, "Early Elementary (7-9 years)"
    ),
    AgeGroup.LATE_ELEMENTARY: AgeGroupPolicy(
        AgeGroup.LATE_ELEMENTARY, 120, time(21, 30), True, "Late Elementary (10-12 years)"
    ),
    AgeGroup.MIDDLE_SCHOOL: AgeGroupPolicy(
        AgeGroup.MIDDLE_SCHOOL, 150, time(22, 0), True, "Middle School (13-15 years)"
    ),
    AgeGroup.ADULTS: AgeGroupPolicy(
        AgeGroup.ADULTS, 0, time(0, 0), False, "Adult (16+ years)"
    ),
}
