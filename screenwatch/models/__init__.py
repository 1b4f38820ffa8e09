"""Data models for screenwatch events and sessions."""

from screenwatch.models.events import (
    AgeGroup,
    ClassificationEvent,
    EndReason,
    Frame,
    LockReason,
    RawPrediction,
    Session,
    SessionSnapshot,
    SessionState,
)

__all__ = [
    "AgeGroup",
    "ClassificationEvent",
    "EndReason",
    "Frame",
    "LockReason",
    "RawPrediction",
    "Session",
    "SessionSnapshot",
    "SessionState",
]
