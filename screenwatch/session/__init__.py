"""Session tracking."""

from screenwatch.session.manager import (
    DEFAULT_SILENCE_TIMEOUT,
    SessionEndHandler,
    SessionManager,
    SessionUpdateHandler,
)

__all__ = [
    "DEFAULT_SILENCE_TIMEOUT",
    "SessionEndHandler",
    "SessionManager",
    "SessionUpdateHandler",
]
