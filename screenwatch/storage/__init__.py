"""Session history storage."""

from screenwatch.storage.db import SessionStore

__all__ = ["SessionStore"]
