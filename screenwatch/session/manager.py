"""Session tracking for detected children.

Turns a stream of intermittent, possibly wrong classifications into a single
coherent usage session:

- First accepted classification starts a session
- Same age group again: the session continues (start time is kept)
- Different age group: the old session ends at once and a new one starts
- No accepted classification within the silence timeout: the next tick ends it

Elapsed time is always recomputed from the start time, never accumulated,
so missed or late ticks cannot make it drift.
"""

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Optional

from screenwatch.models import (
    AgeGroup,
    ClassificationEvent,
    EndReason,
    Session,
    SessionSnapshot,
    SessionState,
)
from screenwatch.policies.models import AgeGroupPolicy

logger = logging.getLogger(__name__)

DEFAULT_SILENCE_TIMEOUT = timedelta(minutes=5)

# Type aliases for subscriber callbacks
SessionUpdateHandler = Callable[[Optional[SessionSnapshot]], None]
SessionEndHandler = Callable[[SessionSnapshot, EndReason, datetime], None]


class SessionManager:
    """Owns the single active session.

    Not thread-safe on its own: callers serialize access (the monitoring
    engine holds one lock around every call).
    """

    def __init__(
        self,
        policies: dict[AgeGroup, AgeGroupPolicy],
        silence_timeout: timedelta = DEFAULT_SILENCE_TIMEOUT,
    ) -> None:
        """Initialize the session manager.

        Args:
            policies: Age-group policy table used for new sessions
            silence_timeout: Maximum gap between accepted classifications
        """
        self.policies = policies
        self.silence_timeout = silence_timeout
        self._session: Optional[Session] = None
        self._update_handlers: list[SessionUpdateHandler] = []
        self._end_handlers: list[SessionEndHandler] = []

    @property
    def current(self) -> Optional[Session]:
        """The active session, if any."""
        return self._session

    def snapshot(self) -> Optional[SessionSnapshot]:
        return self._session.snapshot() if self._session else None

    def subscribe(self, handler: SessionUpdateHandler) -> None:
        """Register an observer for every create/update/end transition.

        Observers receive a snapshot, or None when the session ended.
        """
        self._update_handlers.append(handler)

    def subscribe_ended(self, handler: SessionEndHandler) -> None:
        """Register a listener receiving the final snapshot of ended sessions."""
        self._end_handlers.append(handler)

    def on_classification(self, event: ClassificationEvent) -> SessionSnapshot:
        """Apply an accepted classification.

        Args:
            event: Accepted child classification

        Returns:
            Snapshot of the session the event was applied to
        """
        session = self._session

        if session is None:
            session = self._start_session(event)
        elif session.age_group != event.age_group:
            logger.info(
                f"Age group changed {session.age_group.value} -> "
                f"{event.age_group.value}, superseding session {session.id}"
            )
            self._end_session(session, EndReason.SUPERSEDED, event.observed_at)
            session = self._start_session(event)
        else:
            session.last_observed_at = max(session.last_observed_at, event.observed_at)
            session.confidence = event.confidence

        snapshot = session.snapshot()
        self._emit(snapshot)
        return snapshot

    def on_tick(self, now: datetime) -> Optional[SessionSnapshot]:
        """Recompute elapsed time and end the session on silence.

        Args:
            now: Current local time

        Returns:
            Updated snapshot, or None if there is no active session
            (including when this tick ended it)
        """
        session = self._session
        if session is None:
            return None

        elapsed = int((now - session.started_at).total_seconds() // 60)
        # Never move backwards, even if the clock does
        session.elapsed_minutes = max(session.elapsed_minutes, elapsed)

        silence = now - session.last_observed_at
        if silence > self.silence_timeout:
            logger.info(
                f"Session {session.id} timed out - no child detected for "
                f"{int(silence.total_seconds())}s"
            )
            self._end_session(session, EndReason.SILENCE_TIMEOUT, now)
            return None

        snapshot = session.snapshot()
        self._emit(snapshot)
        return snapshot

    def publish(self) -> Optional[SessionSnapshot]:
        """Re-send the current snapshot to observers after an outside change."""
        snapshot = self.snapshot()
        if snapshot is not None:
            self._emit(snapshot)
        return snapshot

    def end_session(self, reason: EndReason, now: datetime) -> Optional[SessionSnapshot]:
        """End the active session explicitly.

        Returns:
            Final snapshot of the ended session, or None if none was active
        """
        if self._session is None:
            return None
        return self._end_session(self._session, reason, now)

    def _start_session(self, event: ClassificationEvent) -> Session:
        policy = self.policies[event.age_group]
        session = Session(
            id=str(uuid.uuid4()),
            age_group=event.age_group,
            started_at=event.observed_at,
            last_observed_at=event.observed_at,
            limit_minutes=policy.limit_minutes,
            bedtime=policy.bedtime,
            confidence=event.confidence,
        )
        self._session = session
        logger.info(
            f"New session {session.id} for {event.age_group.value} "
            f"(limit {policy.limit_minutes} min, bedtime {policy.bedtime.strftime('%H:%M')})"
        )
        return session

    def _end_session(
        self,
        session: Session,
        reason: EndReason,
        ended_at: datetime,
    ) -> SessionSnapshot:
        session.state = SessionState.ENDING
        final = session.snapshot()
        for handler in self._end_handlers:
            try:
                handler(final, reason, ended_at)
            except Exception as e:
                logger.error(f"Error in session end handler: {e}")

        session.state = SessionState.ENDED
        self._session = None
        logger.info(
            f"Session {session.id} ended ({reason.value}) after "
            f"{session.elapsed_minutes} min"
        )
        self._emit(None)
        return final

    def _emit(self, snapshot: Optional[SessionSnapshot]) -> None:
        for handler in self._update_handlers:
            try:
                handler(snapshot)
            except Exception as e:
                logger.error(f"Error in session observer: {e}")
