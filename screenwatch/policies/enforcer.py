"""Policy enforcement for the active session.

Evaluates the session against its age group's screen-time budget and
bedtime on every tick, and raises a lock signal once per violation episode.
"""

import logging
from datetime import datetime
from typing import Optional

from screenwatch.models import LockReason, Session

logger = logging.getLogger(__name__)


class PolicyEnforcer:
    """Decides when the active session has to be locked.

    Rules, first match wins:
    1. Budget exhausted (limit > 0 and elapsed >= limit)
    2. Wall-clock time of day at or past bedtime
    """

    def check(self, session: Session, now: datetime) -> Optional[LockReason]:
        """Return the current violation, if any, without touching the session."""
        if session.limit_minutes > 0 and session.elapsed_minutes >= session.limit_minutes:
            return LockReason.SCREEN_TIME_EXCEEDED

        # Only the time of day matters here, not how long the session ran
        if now.time() >= session.bedtime:
            return LockReason.BEDTIME

        return None

    def evaluate(self, session: Session, now: datetime) -> Optional[LockReason]:
        """Evaluate an active session and decide whether to signal a lock.

        Args:
            session: The active session (mutated: lock flag and reason)
            now: Current local time

        Returns:
            The lock reason the first time a violation is seen in this
            session, None otherwise (no violation, or already signaled)
        """
        if not session.is_active:
            return None

        reason = self.check(session, now)
        if reason is None:
            return None

        if session.lock_episode_raised:
            logger.debug(
                f"Lock already raised for session {session.id} "
                f"({session.lock_reason.value if session.lock_reason else '?'}), suppressing"
            )
            return None

        session.lock_episode_raised = True
        session.lock_reason = reason
        logger.info(
            f"Lock required for session {session.id} ({session.age_group.value}): "
            f"{reason.value} at {session.elapsed_minutes}/{session.limit_minutes} min"
        )
        return reason
