"""Session and enforcement engine.

Ties the classifier gateway, session manager and policy enforcer together
behind a single asyncio lock, so a classification update and a tick
evaluation never interleave. Classification itself (slow inference) runs
outside the lock; only the resulting state change is serialized.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Optional

from screenwatch.classifier.gateway import ClassifierGateway
from screenwatch.models import (
    ClassificationEvent,
    EndReason,
    Frame,
    LockReason,
    RawPrediction,
    SessionSnapshot,
)
from screenwatch.policies.enforcer import PolicyEnforcer
from screenwatch.session.manager import SessionManager, SessionUpdateHandler
from screenwatch.storage.db import SessionStore

logger = logging.getLogger(__name__)

# Type alias for lock-required callbacks
LockHandler = Callable[[LockReason], None]


class MonitoringEngine:
    """Single-writer owner of the active session."""

    def __init__(
        self,
        gateway: ClassifierGateway,
        sessions: SessionManager,
        enforcer: Optional[PolicyEnforcer] = None,
        store: Optional[SessionStore] = None,
    ) -> None:
        """Initialize the engine.

        Args:
            gateway: Classifier gateway filtering raw predictions
            sessions: Session manager owning the active session
            enforcer: Policy enforcer (default: PolicyEnforcer())
            store: Optional history store for ended sessions and locks
        """
        self.gateway = gateway
        self.sessions = sessions
        self.enforcer = enforcer or PolicyEnforcer()
        self.store = store
        self._lock = asyncio.Lock()
        self._accepting = True
        self._lock_handlers: list[LockHandler] = []
        self._stats = {
            "frames": 0,
            "classifications": 0,
            "ticks": 0,
            "locks": 0,
            "discarded": 0,
        }

        if store is not None:
            sessions.subscribe_ended(store.record_session)

    @property
    def accepting(self) -> bool:
        """False once the engine has been shut down."""
        return self._accepting

    @property
    def current_session(self) -> Optional[SessionSnapshot]:
        return self.sessions.snapshot()

    @property
    def stats(self) -> dict[str, int]:
        return {**self._stats, **{f"samples_{k}": v for k, v in self.gateway.stats.items()}}

    def subscribe(self, handler: SessionUpdateHandler) -> None:
        """Register a session observer (snapshot, or None on session end)."""
        self.sessions.subscribe(handler)

    def on_lock_required(self, handler: LockHandler) -> None:
        """Register a lock-required handler."""
        self._lock_handlers.append(handler)

    def resume(self) -> None:
        """Accept events again after a shutdown."""
        self._accepting = True

    async def handle_frame(self, frame: Frame, observed_at: datetime) -> Optional[SessionSnapshot]:
        """Classify a captured frame and apply the result.

        Returns:
            Session snapshot if the frame produced an accepted classification
        """
        if not self._accepting:
            return None
        self._stats["frames"] += 1

        event = await self.gateway.classify_frame(frame, observed_at)
        if event is None:
            return None
        return await self.handle_event(event)

    async def handle_prediction(
        self,
        prediction: RawPrediction,
        observed_at: datetime,
    ) -> Optional[SessionSnapshot]:
        """Filter an already-computed prediction and apply it."""
        event = self.gateway.accept(prediction, observed_at)
        if event is None:
            return None
        return await self.handle_event(event)

    async def handle_event(self, event: ClassificationEvent) -> Optional[SessionSnapshot]:
        """Apply an accepted classification under the engine lock."""
        async with self._lock:
            if not self._accepting:
                # Capture resolved after shutdown; drop it
                logger.debug("Engine stopped, discarding classification")
                self._stats["discarded"] += 1
                return None
            self._stats["classifications"] += 1
            return self.sessions.on_classification(event)

    async def tick(self, now: datetime) -> Optional[LockReason]:
        """Advance session time and enforce policy.

        Returns:
            Lock reason if a lock was signaled on this tick
        """
        async with self._lock:
            if not self._accepting:
                return None
            self._stats["ticks"] += 1

            self.sessions.on_tick(now)
            session = self.sessions.current
            if session is None or not session.is_active:
                return None

            reason = self.enforcer.evaluate(session, now)
            if reason is None:
                return None

            self._stats["locks"] += 1
            # Observers saw the tick snapshot before the lock flag was set
            self.sessions.publish()

            if self.store is not None:
                try:
                    self.store.record_lock(session.snapshot(), reason, now)
                except Exception as e:
                    logger.error(f"Failed to record lock event: {e}")

            for handler in self._lock_handlers:
                try:
                    handler(reason)
                except Exception as e:
                    logger.error(f"Error in lock handler: {e}")

            return reason

    async def shutdown(self, now: datetime) -> None:
        """Stop accepting events and end the active session.

        Idempotent. Nothing mutates the session after this returns.
        """
        async with self._lock:
            if not self._accepting:
                return
            self._accepting = False
            self.sessions.end_session(EndReason.MONITORING_STOPPED, now)
