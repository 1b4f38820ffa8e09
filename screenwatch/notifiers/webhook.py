"""Webhook notifier for lock signals and session ends.

Engine callbacks are synchronous, so they hand notifications to
`dispatch_lock` / `dispatch_session_end`, which schedule the post on the
running loop. `close()` waits for those posts before shutting the client.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import httpx

from screenwatch.models import EndReason, LockReason, SessionSnapshot

logger = logging.getLogger(__name__)

LOCK_TITLES = {
    LockReason.SCREEN_TIME_EXCEEDED: "Screen time limit reached",
    LockReason.BEDTIME: "Bedtime reached",
}


@dataclass
class WebhookConfig:
    """Configuration for the webhook notifier."""
    url: str
    enabled: bool = True
    timeout_seconds: float = 10.0


class WebhookNotifier:
    """Async JSON webhook notifier (Home Assistant, ntfy, Slack relays...)."""

    def __init__(
        self,
        config: WebhookConfig,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.config = config
        self._client = client
        self._pending: set[asyncio.Task] = set()

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.config.timeout_seconds)
        return self._client

    async def flush(self) -> None:
        """Wait for every dispatched notification to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        await self.flush()
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    def _format_lock(
        self,
        reason: LockReason,
        snapshot: Optional[SessionSnapshot],
        raised_at: datetime,
    ) -> dict:
        payload: dict = {
            "event": "lock_required",
            "reason": reason.value,
            "title": LOCK_TITLES.get(reason, "Device locked"),
            "ts": int(raised_at.timestamp()),
        }
        if snapshot is not None:
            payload["session"] = {
                "id": snapshot.id,
                "age_group": snapshot.age_group.value,
                "elapsed_minutes": snapshot.elapsed_minutes,
                "limit_minutes": snapshot.limit_minutes,
                "bedtime": snapshot.bedtime.strftime("%H:%M"),
            }
        return payload

    def _format_session_end(
        self,
        snapshot: SessionSnapshot,
        reason: EndReason,
        ended_at: datetime,
    ) -> dict:
        return {
            "event": "session_ended",
            "reason": reason.value,
            "ts": int(ended_at.timestamp()),
            "session": {
                "id": snapshot.id,
                "age_group": snapshot.age_group.value,
                "started_at": snapshot.started_at.isoformat(),
                "elapsed_minutes": snapshot.elapsed_minutes,
                "locked": snapshot.lock_episode_raised,
            },
        }

    async def _post(self, payload: dict) -> bool:
        if not self.config.enabled:
            return False

        try:
            client = await self._get_client()
            resp = await client.post(self.config.url, json=payload)

            if 200 <= resp.status_code < 300:
                logger.debug(f"Webhook notification sent: {payload['event']}")
                return True
            else:
                logger.warning(f"Webhook failed: {resp.status_code} - {resp.text}")
                return False

        except httpx.TimeoutException:
            logger.warning("Webhook timeout")
            return False
        except Exception as e:
            logger.warning(f"Webhook error: {e}")
            return False

    async def send_lock(
        self,
        reason: LockReason,
        snapshot: Optional[SessionSnapshot],
        raised_at: datetime,
    ) -> bool:
        """Send a lock notification. Returns True if sent successfully."""
        return await self._post(self._format_lock(reason, snapshot, raised_at))

    async def send_session_end(
        self,
        snapshot: SessionSnapshot,
        reason: EndReason,
        ended_at: datetime,
    ) -> bool:
        """Send a session-ended notification. Returns True if sent successfully."""
        return await self._post(self._format_session_end(snapshot, reason, ended_at))

    def _dispatch(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    def dispatch_lock(
        self,
        reason: LockReason,
        snapshot: Optional[SessionSnapshot],
        raised_at: datetime,
    ) -> asyncio.Task:
        """Schedule a lock notification from synchronous code."""
        return self._dispatch(self.send_lock(reason, snapshot, raised_at))

    def dispatch_session_end(
        self,
        snapshot: SessionSnapshot,
        reason: EndReason,
        ended_at: datetime,
    ) -> asyncio.Task:
        """Schedule a session-ended notification from synchronous code."""
        return self._dispatch(self.send_session_end(snapshot, reason, ended_at))
