"""Periodic eviction of idle thread pages.

Fires on a cron schedule (default: every 5 hours on the hour, Tokyo time),
independently of message traffic, and asks the registry to close pages older
than the TTL.
"""
from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime
from typing import Callable
from zoneinfo import ZoneInfo

from croniter import croniter

from nbrelay.registry import SessionRegistry

log = logging.getLogger(__name__)

DEFAULT_TTL_MS = 12 * 60 * 60 * 1000


class SessionReaper:
    """Run SessionRegistry.evict_if_idle on a cron schedule."""

    def __init__(
        self,
        registry: SessionRegistry,
        ttl_ms: float = DEFAULT_TTL_MS,
        cron: str = "0 */5 * * *",
        timezone: str = "Asia/Tokyo",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.registry = registry
        self.ttl_ms = ttl_ms
        self.cron = cron
        self.tz = ZoneInfo(timezone)
        self._clock = clock
        self._running = False
        self._task: asyncio.Task | None = None

    def start(self) -> None:
        self._running = True
        self._task = asyncio.get_running_loop().create_task(self._run())

    def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            self._task = None

    def seconds_until_next(self) -> float:
        now = datetime.fromtimestamp(self._clock(), self.tz)
        nxt = croniter(self.cron, now).get_next(datetime)
        return max((nxt - now).total_seconds(), 0.0)

    async def tick(self) -> list[str]:
        """Run one sweep.  Never raises; logs only when something was evicted."""
        try:
            evicted = await self.registry.evict_if_idle(self._clock() * 1000, self.ttl_ms)
        except Exception:
            log.exception("Session sweep failed")
            return []
        if evicted:
            log.info(
                "Evicted %d idle session(s): %s (%d live)",
                len(evicted), ", ".join(evicted), self.registry.size(),
            )
        return evicted

    async def _run(self) -> None:
        while self._running:
            await asyncio.sleep(self.seconds_until_next())
            await self.tick()
