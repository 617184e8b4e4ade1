"""Thread-id → browser page registry.

Each Slack thread (identified by its root ``ts``) owns one page in the shared
context.  The registry is the only owner of those pages: it opens them on
first use and closes them on eviction.

Concurrency: message handling is sequential, but the reaper runs on its own
timer in the same event loop.  A per-key ``asyncio.Lock`` serialises
everything done to one thread's page: creation, a query running on it
(``session()``), and eviction.  A sweep therefore waits for an in-flight
query instead of closing the page under it.  Map reads and writes happen
between awaits on the single loop, so the map itself needs no lock.
"""
from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
import math
import time
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable

from nbrelay.surface import AutomationSurface

log = logging.getLogger(__name__)


class IdlePolicy(enum.Enum):
    CREATED = "created"  # age measured from the thread ts; reuse does not extend it
    LAST_ACCESS = "last_access"  # age measured from the last get_or_create


def parse_epoch_seconds(thread_id: str) -> float:
    """Parse a Slack ts such as ``"1699999999.123456"`` into epoch seconds.

    Raises ValueError for anything that is not a finite number.
    """
    value = float(thread_id)
    if not math.isfinite(value):
        raise ValueError(f"Thread id is not a finite timestamp: {thread_id!r}")
    return value


def _now_ms() -> float:
    return time.time() * 1000


@dataclass
class Session:
    thread_id: str
    surface: AutomationSurface
    last_used_ms: float = field(default_factory=_now_ms)

    def idle_since_ms(self, policy: IdlePolicy) -> float:
        if policy is IdlePolicy.LAST_ACCESS:
            return self.last_used_ms
        return parse_epoch_seconds(self.thread_id) * 1000


@dataclass
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class SessionRegistry:
    """Owns one Session per thread root id."""

    def __init__(
        self,
        open_surface: Callable[[], Awaitable[AutomationSurface]],
        entry_url: str,
        idle_policy: IdlePolicy = IdlePolicy.CREATED,
        clock: Callable[[], float] = _now_ms,
    ) -> None:
        self._open_surface = open_surface
        self.entry_url = entry_url
        self.idle_policy = idle_policy
        self._clock = clock
        self._sessions: dict[str, Session] = {}
        self._locks: dict[str, _KeyLock] = {}

    @contextlib.asynccontextmanager
    async def _hold(self, thread_id: str) -> AsyncIterator[None]:
        # Entries live only while someone holds or waits on them.
        entry = self._locks.get(thread_id)
        if entry is None:
            entry = self._locks[thread_id] = _KeyLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[thread_id]

    # -- Lookup / creation -----------------------------------------------------

    async def get_or_create(self, thread_id: str) -> Session:
        """Return the thread's Session, opening and navigating a new page if needed."""
        async with self._hold(thread_id):
            return await self._get_or_create(thread_id)

    @contextlib.asynccontextmanager
    async def session(self, thread_id: str) -> AsyncIterator[Session]:
        """Hold the thread's page for the duration of the block.

        Eviction of the same thread waits until the block exits.  If the block
        raises, the page is closed and forgotten before the error propagates.
        """
        async with self._hold(thread_id):
            session = await self._get_or_create(thread_id)
            try:
                yield session
            except BaseException:
                await self._drop(thread_id)
                raise

    async def _get_or_create(self, thread_id: str) -> Session:
        # Caller holds the key lock.
        session = self._sessions.get(thread_id)
        if session is not None:
            session.last_used_ms = self._clock()
            log.info("Reusing page for thread %s", thread_id)
            return session

        surface = await self._open_surface()
        try:
            await surface.navigate(self.entry_url)
            await surface.wait_settled()
        except BaseException:
            await _close_quietly(thread_id, surface)
            raise

        session = Session(thread_id, surface, last_used_ms=self._clock())
        self._sessions[thread_id] = session
        log.info("Opened page for thread %s (%d live)", thread_id, len(self._sessions))
        return session

    def get(self, thread_id: str) -> Session | None:
        return self._sessions.get(thread_id)

    def ids(self) -> list[str]:
        return list(self._sessions)

    def size(self) -> int:
        return len(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, thread_id: object) -> bool:
        return thread_id in self._sessions

    # -- Eviction --------------------------------------------------------------

    async def remove(self, thread_id: str) -> bool:
        """Close and forget the thread's page.  Returns False if it was not registered."""
        async with self._hold(thread_id):
            return await self._drop(thread_id)

    async def evict_if_idle(self, now_ms: float, ttl_ms: float) -> list[str]:
        """Evict every session idle for strictly longer than *ttl_ms*.

        Entries whose id cannot be parsed are skipped with a warning; a failure
        on one entry never stops the sweep.
        """
        evicted: list[str] = []
        for thread_id in list(self._sessions):
            try:
                if await self._evict_one(thread_id, now_ms, ttl_ms):
                    evicted.append(thread_id)
            except ValueError:
                log.warning("Skipping session with malformed thread id %r", thread_id)
            except Exception:
                log.exception("Eviction check failed for thread %s", thread_id)
        return evicted

    async def _evict_one(self, thread_id: str, now_ms: float, ttl_ms: float) -> bool:
        async with self._hold(thread_id):
            session = self._sessions.get(thread_id)
            if session is None:
                return False
            elapsed = now_ms - session.idle_since_ms(self.idle_policy)
            if elapsed <= ttl_ms:
                return False
            return await self._drop(thread_id)

    async def _drop(self, thread_id: str) -> bool:
        # Caller holds the key lock.
        session = self._sessions.pop(thread_id, None)
        if session is None:
            return False
        await _close_quietly(thread_id, session.surface)
        log.info("Closed page for thread %s (%d live)", thread_id, len(self._sessions))
        return True

    async def close_all(self) -> None:
        for thread_id in list(self._sessions):
            await self.remove(thread_id)

    def lock_count(self) -> int:
        return len(self._locks)


async def _close_quietly(thread_id: str, surface: AutomationSurface) -> None:
    try:
        await surface.close()
    except Exception:
        log.warning("Failed to close page for thread %s", thread_id, exc_info=True)
