"""Unit tests for nbrelay.reaper.SessionReaper."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from nbrelay.reaper import DEFAULT_TTL_MS, SessionReaper
from nbrelay.registry import SessionRegistry
from tests.conftest import ENTRY_URL
from tests.helpers import FakeSurface, SurfaceFactory

T0 = 1_700_000_000.0


@pytest.fixture
def registry(surfaces: SurfaceFactory) -> SessionRegistry:
    return SessionRegistry(surfaces, ENTRY_URL)


async def test_tick_evicts_sessions_older_than_ttl(registry):
    await registry.get_or_create(str(T0))
    await registry.get_or_create(str(T0 + 3 * 3600))
    reaper = SessionReaper(registry, clock=lambda: T0 + 13 * 3600)

    assert await reaper.tick() == [str(T0)]
    assert registry.ids() == [str(T0 + 3 * 3600)]


async def test_default_ttl_is_twelve_hours():
    assert DEFAULT_TTL_MS == 12 * 60 * 60 * 1000


async def test_tick_without_evictions_logs_nothing(registry, caplog):
    await registry.get_or_create(str(T0))
    reaper = SessionReaper(registry, clock=lambda: T0 + 60)
    with caplog.at_level(logging.INFO, logger="nbrelay.reaper"):
        assert await reaper.tick() == []
    assert [r for r in caplog.records if r.name == "nbrelay.reaper"] == []


async def test_tick_logs_evictions(registry, caplog):
    await registry.get_or_create(str(T0))
    reaper = SessionReaper(registry, clock=lambda: T0 + 24 * 3600)
    with caplog.at_level(logging.INFO, logger="nbrelay.reaper"):
        await reaper.tick()
    assert any("Evicted 1 idle session" in r.getMessage() for r in caplog.records)


async def test_one_bad_entry_does_not_abort_sweep():
    surfaces = iter([
        FakeSurface(),
        FakeSurface(close_error=RuntimeError("boom")),
        FakeSurface(),
    ])

    async def opener():
        return next(surfaces)

    registry = SessionRegistry(opener, ENTRY_URL)
    await registry.get_or_create("garbage")
    await registry.get_or_create(str(T0))
    await registry.get_or_create(str(T0 + 1))
    reaper = SessionReaper(registry, clock=lambda: T0 + 24 * 3600)

    assert await reaper.tick() == [str(T0), str(T0 + 1)]
    assert registry.ids() == ["garbage"]


async def test_tick_swallows_registry_failure():
    class BrokenRegistry:
        async def evict_if_idle(self, now_ms, ttl_ms):
            raise RuntimeError("unexpected")

        def size(self):
            return 0

    reaper = SessionReaper(BrokenRegistry())
    assert await reaper.tick() == []


def test_next_fire_follows_cron_in_timezone(registry):
    tokyo = ZoneInfo("Asia/Tokyo")
    now = datetime(2024, 1, 1, 4, 30, tzinfo=tokyo).timestamp()
    reaper = SessionReaper(registry, cron="0 */5 * * *", timezone="Asia/Tokyo", clock=lambda: now)
    # Next slot after 04:30 is 05:00 Tokyo time.
    assert reaper.seconds_until_next() == pytest.approx(30 * 60)


async def test_start_and_stop(registry):
    reaper = SessionReaper(registry, cron="0 0 1 1 *")
    reaper.start()
    assert reaper._task is not None
    task = reaper._task
    reaper.stop()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert reaper._task is None
