"""Tests for telemetry refresh, caching and fallback."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from wsus_gateway.models.telemetry import DatabaseMetrics, EnvironmentStats, TelemetrySnapshot
from wsus_gateway.services.storage import MemoryKeyValueStore, SnapshotStore
from wsus_gateway.services.telemetry import TelemetryService


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 10, 19, 8, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return SnapshotStore(MemoryKeyValueStore())


def _telemetry(runtime, store, clock, **kwargs) -> TelemetryService:
    return TelemetryService(runtime.wsus, runtime.sql, store, runtime.activity, clock=clock, **kwargs)


class TestRefresh:
    async def test_populates_snapshot(self, runtime, store, clock):
        telemetry = _telemetry(runtime, store, clock)
        snap = await telemetry.refresh()
        assert snap.stats.is_installed
        assert snap.stats.total_computers == 3
        assert snap.stats.db.current_size_gb == pytest.approx(4.37)
        assert len(snap.computers) == 3
        assert snap.refreshed_at == clock.now
        assert not snap.from_cache
        assert store.load().stats.total_computers == 3

    async def test_concurrent_calls_share_one_refresh(self, runtime, store, clock, mock_channel):
        telemetry = _telemetry(runtime, store, clock)
        mock_channel.delay = 0.02
        await asyncio.gather(*(telemetry.refresh() for _ in range(5)))
        stats_calls = [c for c in mock_channel.sent_commands if "TotalComputers" in c]
        assert len(stats_calls) == 1

    async def test_sequential_calls_refresh_again(self, runtime, store, clock, mock_channel):
        telemetry = _telemetry(runtime, store, clock)
        await telemetry.refresh()
        await telemetry.refresh()
        stats_calls = [c for c in mock_channel.sent_commands if "TotalComputers" in c]
        assert len(stats_calls) == 2

    async def test_module_checked_once(self, runtime, store, clock, mock_channel):
        telemetry = _telemetry(runtime, store, clock)
        await telemetry.refresh()
        await telemetry.refresh()
        checks = [c for c in mock_channel.sent_commands if "Get-Module -ListAvailable" in c]
        assert len(checks) == 1

    async def test_services_unavailable(self, runtime, store, clock, mock_channel):
        mock_channel.add_response("Get-Module -ListAvailable", "")
        telemetry = _telemetry(runtime, store, clock)
        snap = await telemetry.refresh()
        assert not snap.stats.is_installed
        assert not any("TotalComputers" in c for c in mock_channel.sent_commands)
        assert any("data will remain empty" in e.message for e in runtime.activity.entries())

    async def test_snapshot_is_a_copy(self, runtime, store, clock):
        telemetry = _telemetry(runtime, store, clock)
        await telemetry.refresh()
        telemetry.snapshot().computers.clear()
        assert len(telemetry.snapshot().computers) == 3


class TestFallback:
    async def _fail_next_refresh(self, telemetry, mock_channel):
        telemetry.refresh_timeout = 0.01
        mock_channel.delay = 0.2
        return await telemetry.refresh()

    async def test_air_gap_keeps_old_cache(self, runtime, store, clock, mock_channel):
        telemetry = _telemetry(runtime, store, clock, air_gap=True)
        await telemetry.refresh()
        clock.now += timedelta(days=3)
        snap = await self._fail_next_refresh(telemetry, mock_channel)
        assert snap.stats.is_installed
        assert snap.from_cache
        assert any("Using cached data" in e.message for e in runtime.activity.entries())

    async def test_fresh_cache_kept(self, runtime, store, clock, mock_channel):
        telemetry = _telemetry(runtime, store, clock, air_gap=False)
        await telemetry.refresh()
        clock.now += timedelta(minutes=30)
        snap = await self._fail_next_refresh(telemetry, mock_channel)
        assert snap.stats.is_installed
        assert snap.from_cache

    async def test_stale_cache_marks_not_installed(self, runtime, store, clock, mock_channel):
        telemetry = _telemetry(runtime, store, clock, air_gap=False)
        await telemetry.refresh()
        clock.now += timedelta(hours=2)
        snap = await self._fail_next_refresh(telemetry, mock_channel)
        assert not snap.stats.is_installed

    async def test_no_cache(self, runtime, store, clock, mock_channel):
        telemetry = _telemetry(runtime, store, clock)
        await telemetry.services_available()
        snap = await self._fail_next_refresh(telemetry, mock_channel)
        assert not snap.stats.is_installed
        assert any("Error refreshing telemetry" in e.message for e in runtime.activity.entries())


class TestCache:
    async def test_loaded_on_start(self, runtime, store, clock):
        store.persist(
            TelemetrySnapshot(
                stats=EnvironmentStats(total_computers=7, is_installed=True),
                refreshed_at=clock.now - timedelta(minutes=5),
            )
        )
        telemetry = _telemetry(runtime, store, clock)
        snap = telemetry.snapshot()
        assert snap.from_cache
        assert snap.stats.total_computers == 7
        assert telemetry.cache_age() == timedelta(minutes=5)

    async def test_update_db_persists(self, runtime, store, clock):
        telemetry = _telemetry(runtime, store, clock)
        telemetry.update_db(DatabaseMetrics(current_size_gb=2.5, instance_name="x"))
        assert telemetry.snapshot().stats.db.current_size_gb == 2.5
        assert store.load().stats.db.current_size_gb == 2.5

    async def test_no_age_without_refresh(self, runtime, clock):
        assert _telemetry(runtime, None, clock).cache_age() is None
