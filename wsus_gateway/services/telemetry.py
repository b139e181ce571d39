"""Environment telemetry with a single in-flight refresh."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from wsus_gateway.errors import GatewayError
from wsus_gateway.models.telemetry import DatabaseMetrics, TelemetrySnapshot
from wsus_gateway.services.activity_log import ActivityLog
from wsus_gateway.services.sql_service import SqlService
from wsus_gateway.services.storage import SnapshotStore
from wsus_gateway.services.wsus_service import WsusService
from wsus_gateway.utils.logging import get_logger

log = get_logger(__name__)

CACHE_MAX_AGE = timedelta(hours=1)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TelemetryService:
    """Owns the current :class:`TelemetrySnapshot`.

    Concurrent :meth:`refresh` calls share one underlying task.  When a
    refresh fails the previous data is kept if it is younger than an hour
    (or regardless of age in air-gap mode); otherwise the environment is
    reported as not installed.
    """

    def __init__(
        self,
        wsus: WsusService,
        sql: SqlService,
        store: SnapshotStore | None = None,
        activity: ActivityLog | None = None,
        *,
        refresh_timeout: float = 30.0,
        air_gap: bool = True,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._wsus = wsus
        self._sql = sql
        self._store = store
        self._activity = activity or ActivityLog()
        self.refresh_timeout = refresh_timeout
        self.air_gap = air_gap
        self._clock = clock
        self._refresh_task: Optional[asyncio.Task] = None
        self._services_available: Optional[bool] = None
        self._snapshot = TelemetrySnapshot()

        if store is not None:
            cached = store.load()
            if cached is not None:
                self._snapshot = cached
                log.info("telemetry.cache_loaded", computers=len(cached.computers))

    # ── state ─────────────────────────────────────────────────────────

    def snapshot(self) -> TelemetrySnapshot:
        return self._snapshot.model_copy(deep=True)

    def cache_age(self) -> Optional[timedelta]:
        if self._snapshot.refreshed_at is None:
            return None
        return self._clock() - self._snapshot.refreshed_at

    def update_db(self, metrics: DatabaseMetrics) -> None:
        self._snapshot.stats.db = metrics
        self._persist()

    def _persist(self) -> None:
        if self._store is not None:
            self._store.persist(self._snapshot)

    async def services_available(self) -> bool:
        """Whether the UpdateServices module is usable; checked once."""
        if self._services_available is None:
            self._services_available = await self._wsus.initialize()
        return self._services_available

    # ── refresh ───────────────────────────────────────────────────────

    async def refresh(self) -> TelemetrySnapshot:
        if self._refresh_task is None:
            self._refresh_task = asyncio.get_running_loop().create_task(self._refresh())
            self._refresh_task.add_done_callback(self._clear_refresh)
        else:
            log.debug("telemetry.refresh_joined")
        await asyncio.shield(self._refresh_task)
        return self.snapshot()

    def _clear_refresh(self, task: asyncio.Task) -> None:
        if self._refresh_task is task:
            self._refresh_task = None

    async def _refresh(self) -> None:
        self._activity.info("Polling infrastructure for fresh telemetry...")
        try:
            if not await self.services_available():
                self._activity.warn("WSUS services not available - data will remain empty")
                return

            stats, computers = await asyncio.wait_for(
                asyncio.gather(self._wsus.get_stats(), self._wsus.get_computers()),
                self.refresh_timeout,
            )
            if stats is not None:
                metrics = await self._sql.get_database_metrics()
                if metrics is not None:
                    stats.db = metrics
                self._snapshot.stats = stats
                self._snapshot.refreshed_at = self._clock()
                self._snapshot.from_cache = False
            if computers:
                self._snapshot.computers = computers
            log.info(
                "telemetry.refreshed",
                stats=stats is not None,
                computers=len(computers),
            )
            self._persist()
        except (asyncio.TimeoutError, GatewayError) as exc:
            message = str(exc) or "Refresh timeout"
            self._activity.error(f"Error refreshing telemetry: {message}")
            self._fall_back()

    def _fall_back(self) -> None:
        age = self.cache_age()
        if age is not None and (self.air_gap or age < CACHE_MAX_AGE):
            self._activity.warn("Using cached data due to refresh failure")
            self._snapshot.from_cache = True
        else:
            self._snapshot.stats.is_installed = False
