"""SUSDB reindex and WSUS cleanup, run as tracked jobs."""

from __future__ import annotations

from wsus_gateway.errors import ExternalServiceError
from wsus_gateway.models.jobs import Job
from wsus_gateway.services.activity_log import ActivityLog
from wsus_gateway.services.jobs import JobManager
from wsus_gateway.services.sql_service import SqlService
from wsus_gateway.services.telemetry import TelemetryService
from wsus_gateway.services.wsus_service import WsusService
from wsus_gateway.utils.logging import get_logger

log = get_logger(__name__)

REINDEX_JOB = "SQL Index Defragmentation"
REINDEX_ESTIMATE = 5.0
CLEANUP_JOB = "Deep Cleanup Engine"
CLEANUP_ESTIMATE = 4.0
DECLINE_SUPERSEDED_JOB = "Superseded Update Decline"
DECLINE_SUPERSEDED_ESTIMATE = 6.0


class MaintenanceService:
    def __init__(
        self,
        jobs: JobManager,
        sql: SqlService,
        wsus: WsusService,
        telemetry: TelemetryService,
        activity: ActivityLog | None = None,
    ) -> None:
        self._jobs = jobs
        self._sql = sql
        self._wsus = wsus
        self._telemetry = telemetry
        self._activity = activity or ActivityLog()

    async def _require_services(self, action: str) -> None:
        if not await self._telemetry.services_available():
            message = f"WSUS services not available - {action} cannot be performed"
            self._activity.error(message)
            raise ExternalServiceError(message, service="wsus")

    # ── reindex ───────────────────────────────────────────────────────

    async def reindex(self, sa_password: str | None = None) -> None:
        await self._require_services("database reindex")
        try:
            await self._sql.reindex_database(sa_password)
        except ExternalServiceError as exc:
            self._activity.error(f"SQL reindex failed: {exc.message}")
            raise
        log.info("maintenance.reindex_completed")
        self._activity.info("SQL_SUCCESS: Index defragmentation completed.")

    def start_reindex(self, sa_password: str | None = None) -> Job:
        return self._jobs.start(REINDEX_JOB, REINDEX_ESTIMATE, lambda: self.reindex(sa_password))

    # ── cleanup ───────────────────────────────────────────────────────

    async def cleanup(self) -> None:
        await self._require_services("cleanup")
        if not await self._wsus.perform_cleanup():
            self._activity.error("WSUS cleanup failed.")
            raise ExternalServiceError("WSUS cleanup failed", service="wsus")

        metrics = await self._sql.get_database_metrics()
        if metrics is None:
            log.info("maintenance.cleanup_completed")
            self._activity.info("WSUS cleanup completed successfully.")
            return

        old_size = self._telemetry.snapshot().stats.db.current_size_gb
        self._telemetry.update_db(metrics)
        reclaimed = old_size - metrics.current_size_gb
        log.info("maintenance.cleanup_completed", reclaimed_gb=round(reclaimed, 2))
        self._activity.warn(f"SUSDB Optimization: Reclaimed {reclaimed:.2f} GB.")

    def start_cleanup(self) -> Job:
        return self._jobs.start(CLEANUP_JOB, CLEANUP_ESTIMATE, self.cleanup)

    # ── superseded updates ────────────────────────────────────────────

    async def decline_superseded(self) -> None:
        await self._require_services("declining superseded updates")
        result = await self._wsus.decline_superseded_updates()
        if result is None:
            self._activity.error("Declining superseded updates failed.")
            raise ExternalServiceError("Declining superseded updates failed", service="wsus")
        log.info("maintenance.superseded_declined", declined=result.declined, failed=result.failed)
        self._activity.info(
            f"Declined {result.declined} superseded update(s), {result.failed} error(s).",
        )

    def start_decline_superseded(self) -> Job:
        return self._jobs.start(
            DECLINE_SUPERSEDED_JOB, DECLINE_SUPERSEDED_ESTIMATE, self.decline_superseded,
        )
