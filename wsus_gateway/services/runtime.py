"""Wires every gateway component from one :class:`Settings` object."""

from __future__ import annotations

from typing import Any

from wsus_gateway.config import Settings, settings
from wsus_gateway.services.activity_log import ActivityLog
from wsus_gateway.services.channel import PrivilegedChannel, build_channel
from wsus_gateway.services.events import EventBus
from wsus_gateway.services.gateway import ExecutionGateway
from wsus_gateway.services.jobs import JobManager
from wsus_gateway.services.maintenance import MaintenanceService
from wsus_gateway.services.rate_limiter import CommandRateLimiter
from wsus_gateway.services.sql_service import SqlService
from wsus_gateway.services.storage import SnapshotStore, build_snapshot_store
from wsus_gateway.services.telemetry import TelemetryService
from wsus_gateway.services.terminal import CommandRouter
from wsus_gateway.services.wsus_service import WsusService
from wsus_gateway.utils.logging import get_logger

log = get_logger(__name__)


class GatewayRuntime:
    """Owns the process-wide components; one per application instance."""

    def __init__(
        self,
        cfg: Settings | None = None,
        *,
        channel: PrivilegedChannel | None = None,
        snapshots: SnapshotStore | None = None,
    ) -> None:
        self.settings = cfg or settings
        self.events = EventBus()
        self.activity = ActivityLog(self.settings.max_log_entries)
        self.channel = channel or build_channel(self.settings)

        self.gateway = ExecutionGateway(
            self.channel,
            events=self.events,
            activity=self.activity,
            default_timeout=self.settings.default_timeout_seconds,
        )
        self.rate_limiter = CommandRateLimiter(
            self.settings.max_commands_per_minute,
            self.settings.rate_limit_window_seconds,
        )
        self.jobs = JobManager(
            self.events,
            max_jobs=self.settings.max_concurrent_jobs,
            max_duration=self.settings.max_job_duration_seconds,
            interval=self.settings.job_progress_interval_seconds,
            completion_grace=self.settings.job_completion_grace_seconds,
        )
        self.sql = SqlService(self.gateway, self.settings, self.activity)
        self.wsus = WsusService(self.gateway, self.settings, self.activity)
        self.telemetry = TelemetryService(
            self.wsus,
            self.sql,
            snapshots or build_snapshot_store(self.settings),
            self.activity,
            refresh_timeout=self.settings.refresh_timeout_seconds,
            air_gap=self.settings.wsus_air_gap,
        )
        self.maintenance = MaintenanceService(
            self.jobs, self.sql, self.wsus, self.telemetry, self.activity,
        )
        self.terminal = CommandRouter(
            self.rate_limiter, self.activity, self.telemetry, self.maintenance,
        )

        self.events.subscribe("job.created", self._on_job_created)
        self.events.subscribe("job.completed", self._on_job_completed)
        self.events.subscribe("job.failed", self._on_job_failed)

    # ── job transitions -> activity log ───────────────────────────────

    def _on_job_created(self, event: dict[str, Any]) -> None:
        self.activity.info(f"Job started: {event['job']['name']}", job_id=event["job"]["id"])

    def _on_job_completed(self, event: dict[str, Any]) -> None:
        self.activity.info(f"Job completed: {event['job']['name']}", job_id=event["job"]["id"])

    def _on_job_failed(self, event: dict[str, Any]) -> None:
        self.activity.error(f"Job failed: {event['job']['name']}", job_id=event["job"]["id"])

    async def close(self) -> None:
        self.jobs.shutdown()
        await self.channel.close()
        log.info("runtime.closed")
