"""WSUS environment telemetry models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field


class HealthStatus(str, Enum):
    healthy = "Healthy"
    warning = "Warning"
    critical = "Critical"
    unknown = "Unknown"

    @classmethod
    def parse(cls, value: str | None) -> HealthStatus:
        for member in cls:
            if value and value.strip().lower() == member.value.lower():
                return member
        return cls.unknown


class ServiceState(BaseModel):
    name: str
    status: Literal["Running", "Stopped", "Pending", "Unknown"] = "Unknown"
    type: Literal["WSUS", "SQL", "IIS"]
    last_check: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class DatabaseMetrics(BaseModel):
    current_size_gb: float = 0.0
    max_size_gb: float = 10.0  # SQL Express limit
    instance_name: str = ""
    content_path: str = "C:\\WSUS\\"
    last_backup: str = "Never"


class WsusComputer(BaseModel):
    id: str
    name: str = "Unknown"
    ip_address: str = "0.0.0.0"
    os: str = "Unknown OS"
    status: HealthStatus = HealthStatus.unknown
    last_sync: str = "Never"
    updates_needed: int = 0
    updates_installed: int = 0
    target_group: str = "Unassigned"


class EnvironmentStats(BaseModel):
    total_computers: int = 0
    healthy_computers: int = 0
    warning_computers: int = 0
    critical_computers: int = 0
    total_updates: int = 0
    security_updates_count: int = 0
    services: list[ServiceState] = Field(default_factory=list)
    db: DatabaseMetrics = Field(default_factory=DatabaseMetrics)
    is_installed: bool = False
    disk_free_gb: float = 0.0
    automation_status: Literal["Ready", "Not Set", "Running"] = "Not Set"

    def recalculate_from_computers(self, computers: list[WsusComputer]) -> None:
        """Overwrite the health counters from a computer inventory."""
        self.total_computers = len(computers)
        self.healthy_computers = sum(1 for c in computers if c.status == HealthStatus.healthy)
        self.warning_computers = sum(1 for c in computers if c.status == HealthStatus.warning)
        self.critical_computers = sum(1 for c in computers if c.status == HealthStatus.critical)


class TelemetrySnapshot(BaseModel):
    """The current view of the WSUS environment."""

    stats: EnvironmentStats = Field(default_factory=EnvironmentStats)
    computers: list[WsusComputer] = Field(default_factory=list)
    refreshed_at: Optional[datetime] = None
    from_cache: bool = False


class WsusHealth(BaseModel):
    """Result of the service / connectivity check on the WSUS host."""

    healthy: bool = False
    services: list[ServiceState] = Field(default_factory=list)
    wsus_reachable: bool = False
    issues: list[str] = Field(default_factory=list)
