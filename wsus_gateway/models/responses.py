"""Common API request / response models."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field

from wsus_gateway.models.jobs import Job
from wsus_gateway.models.telemetry import ServiceState
from wsus_gateway.services.activity_log import LogEntry


class HealthResponse(BaseModel):
    status: str
    version: str


class WsusHealthResponse(BaseModel):
    channel_available: bool
    healthy: bool = False
    wsus_reachable: bool = False
    services: list[ServiceState] = []
    issues: list[str] = []
    error: Optional[str] = None


class PowerShellRequest(BaseModel):
    command: str
    timeout: Optional[float] = Field(default=None, gt=0, le=600)


class PowerShellResponse(BaseModel):
    stdout: str
    stderr: str
    exit_code: int
    success: bool


class SqlRequest(BaseModel):
    query: str
    sa_password: Optional[str] = None
    timeout: Optional[float] = Field(default=None, gt=0, le=600)


class SqlValidationResponse(BaseModel):
    valid: bool
    reason: Optional[str] = None


class SqlQueryResponse(BaseModel):
    rows: list[dict[str, Any]]
    count: int


class TerminalRequest(BaseModel):
    command: str


class TerminalResponse(BaseModel):
    logs: list[LogEntry]


class MaintenanceRequest(BaseModel):
    sa_password: Optional[str] = None


class JobResponse(BaseModel):
    job: Job


class ErrorResponse(BaseModel):
    detail: str
