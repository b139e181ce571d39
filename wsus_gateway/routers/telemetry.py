"""Environment telemetry endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from wsus_gateway.auth import get_runtime, require_api_key
from wsus_gateway.models.telemetry import TelemetrySnapshot
from wsus_gateway.services.runtime import GatewayRuntime

router = APIRouter(prefix="/telemetry", tags=["telemetry"], dependencies=[Depends(require_api_key)])


@router.get("", response_model=TelemetrySnapshot)
async def get_snapshot(runtime: GatewayRuntime = Depends(get_runtime)) -> TelemetrySnapshot:
    return runtime.telemetry.snapshot()


@router.post("/refresh", response_model=TelemetrySnapshot)
async def refresh(runtime: GatewayRuntime = Depends(get_runtime)) -> TelemetrySnapshot:
    """Poll WSUS and SQL Server.  Concurrent calls share one refresh."""
    return await runtime.telemetry.refresh()
