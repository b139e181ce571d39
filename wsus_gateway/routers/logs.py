"""Activity log endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response

from wsus_gateway.auth import get_runtime, require_api_key
from wsus_gateway.services.activity_log import LogEntry
from wsus_gateway.services.runtime import GatewayRuntime

router = APIRouter(prefix="/logs", tags=["logs"], dependencies=[Depends(require_api_key)])


@router.get("", response_model=list[LogEntry])
async def list_logs(runtime: GatewayRuntime = Depends(get_runtime)) -> list[LogEntry]:
    return runtime.activity.entries()


@router.delete("", status_code=204)
async def clear_logs(runtime: GatewayRuntime = Depends(get_runtime)) -> Response:
    runtime.activity.clear()
    return Response(status_code=204)
