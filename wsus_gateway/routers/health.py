"""Health-check endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from wsus_gateway import __version__
from wsus_gateway.auth import get_runtime, require_api_key
from wsus_gateway.models.responses import HealthResponse, WsusHealthResponse
from wsus_gateway.services.runtime import GatewayRuntime

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def service_health() -> HealthResponse:
    """Basic liveness probe (no auth required)."""
    return HealthResponse(status="ok", version=__version__)


@router.get(
    "/wsus/health",
    response_model=WsusHealthResponse,
    dependencies=[Depends(require_api_key)],
)
async def wsus_health(runtime: GatewayRuntime = Depends(get_runtime)) -> WsusHealthResponse:
    """Check the privileged channel and the WSUS / SQL / IIS services."""
    if not runtime.channel.is_available:
        return WsusHealthResponse(
            channel_available=False,
            error="Privileged execution channel is not available",
        )

    health = await runtime.wsus.health_check()
    return WsusHealthResponse(
        channel_available=True,
        healthy=health.healthy,
        wsus_reachable=health.wsus_reachable,
        services=health.services,
        issues=health.issues,
    )
