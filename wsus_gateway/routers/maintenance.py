"""Maintenance endpoints.  Each starts a tracked job and returns at once."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from wsus_gateway.auth import get_runtime, require_api_key
from wsus_gateway.errors import JobValidationError
from wsus_gateway.models.responses import JobResponse, MaintenanceRequest
from wsus_gateway.services.runtime import GatewayRuntime

router = APIRouter(
    prefix="/maintenance",
    tags=["maintenance"],
    dependencies=[Depends(require_api_key)],
)


@router.post("/reindex", response_model=JobResponse, status_code=202)
async def reindex(
    req: MaintenanceRequest | None = None,
    runtime: GatewayRuntime = Depends(get_runtime),
) -> JobResponse:
    """Rebuild all SUSDB indexes."""
    try:
        job = runtime.maintenance.start_reindex(req.sa_password if req else None)
    except JobValidationError as exc:
        raise HTTPException(status_code=429, detail=exc.message)
    return JobResponse(job=job)


@router.post("/cleanup", response_model=JobResponse, status_code=202)
async def cleanup(runtime: GatewayRuntime = Depends(get_runtime)) -> JobResponse:
    """Run the WSUS server cleanup wizard."""
    try:
        job = runtime.maintenance.start_cleanup()
    except JobValidationError as exc:
        raise HTTPException(status_code=429, detail=exc.message)
    return JobResponse(job=job)


@router.post("/decline-superseded", response_model=JobResponse, status_code=202)
async def decline_superseded(runtime: GatewayRuntime = Depends(get_runtime)) -> JobResponse:
    """Decline every superseded update on the WSUS server."""
    try:
        job = runtime.maintenance.start_decline_superseded()
    except JobValidationError as exc:
        raise HTTPException(status_code=429, detail=exc.message)
    return JobResponse(job=job)
