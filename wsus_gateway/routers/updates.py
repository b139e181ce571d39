"""WSUS synchronization and update approval endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from wsus_gateway.auth import get_runtime, require_api_key
from wsus_gateway.errors import CommandValidationError
from wsus_gateway.models.updates import (
    ApprovalResult,
    ApproveUpdatesRequest,
    DeclineResult,
    DeclineUpdatesRequest,
    PendingUpdate,
    SyncResult,
    SyncStatus,
)
from wsus_gateway.services.runtime import GatewayRuntime

router = APIRouter(prefix="/wsus", tags=["updates"], dependencies=[Depends(require_api_key)])


def _require_channel(runtime: GatewayRuntime) -> None:
    if not runtime.channel.is_available:
        raise HTTPException(status_code=503, detail="Privileged execution channel is not available")


@router.post("/sync", response_model=SyncResult)
async def sync_now(runtime: GatewayRuntime = Depends(get_runtime)) -> SyncResult:
    """Start a WSUS synchronization with the upstream server."""
    _require_channel(runtime)
    return await runtime.wsus.sync_now()


@router.get("/sync/status", response_model=SyncStatus)
async def sync_status(runtime: GatewayRuntime = Depends(get_runtime)) -> SyncStatus:
    _require_channel(runtime)
    return await runtime.wsus.get_sync_status()


@router.get("/updates/pending", response_model=list[PendingUpdate])
async def pending_updates(runtime: GatewayRuntime = Depends(get_runtime)) -> list[PendingUpdate]:
    """Updates still waiting for an approve or decline decision."""
    _require_channel(runtime)
    return await runtime.wsus.get_pending_updates()


@router.post("/updates/approve", response_model=ApprovalResult)
async def approve_updates(
    req: ApproveUpdatesRequest,
    runtime: GatewayRuntime = Depends(get_runtime),
) -> ApprovalResult:
    _require_channel(runtime)
    try:
        return await runtime.wsus.approve_updates(req.update_ids, req.target_group)
    except CommandValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.message)


@router.post("/updates/decline", response_model=DeclineResult)
async def decline_updates(
    req: DeclineUpdatesRequest,
    runtime: GatewayRuntime = Depends(get_runtime),
) -> DeclineResult:
    _require_channel(runtime)
    try:
        return await runtime.wsus.decline_updates(req.update_ids)
    except CommandValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.message)
