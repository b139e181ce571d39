"""Whitelisted PowerShell execution endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from wsus_gateway.auth import get_runtime, require_api_key
from wsus_gateway.models.responses import PowerShellRequest, PowerShellResponse
from wsus_gateway.services.command_filter import check_command
from wsus_gateway.services.runtime import GatewayRuntime

router = APIRouter(tags=["powershell"], dependencies=[Depends(require_api_key)])


@router.post("/powershell", response_model=PowerShellResponse)
async def run_powershell(
    req: PowerShellRequest,
    runtime: GatewayRuntime = Depends(get_runtime),
) -> PowerShellResponse:
    """Run a whitelisted command through the execution gateway."""
    check = check_command(req.command)
    if not check:
        raise HTTPException(status_code=403, detail=check.reason)

    result = await runtime.gateway.execute(req.command, req.timeout)
    return PowerShellResponse(**result.model_dump())
