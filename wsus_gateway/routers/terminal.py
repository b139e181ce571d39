"""Operator terminal endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from wsus_gateway.auth import get_runtime, require_api_key
from wsus_gateway.errors import CommandValidationError
from wsus_gateway.models.responses import TerminalRequest, TerminalResponse
from wsus_gateway.services.runtime import GatewayRuntime

router = APIRouter(tags=["terminal"], dependencies=[Depends(require_api_key)])


@router.post("/terminal", response_model=TerminalResponse)
async def run_terminal_command(
    req: TerminalRequest,
    runtime: GatewayRuntime = Depends(get_runtime),
) -> TerminalResponse:
    """Dispatch one terminal line and return the log lines it produced."""
    mark = runtime.activity.mark()
    try:
        await runtime.terminal.dispatch(req.command)
    except CommandValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.message)
    return TerminalResponse(logs=runtime.activity.since(mark))
