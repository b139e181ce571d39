"""SUSDB query endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from wsus_gateway.auth import get_runtime, require_api_key
from wsus_gateway.models.responses import SqlQueryResponse, SqlRequest, SqlValidationResponse
from wsus_gateway.services.query_filter import validate_query
from wsus_gateway.services.runtime import GatewayRuntime

router = APIRouter(prefix="/sql", tags=["sql"], dependencies=[Depends(require_api_key)])


@router.post("/validate", response_model=SqlValidationResponse)
async def validate(req: SqlRequest) -> SqlValidationResponse:
    """Check a query against the allowlist without running it."""
    result = validate_query(req.query)
    return SqlValidationResponse(valid=result.valid, reason=result.reason)


@router.post("/query", response_model=SqlQueryResponse)
async def run_query(
    req: SqlRequest,
    runtime: GatewayRuntime = Depends(get_runtime),
) -> SqlQueryResponse:
    outcome = await runtime.sql.execute_query(req.query, req.sa_password, req.timeout)
    if outcome.rejected:
        raise HTTPException(status_code=403, detail=outcome.error)
    if not outcome.success:
        raise HTTPException(status_code=502, detail=outcome.error)
    return SqlQueryResponse(rows=outcome.rows, count=len(outcome.rows))
