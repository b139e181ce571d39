"""API key authentication and runtime dependencies."""

from __future__ import annotations

from fastapi import HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader

from wsus_gateway.services.runtime import GatewayRuntime

_api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def get_runtime(request: Request) -> GatewayRuntime:
    return request.app.state.runtime


async def require_api_key(
    request: Request,
    api_key: str | None = Security(_api_key_header),
) -> str:
    """FastAPI dependency that enforces X-API-Key header.

    If WSUS_API_KEY is blank the check is skipped (dev convenience).
    """
    expected = get_runtime(request).settings.wsus_api_key
    if not expected:
        return "no-key-configured"
    if api_key is None or api_key != expected:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )
    return api_key
