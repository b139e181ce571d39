"""FastAPI application entry-point."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from wsus_gateway import __version__
from wsus_gateway.config import settings
from wsus_gateway.routers import (
    health,
    jobs,
    logs,
    maintenance,
    powershell,
    sql,
    telemetry,
    terminal,
    updates,
)
from wsus_gateway.services.runtime import GatewayRuntime
from wsus_gateway.utils.logging import get_logger, setup_logging

log = get_logger(__name__)


def create_app(runtime: GatewayRuntime | None = None) -> FastAPI:
    """Build the application.  A prebuilt *runtime* is used as-is (tests)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup / shutdown hooks."""
        if getattr(app.state, "runtime", None) is None:
            app.state.runtime = GatewayRuntime(settings)
        setup_logging(app.state.runtime.settings)
        log.info("app.started", channel=app.state.runtime.settings.wsus_channel)
        yield
        await app.state.runtime.close()

    app = FastAPI(
        title="WSUS Gateway",
        description="Privileged command gateway for WSUS administration",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.runtime = runtime

    app.include_router(health.router)
    app.include_router(powershell.router)
    app.include_router(sql.router)
    app.include_router(terminal.router)
    app.include_router(jobs.router)
    app.include_router(maintenance.router)
    app.include_router(telemetry.router)
    app.include_router(logs.router)
    app.include_router(updates.router)
    return app


app = create_app()
