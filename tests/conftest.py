"""Shared pytest fixtures."""

from __future__ import annotations

import os

# Force settings to use test-safe defaults before any import
os.environ.setdefault("WSUS_API_KEY", "")
os.environ.setdefault("WSUS_CHANNEL", "disabled")
os.environ.setdefault("WSUS_AIR_GAP", "true")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from httpx import ASGITransport, AsyncClient

from tests.mock_channel import MockChannel
from wsus_gateway.config import Settings
from wsus_gateway.services.runtime import GatewayRuntime


@pytest.fixture
def mock_channel():
    """Provide a fresh MockChannel."""
    return MockChannel()


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        wsus_api_key="",
        wsus_channel="disabled",
        state_path=str(tmp_path / "state" / "snapshot.json"),
        job_progress_interval_seconds=0.01,
        job_completion_grace_seconds=0.05,
        log_level="WARNING",
    )


@pytest.fixture
async def runtime(test_settings, mock_channel):
    """A GatewayRuntime wired to the mock channel."""
    rt = GatewayRuntime(test_settings, channel=mock_channel)
    rt.terminal.ping_reply_delay = 0
    yield rt
    await rt.close()


@pytest.fixture
async def client(runtime):
    """Async test client with the mock runtime injected."""
    from wsus_gateway.main import create_app

    fastapi_app = create_app(runtime)
    transport = ASGITransport(app=fastapi_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
