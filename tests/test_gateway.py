"""Tests for the execution gateway."""

from __future__ import annotations

import pytest

from tests.mock_channel import MockChannel
from wsus_gateway.errors import ExecutionFailure
from wsus_gateway.services.activity_log import ActivityLog
from wsus_gateway.services.channel import DisabledChannel
from wsus_gateway.services.events import EventBus
from wsus_gateway.services.gateway import TIMEOUT_EXIT_CODE, ExecutionGateway
from wsus_gateway.utils.retry import RetryOptions


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def activity():
    return ActivityLog()


@pytest.fixture
def gateway(mock_channel, events, activity):
    return ExecutionGateway(mock_channel, events=events, activity=activity, default_timeout=1.0)


def _fast(**kwargs) -> RetryOptions:
    return RetryOptions(initial_delay=0, jitter=False, **kwargs)


class TestRejection:
    @pytest.mark.parametrize("command", ["", "   ", "Remove-Item C:\\Windows", "Format-Volume -DriveLetter C"])
    async def test_never_reaches_channel(self, gateway, mock_channel, command):
        result = await gateway.execute(command)
        assert not result.success
        assert result.exit_code == 1
        assert result.stderr
        assert mock_channel.sent_commands == []

    async def test_rejection_event(self, gateway, events):
        seen = []
        events.subscribe("command.rejected", seen.append)
        await gateway.execute("Format-Volume -DriveLetter C")
        assert len(seen) == 1

    async def test_oversized(self, gateway, mock_channel):
        result = await gateway.execute("Get-WsusServer " + "x" * 60_000)
        assert not result.success
        assert mock_channel.sent_commands == []


class TestExecute:
    async def test_success(self, gateway, mock_channel):
        mock_channel.add_response("Get-Service", "Running")
        result = await gateway.execute("Get-Service -Name WsusService")
        assert result.success
        assert result.exit_code == 0
        assert result.stdout == "Running"
        assert mock_channel.last_command() == "Get-Service -Name WsusService"

    async def test_sanitized_before_channel(self, gateway, mock_channel):
        await gateway.execute("Get-Service -Name WsusService; iex foo")
        sent = mock_channel.last_command()
        assert "iex" not in sent.lower()

    async def test_nonzero_exit(self, gateway, mock_channel, activity):
        mock_channel.add_response("Get-Service", stderr="Cannot find service", exit_code=1)
        result = await gateway.execute("Get-Service -Name Nope")
        assert not result.success
        assert result.exit_code == 1
        assert result.stderr == "Cannot find service"
        assert activity.entries()[-1].level == "error"

    async def test_timeout(self, gateway, mock_channel, events):
        seen = []
        events.subscribe("command.timeout", seen.append)
        mock_channel.delay = 0.5
        result = await gateway.execute("Get-Service -Name WsusService", timeout=0.05)
        assert not result.success
        assert result.exit_code == TIMEOUT_EXIT_CODE
        assert result.stderr == "Command timeout after 0.05s"
        assert len(seen) == 1

    async def test_channel_unavailable(self, activity):
        gateway = ExecutionGateway(DisabledChannel(), activity=activity)
        result = await gateway.execute("Get-Service -Name WsusService")
        assert not result.success
        assert result.exit_code == 1
        assert result.stderr

    async def test_os_error(self):
        class Broken(MockChannel):
            async def invoke(self, command, timeout):
                raise OSError("pipe broke at C:\\Windows\\System32\\x.dll")

        gateway = ExecutionGateway(Broken())
        result = await gateway.execute("Get-Service -Name WsusService")
        assert not result.success
        assert "System32" not in result.stderr


class TestRetry:
    async def test_recovers(self, gateway, mock_channel, activity):
        mock_channel.queue(stderr="connection reset", exit_code=1)
        mock_channel.queue(stdout="ok")
        result = await gateway.execute_with_retry(
            "Get-Service -Name WsusService", options=_fast(max_attempts=3),
        )
        assert result.success
        assert result.stdout == "ok"
        assert len(mock_channel.sent_commands) == 2
        assert any("Retrying command" in e.message for e in activity.entries())

    async def test_gives_up_with_last_result(self, gateway, mock_channel):
        for _ in range(3):
            mock_channel.queue(stderr="connection reset", exit_code=7)
        result = await gateway.execute_with_retry(
            "Get-Service -Name WsusService", options=_fast(max_attempts=3),
        )
        assert not result.success
        assert result.exit_code == 7
        assert len(mock_channel.sent_commands) == 3

    async def test_predicate_stops_retry(self, gateway, mock_channel):
        mock_channel.queue(stderr="syntax error", exit_code=1)
        result = await gateway.execute_with_retry(
            "Get-Service -Name WsusService",
            options=_fast(max_attempts=3, is_retryable=lambda exc: False),
        )
        assert not result.success
        assert len(mock_channel.sent_commands) == 1

    async def test_rejection_not_sent(self, gateway, mock_channel):
        result = await gateway.execute_with_retry("Remove-Item x", options=_fast(max_attempts=2))
        assert not result.success
        assert mock_channel.sent_commands == []


class TestExecuteJson:
    async def test_decodes(self, gateway, mock_channel):
        mock_channel.add_response("ConvertTo-Json", '{"a": 1}')
        assert await gateway.execute_json("Get-Service | ConvertTo-Json") == {"a": 1}

    async def test_empty_is_none(self, gateway, mock_channel):
        mock_channel.add_response("ConvertTo-Json", "")
        assert await gateway.execute_json("Get-Service | ConvertTo-Json") is None

    async def test_invalid_json(self, gateway, mock_channel):
        mock_channel.add_response("ConvertTo-Json", "not json")
        with pytest.raises(ExecutionFailure, match="invalid JSON"):
            await gateway.execute_json("Get-Service | ConvertTo-Json")

    async def test_failure_raises(self, gateway, mock_channel):
        mock_channel.add_response("ConvertTo-Json", stderr="denied", exit_code=5)
        with pytest.raises(ExecutionFailure) as info:
            await gateway.execute_json("Get-Service | ConvertTo-Json")
        assert info.value.result.exit_code == 5

