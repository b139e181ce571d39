"""Tests for reindex, cleanup and superseded-update jobs."""

from __future__ import annotations

import asyncio
import json

import pytest

from wsus_gateway.errors import ExternalServiceError
from wsus_gateway.models.jobs import JobStatus
from wsus_gateway.services.maintenance import CLEANUP_JOB, DECLINE_SUPERSEDED_JOB, REINDEX_JOB


def _messages(runtime) -> list[str]:
    return [e.message for e in runtime.activity.entries()]


async def _settle(runtime, job_id: str, status: JobStatus) -> None:
    for _ in range(100):
        job = runtime.jobs.get_job(job_id)
        if job is None or job.status is status:
            return
        await asyncio.sleep(0.005)


class TestReindex:
    async def test_success(self, runtime):
        await runtime.maintenance.reindex()
        assert "SQL_SUCCESS: Index defragmentation completed." in _messages(runtime)

    async def test_failure(self, runtime, mock_channel):
        mock_channel.add_response("sp_MSforeachtable", stderr="deadlock victim", exit_code=1)
        with pytest.raises(ExternalServiceError):
            await runtime.maintenance.reindex()
        assert any(m.startswith("SQL reindex failed") for m in _messages(runtime))

    async def test_services_unavailable(self, runtime, mock_channel):
        mock_channel.add_response("Get-Module -ListAvailable", "")
        with pytest.raises(ExternalServiceError):
            await runtime.maintenance.reindex()
        assert "WSUS services not available - database reindex cannot be performed" in _messages(runtime)
        assert not any("sp_MSforeachtable" in c for c in mock_channel.sent_commands)

    async def test_job_lifecycle(self, runtime):
        job = runtime.maintenance.start_reindex()
        assert job.name == REINDEX_JOB
        assert job.status is JobStatus.running
        await _settle(runtime, job.id, JobStatus.completed)
        messages = _messages(runtime)
        assert f"Job started: {REINDEX_JOB}" in messages
        assert f"Job completed: {REINDEX_JOB}" in messages

    async def test_failed_job_stays(self, runtime, mock_channel):
        mock_channel.add_response("sp_MSforeachtable", stderr="deadlock victim", exit_code=1)
        job = runtime.maintenance.start_reindex()
        await _settle(runtime, job.id, JobStatus.failed)
        assert runtime.jobs.get_job(job.id).status is JobStatus.failed
        assert f"Job failed: {REINDEX_JOB}" in _messages(runtime)


class TestCleanup:
    async def test_reports_reclaimed_space(self, runtime, mock_channel):
        await runtime.telemetry.refresh()
        mock_channel.add_response(
            "sys.database_files", json.dumps({"DatabaseName": "SUSDB", "SizeGB": "3.00"}),
        )
        await runtime.maintenance.cleanup()
        assert "SUSDB Optimization: Reclaimed 1.37 GB." in _messages(runtime)
        assert runtime.telemetry.snapshot().stats.db.current_size_gb == pytest.approx(3.0)

    async def test_without_metrics(self, runtime, mock_channel):
        mock_channel.add_response("sys.database_files", stderr="down", exit_code=1)
        await runtime.maintenance.cleanup()
        assert "WSUS cleanup completed successfully." in _messages(runtime)

    async def test_failure(self, runtime, mock_channel):
        mock_channel.add_response("Invoke-WsusServerCleanup", stderr="timeout", exit_code=1)
        with pytest.raises(ExternalServiceError):
            await runtime.maintenance.cleanup()
        assert "WSUS cleanup failed." in _messages(runtime)

    async def test_job(self, runtime):
        job = runtime.maintenance.start_cleanup()
        assert job.name == CLEANUP_JOB
        await _settle(runtime, job.id, JobStatus.completed)
        assert f"Job completed: {CLEANUP_JOB}" in _messages(runtime)


class TestDeclineSuperseded:
    async def test_success(self, runtime):
        await runtime.maintenance.decline_superseded()
        assert "Declined 37 superseded update(s), 1 error(s)." in _messages(runtime)

    async def test_failure(self, runtime, mock_channel):
        mock_channel.add_response("IsSuperseded -eq $true", stderr="timeout", exit_code=1)
        with pytest.raises(ExternalServiceError):
            await runtime.maintenance.decline_superseded()
        assert "Declining superseded updates failed." in _messages(runtime)

    async def test_services_unavailable(self, runtime, mock_channel):
        mock_channel.add_response("Get-Module -ListAvailable", "")
        with pytest.raises(ExternalServiceError):
            await runtime.maintenance.decline_superseded()
        assert not any("Deny-WsusUpdate" in c for c in mock_channel.sent_commands)

    async def test_job(self, runtime):
        job = runtime.maintenance.start_decline_superseded()
        assert job.name == DECLINE_SUPERSEDED_JOB
        await _settle(runtime, job.id, JobStatus.completed)
        assert f"Job completed: {DECLINE_SUPERSEDED_JOB}" in _messages(runtime)
