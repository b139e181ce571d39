"""Bounded background job tracking.

A job is a progress record for long-running maintenance work.  Progress is
simulated from the estimated duration by a tick task: it climbs towards 95 %
and only reaches 100 % when the owner calls :meth:`JobManager.complete`.
Completed jobs disappear after a short grace period; failed jobs stay until
removed.
"""

from __future__ import annotations

import asyncio
import math
import secrets
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, TypeVar

from wsus_gateway.errors import JobValidationError
from wsus_gateway.models.jobs import Job, JobStatus
from wsus_gateway.services.events import EventBus
from wsus_gateway.utils.logging import get_logger
from wsus_gateway.utils.validation import validate_id

log = get_logger(__name__)

T = TypeVar("T")

MAX_RUNNING_PROGRESS = 95.0


class JobManager:
    def __init__(
        self,
        events: EventBus | None = None,
        *,
        max_jobs: int = 10,
        max_duration: float = 600.0,
        interval: float = 0.1,
        completion_grace: float = 2.0,
    ) -> None:
        self._events = events or EventBus()
        self.max_jobs = max_jobs
        self.max_duration = max_duration
        self.interval = interval
        self.completion_grace = completion_grace
        self._jobs: dict[str, Job] = {}
        self._tickers: dict[str, asyncio.Task] = {}
        self._removals: dict[str, asyncio.TimerHandle] = {}
        self._issued: set[str] = set()
        self._background: set[asyncio.Task] = set()

    # ── helpers ───────────────────────────────────────────────────────

    def _new_id(self) -> str:
        while True:
            job_id = secrets.token_hex(6)
            if job_id not in self._issued:
                self._issued.add(job_id)
                return job_id

    def _lookup(self, job_id: str) -> Optional[Job]:
        if not validate_id(job_id):
            raise JobValidationError("Invalid job id", job_id=str(job_id)[:100])
        return self._jobs.get(job_id)

    def _notify(self) -> None:
        jobs = [j.model_dump(mode="json") for j in self._jobs.values()]
        self._events.publish("jobs.updated", {"jobs": jobs})

    def _stop_ticker(self, job_id: str) -> None:
        task = self._tickers.pop(job_id, None)
        if task is not None and not task.done():
            task.cancel()

    def _set_progress(self, job: Job, progress: float) -> None:
        job.progress = progress
        self._events.publish("job.progress", {"job_id": job.id, "progress": progress})
        self._notify()

    async def _tick(self, job_id: str, duration: float) -> None:
        steps = max(1, int(duration / self.interval + 1e-9))
        step = 0
        while True:
            await asyncio.sleep(self.interval)
            step += 1
            job = self._jobs.get(job_id)
            if job is None or job.status is not JobStatus.running:
                return
            if step >= steps:
                # The owner decides when the job is done.
                return
            self._set_progress(job, max(job.progress, min(MAX_RUNNING_PROGRESS, step / steps * 100)))

    def _forget_ticker(self, job_id: str, task: asyncio.Task) -> None:
        if self._tickers.get(job_id) is task:
            del self._tickers[job_id]

    # ── public ────────────────────────────────────────────────────────

    def create_job(self, name: str, estimated_duration: float) -> Job:
        """Register a Running job and start its progress ticks.

        Must be called from inside a running event loop.
        """
        if len(self._jobs) >= self.max_jobs:
            raise JobValidationError("Maximum number of concurrent jobs reached", limit=self.max_jobs)
        if (
            not isinstance(estimated_duration, (int, float))
            or math.isnan(estimated_duration)
            or estimated_duration < 0
            or estimated_duration > self.max_duration
        ):
            raise JobValidationError(f"Invalid job duration: {estimated_duration}s")
        if not name or not name.strip():
            raise JobValidationError("Job name is required")

        job = Job(
            id=self._new_id(),
            name=name.strip(),
            progress=0.0,
            status=JobStatus.running,
            start_time=datetime.now(timezone.utc),
        )
        self._jobs[job.id] = job

        task = asyncio.get_running_loop().create_task(self._tick(job.id, float(estimated_duration)))
        task.add_done_callback(lambda t, jid=job.id: self._forget_ticker(jid, t))
        self._tickers[job.id] = task

        log.info("job.created", job_id=job.id, name=job.name, estimated_duration=estimated_duration)
        self._events.publish("job.created", {"job": job.model_dump(mode="json")})
        self._notify()
        return job.model_copy()

    def update_progress(self, job_id: str, progress: float) -> None:
        """Move a Running job's progress forward, never past 95 and never back."""
        job = self._lookup(job_id)
        if job is None or job.status is not JobStatus.running:
            return
        if not isinstance(progress, (int, float)) or math.isnan(progress):
            raise JobValidationError("Progress must be a number", job_id=job_id)
        clamped = max(job.progress, min(MAX_RUNNING_PROGRESS, float(progress)))
        self._set_progress(job, clamped)

    def complete(self, job_id: str) -> None:
        job = self._lookup(job_id)
        if job is None or job.status is not JobStatus.running:
            return
        self._stop_ticker(job_id)
        job.status = JobStatus.completed
        job.progress = 100.0
        log.info("job.completed", job_id=job_id, name=job.name)
        self._events.publish("job.completed", {"job": job.model_dump(mode="json")})

        loop = asyncio.get_running_loop()
        self._removals[job_id] = loop.call_later(self.completion_grace, self.remove, job_id)
        self._notify()

    def fail(self, job_id: str) -> None:
        job = self._lookup(job_id)
        if job is None or job.status is not JobStatus.running:
            return
        self._stop_ticker(job_id)
        job.status = JobStatus.failed
        log.warning("job.failed", job_id=job_id, name=job.name, progress=job.progress)
        self._events.publish("job.failed", {"job": job.model_dump(mode="json")})
        self._notify()

    def remove(self, job_id: str) -> None:
        if self._lookup(job_id) is None:
            return
        self._stop_ticker(job_id)
        handle = self._removals.pop(job_id, None)
        if handle is not None:
            handle.cancel()
        del self._jobs[job_id]
        log.debug("job.removed", job_id=job_id)
        self._events.publish("job.removed", {"job_id": job_id})
        self._notify()

    def get_jobs(self) -> list[Job]:
        return [job.model_copy() for job in self._jobs.values()]

    def get_job(self, job_id: str) -> Optional[Job]:
        job = self._lookup(job_id)
        return job.model_copy() if job is not None else None

    async def track(
        self,
        name: str,
        estimated_duration: float,
        operation: Callable[[], Awaitable[T]],
    ) -> T:
        """Run *operation* under a new job, completing or failing it on the outcome.

        The operation's exception propagates after the job is marked Failed.
        """
        job = self.create_job(name, estimated_duration)
        try:
            result = await operation()
        except (Exception, asyncio.CancelledError):
            self.fail(job.id)
            raise
        self.complete(job.id)
        return result

    def start(
        self,
        name: str,
        estimated_duration: float,
        operation: Callable[[], Awaitable[object]],
    ) -> Job:
        """Like :meth:`track` but runs in the background and returns the job at once."""
        job = self.create_job(name, estimated_duration)
        task = asyncio.get_running_loop().create_task(self._run(job.id, operation))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return job

    async def _run(self, job_id: str, operation: Callable[[], Awaitable[object]]) -> None:
        try:
            await operation()
        except Exception as exc:
            log.error("job.operation_failed", job_id=job_id, error=str(exc))
            self.fail(job_id)
            return
        self.complete(job_id)

    def shutdown(self) -> None:
        """Cancel every tick task, background operation and pending removal."""
        for task in list(self._background):
            task.cancel()
        for job_id in list(self._tickers):
            self._stop_ticker(job_id)
        for handle in self._removals.values():
            handle.cancel()
        self._removals.clear()
