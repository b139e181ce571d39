"""Background job records."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


class JobStatus(str, Enum):
    running = "Running"
    completed = "Completed"
    failed = "Failed"


class Job(BaseModel):
    """A tracked handle for a long-running privileged operation."""

    id: str
    name: str
    progress: float = Field(default=0.0, ge=0.0, le=100.0)
    status: JobStatus = JobStatus.running
    start_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
