"""Command-related data structures."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class ValidationResult(BaseModel):
    """Outcome of a policy check.  Never partially valid."""

    model_config = ConfigDict(frozen=True)

    valid: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.valid

    @classmethod
    def ok(cls) -> ValidationResult:
        return cls(valid=True)

    @classmethod
    def reject(cls, reason: str) -> ValidationResult:
        return cls(valid=False, reason=reason)


class ExecutionResult(BaseModel):
    """Canonical shape returned by every execution path."""

    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    success: bool = True

    @classmethod
    def failure(cls, stderr: str, exit_code: int = 1, stdout: str = "") -> ExecutionResult:
        return cls(stdout=stdout, stderr=stderr, exit_code=exit_code, success=False)


class QueryResult(BaseModel):
    """Rows returned by a SQL query run through the gateway."""

    success: bool = True
    rows: list[dict[str, Any]] = Field(default_factory=list)
    error: Optional[str] = None
    rejected: bool = False


class ChannelOutput(BaseModel):
    """Raw output captured from the privileged channel."""

    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    elapsed_time: float = 0.0
