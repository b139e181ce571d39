"""Gateway exception hierarchy.

Policy rejections are never raised; they come back as ``ValidationResult`` or
``ExecutionResult`` values.  Exceptions here are either caller contract
violations (raised immediately, never retried) or execution failures raised
inside a retry loop so a predicate can classify them.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from wsus_gateway.models.commands import ExecutionResult


class GatewayError(Exception):
    """Base class for all gateway errors."""

    code = "GATEWAY_ERROR"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context


# ── Caller contract violations ────────────────────────────────────────────

class CallerContractViolation(GatewayError):
    """Invalid parameters from the calling layer.  Indicates a bug upstream."""

    code = "CONTRACT_VIOLATION"


class JobValidationError(CallerContractViolation):
    code = "JOB_VALIDATION_ERROR"


class CommandValidationError(CallerContractViolation):
    code = "COMMAND_VALIDATION_ERROR"

    def __init__(self, message: str, field: str = "command", **context: Any) -> None:
        super().__init__(message, field=field, **context)
        self.field = field


# ── Local rejections ──────────────────────────────────────────────────────

class RateLimitExceeded(GatewayError):
    code = "RATE_LIMIT_EXCEEDED"


# ── Execution failures ────────────────────────────────────────────────────

class ExecutionFailure(GatewayError):
    """The privileged channel returned a non-zero exit or could not run."""

    code = "EXECUTION_FAILURE"

    def __init__(self, result: ExecutionResult, message: str | None = None) -> None:
        super().__init__(message or result.stderr or f"exit code {result.exit_code}")
        self.result = result


class ExecutionTimeout(ExecutionFailure):
    code = "EXECUTION_TIMEOUT"


class ChannelUnavailable(GatewayError):
    """The privileged channel cannot execute anything in this environment."""

    code = "CHANNEL_UNAVAILABLE"


# ── Storage ───────────────────────────────────────────────────────────────

class StorageQuotaExceeded(GatewayError):
    code = "STORAGE_QUOTA_EXCEEDED"


# ── Downstream services ───────────────────────────────────────────────────

class ExternalServiceError(GatewayError):
    code = "EXTERNAL_SERVICE_ERROR"

    def __init__(self, message: str, service: str, **context: Any) -> None:
        super().__init__(message, service=service, **context)
        self.service = service
