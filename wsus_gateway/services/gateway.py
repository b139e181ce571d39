"""Execution gateway: the only path from a command string to the channel.

Every call goes whitelist -> sanitize -> channel under a timeout, and every
outcome (rejection, timeout, channel failure, success) comes back as an
``ExecutionResult``.  Nothing in the execution domain is raised from
:meth:`ExecutionGateway.execute`.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

from wsus_gateway.errors import ChannelUnavailable, ExecutionFailure, ExecutionTimeout
from wsus_gateway.models.commands import ExecutionResult
from wsus_gateway.services import command_filter
from wsus_gateway.services.activity_log import ActivityLog
from wsus_gateway.services.channel import PrivilegedChannel
from wsus_gateway.services.events import EventBus
from wsus_gateway.utils.logging import get_logger
from wsus_gateway.utils.powershell import sanitize_error
from wsus_gateway.utils.retry import RetryOptions, with_retry

log = get_logger(__name__)

DEFAULT_TIMEOUT = 30.0
MAX_SCRIPT_LENGTH = 50_000
TIMEOUT_EXIT_CODE = 124


class ExecutionGateway:
    def __init__(
        self,
        channel: PrivilegedChannel,
        *,
        events: EventBus | None = None,
        activity: ActivityLog | None = None,
        default_timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._channel = channel
        self._events = events or EventBus()
        self._activity = activity or ActivityLog()
        self.default_timeout = default_timeout

    @property
    def channel(self) -> PrivilegedChannel:
        return self._channel

    def _reject(self, command: str, reason: str) -> ExecutionResult:
        log.warning("gateway.rejected", reason=reason, command=command[:100])
        self._activity.warn(f"Command rejected: {reason}")
        self._events.publish("command.rejected", {"reason": reason})
        return ExecutionResult.failure(reason)

    async def execute(self, command: str, timeout: float | None = None) -> ExecutionResult:
        """Validate, sanitize and run *command*, returning the outcome as a value."""
        timeout = self.default_timeout if timeout is None else timeout
        text = (command or "").strip()

        if not text:
            return self._reject(text, "empty command")
        if len(text) > MAX_SCRIPT_LENGTH:
            return self._reject(text, "Command exceeds maximum length")

        check = command_filter.check_command(text)
        if not check:
            return self._reject(text, check.reason or "Command not whitelisted for security")

        script = command_filter.sanitize(text)
        if not script:
            return self._reject(text, "Command empty after sanitization")

        log.debug("gateway.executing", timeout=timeout, length=len(script))
        try:
            output = await asyncio.wait_for(self._channel.invoke(script, timeout), timeout)
        except (asyncio.TimeoutError, TimeoutError):
            message = f"Command timeout after {timeout}s"
            log.warning("gateway.timeout", timeout=timeout)
            self._activity.error(message)
            self._events.publish("command.timeout", {"timeout": timeout})
            return ExecutionResult.failure(message, exit_code=TIMEOUT_EXIT_CODE)
        except ChannelUnavailable as exc:
            log.error("gateway.channel_unavailable", error=exc.message)
            self._activity.error(f"Execution channel unavailable: {exc.message}")
            return ExecutionResult.failure(exc.message)
        except OSError as exc:
            error = sanitize_error(str(exc))
            log.error("gateway.channel_error", error=error)
            self._activity.error(f"Execution failed: {error}")
            return ExecutionResult.failure(error)

        success = output.exit_code == 0
        result = ExecutionResult(
            stdout=output.stdout,
            stderr=output.stderr,
            exit_code=output.exit_code,
            success=success,
        )
        if success:
            log.info("gateway.executed", elapsed=round(output.elapsed_time, 3))
        else:
            log.warning(
                "gateway.failed",
                exit_code=output.exit_code,
                stderr=sanitize_error(output.stderr),
            )
            self._activity.error(
                f"Command failed with exit code {output.exit_code}",
                stderr=sanitize_error(output.stderr),
            )
        self._events.publish(
            "command.executed",
            {"success": success, "exit_code": output.exit_code},
        )
        return result

    async def execute_with_retry(
        self,
        command: str,
        timeout: float | None = None,
        options: RetryOptions | None = None,
    ) -> ExecutionResult:
        """Run :meth:`execute` under :func:`with_retry`.

        Failures are raised as :class:`ExecutionFailure` inside the loop so
        the retry predicate can classify them; the last result is returned
        either way.
        """
        opts = options or RetryOptions()
        user_on_retry = opts.on_retry

        def on_retry(attempt: int, exc: BaseException, delay: float) -> None:
            self._activity.warn(
                f"Retrying command (attempt {attempt}/{opts.max_attempts})",
                error=str(exc),
                delay=round(delay, 3),
            )
            if user_on_retry is not None:
                user_on_retry(attempt, exc, delay)

        async def attempt() -> ExecutionResult:
            result = await self.execute(command, timeout)
            if result.exit_code == TIMEOUT_EXIT_CODE:
                raise ExecutionTimeout(result)
            if not result.success:
                raise ExecutionFailure(result)
            return result

        outcome = await with_retry(
            attempt,
            RetryOptions(
                max_attempts=opts.max_attempts,
                initial_delay=opts.initial_delay,
                max_delay=opts.max_delay,
                backoff_multiplier=opts.backoff_multiplier,
                jitter=opts.jitter,
                is_retryable=opts.is_retryable,
                on_retry=on_retry,
            ),
        )
        if outcome.success and outcome.data is not None:
            return outcome.data
        if isinstance(outcome.error, ExecutionFailure):
            return outcome.error.result
        return ExecutionResult.failure(str(outcome.error))

    async def execute_json(self, command: str, timeout: float | None = None) -> Any:
        """Run *command* and decode its stdout as JSON.

        Raises :class:`ExecutionFailure` when the command fails or prints
        something that is not JSON.  An empty stdout decodes to ``None``.
        """
        result = await self.execute(command, timeout)
        if not result.success:
            raise ExecutionFailure(result)
        if not result.stdout:
            return None
        try:
            return json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            raise ExecutionFailure(result, f"invalid JSON output: {exc.msg}") from exc
