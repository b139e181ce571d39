"""Operator terminal: a small fixed command set behind a rate limit.

Output goes to the activity log, which is what the terminal displays.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from wsus_gateway.errors import CommandValidationError, GatewayError, RateLimitExceeded
from wsus_gateway.services.activity_log import ActivityLog
from wsus_gateway.services.maintenance import MaintenanceService
from wsus_gateway.services.rate_limiter import CommandRateLimiter
from wsus_gateway.services.telemetry import TelemetryService
from wsus_gateway.utils.logging import get_logger
from wsus_gateway.utils.validation import (
    MAX_COMMAND_LENGTH,
    validate_command_input,
    validate_hostname,
)

log = get_logger(__name__)

ALLOWED_COMMANDS: frozenset[str] = frozenset(
    {"help", "status", "ping", "clear", "reindex", "cleanup"},
)

PING_ADDRESS = "10.0.0.1"


class CommandRouter:
    def __init__(
        self,
        rate_limiter: CommandRateLimiter,
        activity: ActivityLog,
        telemetry: TelemetryService,
        maintenance: MaintenanceService,
        *,
        max_length: int = MAX_COMMAND_LENGTH,
        ping_reply_delay: float = 0.4,
    ) -> None:
        self._rate_limiter = rate_limiter
        self._activity = activity
        self._telemetry = telemetry
        self._maintenance = maintenance
        self.max_length = max_length
        self.ping_reply_delay = ping_reply_delay
        self._handlers: dict[str, Callable[[list[str]], Awaitable[None]]] = {
            "help": self._help,
            "status": self._status,
            "ping": self._ping,
            "clear": self._clear,
            "reindex": self._reindex,
            "cleanup": self._cleanup,
        }

    async def dispatch(self, raw_input: str) -> None:
        """Validate, rate-limit and run one terminal line.

        Raises :class:`CommandValidationError` for empty or oversized input.
        Everything else is reported through the activity log.
        """
        if not validate_command_input(raw_input, self.max_length):
            if isinstance(raw_input, str) and len(raw_input) > self.max_length:
                raise CommandValidationError(
                    f"Command exceeds maximum length of {self.max_length} characters",
                )
            raise CommandValidationError("Command is required")

        try:
            self._rate_limiter.acquire(raw_input)
        except RateLimitExceeded as exc:
            self._activity.error(exc.message)
            return

        parts = raw_input.split()
        name = parts[0].lower()
        handler = self._handlers.get(name) if name in ALLOWED_COMMANDS else None
        if handler is None:
            self._activity.error(f"Unknown command: '{raw_input}'. Use 'help' for available commands.")
            return

        log.debug("terminal.dispatch", command=name)
        await handler(parts[1:])

    # ── handlers ──────────────────────────────────────────────────────

    async def _help(self, args: list[str]) -> None:
        self._activity.info("Available: status, ping [name], reindex, cleanup, clear")

    async def _status(self, args: list[str]) -> None:
        stats = self._telemetry.snapshot().stats
        self._activity.info(
            f"Health: {stats.healthy_computers} Nodes OK. DB: {stats.db.current_size_gb}GB",
        )

    async def _ping(self, args: list[str]) -> None:
        target = validate_hostname(args[0] if args else None)
        if target is None:
            self._activity.error("Invalid hostname")
            return
        self._activity.info(f"Pinging {target} [{PING_ADDRESS}] with 32 bytes of data:")
        await asyncio.sleep(self.ping_reply_delay)
        self._activity.info(f"Reply from {PING_ADDRESS}: bytes=32 time<1ms TTL=128")

    async def _clear(self, args: list[str]) -> None:
        self._activity.clear()

    async def _reindex(self, args: list[str]) -> None:
        try:
            self._maintenance.start_reindex()
        except GatewayError as exc:
            self._activity.error(f"Could not start reindex: {exc.message}")

    async def _cleanup(self, args: list[str]) -> None:
        try:
            self._maintenance.start_cleanup()
        except GatewayError as exc:
            self._activity.error(f"Could not start cleanup: {exc.message}")
