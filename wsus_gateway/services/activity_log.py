"""Operator-facing activity log.

Every entry is also emitted through structlog, so the bounded in-memory
buffer is only what the terminal and ``GET /logs`` show.
"""

from __future__ import annotations

import secrets
from collections import deque
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field

from wsus_gateway.utils.logging import get_logger

log = get_logger(__name__)

MAX_MESSAGE_LENGTH = 10_000

Level = Literal["info", "warn", "error"]


class LogEntry(BaseModel):
    id: str = Field(default_factory=lambda: secrets.token_hex(6))
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    level: Level
    message: str
    context: dict[str, Any] = Field(default_factory=dict)


class ActivityLog:
    def __init__(self, max_entries: int = 200) -> None:
        self._entries: deque[LogEntry] = deque(maxlen=max_entries)
        self._written = 0

    def _add(self, level: Level, message: str, context: dict[str, Any]) -> LogEntry:
        entry = LogEntry(level=level, message=message[:MAX_MESSAGE_LENGTH], context=context)
        self._entries.append(entry)
        self._written += 1
        return entry

    def info(self, message: str, **context: Any) -> LogEntry:
        log.info("activity", message=message, **context)
        return self._add("info", message, context)

    def warn(self, message: str, **context: Any) -> LogEntry:
        log.warning("activity", message=message, **context)
        return self._add("warn", message, context)

    def error(self, message: str, **context: Any) -> LogEntry:
        log.error("activity", message=message, **context)
        return self._add("error", message, context)

    def entries(self) -> list[LogEntry]:
        return list(self._entries)

    def mark(self) -> int:
        """Position token for :meth:`since`."""
        return self._written

    def since(self, mark: int) -> list[LogEntry]:
        """Entries written after *mark* that are still buffered."""
        count = min(self._written - mark, len(self._entries))
        return list(self._entries)[-count:] if count > 0 else []

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
