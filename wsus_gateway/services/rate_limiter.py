"""Sliding-window rate limiter for terminal command submissions.

The window is keyed by the submitted command text, not by caller identity:
resubmitting the same text refreshes its timestamp instead of taking a new
slot, and two callers sending the same text share that slot.
"""

from __future__ import annotations

import time
from typing import Callable

from wsus_gateway.errors import RateLimitExceeded
from wsus_gateway.utils.logging import get_logger

log = get_logger(__name__)


class CommandRateLimiter:
    """Admit at most ``max_requests`` distinct commands per ``window_seconds``."""

    def __init__(
        self,
        max_requests: int = 10,
        window_seconds: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._window: dict[str, float] = {}
        self._allowed_count = 0
        self._blocked_count = 0

    def _prune(self, now: float) -> None:
        cutoff = now - self.window_seconds
        for key in [k for k, ts in self._window.items() if ts < cutoff]:
            del self._window[key]

    def admit(self, key: str) -> bool:
        """Record *key* and return True if the window has room for it."""
        now = self._clock()
        self._prune(now)

        if len(self._window) >= self.max_requests:
            self._blocked_count += 1
            log.warning("rate_limit.exceeded", window=len(self._window), limit=self.max_requests)
            return False

        self._window[key] = now
        self._allowed_count += 1
        return True

    def acquire(self, key: str) -> None:
        """Like :meth:`admit`, but raise :class:`RateLimitExceeded` when full."""
        if not self.admit(key):
            raise RateLimitExceeded(
                "Rate limit exceeded. Please wait before executing more commands.",
                limit=self.max_requests,
                window_seconds=self.window_seconds,
            )

    def reset(self) -> None:
        self._window.clear()
        self._allowed_count = 0
        self._blocked_count = 0

    def get_current_rate(self) -> int:
        self._prune(self._clock())
        return len(self._window)

    def get_remaining_capacity(self) -> int:
        return max(0, self.max_requests - self.get_current_rate())

    def get_stats(self) -> dict:
        current_rate = self.get_current_rate()
        return {
            "max_requests": self.max_requests,
            "window_seconds": self.window_seconds,
            "current_rate": current_rate,
            "remaining_capacity": self.max_requests - current_rate,
            "allowed_count": self._allowed_count,
            "blocked_count": self._blocked_count,
        }
