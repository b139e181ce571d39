"""In-process observer registry.

Handlers run synchronously in publish order.  A failing handler is logged
and skipped; it never stops the remaining handlers from being called.
"""

from __future__ import annotations

from typing import Any, Callable

from wsus_gateway.utils.logging import get_logger

log = get_logger(__name__)

Handler = Callable[[dict[str, Any]], None]

ALL_EVENTS = "*"


class EventBus:
    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = {}

    def subscribe(self, event: str, handler: Handler) -> Callable[[], None]:
        """Register *handler* for *event* (``"*"`` for every event).

        Returns a callable that unsubscribes it.
        """
        self._handlers.setdefault(event, []).append(handler)
        return lambda: self.unsubscribe(event, handler)

    def unsubscribe(self, event: str, handler: Handler) -> None:
        handlers = self._handlers.get(event)
        if not handlers:
            return
        try:
            handlers.remove(handler)
        except ValueError:
            return
        if not handlers:
            del self._handlers[event]

    def publish(self, event: str, payload: dict[str, Any] | None = None) -> None:
        data = {"event": event, **(payload or {})}
        # Copy so handlers may unsubscribe while being called.
        handlers = [*self._handlers.get(event, ()), *self._handlers.get(ALL_EVENTS, ())]
        for handler in handlers:
            try:
                handler(data)
            except Exception as exc:
                log.error("events.handler_failed", event=event, error=str(exc))

    def handler_count(self, event: str) -> int:
        return len(self._handlers.get(event, ()))
