"""Per-instance observer registry.

Every transport and every client owns its own EventHub; there is no
process-wide event bus. Handlers are plain callables taking one payload
argument. A handler that raises is logged and skipped so observers can never
break the channel that emits to them.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

EventHandler = Callable[[Any], None]


class EventHub:
    """Named-event observer registry.

    Example:
        >>> hub = EventHub()
        >>> hub.on("notification", print)
        >>> hub.emit("notification", {"method": "notifications/progress"})
    """

    def __init__(self) -> None:
        self._handlers: defaultdict[str, list[EventHandler]] = defaultdict(list)

    def on(self, event: str, handler: EventHandler) -> None:
        """Subscribe a handler to an event.

        Args:
            event: Event name.
            handler: Callable invoked with the event payload.
        """
        self._handlers[event].append(handler)

    def off(self, event: str, handler: EventHandler) -> None:
        """Unsubscribe a handler. Unknown handlers are ignored."""
        handlers = self._handlers.get(event)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def clear(self) -> None:
        """Drop every subscription."""
        self._handlers.clear()

    def emit(self, event: str, payload: Any = None) -> None:
        """Invoke every handler subscribed to ``event``.

        Args:
            event: Event name.
            payload: Value passed to each handler.
        """
        for handler in list(self._handlers.get(event, ())):
            try:
                handler(payload)
            except Exception:
                logger.exception("Handler for %r event failed", event)
