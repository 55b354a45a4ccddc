"""Async pub/sub EventBus carrying the output of response streams."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable

from llm_relay.types import RelayEvent, RelayEventType

_logger = logging.getLogger(__name__)

# Subscribe with this key to receive every event
WILDCARD = "*"

# Sync or async callable taking a RelayEvent
Handler = Callable[[RelayEvent], Any]


class EventBus:
    """Append-only output channel for response streams.

    - Subscribe to one ``RelayEventType`` or to ``"*"`` for everything.
    - Handlers may be sync or async.
    - ``emit()`` awaits all matching handlers before returning, so a
      producer that awaits each emit delivers events in arrival order.
    - A failing handler is logged and never breaks the stream.
    """

    def __init__(self, max_history: int = 500) -> None:
        self._handlers: dict[str, list[Handler]] = {}
        self._history: list[RelayEvent] = []
        self._max_history = max_history

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def subscribe(self, event_type: RelayEventType | str, handler: Handler) -> None:
        """Register *handler* for *event_type* (or ``"*"`` for all)."""
        self._handlers.setdefault(self._key(event_type), []).append(handler)

    def unsubscribe(self, event_type: RelayEventType | str, handler: Handler) -> None:
        handlers = self._handlers.get(self._key(event_type), [])
        if handler in handlers:
            handlers.remove(handler)

    async def emit(self, event: RelayEvent) -> None:
        """Record *event* and fan it out to matching handlers."""
        self._history.append(event)
        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history:]

        handlers = list(self._handlers.get(self._key(event.type), []))
        handlers.extend(self._handlers.get(WILDCARD, []))
        if not handlers:
            return
        await asyncio.gather(*(self._call_handler(h, event) for h in handlers))

    @property
    def history(self) -> list[RelayEvent]:
        """Copy of the most recent events, oldest first."""
        return list(self._history)

    def clear(self) -> None:
        self._handlers.clear()
        self._history.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _key(event_type: RelayEventType | str) -> str:
        if isinstance(event_type, RelayEventType):
            return event_type.value
        return str(event_type)

    @staticmethod
    async def _call_handler(handler: Handler, event: RelayEvent) -> None:
        try:
            result = handler(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            _logger.exception(
                "EventBus handler %s raised for event %s",
                getattr(handler, "__name__", handler),
                event.type.value,
            )
