"""In-process notifications about what the reconciliation engine did."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any

import structlog

Handler = Callable[["ExporterEvent", dict[str, Any]], None | Awaitable[None]]


class ExporterEvent(StrEnum):
    """Lifecycle events published on an engine's :class:`EventBus`.

    These are internal notifications, not the upstream server's event types
    (those are parsed by :mod:`opencode_metrics.events.normalizer`). Payload
    TypedDicts live in :mod:`opencode_metrics.events.payloads`.

    **Payload schemas by event:**

    ``CONNECTION_ESTABLISHED``
        ``url: str``, ``version: str``

    ``CONNECTION_LOST``
        ``url: str``, ``error: str``

    ``BACKFILL_COMPLETED``, ``POLL_COMPLETED``
        ``sessions: int``, ``messages_counted: int``

    ``SESSION_REGISTERED``
        ``session_id: str``, ``source: str``

    ``SESSION_REMOVED``
        ``session_id: str``

    ``MESSAGE_COUNTED``
        ``message_id: str``, ``role: str``, ``provenance: str``, ``source: str``,
        ``tokens: dict[str, int]``

    ``ERROR_RECORDED``
        ``type: str``, ``message: str``
    """

    CONNECTION_ESTABLISHED = "connection.established"
    CONNECTION_LOST = "connection.lost"

    BACKFILL_COMPLETED = "backfill.completed"
    POLL_COMPLETED = "poll.completed"

    SESSION_REGISTERED = "session.registered"
    SESSION_REMOVED = "session.removed"
    MESSAGE_COUNTED = "message.counted"
    ERROR_RECORDED = "error.recorded"


class EventBus:
    """
    Fan-out of :class:`ExporterEvent` notifications to subscribers.

    - Handlers run in subscription order, event-specific ones first.
    - Coroutine handlers are scheduled on the running loop and not awaited;
      without a running loop the coroutine is discarded.
    - A failing handler is logged and skipped. Publishing never raises.

    Example::

        bus = EventBus()
        bus.subscribe(
            ExporterEvent.CONNECTION_LOST,
            lambda event, payload: print("lost:", payload["error"]),
        )
        engine = ReconciliationEngine(client, sink, config, event_bus=bus)
    """

    def __init__(self, logger: structlog.BoundLogger | None = None) -> None:
        self._by_event: dict[ExporterEvent, list[Handler]] = {}
        self._wildcard: list[Handler] = []
        self._logger = logger or structlog.get_logger("opencode_metrics.events")

    def subscribe(self, event: ExporterEvent, handler: Handler) -> None:
        """Call ``handler(event, payload)`` whenever ``event`` is published."""
        self._by_event.setdefault(event, []).append(handler)

    def subscribe_all(self, handler: Handler) -> None:
        """Call ``handler`` for every published event."""
        self._wildcard.append(handler)

    def unsubscribe(self, event: ExporterEvent, handler: Handler) -> None:
        """Drop one registration of ``handler`` for ``event``, if there is one."""
        handlers = self._by_event.get(event)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def publish(self, event: ExporterEvent, payload: dict[str, Any]) -> None:
        for handler in [*self._by_event.get(event, ()), *self._wildcard]:
            self._deliver(handler, event, payload)

    def _deliver(self, handler: Handler, event: ExporterEvent, payload: dict[str, Any]) -> None:
        try:
            result = handler(event, payload)
        except Exception as exc:
            self._logger.error(
                "event_handler_error",
                event=str(event),
                handler=getattr(handler, "__qualname__", repr(handler)),
                error=str(exc),
            )
            return
        if not asyncio.iscoroutine(result):
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            result.close()
            return
        _task = loop.create_task(result)  # noqa: RUF006
