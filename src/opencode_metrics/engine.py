"""Reconciliation engine — merges the event stream with snapshot polls."""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Callable
from enum import StrEnum
from typing import Any

import structlog

from opencode_metrics.client.fetch import (
    FetchClient,
    FetchError,
    StreamEndedError,
    UnhealthyServerError,
)
from opencode_metrics.events.bus import EventBus, ExporterEvent
from opencode_metrics.events.framing import LineFramer
from opencode_metrics.events.normalizer import (
    MalformedRecordError,
    normalize_event,
    normalize_message,
    normalize_session,
)
from opencode_metrics.metrics.sink import MetricsSink
from opencode_metrics.models.config import ExporterConfig
from opencode_metrics.models.records import (
    ErrorEvent,
    MessageEvent,
    MessageRecord,
    PartEvent,
    SessionEvent,
    SessionInfo,
    StreamEvent,
)
from opencode_metrics.state.errors import ErrorRingBuffer
from opencode_metrics.state.ledger import DedupLedger
from opencode_metrics.state.registry import SessionRegistry


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    HEALTH_CHECKING = "health_checking"
    BACKFILLING = "backfilling"
    STREAMING = "streaming"
    """Consuming the event stream while the poll task runs alongside."""


class Provenance(StrEnum):
    """Whether a counted increment reflects history or live activity."""

    HISTORICAL = "historical"
    LIVE = "live"


class Source(StrEnum):
    """Which channel an observation arrived through."""

    BACKFILL = "backfill"
    POLL = "poll"
    STREAM = "stream"


class ReconciliationEngine:
    """
    Owns the exporter's state and turns observations into metric increments.

    The engine combines three views of the same server:

    - **Backfill** — a full snapshot taken when a connection is established,
      counted with ``historical`` provenance.
    - **Stream** — the live ``/event`` feed.
    - **Poll** — a periodic snapshot that catches completions some providers
      never announce on the stream.

    Every message contribution passes through the same eligibility gate and
    :class:`DedupLedger`, so the same message seen on several channels is
    counted once. All state mutations are synchronous; the only suspension
    points are network awaits, so the dedup check and insert can never
    interleave between the stream consumer and the poll task.

    Example::

        engine = ReconciliationEngine(client, sink, config)
        try:
            await engine.connect_and_listen()
        except Exception as exc:
            await engine.handle_failure(exc)

    In production the loop above is run by :class:`ReconnectSupervisor`.
    """

    def __init__(
        self,
        client: FetchClient,
        sink: MetricsSink,
        config: ExporterConfig | None = None,
        *,
        event_bus: EventBus | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._sink = sink
        self._config = config or ExporterConfig()
        self._event_bus = event_bus or EventBus()
        self._instance_id = self._config.export.instance_id

        state = self._config.state
        self._registry = SessionRegistry()
        self._ledger = DedupLedger(state.ledger_max_size)
        self._created_sessions = DedupLedger(state.ledger_max_size)
        self._errors = ErrorRingBuffer(
            state.error_max_count, state.error_retention_secs, clock=clock
        )

        self._state = ConnectionState.DISCONNECTED
        self._reachable = False
        self._poll_task: asyncio.Task[None] | None = None
        self._deleted_since_poll: set[str] = set()
        """Ids deleted on the stream while a poll snapshot was in flight."""
        self._logger = structlog.get_logger("opencode_metrics.engine").bind(
            instance=self._instance_id
        )

        sink.bind_info(sessions=self.session_info, errors=self.error_info)

    # ── Connect-and-listen cycle ────────────────────────────────────────────────

    async def connect_and_listen(self, on_healthy: Callable[[], None] | None = None) -> None:
        """
        Run one full connection: health check, reset, backfill, poll + stream.

        Never returns normally. When the stream ends a :class:`StreamEndedError`
        is raised because the server is expected to stream for as long as it
        is healthy.

        Args:
            on_healthy: Called once the health check succeeds (the supervisor
                uses it to reset its attempt counter).

        Raises:
            TransportError: On any transport failure, including stream end.
        """
        self._logger.info("connecting", url=self._client.base_url)
        self._state = ConnectionState.HEALTH_CHECKING
        await self.check_health()
        if on_healthy is not None:
            on_healthy()

        self.reset_membership()

        self._state = ConnectionState.BACKFILLING
        await self.backfill()

        self.start_polling()
        self._state = ConnectionState.STREAMING
        try:
            await self.consume_stream()
        finally:
            await self.stop_polling()
        raise StreamEndedError("event stream ended")

    async def check_health(self) -> None:
        """
        Probe ``/global/health`` and mark the server reachable.

        Raises:
            FetchError: If the probe fails.
            UnhealthyServerError: If the server reports itself unhealthy.
        """
        health = await self._client.health()
        if not health.healthy:
            raise UnhealthyServerError("OpenCode server not healthy")
        self._set_reachable(True)
        self._logger.info("connected", version=health.version)
        self._event_bus.publish(
            ExporterEvent.CONNECTION_ESTABLISHED,
            {"url": self._client.base_url, "version": health.version},
        )

    def reset_membership(self) -> None:
        """
        Forget tracked sessions at the start of a fresh connection.

        The active gauge is decremented by exactly the number dropped, so the
        backfill that follows can re-register sessions without double counting.
        The dedup ledger and the error buffer survive.
        """
        self._deleted_since_poll.clear()
        dropped = self._registry.clear()
        if dropped:
            self._sink.active_sessions_changed(-dropped)
            self._logger.debug("membership_reset", dropped=dropped)

    async def backfill(self) -> int:
        """
        Register every current session and count its completed history.

        Per-session message fetch failures are skipped.

        Returns:
            Number of messages newly counted.

        Raises:
            FetchError: If the session list itself cannot be fetched.
        """
        sessions = self._parse_sessions(await self._client.list_sessions())
        self._logger.info("backfill_started", sessions=len(sessions))

        counted = 0
        for session in sessions:
            self._track_session(session, Source.BACKFILL)
            counted += await self._count_session_messages(
                session.id, Provenance.HISTORICAL, Source.BACKFILL
            )

        self._logger.info("backfill_completed", sessions=len(sessions), messages=counted)
        self._event_bus.publish(
            ExporterEvent.BACKFILL_COMPLETED,
            {"sessions": len(sessions), "messages_counted": counted},
        )
        return counted

    async def consume_stream(self) -> None:
        """Read the event stream until it ends, dispatching every frame."""
        framer = LineFramer()
        async with self._client.stream_events() as chunks:
            self._logger.info("event_stream_subscribed")
            async for chunk in chunks:
                for payload in framer.feed(chunk):
                    self.dispatch(payload)
        self._logger.info("event_stream_ended")

    async def handle_failure(self, exc: BaseException) -> None:
        """
        Convert a failed cycle into observable state.

        Marks the server unreachable, stops polling and records a
        ``connection`` error. Scheduling the retry is up to the caller.
        """
        self._state = ConnectionState.DISCONNECTED
        self._set_reachable(False)
        await self.stop_polling()
        error = str(exc) or type(exc).__name__
        self._logger.error("connection_failed", error=error)
        self.record_error("connection", error)
        self._event_bus.publish(
            ExporterEvent.CONNECTION_LOST, {"url": self._client.base_url, "error": error}
        )

    # ── Polling ─────────────────────────────────────────────────────────────────

    def start_polling(self) -> None:
        """Start the periodic re-poll task. No-op if it is already running."""
        if self._poll_task is not None and not self._poll_task.done():
            return
        self._poll_task = asyncio.create_task(self._poll_loop())

    async def stop_polling(self) -> None:
        """Cancel the re-poll task and wait for it to finish."""
        task, self._poll_task = self._poll_task, None
        if task is None or task.done():
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    @property
    def polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    async def _poll_loop(self) -> None:
        interval = self._config.poll_interval
        while True:
            await asyncio.sleep(interval)
            try:
                await self.poll_once()
            except Exception as exc:
                # Polling must never take the connection down.
                self._logger.debug("poll_failed", error=str(exc) or type(exc).__name__)

    async def poll_once(self) -> int:
        """
        Reconcile against a fresh snapshot.

        Registers unknown sessions, refreshes metadata of known ones and counts
        newly completed messages with ``live`` provenance.

        Returns:
            Number of messages newly counted.
        """
        self._deleted_since_poll.clear()
        snapshot = self._parse_sessions(await self._client.list_sessions())
        # The snapshot may predate a deletion seen on the stream meanwhile.
        sessions = [s for s in snapshot if s.id not in self._deleted_since_poll]
        for session in sessions:
            self._track_session(session, Source.POLL)

        counted = 0
        for session in sessions:
            counted += await self._count_session_messages(
                session.id, Provenance.LIVE, Source.POLL
            )

        if counted:
            self._logger.info("poll_counted", sessions=len(sessions), messages=counted)
        self._event_bus.publish(
            ExporterEvent.POLL_COMPLETED,
            {"sessions": len(sessions), "messages_counted": counted},
        )
        return counted

    # ── Stream dispatch ─────────────────────────────────────────────────────────

    def dispatch(self, payload: dict[str, Any]) -> None:
        """Normalize one raw stream frame and apply it. Malformed frames are skipped."""
        if self._config.verbose:
            self._logger.debug(
                "event_received",
                type=payload.get("type"),
                properties=json.dumps(payload.get("properties"))[:200],
            )
        try:
            event = normalize_event(payload)
        except MalformedRecordError as exc:
            self._logger.debug("event_malformed", type=payload.get("type"), error=str(exc))
            return
        if event is not None:
            self.handle_event(event)

    def handle_event(self, event: StreamEvent) -> None:
        """Apply a normalized stream event."""
        if isinstance(event, SessionEvent):
            if event.action == "deleted":
                self._deleted_since_poll.add(event.session.id)
                self._remove_session(event.session.id)
            else:
                self._track_session(event.session, Source.STREAM)
        elif isinstance(event, MessageEvent):
            self.account_message(event.message, Provenance.LIVE, Source.STREAM)
        elif isinstance(event, PartEvent):
            if event.part is not None:
                self._sink.tool_used(tool=event.part.tool, status=event.part.status)
                self._logger.debug("tool_used", tool=event.part.tool, status=event.part.status)
        elif isinstance(event, ErrorEvent):
            self.record_error(event.type, event.message)

    # ── Accounting ──────────────────────────────────────────────────────────────

    def account_message(
        self, message: MessageRecord, provenance: Provenance, source: Source
    ) -> bool:
        """
        Count a message's contribution if it is eligible and not yet counted.

        Eligibility is checked before the ledger so that in-progress updates
        never consume the dedup key of the final, completed message.

        Returns:
            True if counters were incremented.
        """
        if not message.is_countable or message.tokens is None:
            return False
        if not self._ledger.check_and_add(message.dedup_key):
            return False

        labels = {
            "model": message.model_id,
            "provider": message.provider_id,
            "provenance": str(provenance),
            "source": str(source),
        }
        self._sink.message_counted(role=message.role, **labels)
        tokens = message.tokens.by_kind()
        for kind, amount in tokens.items():
            self._sink.tokens_counted(amount, kind=kind, **labels)

        self._logger.debug(
            "message_counted", message_id=message.id, model=message.model_id, **tokens
        )
        self._event_bus.publish(
            ExporterEvent.MESSAGE_COUNTED,
            {
                "message_id": message.id,
                "role": message.role,
                "provenance": str(provenance),
                "source": str(source),
                "tokens": tokens,
            },
        )
        return True

    def record_error(self, error_type: str, message: str) -> None:
        """Retain an error observation and count it."""
        entry = self._errors.append(error_type, message, self._instance_id)
        self._sink.error_counted(error_type=entry.type)
        self._logger.warning("error_recorded", type=entry.type, message=message[:200])
        self._event_bus.publish(
            ExporterEvent.ERROR_RECORDED, {"type": entry.type, "message": message}
        )

    def _track_session(self, session: SessionInfo, source: Source) -> None:
        """Register or refresh a session; count its creation once per id."""
        if self._registry.upsert(session):
            self._sink.active_sessions_changed(1)
            self._logger.debug("session_registered", session_id=session.id, source=str(source))
            self._event_bus.publish(
                ExporterEvent.SESSION_REGISTERED,
                {"session_id": session.id, "source": str(source)},
            )
        if self._created_sessions.check_and_add(session.id):
            self._sink.session_created()

    def _remove_session(self, session_id: str) -> None:
        if not self._registry.remove(session_id):
            return
        self._sink.active_sessions_changed(-1)
        self._logger.debug("session_removed", session_id=session_id)
        self._event_bus.publish(ExporterEvent.SESSION_REMOVED, {"session_id": session_id})

    async def _count_session_messages(
        self, session_id: str, provenance: Provenance, source: Source
    ) -> int:
        try:
            items = await self._client.session_messages(session_id)
        except FetchError as exc:
            self._logger.debug("session_messages_skipped", session_id=session_id, error=str(exc))
            return 0

        counted = 0
        for item in items:
            try:
                message = normalize_message(item)
            except MalformedRecordError:
                continue
            if self.account_message(message, provenance, source):
                counted += 1
        return counted

    def _parse_sessions(self, items: list[Any]) -> list[SessionInfo]:
        sessions: list[SessionInfo] = []
        for item in items:
            try:
                sessions.append(normalize_session(item))
            except MalformedRecordError:
                continue
        return sessions

    # ── Emission views ──────────────────────────────────────────────────────────

    def session_info(self) -> list[dict[str, str]]:
        """Attributes for the session-info gauge, one dict per known session."""
        return [
            {
                "session_id": session.id,
                "slug": session.slug,
                "title": session.title,
                "directory": session.directory,
            }
            for session in self._registry
        ]

    def error_info(self) -> list[dict[str, str]]:
        """Attributes for the error-info gauge, pruned and truncated."""
        return self._errors.emit(self._config.state.error_message_max_chars)

    def _set_reachable(self, reachable: bool) -> None:
        self._reachable = reachable
        self._sink.set_reachable(reachable)

    # ── Lifecycle ───────────────────────────────────────────────────────────────

    async def close(self) -> None:
        """Stop background work. The fetch client is owned by the caller."""
        await self.stop_polling()
        self._state = ConnectionState.DISCONNECTED

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def reachable(self) -> bool:
        return self._reachable

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    @property
    def ledger(self) -> DedupLedger:
        return self._ledger

    @property
    def errors(self) -> ErrorRingBuffer:
        return self._errors

    @property
    def event_bus(self) -> EventBus:
        """The engine's event bus. Subscribe to observe reconciliation."""
        return self._event_bus
