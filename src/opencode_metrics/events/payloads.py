"""Typed payload definitions for each ExporterEvent.

Usage example::

    from opencode_metrics.events.bus import EventBus, ExporterEvent
    from opencode_metrics.events.payloads import MessageCountedPayload

    def on_counted(event: ExporterEvent, payload: MessageCountedPayload) -> None:
        print(f"{payload['message_id']}: {payload['tokens']}")

    bus.subscribe(ExporterEvent.MESSAGE_COUNTED, on_counted)  # type: ignore[arg-type]
"""

from __future__ import annotations

from typing import TypedDict

# ── Connection lifecycle ──────────────────────────────────────────────────────


class ConnectionEstablishedPayload(TypedDict):
    """Payload for :attr:`ExporterEvent.CONNECTION_ESTABLISHED`."""

    url: str
    version: str
    """Server version reported by the health endpoint."""


class ConnectionLostPayload(TypedDict):
    """Payload for :attr:`ExporterEvent.CONNECTION_LOST`."""

    url: str
    error: str


# ── Snapshot reconciliation ───────────────────────────────────────────────────


class BackfillCompletedPayload(TypedDict):
    """Payload for :attr:`ExporterEvent.BACKFILL_COMPLETED`."""

    sessions: int
    """Number of sessions in the snapshot."""
    messages_counted: int
    """Messages newly counted with historical provenance."""


class PollCompletedPayload(TypedDict):
    """Payload for :attr:`ExporterEvent.POLL_COMPLETED`."""

    sessions: int
    messages_counted: int


# ── State mutations ───────────────────────────────────────────────────────────


class SessionRegisteredPayload(TypedDict):
    """Payload for :attr:`ExporterEvent.SESSION_REGISTERED`."""

    session_id: str
    source: str
    """``"backfill"``, ``"poll"`` or ``"stream"``."""


class SessionRemovedPayload(TypedDict):
    """Payload for :attr:`ExporterEvent.SESSION_REMOVED`."""

    session_id: str


class MessageCountedPayload(TypedDict):
    """Payload for :attr:`ExporterEvent.MESSAGE_COUNTED`."""

    message_id: str
    role: str
    provenance: str
    """``"historical"`` or ``"live"``."""
    source: str
    tokens: dict[str, int]
    """Non-zero token counts keyed by metric label."""


class ErrorRecordedPayload(TypedDict):
    """Payload for :attr:`ExporterEvent.ERROR_RECORDED`."""

    type: str
    message: str
