"""Stream framing, normalization and the exporter event bus."""

from opencode_metrics.events.bus import EventBus, ExporterEvent, Handler
from opencode_metrics.events.framing import LineFramer
from opencode_metrics.events.normalizer import (
    MalformedRecordError,
    normalize_event,
    normalize_message,
    normalize_part,
    normalize_session,
)
from opencode_metrics.events.payloads import (
    BackfillCompletedPayload,
    ConnectionEstablishedPayload,
    ConnectionLostPayload,
    ErrorRecordedPayload,
    MessageCountedPayload,
    PollCompletedPayload,
    SessionRegisteredPayload,
    SessionRemovedPayload,
)

__all__ = [
    "BackfillCompletedPayload",
    "ConnectionEstablishedPayload",
    "ConnectionLostPayload",
    "ErrorRecordedPayload",
    "EventBus",
    "ExporterEvent",
    "Handler",
    "LineFramer",
    "MalformedRecordError",
    "MessageCountedPayload",
    "PollCompletedPayload",
    "SessionRegisteredPayload",
    "SessionRemovedPayload",
    "normalize_event",
    "normalize_message",
    "normalize_part",
    "normalize_session",
]
