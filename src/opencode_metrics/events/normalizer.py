"""
Normalization of raw OpenCode payloads into canonical records.

The server is not consistent about payload shape: the same record may arrive
flat (``{"id": ..., "role": ...}``) or nested one level under a sub-object
(``{"info": {"id": ..., "role": ...}}``). Everything in this module resolves
that ambiguity once, so the engine only ever sees the models from
:mod:`opencode_metrics.models.records`.

All functions are pure. Shapes that cannot be interpreted raise
:class:`MalformedRecordError`; callers skip the offending item.
"""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from opencode_metrics.models.records import (
    ErrorEvent,
    MessageEvent,
    MessageRecord,
    PartEvent,
    SessionEvent,
    SessionInfo,
    StreamEvent,
    TokenUsage,
    ToolPartRecord,
)

TOOL_PART_TYPES = frozenset({"tool-invocation", "tool-result", "tool"})
SESSION_EVENT_TYPES = frozenset({"session.created", "session.updated", "session.deleted"})


class MalformedRecordError(ValueError):
    """Raised when a payload does not have a usable shape."""


# ── Helpers ────────────────────────────────────────────────────────────────────


def unwrap(payload: Any, *keys: str) -> dict[str, Any]:
    """
    Return the first nested dict found under ``keys``, else the payload itself.

    Raises:
        MalformedRecordError: If ``payload`` is not a dict.
    """
    if not isinstance(payload, dict):
        raise MalformedRecordError(f"expected an object, got {type(payload).__name__}")
    for key in keys:
        nested = payload.get(key)
        if isinstance(nested, dict):
            return nested
    return payload


def _text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _first_text(*values: Any, default: str = "unknown") -> str:
    for value in values:
        text = _text(value)
        if text:
            return text
    return default


def _count(value: Any) -> int:
    """Token count as an int. Absent counts are 0; ``2.0`` is accepted, ``1.5`` or NaN are not."""
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedRecordError(f"token count must be a number, got {value!r}")
    # is_integer() is False for NaN and infinities too
    if isinstance(value, float) and not value.is_integer():
        raise MalformedRecordError(f"token count must be a whole number, got {value!r}")
    return int(value)


def _validate(model: type, **fields: Any) -> Any:
    try:
        return model(**fields)
    except ValidationError as exc:
        raise MalformedRecordError(str(exc)) from exc


# ── Records ────────────────────────────────────────────────────────────────────


def normalize_session(payload: Any) -> SessionInfo:
    """Normalize a session object (flat or nested under ``info``)."""
    data = unwrap(payload, "info")
    return _validate(
        SessionInfo,
        id=_text(data.get("id")),
        slug=_text(data.get("slug")),
        title=_text(data.get("title")),
        directory=_text(data.get("directory")),
    )


def normalize_tokens(data: dict[str, Any]) -> TokenUsage | None:
    """
    Extract token usage from a message object.

    Accepts the current ``tokens`` block and the older ``usage`` block.
    Returns ``None`` when neither is present.
    """
    tokens = data.get("tokens")
    if isinstance(tokens, dict):
        cache = tokens.get("cache")
        cache = cache if isinstance(cache, dict) else {}
        return _validate(
            TokenUsage,
            input=_count(tokens.get("input")),
            output=_count(tokens.get("output")),
            reasoning=_count(tokens.get("reasoning")),
            cache_read=_count(cache.get("read")),
            cache_write=_count(cache.get("write")),
        )
    usage = data.get("usage")
    if isinstance(usage, dict):
        return _validate(
            TokenUsage,
            input=_count(usage.get("inputTokens")),
            output=_count(usage.get("outputTokens")),
            reasoning=_count(usage.get("reasoningTokens")),
            cache_read=_count(usage.get("cacheReadTokens")),
            cache_write=_count(usage.get("cacheWriteTokens")),
        )
    return None


def is_completed(data: dict[str, Any]) -> bool:
    """A message is finished once it carries ``finish`` or ``time.completed``."""
    if data.get("finish"):
        return True
    timing = data.get("time")
    return isinstance(timing, dict) and bool(timing.get("completed"))


def normalize_message(payload: Any) -> MessageRecord:
    """Normalize a message (stream properties or a ``/message`` list item)."""
    data = unwrap(payload, "info")
    model = data.get("model")
    model = model if isinstance(model, dict) else {}
    return _validate(
        MessageRecord,
        id=_text(data.get("id")),
        role=_first_text(data.get("role")),
        model_id=_first_text(data.get("modelID"), model.get("modelID")),
        provider_id=_first_text(data.get("providerID"), model.get("providerID")),
        tokens=normalize_tokens(data),
        completed=is_completed(data),
    )


def normalize_part(payload: Any) -> ToolPartRecord | None:
    """Normalize a message part. Returns ``None`` for non-tool parts."""
    data = unwrap(payload, "part", "info")
    part_type = _text(data.get("type"))
    if part_type not in TOOL_PART_TYPES:
        return None

    invocation = data.get("toolInvocation")
    invocation = invocation if isinstance(invocation, dict) else {}
    state = data.get("state")
    status = state.get("status") if isinstance(state, dict) else state

    return ToolPartRecord(
        type=part_type,
        tool=_first_text(invocation.get("toolName"), data.get("toolName"), data.get("tool")),
        status=_first_text(invocation.get("state"), status),
    )


def normalize_error(payload: Any) -> ErrorEvent:
    """Normalize an upstream ``error`` event body."""
    if payload is None:
        return ErrorEvent()
    data = unwrap(payload, "error")
    details = data.get("data")
    details = details if isinstance(details, dict) else {}
    return ErrorEvent(
        type=_first_text(data.get("code"), data.get("name")),
        message=_first_text(data.get("message"), details.get("message")),
    )


# ── Stream events ──────────────────────────────────────────────────────────────


def normalize_event(event: Any) -> StreamEvent | None:
    """
    Turn a raw ``{type, properties}`` frame into a tagged stream event.

    Returns:
        The normalized event, or ``None`` for event types that are not tracked.

    Raises:
        MalformedRecordError: If a tracked event has an unusable body.
    """
    if not isinstance(event, dict):
        raise MalformedRecordError("event frame must be an object")
    event_type = event.get("type")
    properties = event.get("properties")

    if event_type in SESSION_EVENT_TYPES:
        action = event_type.split(".", 1)[1]
        return SessionEvent(action=action, session=normalize_session(properties))
    if event_type in ("message.created", "message.updated"):
        return MessageEvent(message=normalize_message(properties))
    if event_type in ("part.created", "part.updated"):
        return PartEvent(part=normalize_part(properties))
    if event_type == "error":
        return normalize_error(properties)
    return None
