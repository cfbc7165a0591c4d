"""Canonical record models produced by the event normalizer."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

# ── Sessions ───────────────────────────────────────────────────────────────────


class SessionInfo(BaseModel):
    """A top-level OpenCode session and its display metadata."""

    id: str = Field(min_length=1)
    slug: str = ""
    title: str = ""
    directory: str = ""

    def merged(self, incoming: SessionInfo) -> SessionInfo:
        """
        Return a copy with every non-empty field of ``incoming`` applied.

        Empty incoming fields never blank out known values.
        """
        updates: dict[str, str] = {}
        for name in ("slug", "title", "directory"):
            value = getattr(incoming, name)
            if value:
                updates[name] = value
        if not updates:
            return self
        return self.model_copy(update=updates)


# ── Token Usage ────────────────────────────────────────────────────────────────


class TokenUsage(BaseModel):
    """Token counts reported for a single assistant message."""

    input: int = Field(default=0, ge=0)
    output: int = Field(default=0, ge=0)
    reasoning: int = Field(default=0, ge=0)
    cache_read: int = Field(default=0, ge=0)
    cache_write: int = Field(default=0, ge=0)

    def by_kind(self) -> dict[str, int]:
        """Return the non-zero counts keyed by their metric label."""
        kinds = {
            "input": self.input,
            "output": self.output,
            "reasoning": self.reasoning,
            "cacheRead": self.cache_read,
            "cacheWrite": self.cache_write,
        }
        return {kind: value for kind, value in kinds.items() if value}


# ── Messages ───────────────────────────────────────────────────────────────────


class MessageRecord(BaseModel):
    """
    A message observed via the stream, a poll, or backfill.

    ``tokens`` is ``None`` when the upstream did not report usage at all, which
    is distinct from a usage block whose counts are all zero.
    """

    id: str = Field(min_length=1)
    role: str = "unknown"
    model_id: str = "unknown"
    provider_id: str = "unknown"
    tokens: TokenUsage | None = None
    completed: bool = False

    @property
    def dedup_key(self) -> str:
        return f"{self.id}-{self.role}"

    @property
    def is_countable(self) -> bool:
        """Only finished assistant messages that carry token usage are counted."""
        return self.role == "assistant" and self.completed and self.tokens is not None


class ToolPartRecord(BaseModel):
    """A tool invocation part of a message."""

    type: str
    tool: str = "unknown"
    status: str = "unknown"


# ── Errors ─────────────────────────────────────────────────────────────────────


class ErrorObservation(BaseModel):
    """An error captured from the stream or from a failed connection attempt."""

    timestamp: float
    """Capture time (epoch seconds), not the upstream event time."""
    type: str = "unknown"
    message: str = ""
    """Full message text. Truncated only when emitted."""
    source: str = ""
    """Instance identifier of the exporter that observed the error."""


# ── Normalized stream events ───────────────────────────────────────────────────


class SessionEvent(BaseModel):
    kind: Literal["session"] = "session"
    action: Literal["created", "updated", "deleted"]
    session: SessionInfo


class MessageEvent(BaseModel):
    kind: Literal["message"] = "message"
    message: MessageRecord


class PartEvent(BaseModel):
    kind: Literal["part"] = "part"
    part: ToolPartRecord | None = None
    """``None`` for parts that are not tool invocations."""


class ErrorEvent(BaseModel):
    kind: Literal["error"] = "error"
    type: str = "unknown"
    message: str = "unknown"


StreamEvent = SessionEvent | MessageEvent | PartEvent | ErrorEvent
