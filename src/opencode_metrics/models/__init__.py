"""opencode-metrics data models."""

from opencode_metrics.models.config import (
    ExportConfig,
    ExporterConfig,
    ReconnectConfig,
    ServerConfig,
    StateConfig,
)
from opencode_metrics.models.records import (
    ErrorEvent,
    ErrorObservation,
    MessageEvent,
    MessageRecord,
    PartEvent,
    SessionEvent,
    SessionInfo,
    StreamEvent,
    TokenUsage,
    ToolPartRecord,
)

__all__ = [
    # Config
    "ExportConfig",
    "ExporterConfig",
    "ReconnectConfig",
    "ServerConfig",
    "StateConfig",
    # Records
    "ErrorObservation",
    "MessageRecord",
    "SessionInfo",
    "TokenUsage",
    "ToolPartRecord",
    # Normalized events
    "ErrorEvent",
    "MessageEvent",
    "PartEvent",
    "SessionEvent",
    "StreamEvent",
]
