"""
opencode-metrics — OpenTelemetry metrics for a running OpenCode server.

Primary entry point::

    from opencode_metrics import ExporterConfig, FetchClient, ReconciliationEngine
    from opencode_metrics import ReconnectSupervisor, OTelMetricsSink, create_meter_provider

    config = ExporterConfig.from_env()
    sink = OTelMetricsSink(create_meter_provider(config), config.export.instance_id)
    async with FetchClient(config.server.url) as client:
        engine = ReconciliationEngine(client, sink, config)
        await ReconnectSupervisor(engine, config.reconnect).run()
"""

from opencode_metrics.client.fetch import (
    FetchClient,
    FetchError,
    HealthStatus,
    StreamEndedError,
    TransportError,
    UnhealthyServerError,
)
from opencode_metrics.engine import ConnectionState, Provenance, ReconciliationEngine, Source
from opencode_metrics.events.bus import EventBus, ExporterEvent
from opencode_metrics.events.framing import LineFramer
from opencode_metrics.events.normalizer import MalformedRecordError, normalize_event
from opencode_metrics.metrics.sink import MetricsSink, OTelMetricsSink, create_meter_provider
from opencode_metrics.models import (
    ErrorObservation,
    ExportConfig,
    ExporterConfig,
    MessageRecord,
    ReconnectConfig,
    ServerConfig,
    SessionInfo,
    StateConfig,
    TokenUsage,
    ToolPartRecord,
)
from opencode_metrics.state import DedupLedger, ErrorRingBuffer, SessionRegistry
from opencode_metrics.supervisor import ReconnectSupervisor

__version__ = "0.1.0"

__all__ = [
    # Core
    "ReconciliationEngine",
    "ReconnectSupervisor",
    "ConnectionState",
    "Provenance",
    "Source",
    # Config
    "ExporterConfig",
    "ServerConfig",
    "ExportConfig",
    "ReconnectConfig",
    "StateConfig",
    # Records
    "SessionInfo",
    "MessageRecord",
    "TokenUsage",
    "ToolPartRecord",
    "ErrorObservation",
    # State
    "DedupLedger",
    "SessionRegistry",
    "ErrorRingBuffer",
    # Client
    "FetchClient",
    "HealthStatus",
    "TransportError",
    "FetchError",
    "UnhealthyServerError",
    "StreamEndedError",
    # Events
    "EventBus",
    "ExporterEvent",
    "LineFramer",
    "MalformedRecordError",
    "normalize_event",
    # Metrics
    "MetricsSink",
    "OTelMetricsSink",
    "create_meter_provider",
]
