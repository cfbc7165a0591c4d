"""
Metrics sink: the engine's only way of reporting numbers.

:class:`MetricsSink` is the semantic contract the engine depends on.
:class:`OTelMetricsSink` fulfils it with OpenTelemetry instruments; the
exporter transport (OTLP/gRPC) and flushing are left to the SDK's
``PeriodicExportingMetricReader``.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Protocol

import structlog
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.metrics import CallbackOptions, Observation
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource

from opencode_metrics.models.config import ExporterConfig

METER_NAME = "opencode-metrics"

InfoSource = Callable[[], list[dict[str, str]]]


class MetricsSink(Protocol):
    """Counter and gauge operations the reconciliation engine emits."""

    def session_created(self) -> None: ...

    def active_sessions_changed(self, delta: int) -> None: ...

    def message_counted(
        self, *, role: str, model: str, provider: str, provenance: str, source: str
    ) -> None: ...

    def tokens_counted(
        self,
        amount: int,
        *,
        kind: str,
        model: str,
        provider: str,
        provenance: str,
        source: str,
    ) -> None: ...

    def tool_used(self, *, tool: str, status: str) -> None: ...

    def error_counted(self, *, error_type: str) -> None: ...

    def set_reachable(self, reachable: bool) -> None: ...

    def bind_info(self, *, sessions: InfoSource, errors: InfoSource) -> None:
        """Register the callables that enumerate sessions and errors at collection time."""
        ...


class OTelMetricsSink:
    """
    OpenTelemetry implementation of :class:`MetricsSink`.

    Counters and the active-session up/down counter are synchronous
    instruments. The liveness gauge and the two info gauges are observable:
    their callbacks run at collection time and read the current state, so the
    info gauges always reflect what the engine holds at export.
    """

    def __init__(self, meter_provider: MeterProvider, instance_id: str) -> None:
        from opencode_metrics import __version__

        self._provider = meter_provider
        self._instance_id = instance_id
        self._reachable = 0
        self._session_info: InfoSource = list
        self._error_info: InfoSource = list
        self._logger = structlog.get_logger("opencode_metrics.metrics")

        meter = meter_provider.get_meter(METER_NAME, __version__)
        self._session_counter = meter.create_counter(
            "opencode.session.count", unit="1", description="Count of OpenCode sessions"
        )
        self._message_counter = meter.create_counter(
            "opencode.message.count", unit="1", description="Count of completed messages"
        )
        self._token_counter = meter.create_counter(
            "opencode.token.usage", unit="tokens", description="Number of tokens used"
        )
        self._tool_counter = meter.create_counter(
            "opencode.tool.usage", unit="1", description="Count of tool usages"
        )
        self._error_counter = meter.create_counter(
            "opencode.error.count", unit="1", description="Count of errors"
        )
        self._active_sessions = meter.create_up_down_counter(
            "opencode.session.active", unit="1", description="Number of active sessions"
        )
        meter.create_observable_gauge(
            "opencode.up",
            callbacks=[self._observe_up],
            unit="1",
            description="Whether the OpenCode server was reachable (1) or not (0)",
        )
        meter.create_observable_gauge(
            "opencode.session.info",
            callbacks=[self._observe_sessions],
            unit="1",
            description="One series per currently known session",
        )
        meter.create_observable_gauge(
            "opencode.error.info",
            callbacks=[self._observe_errors],
            unit="1",
            description="One series per recently observed error",
        )

    # ── Counters ───────────────────────────────────────────────────────────────

    def session_created(self) -> None:
        self._session_counter.add(1)

    def active_sessions_changed(self, delta: int) -> None:
        if delta:
            self._active_sessions.add(delta)

    def message_counted(
        self, *, role: str, model: str, provider: str, provenance: str, source: str
    ) -> None:
        self._message_counter.add(
            1,
            {
                "role": role,
                "model": model,
                "provider": provider,
                "provenance": provenance,
                "source": source,
            },
        )

    def tokens_counted(
        self,
        amount: int,
        *,
        kind: str,
        model: str,
        provider: str,
        provenance: str,
        source: str,
    ) -> None:
        self._token_counter.add(
            amount,
            {
                "type": kind,
                "model": model,
                "provider": provider,
                "provenance": provenance,
                "source": source,
            },
        )

    def tool_used(self, *, tool: str, status: str) -> None:
        self._tool_counter.add(1, {"tool": tool, "status": status})

    def error_counted(self, *, error_type: str) -> None:
        self._error_counter.add(1, {"type": error_type})

    # ── Gauges ─────────────────────────────────────────────────────────────────

    def set_reachable(self, reachable: bool) -> None:
        self._reachable = 1 if reachable else 0

    def bind_info(self, *, sessions: InfoSource, errors: InfoSource) -> None:
        self._session_info = sessions
        self._error_info = errors

    def _observe_up(self, options: CallbackOptions) -> Iterable[Observation]:
        yield Observation(self._reachable, {"instance": self._instance_id})

    def _observe_sessions(self, options: CallbackOptions) -> Iterable[Observation]:
        for attributes in self._session_info():
            yield Observation(1, {**attributes, "instance": self._instance_id})

    def _observe_errors(self, options: CallbackOptions) -> Iterable[Observation]:
        for attributes in self._error_info():
            yield Observation(1, attributes)

    # ── Lifecycle ──────────────────────────────────────────────────────────────

    def shutdown(self, timeout_millis: float = 5_000) -> None:
        """Export what is pending and stop the provider, waiting at most ``timeout_millis``."""
        self._provider.shutdown(timeout_millis=timeout_millis)
        self._logger.info("metrics_shutdown")


def create_meter_provider(config: ExporterConfig) -> MeterProvider:
    """
    Build a ``MeterProvider`` that pushes to the configured OTLP/gRPC endpoint.

    Plain ``http://`` endpoints are dialled without TLS.
    """
    from opencode_metrics import __version__

    resource = Resource.create(
        {
            SERVICE_NAME: "opencode",
            SERVICE_VERSION: __version__,
            "service.instance.id": config.export.instance_id,
        }
    )
    exporter = OTLPMetricExporter(
        endpoint=config.export.endpoint,
        insecure=config.export.endpoint.startswith("http://"),
    )
    reader = PeriodicExportingMetricReader(
        exporter, export_interval_millis=config.export.interval_ms
    )
    return MeterProvider(resource=resource, metric_readers=[reader])
