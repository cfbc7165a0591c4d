"""
Example 01: Console Metrics
===========================

Runs the reconciliation engine against a local OpenCode server and prints
the collected metrics to stdout instead of pushing them over OTLP:
- Building a MeterProvider with the SDK's ConsoleMetricExporter
- Subscribing to engine lifecycle events on the EventBus
- Driving the engine with ReconnectSupervisor until Ctrl-C

Start an OpenCode server first (``opencode serve --port 4096``), then:
    uv run python examples/01_console_metrics.py http://localhost:4096
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path when running directly
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


async def main(url: str) -> None:
    from opentelemetry.sdk.metrics import MeterProvider
    from opentelemetry.sdk.metrics.export import (
        ConsoleMetricExporter,
        PeriodicExportingMetricReader,
    )

    from opencode_metrics import (
        EventBus,
        ExporterConfig,
        ExporterEvent,
        FetchClient,
        OTelMetricsSink,
        ReconciliationEngine,
        ReconnectSupervisor,
        ServerConfig,
    )
    from opencode_metrics.log import configure_logging

    configure_logging(verbose=False)
    config = ExporterConfig(server=ServerConfig(url=url), poll_interval_ms=5_000)

    reader = PeriodicExportingMetricReader(ConsoleMetricExporter(), export_interval_millis=5_000)
    provider = MeterProvider(metric_readers=[reader])
    sink = OTelMetricsSink(provider, config.export.instance_id)

    bus = EventBus()

    def on_counted(event, payload):
        print(f"  counted {payload['message_id']} ({payload['provenance']}/{payload['source']})")

    bus.subscribe(ExporterEvent.MESSAGE_COUNTED, on_counted)
    bus.subscribe(
        ExporterEvent.BACKFILL_COMPLETED,
        lambda e, p: print(f"Backfill: {p['sessions']} sessions, {p['messages_counted']} messages"),
    )

    async with FetchClient(config.server.url) as client:
        engine = ReconciliationEngine(client, sink, config, event_bus=bus)
        supervisor = ReconnectSupervisor(engine, config.reconnect)
        try:
            await supervisor.run()
        finally:
            sink.shutdown()


if __name__ == "__main__":
    try:
        asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else "http://localhost:4096"))
    except KeyboardInterrupt:
        print("\nStopped.")
