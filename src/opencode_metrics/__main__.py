"""
Process entry point: ``python -m opencode_metrics`` or ``opencode-metrics``.

Configuration comes from the environment (see ``ExporterConfig.from_env``);
command-line flags override it.
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

import structlog

from opencode_metrics import __version__
from opencode_metrics.client.fetch import FetchClient
from opencode_metrics.engine import ReconciliationEngine
from opencode_metrics.log import configure_logging
from opencode_metrics.metrics.sink import OTelMetricsSink, create_meter_provider
from opencode_metrics.models.config import ExporterConfig
from opencode_metrics.supervisor import ReconnectSupervisor


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="opencode-metrics",
        description="Export OpenCode session, token and tool metrics over OTLP.",
    )
    p.add_argument("--url", help="OpenCode server URL (env: OPENCODE_URL)")
    p.add_argument("--endpoint", help="OTLP/gRPC endpoint (env: OTEL_EXPORTER_OTLP_ENDPOINT)")
    p.add_argument("--instance-id", help="Exporter instance identifier (env: INSTANCE_ID)")
    p.add_argument(
        "--verbose", "-v", action="store_true", help="Enable debug logging (env: DEBUG)"
    )
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return p.parse_args(argv)


def build_config(args: argparse.Namespace) -> ExporterConfig:
    config = ExporterConfig.from_env()
    updates: dict[str, object] = {}
    if args.url:
        updates["server"] = config.server.model_copy(update={"url": args.url.rstrip("/")})
    export_updates = {}
    if args.endpoint:
        export_updates["endpoint"] = args.endpoint
    if args.instance_id:
        export_updates["instance_id"] = args.instance_id
    if export_updates:
        updates["export"] = config.export.model_copy(update=export_updates)
    if args.verbose:
        updates["verbose"] = True
    return config.model_copy(update=updates) if updates else config


async def run(config: ExporterConfig) -> None:
    """Run the exporter until SIGINT or SIGTERM."""
    logger = structlog.get_logger("opencode_metrics")
    logger.info(
        "exporter_starting",
        version=__version__,
        opencode_url=config.server.url,
        otlp_endpoint=config.export.endpoint,
        instance=config.export.instance_id,
    )

    sink = OTelMetricsSink(create_meter_provider(config), config.export.instance_id)
    client = FetchClient(config.server.url)
    engine = ReconciliationEngine(client, sink, config)
    supervisor = ReconnectSupervisor(engine, config.reconnect)
    task = asyncio.create_task(supervisor.run())

    def _shutdown(signame: str) -> None:
        logger.info("shutting_down", signal=signame)
        supervisor.stop()
        task.cancel()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _shutdown, sig.name)

    try:
        await asyncio.gather(task, return_exceptions=True)
    finally:
        await client.aclose()
        # Exporting blocks on gRPC; keep it off the event loop.
        await asyncio.to_thread(sink.shutdown, config.export.shutdown_timeout_ms)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    config = build_config(args)
    configure_logging(config.verbose)
    asyncio.run(run(config))
    return 0


if __name__ == "__main__":
    sys.exit(main())
