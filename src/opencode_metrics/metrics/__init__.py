"""Metric emission."""

from opencode_metrics.metrics.sink import (
    METER_NAME,
    MetricsSink,
    OTelMetricsSink,
    create_meter_provider,
)

__all__ = ["METER_NAME", "MetricsSink", "OTelMetricsSink", "create_meter_provider"]
