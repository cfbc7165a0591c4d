"""Access to the observed server's HTTP API."""

from opencode_metrics.client.fetch import (
    FetchClient,
    FetchError,
    HealthStatus,
    StreamEndedError,
    TransportError,
    UnhealthyServerError,
)

__all__ = [
    "FetchClient",
    "FetchError",
    "HealthStatus",
    "StreamEndedError",
    "TransportError",
    "UnhealthyServerError",
]
