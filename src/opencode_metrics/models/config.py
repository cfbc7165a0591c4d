"""Configuration models for the exporter and its components."""

from __future__ import annotations

import os
import socket
from collections.abc import Mapping

from pydantic import BaseModel, Field, model_validator


class ServerConfig(BaseModel):
    """Where the observed OpenCode server lives."""

    url: str = Field(
        default="http://host.docker.internal:4096",
        description="Base URL of the observed server. A trailing slash is ignored.",
    )

    @model_validator(mode="after")
    def strip_trailing_slash(self) -> ServerConfig:
        self.url = self.url.rstrip("/")
        return self


class ExportConfig(BaseModel):
    """Configuration for the OTLP metrics exporter."""

    endpoint: str = Field(
        default="http://otel-collector:4317",
        description="OTLP/gRPC collector endpoint.",
    )

    interval_ms: int = Field(
        default=10_000,
        ge=100,
        description="Milliseconds between periodic metric exports.",
    )

    instance_id: str = Field(
        default_factory=socket.gethostname,
        min_length=1,
        description="Identifies this exporter in the liveness gauge and error observations.",
    )

    shutdown_timeout_ms: int = Field(
        default=5_000,
        ge=0,
        description="Upper bound for the final flush when the process is stopping.",
    )


class ReconnectConfig(BaseModel):
    """Exponential backoff policy for the reconnect supervisor."""

    base_delay_ms: int = Field(default=1_000, ge=1)
    max_delay_ms: int = Field(default=30_000, ge=1)

    @model_validator(mode="after")
    def validate_delays(self) -> ReconnectConfig:
        if self.base_delay_ms > self.max_delay_ms:
            raise ValueError("base_delay_ms must not exceed max_delay_ms")
        return self

    def delay_for(self, attempt: int) -> float:
        """
        Return the backoff delay in seconds for the given attempt number.

        The exponent grows without bound; only the resulting delay is capped.
        """
        # Avoid computing huge powers once the cap is certainly reached.
        if attempt >= 64:
            return self.max_delay_ms / 1000
        return min(self.base_delay_ms * 2**attempt, self.max_delay_ms) / 1000


class StateConfig(BaseModel):
    """Bounds for the engine's in-memory state."""

    ledger_max_size: int = Field(
        default=10_000,
        ge=2,
        description="Dedup ledger size that triggers eviction of the oldest half.",
    )

    error_max_count: int = Field(
        default=100,
        ge=1,
        description="Hard cap on retained error observations.",
    )

    error_retention_secs: float = Field(
        default=3_600.0,
        gt=0,
        description="Error observations older than this are not reported.",
    )

    error_message_max_chars: int = Field(
        default=200,
        ge=1,
        description="Error messages are truncated to this length when emitted.",
    )


class ExporterConfig(BaseModel):
    """
    Top-level configuration for the metrics exporter.

    All sub-configs have defaults and can be overridden individually.

    Example::

        config = ExporterConfig(
            server=ServerConfig(url="http://localhost:4096"),
            poll_interval_ms=5_000,
        )

    Or from the process environment::

        config = ExporterConfig.from_env()
    """

    server: ServerConfig = Field(default_factory=ServerConfig)
    export: ExportConfig = Field(default_factory=ExportConfig)
    reconnect: ReconnectConfig = Field(default_factory=ReconnectConfig)
    state: StateConfig = Field(default_factory=StateConfig)

    poll_interval_ms: int = Field(
        default=30_000,
        ge=100,
        description="Milliseconds between snapshot re-polls.",
    )

    verbose: bool = False
    """Emit debug-level logs (per-event dumps, swallowed poll failures)."""

    @property
    def poll_interval(self) -> float:
        """Poll interval in seconds."""
        return self.poll_interval_ms / 1000

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ExporterConfig:
        """
        Build a config from environment variables.

        Unset or empty variables keep their defaults. Invalid values raise
        ``pydantic.ValidationError``.

        Args:
            environ: Mapping to read from. Defaults to ``os.environ``.
        """
        env = os.environ if environ is None else environ

        def pick(target: dict[str, object], key: str, var: str) -> None:
            value = env.get(var, "").strip()
            if value:
                target[key] = value

        server: dict[str, object] = {}
        export: dict[str, object] = {}
        reconnect: dict[str, object] = {}
        state: dict[str, object] = {}
        top: dict[str, object] = {}

        pick(server, "url", "OPENCODE_URL")
        pick(export, "endpoint", "OTEL_EXPORTER_OTLP_ENDPOINT")
        pick(export, "interval_ms", "EXPORT_INTERVAL")
        pick(export, "instance_id", "INSTANCE_ID")
        pick(reconnect, "base_delay_ms", "RECONNECT_BASE_DELAY")
        pick(reconnect, "max_delay_ms", "RECONNECT_MAX_DELAY")
        pick(state, "error_retention_secs", "ERROR_RETENTION")
        pick(state, "error_max_count", "ERROR_MAX_COUNT")
        pick(top, "poll_interval_ms", "POLL_INTERVAL")

        top["verbose"] = any(
            env.get(var, "").strip().lower() in ("1", "true", "yes", "on")
            for var in ("DEBUG", "VERBOSE")
        )

        return cls(
            server=ServerConfig(**server),
            export=ExportConfig(**export),
            reconnect=ReconnectConfig(**reconnect),
            state=StateConfig(**state),
            **top,
        )
