"""Tests for configuration models and environment parsing."""

from __future__ import annotations

import socket

import pytest
from pydantic import ValidationError

from opencode_metrics.models.config import (
    ExportConfig,
    ExporterConfig,
    ReconnectConfig,
    ServerConfig,
    StateConfig,
)


class TestDefaults:
    def test_top_level_defaults(self) -> None:
        cfg = ExporterConfig(export=ExportConfig(instance_id="host-a"))
        assert cfg.server.url == "http://host.docker.internal:4096"
        assert cfg.export.endpoint == "http://otel-collector:4317"
        assert cfg.export.interval_ms == 10_000
        assert cfg.poll_interval_ms == 30_000
        assert cfg.poll_interval == 30.0
        assert cfg.verbose is False

    def test_state_defaults(self) -> None:
        state = StateConfig()
        assert state.ledger_max_size == 10_000
        assert state.error_max_count == 100
        assert state.error_retention_secs == 3_600
        assert state.error_message_max_chars == 200

    def test_instance_id_defaults_to_hostname(self) -> None:
        assert ExportConfig().instance_id == socket.gethostname()

    def test_server_url_trailing_slash_stripped(self) -> None:
        assert ServerConfig(url="http://localhost:4096/").url == "http://localhost:4096"


class TestBounds:
    def test_poll_interval_lower_bound(self) -> None:
        with pytest.raises(ValidationError):
            ExporterConfig(poll_interval_ms=10)

    def test_export_interval_lower_bound(self) -> None:
        with pytest.raises(ValidationError):
            ExportConfig(interval_ms=0, instance_id="x")

    def test_ledger_needs_room_to_evict(self) -> None:
        with pytest.raises(ValidationError):
            StateConfig(ledger_max_size=1)

    def test_reconnect_base_not_above_cap(self) -> None:
        with pytest.raises(ValidationError):
            ReconnectConfig(base_delay_ms=60_000)


class TestDelayFor:
    def test_doubles_until_cap(self) -> None:
        cfg = ReconnectConfig()
        assert [cfg.delay_for(n) for n in range(6)] == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0]

    def test_huge_attempt_stays_at_cap(self) -> None:
        assert ReconnectConfig().delay_for(10_000) == 30.0


class TestFromEnv:
    def test_empty_environment_uses_defaults(self) -> None:
        cfg = ExporterConfig.from_env({"INSTANCE_ID": "i-1"})
        assert cfg == ExporterConfig(export=ExportConfig(instance_id="i-1"))

    def test_reads_every_variable(self) -> None:
        cfg = ExporterConfig.from_env(
            {
                "OPENCODE_URL": "http://opencode:4096/",
                "OTEL_EXPORTER_OTLP_ENDPOINT": "collector:4317",
                "EXPORT_INTERVAL": "5000",
                "POLL_INTERVAL": "2000",
                "INSTANCE_ID": "worker-2",
                "RECONNECT_BASE_DELAY": "500",
                "RECONNECT_MAX_DELAY": "8000",
                "ERROR_RETENTION": "600",
                "ERROR_MAX_COUNT": "25",
            }
        )
        assert cfg.server.url == "http://opencode:4096"
        assert cfg.export.endpoint == "collector:4317"
        assert cfg.export.interval_ms == 5_000
        assert cfg.export.instance_id == "worker-2"
        assert cfg.poll_interval_ms == 2_000
        assert cfg.reconnect == ReconnectConfig(base_delay_ms=500, max_delay_ms=8_000)
        assert cfg.state.error_retention_secs == 600
        assert cfg.state.error_max_count == 25

    def test_blank_values_are_ignored(self) -> None:
        cfg = ExporterConfig.from_env({"POLL_INTERVAL": "  ", "INSTANCE_ID": "i"})
        assert cfg.poll_interval_ms == 30_000

    @pytest.mark.parametrize(
        ("env", "expected"),
        [
            ({}, False),
            ({"DEBUG": "1"}, True),
            ({"VERBOSE": "true"}, True),
            ({"DEBUG": "Yes"}, True),
            ({"DEBUG": "0"}, False),
            ({"VERBOSE": "off"}, False),
        ],
    )
    def test_verbose_flags(self, env, expected) -> None:
        assert ExporterConfig.from_env({**env, "INSTANCE_ID": "i"}).verbose is expected

    def test_invalid_number_raises(self) -> None:
        with pytest.raises(ValidationError):
            ExporterConfig.from_env({"POLL_INTERVAL": "soon", "INSTANCE_ID": "i"})

    def test_falls_back_to_process_environment(self, monkeypatch) -> None:
        monkeypatch.setenv("OPENCODE_URL", "http://from-env:1234")
        monkeypatch.setenv("INSTANCE_ID", "proc")
        assert ExporterConfig.from_env().server.url == "http://from-env:1234"
