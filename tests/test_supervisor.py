"""Tests for ReconnectSupervisor backoff and lifecycle."""

from __future__ import annotations

import asyncio

import pytest

from opencode_metrics.engine import ConnectionState
from opencode_metrics.models.config import ReconnectConfig
from opencode_metrics.supervisor import ReconnectSupervisor
from tests.conftest import assistant_message, frame


def recording_sleep(stop_after: int):
    """Fake sleep that records delays and stops the supervisor after ``stop_after`` calls."""
    delays: list[float] = []
    holder: dict[str, ReconnectSupervisor] = {}

    async def sleep(delay: float) -> None:
        delays.append(delay)
        if len(delays) >= stop_after:
            holder["supervisor"].stop()

    return sleep, delays, holder


class TestBackoffDelay:
    @pytest.mark.parametrize(
        ("attempt", "expected"),
        [(1, 2.0), (2, 4.0), (3, 8.0), (4, 16.0), (5, 30.0), (6, 30.0), (1_000, 30.0)],
    )
    def test_default_policy(self, engine, attempt, expected):
        supervisor = ReconnectSupervisor(engine)
        assert supervisor.backoff_delay(attempt) == expected

    def test_custom_base_and_cap(self, engine):
        supervisor = ReconnectSupervisor(
            engine, ReconnectConfig(base_delay_ms=250, max_delay_ms=1_500)
        )
        assert [supervisor.backoff_delay(n) for n in range(1, 5)] == [0.5, 1.0, 1.5, 1.5]

    def test_base_above_cap_rejected(self):
        with pytest.raises(ValueError):
            ReconnectConfig(base_delay_ms=5_000, max_delay_ms=1_000)


class TestRun:
    async def test_unhealthy_server_backs_off_exponentially(self, engine, server, sink):
        """Consecutive failures double the delay and each records a connection error."""
        server.health = {"healthy": False}
        sleep, delays, holder = recording_sleep(stop_after=4)
        supervisor = ReconnectSupervisor(engine, sleep=sleep)
        holder["supervisor"] = supervisor

        await supervisor.run()

        assert delays == [2.0, 4.0, 8.0, 16.0]
        assert supervisor.attempt == 4
        assert sink.errors == ["connection"] * 4
        assert sink.reachable is False
        assert [e["type"] for e in engine.error_info()] == ["connection"] * 4

    async def test_health_fetch_failure_is_retried(self, engine, server, sink):
        server.failing.add("/global/health")
        sleep, delays, holder = recording_sleep(stop_after=2)
        supervisor = ReconnectSupervisor(engine, sleep=sleep)
        holder["supervisor"] = supervisor

        await supervisor.run()

        assert delays == [2.0, 4.0]
        assert "HTTP 500" in engine.error_info()[0]["message"]

    async def test_successful_health_check_resets_attempts(self, engine, server, sink):
        """A stream that ends right after a healthy check always retries at the base delay."""
        server.add_session("ses_1")
        server.add_message("ses_1", assistant_message("msg_1"))
        sleep, delays, holder = recording_sleep(stop_after=3)
        supervisor = ReconnectSupervisor(engine, sleep=sleep)
        holder["supervisor"] = supervisor

        await supervisor.run()

        assert delays == [2.0, 2.0, 2.0]
        assert sink.reachable is False
        assert sink.active == 1
        assert sink.message_total() == 1

    async def test_recovers_after_outage(self, engine, server, sink):
        server.health = {"healthy": False}
        delays: list[float] = []

        async def sleep(delay: float) -> None:
            delays.append(delay)
            if len(delays) == 2:
                server.health = {"healthy": True, "version": "1.0.0"}
                server.add_session("ses_1")
                server.streams.append(
                    [frame("message.updated", {"info": assistant_message("msg_live")})]
                )
            if len(delays) == 3:
                supervisor.stop()

        supervisor = ReconnectSupervisor(engine, sleep=sleep)
        await supervisor.run()

        assert delays == [2.0, 4.0, 2.0]
        assert sink.message_total(provenance="live", source="stream") == 1
        assert sink.errors == ["connection"] * 3

    async def test_stop_interrupts_default_backoff(self, engine, server):
        server.health = {"healthy": False}
        supervisor = ReconnectSupervisor(
            engine, ReconnectConfig(base_delay_ms=30_000, max_delay_ms=30_000)
        )
        task = asyncio.create_task(supervisor.run())
        while supervisor.attempt == 0:
            await asyncio.sleep(0.01)

        supervisor.stop()
        await asyncio.wait_for(task, timeout=1)

        assert supervisor.stopping
        assert engine.state == ConnectionState.DISCONNECTED

    async def test_cancellation_closes_engine(self, engine, server):
        """Cancelling mid-stream stops the poll task before run() exits."""
        gate = asyncio.Event()

        async def endless():
            yield frame("server.connected", {})
            await gate.wait()

        server.stream_body = endless
        supervisor = ReconnectSupervisor(engine)
        task = asyncio.create_task(supervisor.run())
        while engine.state != ConnectionState.STREAMING:
            await asyncio.sleep(0.01)
        assert engine.polling

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert not engine.polling
        assert engine.state == ConnectionState.DISCONNECTED
