"""Reconnect supervisor: retries the engine's connection cycle forever."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from opencode_metrics.engine import ReconciliationEngine
from opencode_metrics.models.config import ReconnectConfig

Sleep = Callable[[float], Awaitable[None]]


class ReconnectSupervisor:
    """
    Drives :meth:`ReconciliationEngine.connect_and_listen` in a loop.

    Every failure (including a normal end of the event stream) is handed to
    :meth:`ReconciliationEngine.handle_failure`, the attempt counter is
    incremented, and the next cycle starts after
    ``min(base * 2**attempt, cap)``. A successful health check resets the
    counter. There is no maximum number of attempts.

    Example::

        supervisor = ReconnectSupervisor(engine, config.reconnect)
        task = asyncio.create_task(supervisor.run())
        ...
        supervisor.stop()
        await task
    """

    def __init__(
        self,
        engine: ReconciliationEngine,
        config: ReconnectConfig | None = None,
        *,
        sleep: Sleep | None = None,
    ) -> None:
        self._engine = engine
        self._config = config or ReconnectConfig()
        self._sleep = sleep or self._wait_or_stop
        self._attempt = 0
        self._stopping = asyncio.Event()
        self._logger = structlog.get_logger("opencode_metrics.supervisor")

    @property
    def attempt(self) -> int:
        """Consecutive failures since the last successful health check."""
        return self._attempt

    def reset_attempts(self) -> None:
        self._attempt = 0

    def backoff_delay(self, attempt: int) -> float:
        """Delay in seconds before the retry that follows failure number ``attempt``."""
        return self._config.delay_for(attempt)

    def stop(self) -> None:
        """Ask :meth:`run` to return at the next opportunity."""
        self._stopping.set()

    @property
    def stopping(self) -> bool:
        return self._stopping.is_set()

    async def run(self) -> None:
        """
        Run connection cycles until :meth:`stop` is called or the task is cancelled.

        Never raises for connection problems.
        """
        try:
            while not self._stopping.is_set():
                try:
                    await self._engine.connect_and_listen(on_healthy=self.reset_attempts)
                except Exception as exc:
                    await self._engine.handle_failure(exc)
                if self._stopping.is_set():
                    break
                self._attempt += 1
                delay = self.backoff_delay(self._attempt)
                self._logger.info(
                    "reconnect_scheduled", delay_secs=delay, attempt=self._attempt
                )
                await self._sleep(delay)
        finally:
            # The stream read is abandoned on cancellation; only the poll task needs stopping.
            await self._engine.close()
            self._logger.info("supervisor_stopped")

    async def _wait_or_stop(self, delay: float) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=delay)
        except TimeoutError:
            pass
