"""HTTP client for the observed OpenCode server."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any
from urllib.parse import quote

import httpx
import structlog
from pydantic import BaseModel, field_validator

# ── Exceptions ─────────────────────────────────────────────────────────────────


class TransportError(Exception):
    """Base class for failures that require a reconnect."""


class FetchError(TransportError):
    """Raised when a request fails or returns a non-success status."""

    def __init__(self, path: str, reason: str, status: int | None = None) -> None:
        super().__init__(f"GET {path} failed: {reason}")
        self.path = path
        self.reason = reason
        self.status = status


class UnhealthyServerError(TransportError):
    """Raised when the health endpoint answers but reports the server unhealthy."""


class StreamEndedError(TransportError):
    """Raised when the event stream terminates; the server is expected to stream forever."""


# ── Responses ──────────────────────────────────────────────────────────────────


class HealthStatus(BaseModel):
    """Body of ``GET /global/health``."""

    healthy: bool = False
    version: str = "unknown"

    @field_validator("version", mode="before")
    @classmethod
    def default_missing_version(cls, value: object) -> object:
        return "unknown" if value is None else value


# ── Client ─────────────────────────────────────────────────────────────────────


class FetchClient:
    """
    Thin async wrapper around ``httpx.AsyncClient`` for the OpenCode API.

    Stateless apart from the underlying connection pool. JSON requests use the
    transport's default timeout; the event stream is read without a read
    timeout since it may stay idle for long periods.

    Example::

        async with FetchClient("http://localhost:4096") as client:
            health = await client.health()
            async with client.stream_events() as chunks:
                async for chunk in chunks:
                    ...
    """

    STREAM_TIMEOUT = httpx.Timeout(5.0, read=None)

    def __init__(
        self,
        base_url: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(base_url=self._base_url, transport=transport)
        self._logger = structlog.get_logger("opencode_metrics.client")

    @property
    def base_url(self) -> str:
        return self._base_url

    async def get_json(self, path: str) -> Any:
        """
        GET ``path`` and decode the JSON body.

        Raises:
            FetchError: On network failure, non-2xx status, or an undecodable body.
        """
        try:
            response = await self._client.get(path)
        except httpx.HTTPError as exc:
            raise FetchError(path, str(exc) or type(exc).__name__) from exc
        if not response.is_success:
            raise FetchError(
                path, f"HTTP {response.status_code}: {response.reason_phrase}", response.status_code
            )
        try:
            return response.json()
        except ValueError as exc:
            raise FetchError(path, "invalid JSON body", response.status_code) from exc

    async def health(self) -> HealthStatus:
        """Query ``/global/health``."""
        body = await self.get_json("/global/health")
        if not isinstance(body, dict):
            return HealthStatus()
        return HealthStatus.model_validate(body)

    async def list_sessions(self) -> list[Any]:
        """Return the raw session objects from ``/session``."""
        body = await self.get_json("/session")
        if not isinstance(body, list):
            raise FetchError("/session", "expected a JSON array")
        return body

    async def session_messages(self, session_id: str) -> list[Any]:
        """Return the raw ``{info, parts}`` items of one session."""
        path = f"/session/{quote(session_id, safe='')}/message"
        body = await self.get_json(path)
        if not isinstance(body, list):
            raise FetchError(path, "expected a JSON array")
        return body

    @asynccontextmanager
    async def stream_events(self, path: str = "/event") -> AsyncIterator[AsyncIterator[bytes]]:
        """
        Open the event stream and yield an iterator over its raw byte chunks.

        Raises:
            FetchError: If the stream cannot be opened or returns a non-2xx status.
        """
        try:
            async with self._client.stream("GET", path, timeout=self.STREAM_TIMEOUT) as response:
                if not response.is_success:
                    raise FetchError(
                        path,
                        f"failed to connect to event stream: HTTP {response.status_code}",
                        response.status_code,
                    )
                self._logger.debug("event_stream_opened", url=f"{self._base_url}{path}")
                yield response.aiter_bytes()
        except httpx.HTTPError as exc:
            raise FetchError(path, str(exc) or type(exc).__name__) from exc

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> FetchClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()
