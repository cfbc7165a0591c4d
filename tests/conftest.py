"""Shared fixtures for opencode-metrics tests."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Callable
from typing import Any

import httpx
import pytest
import pytest_asyncio

from opencode_metrics.client.fetch import FetchClient
from opencode_metrics.engine import ReconciliationEngine
from opencode_metrics.events.bus import EventBus, ExporterEvent
from opencode_metrics.models.config import ExportConfig, ExporterConfig

BASE_URL = "http://opencode.test"


class RecordingSink:
    """MetricsSink that keeps every call for assertions."""

    def __init__(self) -> None:
        self.sessions_created = 0
        self.active = 0
        self.active_deltas: list[int] = []
        self.messages: list[dict[str, str]] = []
        self.tokens: list[tuple[int, dict[str, str]]] = []
        self.tools: list[dict[str, str]] = []
        self.errors: list[str] = []
        self.reachable: bool | None = None
        self.session_info: Any = list
        self.error_info: Any = list

    def session_created(self) -> None:
        self.sessions_created += 1

    def active_sessions_changed(self, delta: int) -> None:
        self.active += delta
        self.active_deltas.append(delta)

    def message_counted(self, **labels: str) -> None:
        self.messages.append(labels)

    def tokens_counted(self, amount: int, **labels: str) -> None:
        self.tokens.append((amount, labels))

    def tool_used(self, **labels: str) -> None:
        self.tools.append(labels)

    def error_counted(self, *, error_type: str) -> None:
        self.errors.append(error_type)

    def set_reachable(self, reachable: bool) -> None:
        self.reachable = reachable

    def bind_info(self, *, sessions: Any, errors: Any) -> None:
        self.session_info = sessions
        self.error_info = errors

    def message_total(self, **labels: str) -> int:
        return sum(
            1 for m in self.messages if all(m.get(k) == v for k, v in labels.items())
        )

    def token_total(self, kind: str, **labels: str) -> int:
        return sum(
            amount
            for amount, lbl in self.tokens
            if lbl["kind"] == kind and all(lbl.get(k) == v for k, v in labels.items())
        )


class FakeServer:
    """In-memory OpenCode API served through ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self.health: dict[str, Any] = {"healthy": True, "version": "0.9.1"}
        self.sessions: list[dict[str, Any]] = []
        self.messages: dict[str, list[dict[str, Any]]] = {}
        self.streams: list[list[bytes]] = []
        """Chunks served by successive ``/event`` connections; empty stream once exhausted."""
        self.failing: set[str] = set()
        """Paths that answer with HTTP 500."""
        self.requests: list[str] = []
        self.stream_body: Callable[[], AsyncIterator[bytes]] | None = None
        """Overrides ``streams`` with a custom body, e.g. one that never ends."""
        self.raw: dict[str, bytes] = {}
        """Verbatim JSON bodies by path, for content ``json=`` refuses to encode."""
        self.on_request: Callable[[str], None] | None = None
        """Called with the path before each request is answered."""

    def add_session(self, session_id: str, **fields: Any) -> dict[str, Any]:
        session = {"id": session_id, **fields}
        self.sessions.append(session)
        self.messages.setdefault(session_id, [])
        return session

    def add_message(self, session_id: str, info: dict[str, Any]) -> None:
        self.messages.setdefault(session_id, []).append({"info": info, "parts": []})

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.requests.append(path)
        if self.on_request is not None:
            self.on_request(path)
        if path in self.raw:
            return httpx.Response(200, content=self.raw[path])
        if path in self.failing:
            return httpx.Response(500)
        if path == "/global/health":
            return httpx.Response(200, json=self.health)
        if path == "/session":
            return httpx.Response(200, json=self.sessions)
        if path.startswith("/session/") and path.endswith("/message"):
            session_id = path[len("/session/") : -len("/message")]
            if session_id not in self.messages:
                return httpx.Response(404)
            return httpx.Response(200, json=self.messages[session_id])
        if path == "/event":
            if self.stream_body is not None:
                return httpx.Response(200, content=self.stream_body())
            chunks = self.streams.pop(0) if self.streams else []
            return httpx.Response(200, content=_stream(chunks))
        return httpx.Response(404)


async def _stream(chunks: list[bytes]) -> AsyncIterator[bytes]:
    for chunk in chunks:
        yield chunk


def frame(event_type: str, properties: Any) -> bytes:
    """Encode one ``data:`` line as the server sends it."""
    return f"data: {json.dumps({'type': event_type, 'properties': properties})}\n".encode()


def assistant_message(
    msg_id: str,
    input: int = 10,
    output: int = 5,
    *,
    finish: str | None = "stop",
    tokens: bool = True,
    model: str = "claude-sonnet",
    provider: str = "anthropic",
) -> dict[str, Any]:
    """Helper to create a raw assistant message ``info`` object."""
    info: dict[str, Any] = {
        "id": msg_id,
        "role": "assistant",
        "modelID": model,
        "providerID": provider,
    }
    if tokens:
        info["tokens"] = {
            "input": input,
            "output": output,
            "reasoning": 0,
            "cache": {"read": 0, "write": 0},
        }
    if finish is not None:
        info["finish"] = finish
    return info


@pytest.fixture
def server() -> FakeServer:
    return FakeServer()


@pytest_asyncio.fixture
async def client(server):
    """FetchClient wired to the fake server."""
    c = FetchClient(BASE_URL, transport=httpx.MockTransport(server.handle))
    yield c
    await c.aclose()


@pytest.fixture
def config() -> ExporterConfig:
    """Config with a poll interval long enough never to fire during a test."""
    return ExporterConfig(
        export=ExportConfig(instance_id="test-instance"),
        poll_interval_ms=60_000,
    )


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def event_bus():
    """EventBus with a .collected list for asserting events."""
    bus = EventBus()
    collected: list[tuple[ExporterEvent, dict[str, Any]]] = []

    def _collect(event: ExporterEvent, payload: dict[str, Any]) -> None:
        collected.append((event, payload))

    bus.subscribe_all(_collect)
    bus.collected = collected  # type: ignore[attr-defined]
    return bus


@pytest_asyncio.fixture
async def engine(client, sink, config, event_bus):
    e = ReconciliationEngine(client, sink, config, event_bus=event_bus)
    yield e
    await e.close()
