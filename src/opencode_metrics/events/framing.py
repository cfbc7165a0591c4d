"""Incremental framing of the server-sent event stream."""

from __future__ import annotations

import codecs
import json
from collections.abc import Iterator
from typing import Any

import structlog

DATA_PREFIX = "data: "

_logger = structlog.get_logger("opencode_metrics.events.framing")


class LineFramer:
    """
    Turns arbitrary byte chunks into complete ``data:`` JSON frames.

    Chunks may split lines (and multi-byte characters) anywhere. The trailing
    fragment after the last newline is held back until the next chunk.

    Example::

        framer = LineFramer()
        async for chunk in response.aiter_bytes():
            for payload in framer.feed(chunk):
                handle(payload)
    """

    def __init__(self, prefix: str = DATA_PREFIX) -> None:
        self._prefix = prefix
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    @property
    def pending(self) -> str:
        """The incomplete fragment carried over to the next chunk."""
        return self._buffer

    def lines(self, chunk: bytes) -> list[str]:
        """Return the complete lines made available by ``chunk``."""
        self._buffer += self._decoder.decode(chunk)
        *complete, self._buffer = self._buffer.split("\n")
        return [line.removesuffix("\r") for line in complete]

    def feed(self, chunk: bytes) -> Iterator[dict[str, Any]]:
        """
        Yield every JSON object carried by the complete lines of ``chunk``.

        Non-data lines are ignored; malformed JSON is skipped line by line.
        """
        for line in self.lines(chunk):
            if not line.startswith(self._prefix):
                continue
            try:
                payload = json.loads(line[len(self._prefix) :])
            except json.JSONDecodeError:
                _logger.debug("frame_unparsable", line=line[:200])
                continue
            if isinstance(payload, dict):
                yield payload
