"""Bounded, time-windowed buffer of recent error observations."""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Callable

from opencode_metrics.models.records import ErrorObservation


class ErrorRingBuffer:
    """
    Keeps the most recent error observations for the error-info gauge.

    - At most ``max_count`` entries are held; appending beyond that drops the
      oldest entry.
    - Entries older than ``retention_secs`` are pruned lazily when the buffer
      is read, scanning from the front (oldest first).
    - Messages are stored in full and truncated only by :meth:`emit`.
    """

    def __init__(
        self,
        max_count: int = 100,
        retention_secs: float = 3_600.0,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._entries: deque[ErrorObservation] = deque(maxlen=max_count)
        self._retention = retention_secs
        self._clock = clock

    def __len__(self) -> int:
        return len(self._entries)

    def append(self, error_type: str, message: str, source: str) -> ErrorObservation:
        """Record an error with the current capture time."""
        entry = ErrorObservation(
            timestamp=self._clock(),
            type=error_type or "unknown",
            message=message,
            source=source,
        )
        self._entries.append(entry)
        return entry

    def prune(self) -> int:
        """Drop entries older than the retention window. Returns the number dropped."""
        cutoff = self._clock() - self._retention
        dropped = 0
        while self._entries and self._entries[0].timestamp < cutoff:
            self._entries.popleft()
            dropped += 1
        return dropped

    def snapshot(self) -> list[ErrorObservation]:
        """Return the retained entries, oldest first, after pruning."""
        self.prune()
        return list(self._entries)

    def emit(self, max_chars: int = 200) -> list[dict[str, str]]:
        """Return gauge attributes for every retained error, messages truncated."""
        return [
            {
                "type": entry.type,
                "message": entry.message[:max_chars],
                "source": entry.source,
                "timestamp": f"{entry.timestamp:.3f}",
            }
            for entry in self.snapshot()
        ]
