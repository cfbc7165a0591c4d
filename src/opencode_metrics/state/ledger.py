"""Bounded insertion-ordered set of already-accounted record identities."""

from __future__ import annotations

from itertools import islice

import structlog

_logger = structlog.get_logger("opencode_metrics.state.ledger")


class DedupLedger:
    """
    Remembers which dedup keys have already been counted.

    Keys are kept in insertion order (a ``dict`` used as an ordered set). Once
    the ledger grows past ``max_size`` the oldest half is dropped in one batch,
    which keeps the amortized cost per insert constant and never drops a key
    that was inserted more recently than one that is kept.

    Keys are only ever looked up by :meth:`has`, so insertion order is the
    relevant recency signal.
    """

    def __init__(self, max_size: int = 10_000) -> None:
        if max_size < 2:
            raise ValueError("max_size must be at least 2")
        self._max_size = max_size
        self._keys: dict[str, None] = {}

    def __len__(self) -> int:
        return len(self._keys)

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    @property
    def max_size(self) -> int:
        return self._max_size

    def has(self, key: str) -> bool:
        return key in self._keys

    def add(self, key: str) -> None:
        """Insert ``key`` and evict the oldest half if the ledger is oversized."""
        self._keys[key] = None
        self.evict_if_oversized()

    def check_and_add(self, key: str) -> bool:
        """
        Insert ``key`` unless already present.

        Returns:
            True if the key was new (the caller should account for it).
        """
        if key in self._keys:
            return False
        self.add(key)
        return True

    def evict_if_oversized(self) -> int:
        """
        Drop the oldest ``max_size // 2`` keys once the size exceeds ``max_size``.

        Returns:
            Number of evicted keys.
        """
        if len(self._keys) <= self._max_size:
            return 0
        evict = self._max_size // 2
        for key in list(islice(self._keys, evict)):
            del self._keys[key]
        _logger.debug("ledger_evicted", evicted=evict, remaining=len(self._keys))
        return evict
