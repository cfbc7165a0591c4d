"""Bounded in-memory state owned by the reconciliation engine."""

from opencode_metrics.state.errors import ErrorRingBuffer
from opencode_metrics.state.ledger import DedupLedger
from opencode_metrics.state.registry import SessionRegistry

__all__ = ["DedupLedger", "ErrorRingBuffer", "SessionRegistry"]
