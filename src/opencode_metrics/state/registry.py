"""In-memory table of currently known sessions."""

from __future__ import annotations

from collections.abc import Iterator

from opencode_metrics.models.records import SessionInfo


class SessionRegistry:
    """
    The authoritative set of sessions the exporter currently tracks.

    Keyed by session id, so an id can never appear twice. The registry only
    reports what changed; the engine translates that into gauge deltas.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, SessionInfo] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __iter__(self) -> Iterator[SessionInfo]:
        return iter(list(self._sessions.values()))

    def get(self, session_id: str) -> SessionInfo | None:
        return self._sessions.get(session_id)

    def upsert(self, session: SessionInfo) -> bool:
        """
        Insert a session, or merge its non-empty fields into the known one.

        Returns:
            True if the session was not known before.
        """
        known = self._sessions.get(session.id)
        if known is None:
            self._sessions[session.id] = session
            return True
        self._sessions[session.id] = known.merged(session)
        return False

    def remove(self, session_id: str) -> bool:
        """Remove a session. Returns True if it was present."""
        return self._sessions.pop(session_id, None) is not None

    def clear(self) -> int:
        """Forget every session. Returns how many were dropped."""
        count = len(self._sessions)
        self._sessions.clear()
        return count
