"""In-memory store for recording sessions between start and finalize."""

import logging
import threading
import time
from dataclasses import dataclass, field, replace

from analyzer.errors import SessionBusyError
from analyzer.schema import CapturedEvent

_module_logger = logging.getLogger(__name__)


@dataclass
class SessionState:
    """Events accumulated for one recording session."""

    session_id: str
    events: list[CapturedEvent] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)
    last_screenshot_path: str | None = None
    last_url: str | None = None
    finalizing: bool = False


class SessionStore:
    """Registry of active recording sessions, keyed by session id.

    Sessions are created on first event and removed by ``delete`` once
    finalized. Capture sources are expected to send events for one session
    in order; the lock only protects the registry itself and the
    per-session finalize mark.
    """

    def __init__(self):
        self._sessions: dict[str, SessionState] = {}
        self._lock = threading.Lock()

    def get_or_create(self, session_id: str) -> SessionState:
        """Get a session, creating empty state on first use."""
        with self._lock:
            return self._get_or_create_locked(session_id)

    def _get_or_create_locked(self, session_id: str) -> SessionState:
        session = self._sessions.get(session_id)
        if session is None:
            session = SessionState(session_id=session_id)
            self._sessions[session_id] = session
            _module_logger.debug("Created new session: %s", session_id)
        return session

    def get(self, session_id: str) -> SessionState | None:
        """Get a session, or None if it does not exist."""
        with self._lock:
            return self._sessions.get(session_id)

    def get_events(self, session_id: str) -> list[CapturedEvent]:
        """Events recorded so far for a session (empty if unknown)."""
        session = self.get(session_id)
        return list(session.events) if session else []

    def add_event(self, session_id: str, event: CapturedEvent) -> int:
        """Append an event to a session.

        Returns:
            The number of events now held for the session.
        """
        with self._lock:
            session = self._get_or_create_locked(session_id)
            session.events.append(event)
            session.last_screenshot_path = event.screenshot_path
            session.last_url = event.url
            return len(session.events)

    def delete(self, session_id: str) -> None:
        """Remove a session and reclaim its memory."""
        with self._lock:
            removed = self._sessions.pop(session_id, None)
        if removed is not None:
            _module_logger.debug("Deleted session: %s", session_id)

    def clear(self) -> None:
        """Remove all sessions."""
        with self._lock:
            self._sessions.clear()

    def begin_finalize(self, session_id: str) -> list[CapturedEvent]:
        """Mark a session as finalizing and return copies of its events.

        Unknown sessions yield an empty list.

        Raises:
            SessionBusyError: If the session is already being finalized.
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return []
            if session.finalizing:
                raise SessionBusyError(session_id)
            session.finalizing = True
            return [replace(e) for e in session.events]

    def end_finalize(self, session_id: str, success: bool) -> None:
        """Finish a finalize attempt.

        On success the session is deleted. On failure the finalize mark is
        released so the same events can be finalized again.
        """
        if success:
            self.delete(session_id)
            return
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                session.finalizing = False

    def get_stats(self) -> dict:
        """Get stats for all active sessions."""
        with self._lock:
            sessions = list(self._sessions.values())
        return {
            "activeSessions": len(sessions),
            "sessions": [
                {
                    "sessionId": s.session_id,
                    "eventCount": len(s.events),
                    "createdAt": s.created_at,
                    "finalizing": s.finalizing,
                }
                for s in sessions
            ],
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions
