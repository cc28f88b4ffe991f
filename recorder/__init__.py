"""Recording module: accumulates captured events until a session is finalized.

This module provides:
- SessionStore: In-memory registry of active recording sessions
- SessionState: Events and metadata held for one session
"""

from .session_store import SessionState, SessionStore

__all__ = [
    "SessionState",
    "SessionStore",
]
