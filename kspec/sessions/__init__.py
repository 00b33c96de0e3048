"""Session event storage: metadata plus an append-only JSONL event log."""

from __future__ import annotations

from .models import EventType, SessionEvent, SessionMetadata, SessionStatus, ValidationError
from .store import SessionStore, new_session_id

__all__ = [
    "EventType",
    "SessionEvent",
    "SessionMetadata",
    "SessionStatus",
    "SessionStore",
    "ValidationError",
    "new_session_id",
]
