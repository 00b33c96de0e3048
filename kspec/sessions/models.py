"""Session metadata and event records."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class EventType(str, Enum):
    SESSION_START = "session.start"
    SESSION_UPDATE = "session.update"
    SESSION_END = "session.end"
    PROMPT_SENT = "prompt.sent"
    TOOL_CALL = "tool.call"
    TOOL_RESULT = "tool.result"
    NOTE = "note"
    SUBAGENT_START = "subagent.start"
    SUBAGENT_END = "subagent.end"
    TASK_FAILURE = "task.failure"


class ValidationError(ValueError):
    """Raised when a session record does not have the expected shape."""


def _require_str(data: dict[str, Any], key: str, *, optional: bool = False) -> str | None:
    value = data.get(key)
    if value is None and optional:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"'{key}' must be a string")
    return value


def _require_timestamp(data: dict[str, Any], key: str, *, optional: bool = False) -> str | None:
    if isinstance(data.get(key), datetime):
        # Unquoted timestamps in hand-edited YAML load as datetime objects.
        return data[key].isoformat()
    value = _require_str(data, key, optional=optional)
    if value is None:
        return None
    try:
        datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValidationError(f"'{key}' must be an ISO 8601 timestamp") from exc
    return value


@dataclass
class SessionMetadata:
    """Contents of ``session.yaml``. ``ended_at`` is set once the session leaves active."""

    id: str
    agent_type: str
    status: SessionStatus = SessionStatus.ACTIVE
    started_at: str = ""
    task_id: str | None = None
    ended_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id}
        if self.task_id is not None:
            data["task_id"] = self.task_id
        data["agent_type"] = self.agent_type
        data["status"] = self.status.value
        data["started_at"] = self.started_at
        if self.ended_at is not None:
            data["ended_at"] = self.ended_at
        return data

    @classmethod
    def from_dict(cls, data: Any) -> SessionMetadata:
        if not isinstance(data, dict):
            raise ValidationError("session metadata must be a mapping")
        try:
            status = SessionStatus(data.get("status"))
        except ValueError as exc:
            raise ValidationError(f"invalid session status: {data.get('status')!r}") from exc
        return cls(
            id=_require_str(data, "id"),
            agent_type=_require_str(data, "agent_type"),
            status=status,
            started_at=_require_timestamp(data, "started_at"),
            task_id=_require_str(data, "task_id", optional=True),
            ended_at=_require_timestamp(data, "ended_at", optional=True),
        )


@dataclass
class SessionEvent:
    """One line of ``events.jsonl``."""

    ts: int
    seq: int
    type: EventType
    session_id: str
    data: Any = None
    trace_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "ts": self.ts,
            "seq": self.seq,
            "type": self.type.value,
            "session_id": self.session_id,
        }
        if self.trace_id is not None:
            out["trace_id"] = self.trace_id
        out["data"] = self.data
        return out

    @classmethod
    def from_dict(cls, data: Any) -> SessionEvent:
        if not isinstance(data, dict):
            raise ValidationError("event must be an object")
        ts = data.get("ts")
        if isinstance(ts, bool) or not isinstance(ts, (int, float)) or not math.isfinite(ts):
            raise ValidationError("'ts' must be a number")
        seq = data.get("seq")
        if isinstance(seq, bool) or not isinstance(seq, int) or seq < 0:
            raise ValidationError("'seq' must be a non-negative integer")
        try:
            event_type = EventType(data.get("type"))
        except ValueError as exc:
            raise ValidationError(f"unknown event type: {data.get('type')!r}") from exc
        return cls(
            ts=ts,
            seq=seq,
            type=event_type,
            session_id=_require_str(data, "session_id"),
            data=data.get("data"),
            trace_id=_require_str(data, "trace_id", optional=True),
        )

