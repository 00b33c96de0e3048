"""SessionStore — on-disk audit log of agent sessions.

Directory layout per session::

    <spec_dir>/sessions/<session_id>/
        session.yaml            # SessionMetadata
        events.jsonl            # append-only event log, one event per line
        context-iter-<n>.json   # optional per-iteration context snapshot

Writes are strict: metadata and events are validated before they touch disk.
Reads are tolerant: a missing or corrupt file yields an empty result, and
event lines that fail to parse or validate are skipped. Session history is a
diagnostic record, so nothing downstream should fail because of it.
"""

from __future__ import annotations

import json
import logging
import os
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Any

import yaml

from .models import EventType, SessionEvent, SessionMetadata, SessionStatus, ValidationError

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _now_ms() -> int:
    return int(time.time() * 1000)


def new_session_id() -> str:
    """Time-prefixed id so directory listings sort roughly by start time."""
    return f"{datetime.now(timezone.utc):%Y%m%d-%H%M%S}-{uuid.uuid4().hex[:8]}"


class SessionStore:
    """Create sessions, append events, and read them back.

    ``append_event`` derives ``seq`` from the number of lines already in the
    log, so each session must have a single writer.
    """

    def __init__(self, spec_dir: str | Path) -> None:
        self._spec_dir = Path(spec_dir)

    @property
    def spec_dir(self) -> Path:
        return self._spec_dir

    @property
    def sessions_dir(self) -> Path:
        return self._spec_dir / "sessions"

    def session_dir(self, session_id: str) -> Path:
        if not session_id or "/" in session_id or "\\" in session_id or session_id in (".", ".."):
            raise ValueError(f"Invalid session id: {session_id!r}")
        return self.sessions_dir / session_id

    def metadata_path(self, session_id: str) -> Path:
        return self.session_dir(session_id) / "session.yaml"

    def events_path(self, session_id: str) -> Path:
        return self.session_dir(session_id) / "events.jsonl"

    def context_path(self, session_id: str, iteration: int) -> Path:
        return self.session_dir(session_id) / f"context-iter-{iteration}.json"

    # --- Metadata ---

    def create_session(
        self,
        agent_type: str,
        *,
        task_id: str | None = None,
        session_id: str | None = None,
        status: SessionStatus | str = SessionStatus.ACTIVE,
        started_at: str | None = None,
    ) -> SessionMetadata:
        """Create the session directory and write its metadata."""
        metadata = SessionMetadata.from_dict(
            {
                "id": session_id or new_session_id(),
                "task_id": task_id,
                "agent_type": agent_type,
                "status": SessionStatus(status).value,
                "started_at": started_at or _now_iso(),
            }
        )
        self.session_dir(metadata.id).mkdir(parents=True, exist_ok=True)
        self._write_metadata(metadata)
        logger.debug("Created session %s (%s)", metadata.id, agent_type)
        return metadata

    def get_session(self, session_id: str) -> SessionMetadata | None:
        try:
            with open(self.metadata_path(session_id), encoding="utf-8") as f:
                data = yaml.safe_load(f)
            return SessionMetadata.from_dict(data)
        except (OSError, ValueError, yaml.YAMLError) as exc:
            logger.debug("Could not read session %s: %s", session_id, exc)
            return None

    def update_session_status(
        self, session_id: str, status: SessionStatus | str
    ) -> SessionMetadata | None:
        """Set the session status. Returns None if the session does not exist."""
        metadata = self.get_session(session_id)
        if metadata is None:
            return None
        new_status = SessionStatus(status)
        if new_status != SessionStatus.ACTIVE and (
            metadata.status == SessionStatus.ACTIVE or metadata.ended_at is None
        ):
            metadata.ended_at = _now_iso()
        metadata.status = new_status
        self._write_metadata(metadata)
        return metadata

    def list_sessions(self) -> list[str]:
        """Ids of all sessions with metadata, oldest directory name first."""
        if not self.sessions_dir.is_dir():
            return []
        return sorted(
            p.name for p in self.sessions_dir.iterdir() if (p / "session.yaml").is_file()
        )

    def session_exists(self, session_id: str) -> bool:
        try:
            return self.metadata_path(session_id).is_file()
        except ValueError:
            return False

    def _write_metadata(self, metadata: SessionMetadata) -> None:
        path = self.metadata_path(metadata.id)
        path.parent.mkdir(parents=True, exist_ok=True)
        with NamedTemporaryFile("w", encoding="utf-8", dir=path.parent, delete=False) as tmp:
            yaml.safe_dump(metadata.to_dict(), tmp, default_flow_style=False, sort_keys=False)
            tmp_path = Path(tmp.name)
        tmp_path.replace(path)

    # --- Events ---

    def _complete_lines(self, path: Path) -> list[bytes]:
        """Newline-terminated lines of ``path``; a trailing fragment from a crash is cut off."""
        try:
            data = path.read_bytes()
        except FileNotFoundError:
            return []
        end = data.rfind(b"\n") + 1
        if end < len(data):
            logger.warning("Dropping partial last line in %s", path)
            with open(path, "r+b") as f:
                f.truncate(end)
        return data[:end].split(b"\n")[:-1]

    def append_event(
        self,
        session_id: str,
        event_type: EventType | str,
        data: Any = None,
        *,
        trace_id: str | None = None,
        ts: int | None = None,
        seq: int | None = None,
    ) -> SessionEvent:
        """Validate and durably append one event, assigning ``ts`` and ``seq`` if omitted."""
        path = self.events_path(session_id)
        type_value = EventType(event_type).value
        path.parent.mkdir(parents=True, exist_ok=True)

        existing = self._complete_lines(path)
        raw = {
            "ts": ts if ts is not None else _now_ms(),
            "seq": seq if seq is not None else sum(1 for line in existing if line.strip()),
            "type": type_value,
            "session_id": session_id,
            "trace_id": trace_id,
            "data": data,
        }
        event = SessionEvent.from_dict(raw)
        line = json.dumps(event.to_dict(), default=str) + "\n"

        # One write per line, forced to disk, so a crash can only truncate
        # the last line and never corrupt earlier ones.
        with open(path, "a", encoding="utf-8") as f:
            f.write(line)
            f.flush()
            os.fsync(f.fileno())
        return event

    def read_events(self, session_id: str) -> list[SessionEvent]:
        """All valid events, ordered by ``seq`` regardless of file order."""
        try:
            lines = self.events_path(session_id).read_bytes().split(b"\n")
        except (OSError, ValueError) as exc:
            logger.debug("Could not read events for %s: %s", session_id, exc)
            return []

        events = []
        for line in lines:
            if not line.strip():
                continue
            try:
                events.append(SessionEvent.from_dict(json.loads(line.decode("utf-8"))))
            except (ValueError, ValidationError):
                continue
        return sorted(events, key=lambda e: e.seq)

    def read_events_since(
        self, session_id: str, since: int, until: int | None = None
    ) -> list[SessionEvent]:
        """Events with ``since <= ts <= until`` (``until`` open when None)."""
        return [
            e
            for e in self.read_events(session_id)
            if e.ts >= since and (until is None or e.ts <= until)
        ]

    def get_last_event(self, session_id: str) -> SessionEvent | None:
        events = self.read_events(session_id)
        return events[-1] if events else None

    # --- Context snapshots ---

    def save_context(self, session_id: str, iteration: int, context: Any) -> Path:
        path = self.context_path(session_id, iteration)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(context, indent=2, default=str), encoding="utf-8")
        return path

    def read_context(self, session_id: str, iteration: int) -> Any | None:
        try:
            return json.loads(self.context_path(session_id, iteration).read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None
