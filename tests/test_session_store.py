"""Tests for the on-disk session event store."""

from __future__ import annotations

import json

import pytest

from kspec.sessions.models import EventType, SessionMetadata, SessionStatus, ValidationError
from kspec.sessions.store import SessionStore, new_session_id


def test_create_and_get_session(tmp_path) -> None:
    store = SessionStore(tmp_path)
    created = store.create_session("claude-code-acp", task_id="01TASK")

    loaded = store.get_session(created.id)

    assert loaded == created
    assert loaded.status == SessionStatus.ACTIVE
    assert loaded.ended_at is None
    assert store.metadata_path(created.id).is_file()
    assert store.session_exists(created.id)
    assert store.list_sessions() == [created.id]


def test_update_status_sets_ended_at_once(tmp_path) -> None:
    store = SessionStore(tmp_path)
    session = store.create_session("agent")

    completed = store.update_session_status(session.id, SessionStatus.COMPLETED)
    assert completed.status == SessionStatus.COMPLETED
    assert completed.ended_at is not None

    abandoned = store.update_session_status(session.id, "abandoned")
    assert abandoned.status == SessionStatus.ABANDONED
    assert abandoned.ended_at == completed.ended_at

    assert store.update_session_status("missing", SessionStatus.COMPLETED) is None


def test_append_assigns_sequential_seq(tmp_path) -> None:
    store = SessionStore(tmp_path)
    session = store.create_session("agent")

    first = store.append_event(session.id, EventType.SESSION_START, {"adapter": "x"})
    second = store.append_event(session.id, "prompt.sent", {"iteration": 1})
    third = store.append_event(session.id, EventType.SESSION_END)

    assert [first.seq, second.seq, third.seq] == [0, 1, 2]
    events = store.read_events(session.id)
    assert [e.type for e in events] == [
        EventType.SESSION_START,
        EventType.PROMPT_SENT,
        EventType.SESSION_END,
    ]
    assert events[1].data == {"iteration": 1}
    assert store.get_last_event(session.id).seq == 2


def test_append_rejects_unknown_event_type(tmp_path) -> None:
    store = SessionStore(tmp_path)
    session = store.create_session("agent")
    with pytest.raises(ValueError):
        store.append_event(session.id, "made.up")
    assert store.read_events(session.id) == []


def test_read_events_sorts_by_seq_and_skips_bad_lines(tmp_path) -> None:
    store = SessionStore(tmp_path)
    session = store.create_session("agent")
    path = store.events_path(session.id)
    lines = [
        {"ts": 20, "seq": 1, "type": "note", "session_id": session.id, "data": "b"},
        {"ts": 10, "seq": 0, "type": "note", "session_id": session.id, "data": "a"},
        {"ts": 30, "seq": -1, "type": "note", "session_id": session.id},
    ]
    path.write_text(
        "\n".join(json.dumps(line) for line in lines) + "\n{not json\n\n", encoding="utf-8"
    )

    events = store.read_events(session.id)

    assert [e.data for e in events] == ["a", "b"]


def test_read_events_since_filters_by_timestamp(tmp_path) -> None:
    store = SessionStore(tmp_path)
    session = store.create_session("agent")
    for ts in (100, 200, 300):
        store.append_event(session.id, EventType.NOTE, ts, ts=ts)

    assert [e.ts for e in store.read_events_since(session.id, 200)] == [200, 300]
    assert [e.ts for e in store.read_events_since(session.id, 100, 200)] == [100, 200]


def test_missing_or_corrupt_session_reads_empty(tmp_path) -> None:
    store = SessionStore(tmp_path)
    assert store.get_session("nope") is None
    assert store.read_events("nope") == []
    assert store.get_last_event("nope") is None
    assert store.list_sessions() == []

    session = store.create_session("agent")
    store.metadata_path(session.id).write_text("status: [unclosed\n", encoding="utf-8")
    assert store.get_session(session.id) is None


def test_session_ids_cannot_escape_sessions_dir(tmp_path) -> None:
    store = SessionStore(tmp_path)
    with pytest.raises(ValueError):
        store.session_dir("../outside")
    assert not store.session_exists("..")


def test_context_snapshots_round_trip(tmp_path) -> None:
    store = SessionStore(tmp_path)
    session = store.create_session("agent")
    store.save_context(session.id, 2, {"branch": "main"})

    assert store.read_context(session.id, 2) == {"branch": "main"}
    assert store.read_context(session.id, 3) is None
    assert store.context_path(session.id, 2).name == "context-iter-2.json"


def test_new_session_ids_are_unique_and_sortable() -> None:
    first, second = new_session_id(), new_session_id()
    assert first != second
    date, clock, suffix = first.split("-")
    assert len(date) == 8 and len(clock) == 6 and len(suffix) == 8


def test_metadata_validation() -> None:
    with pytest.raises(ValidationError):
        SessionMetadata.from_dict({"id": "x", "agent_type": "a", "status": "weird", "started_at": "2026-01-01T00:00:00Z"})
    with pytest.raises(ValidationError):
        SessionMetadata.from_dict({"id": "x", "agent_type": "a", "status": "active", "started_at": "yesterday"})


def test_undecodable_line_is_skipped_and_appends_continue(tmp_path) -> None:
    store = SessionStore(tmp_path)
    session = store.create_session("agent")
    store.append_event(session.id, EventType.SESSION_START)
    with open(store.events_path(session.id), "ab") as f:
        f.write(b"\xff\xfe garbage\n")

    appended = store.append_event(session.id, EventType.NOTE, "after")

    assert appended.seq == 2
    events = store.read_events(session.id)
    assert [(e.seq, e.type) for e in events] == [(0, EventType.SESSION_START), (2, EventType.NOTE)]


def test_append_after_partial_line_drops_the_fragment(tmp_path) -> None:
    store = SessionStore(tmp_path)
    session = store.create_session("agent")
    store.append_event(session.id, EventType.SESSION_START)
    with open(store.events_path(session.id), "a", encoding="utf-8") as f:
        f.write('{"ts": 1, "seq": 1, "ty')

    appended = store.append_event(session.id, EventType.NOTE, "after")
    store.append_event(session.id, EventType.SESSION_END)

    assert appended.seq == 1
    events = store.read_events(session.id)
    assert [(e.seq, e.type) for e in events] == [
        (0, EventType.SESSION_START),
        (1, EventType.NOTE),
        (2, EventType.SESSION_END),
    ]
    assert store.events_path(session.id).read_bytes().endswith(b"\n")
