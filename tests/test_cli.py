"""Tests for the kspec command line."""

from __future__ import annotations

import shlex
import sys

import pytest
import yaml
from typer.testing import CliRunner

from fakes import MOCK_AGENT
from kspec.cli import app
from kspec.cli.state import settings
from kspec.sessions.models import EventType, SessionStatus
from kspec.sessions.store import SessionStore

runner = CliRunner()

MOCK_CMD = shlex.join([sys.executable, str(MOCK_AGENT)])


@pytest.fixture
def spec_dir(tmp_path, monkeypatch):
    path = tmp_path / ".kspec"
    monkeypatch.setattr(settings, "spec_dir", path)
    return path


def _write_tasks(spec_dir, tasks) -> None:
    spec_dir.mkdir(parents=True, exist_ok=True)
    (spec_dir / "tasks.yaml").write_text(yaml.safe_dump({"tasks": tasks}))


def test_ralph_dry_run_prints_prompt(spec_dir, tmp_path) -> None:
    _write_tasks(spec_dir, [{"id": "T1", "title": "Add login", "status": "pending", "slugs": ["add-login"]}])

    result = runner.invoke(
        app, ["ralph", "--dry-run", "--adapter-cmd", MOCK_CMD, "--working-dir", str(tmp_path)]
    )

    assert result.exit_code == 0, result.output
    assert "DRY RUN" in result.output
    assert "@add-login" in result.output
    assert len(SessionStore(spec_dir).list_sessions()) == 1


def test_ralph_exits_2_when_abandoned(spec_dir, tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("MOCK_ACP_STOP_REASON", "cancelled")
    _write_tasks(spec_dir, [{"id": "T1", "title": "Flaky", "status": "in_progress", "slugs": ["flaky"]}])

    result = runner.invoke(
        app,
        [
            "ralph",
            "--adapter-cmd",
            MOCK_CMD,
            "--max-retries",
            "0",
            "--max-failures",
            "1",
            "--no-review",
            "--working-dir",
            str(tmp_path),
        ],
    )

    assert result.exit_code == 2, result.output
    [session_id] = SessionStore(spec_dir).list_sessions()
    assert SessionStore(spec_dir).get_session(session_id).status == SessionStatus.ABANDONED


def test_ralph_rejects_invalid_options(spec_dir) -> None:
    result = runner.invoke(app, ["ralph", "--max-loops", "0"])
    assert result.exit_code == 1
    assert "--max-loops" in result.output


def test_ralph_reads_explicit_tasks_file(spec_dir, tmp_path) -> None:
    tasks_file = tmp_path / "other.yaml"
    tasks_file.write_text(yaml.safe_dump({"tasks": []}))

    result = runner.invoke(app, ["ralph", "--tasks", str(tasks_file), "--adapter-cmd", MOCK_CMD])

    assert result.exit_code == 0, result.output
    assert "No active or ready tasks" in result.output


def test_sessions_list_and_show(spec_dir) -> None:
    store = SessionStore(spec_dir)
    session = store.create_session("claude-code-acp")
    store.append_event(session.id, EventType.SESSION_START, {"adapter": "claude-code-acp"})
    store.append_event(session.id, EventType.SESSION_END, {"status": "completed"})
    store.update_session_status(session.id, SessionStatus.COMPLETED)

    listed = runner.invoke(app, ["sessions", "list"])
    assert listed.exit_code == 0, listed.output
    assert session.id in listed.output

    shown = runner.invoke(app, ["sessions", "show", session.id, "--events"])
    assert shown.exit_code == 0, shown.output
    assert "completed" in shown.output
    assert "session.start" in shown.output
    assert "session.end" in shown.output


def test_sessions_show_missing(spec_dir) -> None:
    result = runner.invoke(app, ["sessions", "show", "nope"])
    assert result.exit_code == 1
    assert "Session not found" in result.output


def test_sessions_list_empty(spec_dir) -> None:
    result = runner.invoke(app, ["sessions", "list"])
    assert result.exit_code == 0
    assert "No sessions" in result.output
