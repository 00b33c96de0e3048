"""Session inspection commands: list, show."""

from __future__ import annotations

import json
from typing import Annotated

import typer
from rich.table import Table

from ..sessions.models import SessionStatus
from ..sessions.store import SessionStore
from ..ralph.renderer import format_timestamp
from ..ui.theme import THEME, markup
from .state import console, sessions_app, settings

_STATUS_COLORS = {
    SessionStatus.ACTIVE: THEME.accent,
    SessionStatus.COMPLETED: THEME.success,
    SessionStatus.ABANDONED: THEME.error,
}


def _store() -> SessionStore:
    return SessionStore(settings.spec_dir)


@sessions_app.command("list")
def list_sessions() -> None:
    """List recorded sessions, newest first."""
    store = _store()
    ids = list(reversed(store.list_sessions()))
    if not ids:
        console.print(markup(f"No sessions in {store.sessions_dir}", THEME.muted))
        return

    table = Table(show_header=True, header_style=THEME.section)
    table.add_column("Session", style=THEME.accent, no_wrap=True)
    table.add_column("Status")
    table.add_column("Agent", style=THEME.muted)
    table.add_column("Started", style=THEME.muted)
    table.add_column("Events", justify="right")

    for session_id in ids:
        metadata = store.get_session(session_id)
        if metadata is None:
            continue
        color = _STATUS_COLORS.get(metadata.status, THEME.primary)
        table.add_row(
            session_id,
            markup(metadata.status.value, color),
            metadata.agent_type,
            metadata.started_at[:19].replace("T", " "),
            str(len(store.read_events(session_id))),
        )
    console.print(table)


@sessions_app.command("show")
def show_session(
    session_id: Annotated[str, typer.Argument(help="Session id")],
    events: Annotated[
        bool,
        typer.Option("--events", help="Print every event in the session log"),
    ] = False,
) -> None:
    """Show one session's metadata and, optionally, its events."""
    store = _store()
    metadata = store.get_session(session_id)
    if metadata is None:
        console.print(markup(f"Session not found: {session_id}", THEME.error))
        raise typer.Exit(1)

    color = _STATUS_COLORS.get(metadata.status, THEME.primary)
    console.print(markup(f"Session {metadata.id}", THEME.section))
    console.print(f"  Status:  {markup(metadata.status.value, color)}")
    console.print(f"  Agent:   {markup(metadata.agent_type, THEME.muted)}")
    console.print(f"  Started: {markup(metadata.started_at, THEME.muted)}")
    if metadata.ended_at:
        console.print(f"  Ended:   {markup(metadata.ended_at, THEME.muted)}")
    if metadata.task_id:
        console.print(f"  Task:    {markup(metadata.task_id, THEME.muted)}")

    log = store.read_events(session_id)
    console.print(f"  Events:  {len(log)}")
    if not events:
        return

    origin = log[0].ts if log else 0
    for event in log:
        data = json.dumps(event.data, default=str) if event.data is not None else ""
        if len(data) > 200:
            data = data[:200] + "..."
        console.print(
            f"{markup(format_timestamp(int(event.ts - origin)), THEME.muted)} "
            f"{markup(f'#{event.seq}', THEME.muted)} "
            f"{markup(event.type.value, THEME.accent)} {markup(data, THEME.primary)}"
        )
