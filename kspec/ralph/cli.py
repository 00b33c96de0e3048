"""CLI command for the ralph loop."""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Annotated

import typer
import yaml

from ..agents.adapters import DEFAULT_ADAPTER, registry_from_env
from ..cli.state import app, configure_logging, console, settings
from ..sessions.models import SessionStatus
from ..sessions.store import SessionStore
from ..tasks.repository import YamlTaskRepository
from ..ui.theme import THEME, markup
from .models import RalphConfig
from .subagent import DEFAULT_SUBAGENT_TIMEOUT


@app.command()
def ralph(
    max_loops: Annotated[
        int,
        typer.Option("--max-loops", help="Maximum number of iterations"),
    ] = 5,
    max_retries: Annotated[
        int,
        typer.Option("--max-retries", help="Retries per iteration before it counts as failed"),
    ] = 3,
    max_failures: Annotated[
        int,
        typer.Option("--max-failures", help="Consecutive failed iterations before giving up"),
    ] = 3,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Print the first prompt without spawning an agent"),
    ] = False,
    yolo: Annotated[
        bool,
        typer.Option("--yolo/--no-yolo", help="Auto-approve agent permission requests"),
    ] = True,
    adapter: Annotated[
        str,
        typer.Option("--adapter", help="Adapter id from the registry"),
    ] = os.getenv("KSPEC_ADAPTER", DEFAULT_ADAPTER),
    adapter_cmd: Annotated[
        str | None,
        typer.Option("--adapter-cmd", help="Launch this command instead of a registered adapter"),
    ] = None,
    no_review: Annotated[
        bool,
        typer.Option("--no-review", help="Skip review subagents for pending_review tasks"),
    ] = False,
    subagent_timeout: Annotated[
        float,
        typer.Option("--subagent-timeout", help="Seconds before a review subagent is stopped"),
    ] = float(os.getenv("KSPEC_SUBAGENT_TIMEOUT", str(DEFAULT_SUBAGENT_TIMEOUT))),
    tasks_file: Annotated[
        str | None,
        typer.Option("--tasks", help="Task YAML file (default: <KSPEC_DIR>/tasks.yaml)"),
    ] = None,
    working_dir: Annotated[
        str,
        typer.Option("--working-dir", "-d", help="Working directory for the agent"),
    ] = ".",
) -> None:
    """Run the autonomous task loop against an ACP agent."""
    configure_logging()
    resolved_dir = str(Path(working_dir).expanduser().resolve())
    config = RalphConfig(
        max_loops=max_loops,
        max_retries=max_retries,
        max_failures=max_failures,
        dry_run=dry_run,
        yolo=yolo,
        adapter_id=adapter,
        adapter_cmd=adapter_cmd,
        cwd=resolved_dir,
        review=not no_review,
        subagent_timeout=subagent_timeout,
    )

    from .loop import run_ralph

    try:
        config.validate()
        registry = registry_from_env()
        repository = YamlTaskRepository(tasks_file or settings.tasks_file)
        store = SessionStore(settings.spec_dir)
        result = asyncio.run(
            run_ralph(config, repository=repository, store=store, registry=registry, output=console)
        )
    except (ValueError, OSError, yaml.YAMLError) as exc:
        console.print(markup(f"Error: {exc}", THEME.error))
        raise typer.Exit(1)

    if result.status == SessionStatus.ABANDONED:
        raise typer.Exit(2)
