"""Shared CLI state: console, app, settings."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import typer
from dotenv import load_dotenv
from rich.console import Console

load_dotenv()

# Rich console for all output
console = Console()


@dataclass
class Settings:
    """CLI settings read from the environment at startup."""

    spec_dir: Path = field(default_factory=lambda: Path(os.getenv("KSPEC_DIR", ".kspec")))
    log_level: str = field(default_factory=lambda: os.getenv("KSPEC_LOG_LEVEL", "WARNING"))

    @property
    def tasks_file(self) -> Path:
        return self.spec_dir / "tasks.yaml"


settings = Settings()


def configure_logging(level: str | None = None) -> None:
    """Send log records to stderr; stdout belongs to the console."""
    name = (level or settings.log_level).upper()
    logging.basicConfig(
        level=getattr(logging, name, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# Typer app
app = typer.Typer(
    name="kspec",
    help="Drive coding agents through kspec tasks over the Agent Client Protocol.",
    epilog=(
        "Examples:\n"
        "  kspec ralph --max-loops 3\n"
        "  kspec ralph --dry-run\n"
        '  kspec ralph --adapter-cmd "npx my-acp-agent"\n'
        "  kspec sessions list\n"
        "  kspec sessions show 20260101-120000-1a2b3c4d --events"
    ),
    add_completion=False,
    no_args_is_help=True,
)

sessions_app = typer.Typer(name="sessions", help="Inspect recorded loop sessions.")
app.add_typer(sessions_app)
