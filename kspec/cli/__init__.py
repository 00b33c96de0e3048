"""CLI package for kspec."""

from .state import app, console, settings

# Import subcommand modules so their @app.command() decorators register
from . import sessions as _sessions  # noqa: F401
from ..ralph import cli as _ralph_cli  # noqa: F401


def cli() -> None:
    """CLI entrypoint."""
    app(prog_name="kspec")


__all__ = ["app", "cli", "console", "settings"]


if __name__ == "__main__":
    cli()
