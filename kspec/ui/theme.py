"""Centralized CLI theme tokens."""

from dataclasses import dataclass

from rich.markup import escape


@dataclass(frozen=True)
class CliTheme:
    """Semantic Rich color tokens for loop output."""

    primary: str = "#E6EDF3"
    muted: str = "#7F848E"
    accent: str = "#61AFEF"
    section: str = "#56B6C2"
    agent: str = "#61AFEF"
    thought: str = "#C678DD"
    tool: str = "#E5C07B"
    success: str = "#98C379"
    warning: str = "#E5C07B"
    error: str = "#E06C75"
    subagent: str = "#D19A66"


THEME = CliTheme()


def markup(text: str, color: str) -> str:
    """Wrap text in Rich markup with the given color, escaping special chars."""
    return f"[{color}]{escape(text)}[/{color}]"
