"""Terminal presentation helpers."""

from .theme import THEME, CliTheme, markup

__all__ = ["CliTheme", "THEME", "markup"]
