"""Render loop display events to the terminal with Rich."""

from __future__ import annotations

from typing import Protocol

from rich.console import Console

from ..ui.theme import THEME, markup
from .events import RalphEvent


class Renderer(Protocol):
    def render(self, event: RalphEvent) -> None: ...

    def new_section(self, label: str) -> None: ...


def format_timestamp(ms: int) -> str:
    """Relative timestamp: +0s, +5s, +1m, +2m30s."""
    seconds = int(ms // 1000)
    if seconds < 60:
        return f"+{seconds}s"
    minutes, rest = divmod(seconds, 60)
    return f"+{minutes}m" if rest == 0 else f"+{minutes}m{rest}s"


class CliRenderer:
    """Streams agent text as it arrives and prints tool activity as headed blocks."""

    def __init__(self, console: Console | None = None, prefix: str = "") -> None:
        self.console = console or Console()
        self.prefix = prefix
        self._last_type: str | None = None
        self._streaming = False
        self._partial = ""

    # --- Output primitives ---

    def _print(self, text: str) -> None:
        head = markup(self.prefix, THEME.subagent) + " " if self.prefix else ""
        self.console.print(head + text, highlight=False)

    def _stream(self, text: str, color: str) -> None:
        if not self.prefix:
            self.console.print(markup(text, color), end="", highlight=False, soft_wrap=True)
            self._streaming = True
            return
        # Prefixed output is line-oriented so every line carries the prefix.
        self._partial += text
        *lines, self._partial = self._partial.split("\n")
        for line in lines:
            self._print(markup(line, color))
        self._streaming = bool(self._partial)

    def _end_stream(self, color: str = THEME.primary) -> None:
        if not self._streaming:
            return
        if self.prefix:
            if self._partial:
                self._print(markup(self._partial, color))
            self._partial = ""
        else:
            self.console.print()
        self._streaming = False

    # --- Events ---

    def render(self, event: RalphEvent) -> None:
        ts = markup(f"[{format_timestamp(event.timestamp)}]", THEME.muted)
        handler = {
            "agent_message": self._agent_text,
            "agent_thought": self._agent_text,
            "tool_start": self._tool_start,
            "tool_update": self._tool_update,
            "tool_result": self._tool_result,
        }.get(event.type)
        if handler is not None:
            handler(ts, event)

    def new_section(self, label: str) -> None:
        self._end_stream()
        self._last_type = None
        rule = markup("─" * 60, THEME.section)
        self.console.print()
        self._print(rule)
        self._print(f"[bold]{markup(label, THEME.section)}[/bold]")
        self._print(rule)
        self.console.print()

    def _agent_text(self, ts: str, event: RalphEvent) -> None:
        is_thought = event.type == "agent_thought"
        color = THEME.thought if is_thought else THEME.primary
        if self._last_type != event.type and not self._streaming:
            if self._last_type is not None:
                self.console.print()
            header = "--- Thinking ---" if is_thought else "--- Agent ---"
            self._print(f"{ts} {markup(header, THEME.thought if is_thought else THEME.agent)}")
        if event.data.get("is_streaming"):
            self._stream(str(event.data.get("content", "")), color)
        else:
            self._end_stream(color)
        self._last_type = event.type

    def _tool_start(self, ts: str, event: RalphEvent) -> None:
        self._end_stream()
        if self._last_type is not None:
            self.console.print()
        tool = event.data.get("tool", "unknown")
        self._print(f"{ts} {markup(f'--- Tool: {tool} ---', THEME.tool)}")
        summary = event.data.get("summary")
        if summary:
            self._print(f"{ts} {markup(str(summary), THEME.muted)}")
        self._last_type = "tool_start"

    def _tool_update(self, ts: str, event: RalphEvent) -> None:
        status = str(event.data.get("status", ""))
        icon = markup("⟳", THEME.accent) if status == "running" else markup("○", THEME.muted)
        self._print(f"{ts} {icon} {markup(status, THEME.muted)}")

    def _tool_result(self, ts: str, event: RalphEvent) -> None:
        status = str(event.data.get("status", ""))
        color, icon = {
            "completed": (THEME.success, "✓"),
            "failed": (THEME.error, "✗"),
        }.get(status, (THEME.warning, "○"))
        self._print(f"{ts} {markup(f'{icon} {status}', color)}")
        output = event.data.get("output")
        if output:
            indent = " " * 7
            for line in str(output).split("\n")[:20]:
                self._print(markup(f"{indent}{line}", THEME.muted))
            if event.data.get("truncated"):
                self._print(markup(f"{indent}... (truncated)", THEME.muted))
        self._last_type = "tool_result"


class PrefixedRenderer(CliRenderer):
    """CliRenderer that tags every line, used for subagent output."""

    def __init__(self, prefix: str, console: Console | None = None) -> None:
        super().__init__(console=console, prefix=prefix)


def create_cli_renderer(console: Console | None = None) -> CliRenderer:
    return CliRenderer(console=console)


def create_prefixed_renderer(prefix: str, console: Console | None = None) -> PrefixedRenderer:
    return PrefixedRenderer(prefix, console=console)
