"""Tests for terminal rendering of display events."""

from __future__ import annotations

import io

from rich.console import Console

from kspec.ralph.events import RalphEvent
from kspec.ralph.renderer import create_cli_renderer, create_prefixed_renderer, format_timestamp


def _console() -> tuple[Console, io.StringIO]:
    buffer = io.StringIO()
    return Console(file=buffer, width=120, color_system=None, force_terminal=False), buffer


def test_format_timestamp() -> None:
    assert format_timestamp(0) == "+0s"
    assert format_timestamp(5_400) == "+5s"
    assert format_timestamp(60_000) == "+1m"
    assert format_timestamp(150_000) == "+2m30s"


def test_cli_renderer_streams_agent_text_and_tools() -> None:
    console, buffer = _console()
    renderer = create_cli_renderer(console)

    renderer.new_section("Iteration 1/3")
    renderer.render(RalphEvent("agent_message", 0, {"content": "Looking ", "is_streaming": True}))
    renderer.render(RalphEvent("agent_message", 0, {"content": "around", "is_streaming": True}))
    renderer.render(
        RalphEvent("tool_start", 1000, {"tool": "Bash", "summary": "ls [src]", "tool_call_id": "c1"})
    )
    renderer.render(
        RalphEvent("tool_result", 2000, {"tool": "Bash", "status": "failed", "output": "boom", "truncated": True})
    )

    out = buffer.getvalue()
    assert "Iteration 1/3" in out
    assert "--- Agent ---" in out
    assert "Looking around" in out
    assert "--- Tool: Bash ---" in out
    assert "ls [src]" in out
    assert "✗ failed" in out
    assert "boom" in out
    assert "(truncated)" in out


def test_prefixed_renderer_tags_every_line() -> None:
    console, buffer = _console()
    renderer = create_prefixed_renderer("[REVIEW SUBAGENT]", console)

    renderer.render(RalphEvent("agent_message", 0, {"content": "line one\nline ", "is_streaming": True}))
    renderer.render(RalphEvent("agent_message", 0, {"content": "two", "is_streaming": True}))
    renderer.render(RalphEvent("agent_message", 0, {"content": "line one\nline two", "is_streaming": False}))

    lines = [line for line in buffer.getvalue().splitlines() if line.strip()]
    assert lines
    assert all(line.startswith("[REVIEW SUBAGENT]") for line in lines)
    assert any(line.endswith("line one") for line in lines)
    assert any(line.endswith("line two") for line in lines)
