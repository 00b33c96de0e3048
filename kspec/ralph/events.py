"""Translate ACP ``session/update`` payloads into display events.

Pure data: rendering lives in ``renderer``.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from typing import Any

MAX_OUTPUT_LINES = 20
MAX_OUTPUT_CHARS = 1000

_MCP_PREFIX_RE = re.compile(r"^mcp__[^_]+__(.+)$")

SUPPRESSED_PATTERNS = [
    re.compile(r"No onPostToolUseHook found", re.IGNORECASE),
    re.compile(r"No onPreToolUseHook found", re.IGNORECASE),
]


@dataclass
class RalphEvent:
    """A display event. ``timestamp`` is milliseconds since the translator started."""

    type: str  # agent_message | agent_thought | tool_start | tool_update | tool_result
    timestamp: int
    data: dict[str, Any] = field(default_factory=dict)


def normalize_tool(name: str) -> str:
    match = _MCP_PREFIX_RE.match(name)
    return match.group(1) if match else name


def extract_tool_name(update: dict[str, Any]) -> str:
    meta = update.get("_meta")
    if isinstance(meta, dict):
        claude_code = meta.get("claudeCode")
        if isinstance(claude_code, dict) and claude_code.get("toolName"):
            return normalize_tool(str(claude_code["toolName"]))
        if meta.get("toolName"):
            return normalize_tool(str(meta["toolName"]))
    for key in ("name", "title"):
        if update.get(key):
            return normalize_tool(str(update[key]))
    return "unknown"


def tool_summary(tool: str, tool_input: Any) -> str:
    """One-line description of a tool call for the common Claude Code tools."""
    inp = tool_input if isinstance(tool_input, dict) else {}
    if tool == "Bash":
        cmd = str(inp.get("command") or "")
        return cmd[:47] + "..." if len(cmd) > 50 else cmd
    if tool in ("Read", "Write", "Edit"):
        path = str(inp.get("file_path") or "")
        return path.rsplit("/", 1)[-1] or path
    if tool == "Grep":
        return f"/{inp['pattern']}/" if inp.get("pattern") else ""
    if tool == "Glob":
        return str(inp.get("pattern") or "")
    if tool == "WebSearch":
        return str(inp.get("query") or "")
    if tool == "Task":
        return str(inp.get("description") or "")
    if tool == "TodoWrite":
        todos = inp.get("todos")
        return f"{len(todos)} item(s)" if todos else ""
    return ""


def truncate_output(output: str) -> str:
    lines = output.split("\n")
    if len(lines) > MAX_OUTPUT_LINES:
        return "\n".join(lines[:MAX_OUTPUT_LINES])
    if len(output) > MAX_OUTPUT_CHARS:
        return output[:MAX_OUTPUT_CHARS]
    return output


def _raw_tool_output(update: dict[str, Any]) -> str | None:
    if update.get("rawOutput") is not None:
        return str(update["rawOutput"])
    meta = update.get("_meta")
    if isinstance(meta, dict):
        claude_code = meta.get("claudeCode")
        if isinstance(claude_code, dict) and claude_code.get("toolResponse") is not None:
            return str(claude_code["toolResponse"])
    if update.get("output") is not None:
        return str(update["output"])
    return None


def should_suppress(text: str) -> bool:
    return any(p.search(text) for p in SUPPRESSED_PATTERNS)


def _tool_call_id(update: dict[str, Any]) -> str:
    return str(update.get("tool_call_id") or update.get("toolCallId") or update.get("id") or "")


class Translator:
    """Stateful translator for one session's update stream.

    Message and thought chunks are emitted as streaming events and also
    accumulated; an empty chunk (or ``finalize``) emits the whole message.
    """

    def __init__(self) -> None:
        self._start = time.monotonic()
        self._active: tuple[str, str] | None = None  # (type, accumulated text)
        self._pending_tools: dict[str, dict[str, Any]] = {}

    def _now(self) -> int:
        return int((time.monotonic() - self._start) * 1000)

    def translate(self, update: dict[str, Any]) -> RalphEvent | None:
        kind = update.get("sessionUpdate")
        if kind == "agent_message_chunk":
            return self._chunk("agent_message", update)
        if kind == "agent_thought_chunk":
            return self._chunk("agent_thought", update)
        if kind == "tool_call":
            return self._tool_call(update)
        if kind == "tool_call_update":
            return self._tool_call_update(update)
        # user_message_chunk echoes our own prompt; other kinds are not displayed.
        return None

    def finalize(self) -> RalphEvent | None:
        if self._active is None:
            return None
        event_type, text = self._active
        self._active = None
        return RalphEvent(event_type, self._now(), {"content": text, "is_streaming": False})

    def _chunk(self, event_type: str, update: dict[str, Any]) -> RalphEvent | None:
        content = update.get("content")
        if not isinstance(content, dict) or content.get("type") != "text":
            return None
        text = content.get("text")
        if not isinstance(text, str) or should_suppress(text):
            return None

        if text == "":
            if self._active is not None and self._active[0] == event_type:
                return self.finalize()
            return None

        if self._active is not None and self._active[0] == event_type:
            self._active = (event_type, self._active[1] + text)
        else:
            self._active = (event_type, text)
        return RalphEvent(event_type, self._now(), {"content": text, "is_streaming": True})

    def _tool_call(self, update: dict[str, Any]) -> RalphEvent:
        call_id = _tool_call_id(update)
        tool = extract_tool_name(update)
        tool_input = update.get("input") or update.get("rawInput") or update.get("params") or {}
        now = self._now()
        self._pending_tools[call_id] = {"tool": tool, "input": tool_input, "start": now}
        return RalphEvent(
            "tool_start",
            now,
            {
                "tool_call_id": call_id,
                "tool": tool,
                "summary": tool_summary(tool, tool_input),
                "input": tool_input,
            },
        )

    def _tool_call_update(self, update: dict[str, Any]) -> RalphEvent | None:
        call_id = _tool_call_id(update)
        status = update.get("status")
        pending = self._pending_tools.get(call_id)
        tool = pending["tool"] if pending else extract_tool_name(update)

        if status in ("pending", "in_progress", "running"):
            return RalphEvent(
                "tool_update",
                self._now(),
                {
                    "tool_call_id": call_id,
                    "tool": tool,
                    "status": "running" if status == "in_progress" else status,
                },
            )

        if status in ("completed", "failed", "cancelled"):
            self._pending_tools.pop(call_id, None)
            raw = _raw_tool_output(update)
            output = truncate_output(raw) if raw is not None else None
            return RalphEvent(
                "tool_result",
                self._now(),
                {
                    "tool_call_id": call_id,
                    "tool": tool,
                    "status": status,
                    "output": output,
                    "truncated": raw is not None and output is not None and len(raw) > len(output),
                },
            )
        return None


def create_translator() -> Translator:
    return Translator()
