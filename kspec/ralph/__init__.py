"""Ralph: the autonomous task loop, its failure tracking and review subagents."""

from __future__ import annotations

from .events import RalphEvent, Translator, create_translator
from .loop import RalphLoop, handle_tool_request, run_ralph
from .loop_errors import (
    ESCALATION_THRESHOLD,
    IterationResult,
    TaskFailureResult,
    create_failure_note,
    get_task_failure_count,
    has_task_progress,
    is_iteration_failure,
    parse_failure_count,
    process_failed_iteration,
    should_escalate,
)
from .models import RalphConfig, RalphResult, ReviewOutcome
from .renderer import CliRenderer, PrefixedRenderer, create_cli_renderer, create_prefixed_renderer
from .subagent import (
    SubagentConfig,
    SubagentContext,
    SubagentOptions,
    SubagentResult,
    build_subagent_prompt,
    run_subagent,
)

__all__ = [
    "CliRenderer",
    "ESCALATION_THRESHOLD",
    "IterationResult",
    "PrefixedRenderer",
    "RalphConfig",
    "RalphEvent",
    "RalphLoop",
    "RalphResult",
    "ReviewOutcome",
    "SubagentConfig",
    "SubagentContext",
    "SubagentOptions",
    "SubagentResult",
    "TaskFailureResult",
    "Translator",
    "build_subagent_prompt",
    "create_cli_renderer",
    "create_failure_note",
    "create_prefixed_renderer",
    "create_translator",
    "get_task_failure_count",
    "handle_tool_request",
    "has_task_progress",
    "is_iteration_failure",
    "parse_failure_count",
    "process_failed_iteration",
    "run_ralph",
    "run_subagent",
    "should_escalate",
]
