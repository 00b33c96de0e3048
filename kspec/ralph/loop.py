"""The ralph loop: drive an ACP agent through tasks, one iteration at a time.

Each iteration snapshots task state, prompts the primary agent, and waits for
the turn to end. Failed attempts are retried with a fresh agent process. A
failed iteration charges a ``[LOOP-FAIL:N]`` note to every in-progress task
that made no progress, and tasks reaching the threshold are escalated to
``automation: needs_review``. After a successful iteration, each task waiting
in ``pending_review`` gets a dedicated review subagent, run to completion
before the loop moves on. Everything is recorded in the session event log.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from functools import partial
from typing import Any

from rich.console import Console
from rich.table import Table

from .. import __version__
from ..acp.client import ACPClient, ClientOptions
from ..acp.types import METHOD_NOT_FOUND, RequestId
from ..agents.adapters import DEFAULT_ADAPTER, AdapterRegistry, AgentAdapter
from ..agents.spawner import SpawnAgentOptions, SpawnedAgent, spawn_and_initialize
from ..sessions.models import EventType, SessionStatus
from ..sessions.store import SessionStore
from ..tasks.models import NEEDS_REVIEW, Task, TaskStatus
from ..tasks.repository import TaskRepository
from ..ui.theme import THEME, markup
from ..utils.git import get_current_branch
from .events import create_translator
from .loop_errors import (
    IterationResult,
    create_failure_note,
    is_iteration_failure,
    process_failed_iteration,
)
from .models import RalphConfig, RalphResult, ReviewOutcome
from .prompt import active_tasks, build_iteration_prompt, gather_context
from .renderer import CliRenderer, Renderer
from .subagent import SubagentConfig, SubagentContext, SubagentOptions, run_subagent

logger = logging.getLogger(__name__)

console = Console()

YOLO_FLAG = "--dangerously-skip-permissions"
LOOP_AUTHOR = "@ralph"


async def handle_tool_request(
    client: ACPClient,
    request_id: RequestId,
    method: str,
    params: Any,
    *,
    yolo: bool,
) -> None:
    """Answer agent-initiated requests.

    Permission prompts are approved in yolo mode (``allow_always`` preferred
    over ``allow_once``) and cancelled otherwise. Nothing else is supported.
    """
    if method != "session/request_permission":
        await client.respond_error(request_id, METHOD_NOT_FOUND, f"Method not found: {method}")
        return

    options = params.get("options", []) if isinstance(params, dict) else []
    if yolo:
        for kind in ("allow_always", "allow_once"):
            chosen = next((o for o in options if isinstance(o, dict) and o.get("kind") == kind), None)
            if chosen is not None:
                await client.respond(
                    request_id, {"outcome": {"outcome": "selected", "optionId": chosen.get("optionId")}}
                )
                return
    await client.respond(request_id, {"outcome": {"outcome": "cancelled"}})


def resolve_loop_adapter(config: RalphConfig, registry: AdapterRegistry) -> tuple[str, AgentAdapter]:
    """Adapter id and descriptor for this run, honoring ``--adapter-cmd`` and yolo."""
    adapter_id = config.adapter_id
    if config.adapter_cmd:
        registry.register(
            "custom",
            AgentAdapter.from_command(config.adapter_cmd, "Custom adapter via --adapter-cmd"),
            overwrite=True,
        )
        adapter_id = "custom"
    adapter = registry.resolve(adapter_id)
    if config.yolo and adapter_id == DEFAULT_ADAPTER:
        adapter = adapter.with_args(YOLO_FLAG)
    return adapter_id, adapter


class RalphLoop:
    """State for one ralph run. Use ``run_ralph`` unless you need the pieces."""

    def __init__(
        self,
        config: RalphConfig,
        *,
        repository: TaskRepository,
        store: SessionStore,
        registry: AdapterRegistry,
        renderer: Renderer | None = None,
        output: Console | None = None,
    ) -> None:
        config.validate()
        self.config = config
        self.repository = repository
        self.store = store
        self.console = output or console
        self.renderer = renderer or CliRenderer(self.console)
        self.adapter_id, self.adapter = resolve_loop_adapter(config, registry)

        self._agent: SpawnedAgent | None = None
        self._acp_session_id: str | None = None
        self._translator = create_translator()
        self._iteration = 0
        self._session_id = ""

    # --- Event log ---

    def _log(self, event_type: EventType, data: Any) -> None:
        try:
            self.store.append_event(self._session_id, event_type, data)
        except (OSError, ValueError) as exc:
            logger.warning("Could not record %s event: %s", event_type.value, exc)

    # --- Primary agent ---

    def _on_update(self, _session_id: str, update: dict[str, Any]) -> None:
        event = self._translator.translate(update)
        if event is not None:
            self.renderer.render(event)
        self._log(EventType.SESSION_UPDATE, {"iteration": self._iteration, "update": update})

    async def _on_request(
        self, client: ACPClient, request_id: RequestId, method: str, params: Any
    ) -> None:
        self._log(EventType.TOOL_CALL, {"iteration": self._iteration, "method": method, "params": params})
        await handle_tool_request(client, request_id, method, params, yolo=self.config.yolo)
        self._log(EventType.TOOL_RESULT, {"iteration": self._iteration, "method": method})

    def _client_options(self, name: str) -> ClientOptions:
        return ClientOptions(
            timeout=self.config.acp_timeout,
            client_info={"name": name, "version": __version__},
        )

    async def _ensure_agent(self) -> tuple[SpawnedAgent, str]:
        """The running primary agent and its ACP session, spawning both if needed."""
        if self._agent is not None and self._acp_session_id is not None:
            return self._agent, self._acp_session_id
        self.console.print(markup("Spawning ACP agent...", THEME.muted))
        agent = await spawn_and_initialize(
            self.adapter,
            SpawnAgentOptions(cwd=self.config.cwd, client_options=self._client_options("kspec-ralph")),
        )
        self._agent = agent
        agent.client.set_update_handler(self._on_update)
        agent.client.set_request_handler(partial(self._on_request, agent.client))
        self.console.print(markup("Creating ACP session...", THEME.muted))
        self._acp_session_id = await agent.client.new_session(self.config.cwd)
        return agent, self._acp_session_id

    async def _stop_agent(self) -> None:
        if self._agent is not None:
            await self._agent.terminate()
        self._agent = None
        self._acp_session_id = None

    async def _run_iteration(self, prompt: str) -> IterationResult:
        """Prompt the agent, retrying with a fresh process up to ``max_retries`` times."""
        last_error: BaseException | None = None
        attempts = self.config.max_retries + 1
        for attempt in range(1, attempts + 1):
            if attempt > 1:
                self.console.print(
                    markup(f"Retry attempt {attempt - 1}/{self.config.max_retries}...", THEME.warning)
                )
            try:
                agent, session_id = await self._ensure_agent()
                self.console.print(markup("Sending prompt to agent...", THEME.muted))
                response = await agent.client.prompt(session_id, prompt)
                stop_reason = response.get("stopReason")
                final = self._translator.finalize()
                if final is not None:
                    self.renderer.render(final)
                self._log(
                    EventType.SESSION_UPDATE,
                    {"iteration": self._iteration, "stopReason": stop_reason, "completed": True},
                )
                if stop_reason == "cancelled":
                    raise RuntimeError("Agent prompt was cancelled")
                return IterationResult(succeeded=True, stop_reason=stop_reason)
            except Exception as exc:
                last_error = exc
                self.console.print(markup(f"Iteration failed: {exc}", THEME.error))
                await self._stop_agent()
        return IterationResult(succeeded=False, error=last_error)

    # --- Failure tracking ---

    def _record_failures(
        self, in_progress: list[Task], started: datetime, description: str, result: RalphResult
    ) -> None:
        current = self.repository.list_tasks()
        by_id = {t.id: t for t in current}
        for failure in process_failed_iteration(in_progress, current, started, description):
            task = by_id[failure.task_ref]
            note = create_failure_note(task.ref, description, failure.failure_count - 1)
            self.repository.add_note(task.id, note, author=LOOP_AUTHOR)
            if failure.escalated:
                self.repository.set_automation(task.id, NEEDS_REVIEW)
                result.escalated.append(task.ref)
                self.console.print(
                    markup(
                        f"Task {task.ref} failed {failure.failure_count} times; marked needs_review",
                        THEME.warning,
                    )
                )
            self._log(
                EventType.TASK_FAILURE,
                {
                    "iteration": self._iteration,
                    "task": task.ref,
                    "failure_count": failure.failure_count,
                    "escalated": failure.escalated,
                },
            )

    # --- Review subagents ---

    async def _review_pending(self, branch: str, result: RalphResult) -> None:
        pending = [
            t
            for t in self.repository.list_tasks()
            if t.status == TaskStatus.PENDING_REVIEW and not t.needs_review
        ]
        for task in pending:
            spec = self.repository.get_spec(task.spec_ref) if task.spec_ref else None
            context = SubagentContext(
                task_ref=task.ref,
                task_details=task.to_dict(),
                spec_with_acs=spec,
                git_branch=branch,
            )
            self.console.print(markup(f"Spawning review subagent for {task.ref}", THEME.subagent))
            self._log(EventType.SUBAGENT_START, {"iteration": self._iteration, "task": task.ref})
            outcome = await run_subagent(
                self.adapter,
                context,
                SubagentConfig(
                    timeout=self.config.subagent_timeout,
                    output_prefix=self.config.subagent_prefix,
                ),
                SubagentOptions(
                    cwd=self.config.cwd,
                    handle_request=partial(handle_tool_request, yolo=self.config.yolo),
                    client_options=self._client_options("kspec-ralph-subagent"),
                ),
            )
            result.reviews.append(
                ReviewOutcome(task.ref, outcome.success, outcome.timed_out, outcome.error)
            )
            self._log(
                EventType.SUBAGENT_END,
                {
                    "iteration": self._iteration,
                    "task": task.ref,
                    "success": outcome.success,
                    "timed_out": outcome.timed_out,
                    "error": outcome.error,
                },
            )
            if outcome.success:
                self.console.print(markup(f"Review subagent finished for {task.ref}", THEME.success))
            elif outcome.timed_out:
                self.console.print(markup(f"Review subagent timed out for {task.ref}", THEME.warning))
            else:
                self.console.print(
                    markup(f"Review subagent failed for {task.ref}: {outcome.error}", THEME.error)
                )

    # --- Main loop ---

    async def run(self) -> RalphResult:
        cfg = self.config
        self.console.print(
            markup(
                f"Starting ralph loop (adapter={self.adapter_id}, max {cfg.max_loops} iterations, "
                f"{cfg.max_retries} retries, {cfg.max_failures} max failures)",
                THEME.accent,
            )
        )
        metadata = self.store.create_session(self.adapter_id)
        self._session_id = metadata.id
        result = RalphResult(session_id=metadata.id)
        self._log(
            EventType.SESSION_START,
            {
                "adapter": self.adapter_id,
                "maxLoops": cfg.max_loops,
                "maxRetries": cfg.max_retries,
                "maxFailures": cfg.max_failures,
                "yolo": cfg.yolo,
                "review": cfg.review,
            },
        )

        consecutive_failures = 0
        try:
            for iteration in range(1, cfg.max_loops + 1):
                self._iteration = iteration
                self.renderer.new_section(f"Iteration {iteration}/{cfg.max_loops}")

                tasks = self.repository.list_tasks()
                branch = await get_current_branch(cfg.cwd)
                context = gather_context(tasks, branch)
                if not context["active_tasks"] and not context["ready_tasks"]:
                    self.console.print(markup("No active or ready tasks. Exiting loop.", THEME.muted))
                    break

                prompt = build_iteration_prompt(context, iteration, cfg.max_loops)
                if cfg.dry_run:
                    self.console.print(markup("=== DRY RUN - Prompt that would be sent ===", THEME.warning))
                    self.console.print(prompt, markup=False, highlight=False)
                    self.console.print(markup("=== END DRY RUN ===", THEME.warning))
                    result.dry_run_prompt = prompt
                    break

                self.store.save_context(self._session_id, iteration, context)
                self._log(
                    EventType.PROMPT_SENT,
                    {
                        "iteration": iteration,
                        "prompt": prompt,
                        "tasks": {
                            "active": [t["ref"] for t in context["active_tasks"]],
                            "ready": [t["ref"] for t in context["ready_tasks"]],
                        },
                    },
                )

                in_progress = active_tasks(tasks)
                started = datetime.now(timezone.utc)
                outcome = await self._run_iteration(prompt)
                result.iterations = iteration

                if not is_iteration_failure(outcome):
                    consecutive_failures = 0
                    self.console.print(markup(f"Completed iteration {iteration}", THEME.success))
                    if cfg.review:
                        await self._review_pending(branch, result)
                    continue

                consecutive_failures += 1
                description = str(outcome.error or "iteration failed")
                self.console.print(
                    markup(
                        f"Iteration {iteration} failed after {cfg.max_retries + 1} attempts "
                        f"({consecutive_failures}/{cfg.max_failures} consecutive failures)",
                        THEME.error,
                    )
                )
                self._record_failures(in_progress, started, description, result)
                if consecutive_failures >= cfg.max_failures:
                    self.console.print(
                        markup(
                            f"Reached {cfg.max_failures} consecutive failures. Exiting loop.",
                            THEME.error,
                        )
                    )
                    break
        finally:
            await self._stop_agent()
            status = (
                SessionStatus.ABANDONED
                if consecutive_failures >= cfg.max_failures
                else SessionStatus.COMPLETED
            )
            result.status = status
            result.consecutive_failures = consecutive_failures
            self._log(
                EventType.SESSION_END,
                {"status": status.value, "consecutiveFailures": consecutive_failures},
            )
            self.store.update_session_status(self._session_id, status)

        _print_summary(self.console, self.repository.list_tasks(), result)
        return result


def _print_summary(out: Console, tasks: list[Task], result: RalphResult) -> None:
    """Print a summary table of task states after the run."""
    table = Table(title=f"Ralph Summary: session {result.session_id}")
    table.add_column("Task", style="bold")
    table.add_column("Status")
    table.add_column("Automation")
    status_style = {
        TaskStatus.COMPLETED: "green",
        TaskStatus.PENDING_REVIEW: "cyan",
        TaskStatus.IN_PROGRESS: "yellow",
        TaskStatus.BLOCKED: "red",
        TaskStatus.CANCELLED: "dim",
        TaskStatus.PENDING: "dim",
    }
    for task in tasks:
        style = status_style.get(task.status, "")
        table.add_row(
            f"{task.ref}: {task.title}",
            f"[{style}]{task.status.value}[/{style}]" if style else task.status.value,
            task.automation or "-",
        )
    out.print(table)
    out.print(
        f"Status: {result.status.value} | iterations: {result.iterations} | "
        f"escalated: {len(result.escalated)} | reviews: {len(result.reviews)}"
    )


async def run_ralph(
    config: RalphConfig,
    *,
    repository: TaskRepository,
    store: SessionStore,
    registry: AdapterRegistry,
    renderer: Renderer | None = None,
    output: Console | None = None,
) -> RalphResult:
    """Run the loop to completion and return what happened."""
    loop = RalphLoop(
        config,
        repository=repository,
        store=store,
        registry=registry,
        renderer=renderer,
        output=output,
    )
    return await loop.run()
