"""Run a dedicated, short-lived agent for one bounded job (PR review and merge).

Subagents run one at a time and never alongside the loop's own agent: the
loop awaits ``run_subagent`` before doing anything else.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from typing import Any

from .. import __version__
from ..acp.client import ACPClient, ClientOptions, UpdateHandler
from ..acp.types import SERVER_ERROR, RequestId
from ..agents.adapters import AgentAdapter
from ..agents.spawner import SpawnAgentOptions, SpawnedAgent, spawn_and_initialize
from .events import create_translator
from .renderer import create_prefixed_renderer

logger = logging.getLogger(__name__)

DEFAULT_SUBAGENT_TIMEOUT = 10 * 60.0
DEFAULT_SUBAGENT_PREFIX = "[REVIEW SUBAGENT]"

ToolRequestHandler = Callable[[ACPClient, RequestId, str, Any], Awaitable[None]]


@dataclass
class SubagentContext:
    """What the subagent is told about its job."""

    task_ref: str
    task_details: dict[str, Any]
    spec_with_acs: dict[str, Any] | None
    git_branch: str


@dataclass
class SubagentConfig:
    timeout: float = field(
        default_factory=lambda: float(
            os.getenv("KSPEC_SUBAGENT_TIMEOUT", str(DEFAULT_SUBAGENT_TIMEOUT))
        )
    )
    output_prefix: str = DEFAULT_SUBAGENT_PREFIX


@dataclass
class SubagentOptions:
    cwd: str
    handle_request: ToolRequestHandler
    on_update: UpdateHandler | None = None
    env: dict[str, str] = field(default_factory=dict)
    client_options: ClientOptions | None = None


@dataclass
class SubagentResult:
    success: bool
    timed_out: bool = False
    error: str | None = None


def build_subagent_prompt(context: SubagentContext) -> str:
    spec_section = ""
    if context.spec_with_acs:
        spec_section = (
            "\n## Linked Spec with Acceptance Criteria\n\n"
            f"```json\n{json.dumps(context.spec_with_acs, indent=2, default=str)}\n```\n\n"
            "**Verify all ACs have test coverage before merging.**\n"
        )

    return f"""# PR Review Subagent

You are a subagent spawned by ralph to review and merge a PR.

## Task Reference
`{context.task_ref}`

## Git Branch
`{context.git_branch}`

## Task Details

```json
{json.dumps(context.task_details, indent=2, default=str)}
```
{spec_section}
## Instructions

Run the PR review skill to review and merge the PR for this task:

```
/pr-review {context.task_ref}
```

This will:
1. Run local review (AC coverage verification)
2. Check spec alignment
3. Wait for CI to pass
4. Merge the PR if all gates pass

**Exit when:**
- PR is merged successfully
- PR cannot be merged (quality gates failed, needs human review)
- No PR found for this task

Do NOT start new work. Your only job is to get this specific PR merged.
"""


class _PrefixedOutput:
    """Default update handler: translate and print with the subagent prefix."""

    def __init__(self, prefix: str) -> None:
        self._translator = create_translator()
        self._renderer = create_prefixed_renderer(prefix)

    def __call__(self, _session_id: str, update: dict[str, Any]) -> None:
        event = self._translator.translate(update)
        if event is not None:
            self._renderer.render(event)

    def finish(self) -> None:
        event = self._translator.finalize()
        if event is not None:
            self._renderer.render(event)


async def run_subagent(
    adapter: AgentAdapter,
    context: SubagentContext,
    config: SubagentConfig,
    options: SubagentOptions,
) -> SubagentResult:
    """Spawn an agent, give it one prompt, and wait at most ``config.timeout``.

    The agent process is terminated before this returns, whichever way the
    prompt ends.
    """
    prompt = build_subagent_prompt(context)
    client_options = options.client_options or ClientOptions()
    if client_options.client_info is None:
        client_options = replace(
            client_options, client_info={"name": "kspec-ralph-subagent", "version": __version__}
        )

    agent: SpawnedAgent | None = None
    output = None if options.on_update else _PrefixedOutput(config.output_prefix)
    try:
        agent = await spawn_and_initialize(
            adapter,
            SpawnAgentOptions(cwd=options.cwd, env=options.env, client_options=client_options),
        )
        client = agent.client
        client.set_update_handler(options.on_update or output)

        async def on_request(request_id: RequestId, method: str, params: Any) -> None:
            try:
                await options.handle_request(client, request_id, method, params)
            except Exception as exc:
                logger.warning("Subagent request handler failed for %s: %s", method, exc)
                await client.respond_error(request_id, SERVER_ERROR, str(exc) or type(exc).__name__)

        client.set_request_handler(on_request)

        session_id = await client.new_session(options.cwd)
        result = await asyncio.wait_for(client.prompt(session_id, prompt), timeout=config.timeout)
        if result.get("stopReason") == "cancelled":
            return SubagentResult(success=False, error="Subagent was cancelled by the agent")
        return SubagentResult(success=True)
    except asyncio.TimeoutError:
        logger.warning("Subagent for %s timed out after %ss", context.task_ref, config.timeout)
        return SubagentResult(success=False, timed_out=True)
    except Exception as exc:
        return SubagentResult(success=False, error=str(exc) or type(exc).__name__)
    finally:
        if output is not None:
            output.finish()
        if agent is not None:
            await agent.terminate()
