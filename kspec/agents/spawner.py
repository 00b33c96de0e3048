"""Launch ACP agents as child processes and attach a protocol client."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
from dataclasses import dataclass, field

from ..acp.client import ACPClient, ClientOptions
from .adapters import AgentAdapter

logger = logging.getLogger(__name__)

DEFAULT_KILL_GRACE = 5.0

_POSIX = os.name == "posix"


class AgentSpawnError(Exception):
    """Raised when an agent process cannot be launched or fails its handshake."""


@dataclass
class SpawnAgentOptions:
    cwd: str = "."
    env: dict[str, str] = field(default_factory=dict)
    client_options: ClientOptions | None = None


class SpawnedAgent:
    """Exclusive handle on one agent process and its ACP client."""

    def __init__(
        self,
        adapter: AgentAdapter,
        process: asyncio.subprocess.Process,
        client: ACPClient,
    ) -> None:
        self.adapter = adapter
        self.process = process
        self.client = client
        self._exit_watcher = asyncio.create_task(self._watch_exit())

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def is_running(self) -> bool:
        return self.process.returncode is None

    async def _watch_exit(self) -> None:
        returncode = await self.process.wait()
        logger.debug("Agent %s (pid %s) exited with %s", self.adapter.command, self.pid, returncode)
        if not self.client.is_closed:
            self.client.close(f"agent process exited with code {returncode}")

    def kill(self, sig: int = signal.SIGTERM) -> None:
        """Close the client and signal the process. Safe to call repeatedly."""
        if not self.client.is_closed:
            self.client.close("agent killed")
        if self.process.returncode is not None:
            return
        logger.debug("Sending signal %s to agent pid %s", sig, self.pid)
        with contextlib.suppress(ProcessLookupError, PermissionError):
            if _POSIX:
                # The agent runs in its own session; signal the whole group so
                # npx wrappers and shells take their children down with them.
                os.killpg(self.process.pid, sig)
            else:
                self.process.send_signal(sig)

    async def terminate(self, grace: float = DEFAULT_KILL_GRACE) -> int:
        """SIGTERM, wait up to ``grace`` seconds, then SIGKILL. Returns the exit code."""
        self.kill(signal.SIGTERM)
        try:
            await asyncio.wait_for(self.process.wait(), timeout=grace)
        except asyncio.TimeoutError:
            logger.warning("Agent pid %s ignored SIGTERM, killing", self.pid)
            self.kill(signal.SIGKILL if _POSIX else signal.SIGTERM)
            await self.process.wait()
        self._exit_watcher.cancel()
        return self.process.returncode if self.process.returncode is not None else -1


async def spawn_agent(adapter: AgentAdapter, options: SpawnAgentOptions | None = None) -> SpawnedAgent:
    """Start the agent process with piped stdin/stdout and stderr inherited.

    The caller owns the returned handle and must ``initialize()`` the client.
    """
    options = options or SpawnAgentOptions()
    env = {**os.environ, **adapter.env, **options.env}
    logger.debug("Spawning agent: %s (cwd=%s)", adapter.command_line(), options.cwd)
    try:
        if adapter.shell:
            process = await asyncio.create_subprocess_shell(
                adapter.command_line(),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                cwd=options.cwd,
                env=env,
                start_new_session=_POSIX,
            )
        else:
            process = await asyncio.create_subprocess_exec(
                adapter.command,
                *adapter.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                cwd=options.cwd,
                env=env,
                start_new_session=_POSIX,
            )
    except OSError as exc:
        raise AgentSpawnError(f"Failed to launch agent '{adapter.command}': {exc}") from exc

    if process.stdin is None or process.stdout is None:
        with contextlib.suppress(ProcessLookupError):
            process.kill()
        await process.wait()
        raise AgentSpawnError("Failed to create pipes for agent process")

    # We read the child's stdout and write to its stdin.
    client = ACPClient(process.stdout, process.stdin, options.client_options)
    client.start()
    return SpawnedAgent(adapter, process, client)


async def spawn_and_initialize(
    adapter: AgentAdapter, options: SpawnAgentOptions | None = None
) -> SpawnedAgent:
    """Spawn an agent and complete the ACP handshake.

    The child never outlives a failed handshake: it is terminated before the
    error reaches the caller.
    """
    agent = await spawn_agent(adapter, options)
    try:
        await agent.client.initialize()
    except Exception as exc:
        await agent.terminate()
        raise AgentSpawnError(f"Agent '{adapter.command}' failed to initialize: {exc}") from exc
    except BaseException:
        agent.kill(signal.SIGKILL if _POSIX else signal.SIGTERM)
        raise
    return agent
