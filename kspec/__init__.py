"""kspec: an autonomous task loop that drives coding agents over ACP."""

__version__ = "0.1.0"

from .acp import ACPClient, ClientOptions, JsonRpcFraming
from .agents import AdapterRegistry, AgentAdapter, spawn_agent, spawn_and_initialize
from .ralph import RalphConfig, RalphResult, run_ralph, run_subagent
from .sessions import SessionStore

__all__ = [
    "__version__",
    "ACPClient",
    "AdapterRegistry",
    "AgentAdapter",
    "ClientOptions",
    "JsonRpcFraming",
    "RalphConfig",
    "RalphResult",
    "SessionStore",
    "run_ralph",
    "run_subagent",
    "spawn_agent",
    "spawn_and_initialize",
]
