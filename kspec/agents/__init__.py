"""Agent adapters and process spawning."""

from __future__ import annotations

from .adapters import (
    DEFAULT_ADAPTER,
    AdapterConfigError,
    AdapterRegistry,
    AgentAdapter,
    UnknownAdapterError,
    adhoc_adapter,
    registry_from_env,
)
from .spawner import (
    AgentSpawnError,
    SpawnAgentOptions,
    SpawnedAgent,
    spawn_agent,
    spawn_and_initialize,
)

__all__ = [
    "AdapterConfigError",
    "AdapterRegistry",
    "AgentAdapter",
    "AgentSpawnError",
    "DEFAULT_ADAPTER",
    "SpawnAgentOptions",
    "SpawnedAgent",
    "UnknownAdapterError",
    "adhoc_adapter",
    "registry_from_env",
    "spawn_agent",
    "spawn_and_initialize",
]
