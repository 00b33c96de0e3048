"""Agent adapters: how to launch each ACP-speaking agent as a subprocess."""

from __future__ import annotations

import os
import shlex
import sys
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

DEFAULT_ADAPTER = "claude-code-acp"


class UnknownAdapterError(ValueError):
    """Raised when an adapter id is not registered and ad-hoc launch is disabled."""

    def __init__(self, adapter_id: str, available: list[str]) -> None:
        self.adapter_id = adapter_id
        choices = ", ".join(available) or "(none)"
        super().__init__(f"Unknown agent adapter '{adapter_id}'. Available adapters: {choices}.")


class AdapterConfigError(ValueError):
    """Raised when an adapters file cannot be loaded."""


@dataclass(frozen=True)
class AgentAdapter:
    """Spawn descriptor for one agent."""

    command: str
    args: tuple[str, ...] = ()
    env: dict[str, str] = field(default_factory=dict)
    shell: bool = False
    description: str = ""

    def with_args(self, *extra: str) -> AgentAdapter:
        """Return a copy with ``extra`` appended to the argument list."""
        return replace(self, args=(*self.args, *extra))

    def command_line(self) -> str:
        """The full command as a single shell-quoted string."""
        return shlex.join([self.command, *self.args])

    @classmethod
    def from_command(cls, command: str, description: str = "") -> AgentAdapter:
        """Build an adapter from a raw command string such as ``--adapter-cmd``."""
        parts = shlex.split(command)
        if not parts:
            raise AdapterConfigError("Adapter command cannot be empty")
        return cls(command=parts[0], args=tuple(parts[1:]), description=description)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AgentAdapter:
        if not isinstance(data.get("command"), str) or not data["command"]:
            raise AdapterConfigError("Adapter entry requires a non-empty 'command'")
        env = data.get("env") or {}
        return cls(
            command=data["command"],
            args=tuple(str(a) for a in data.get("args") or ()),
            env={str(k): str(v) for k, v in env.items()},
            shell=bool(data.get("shell", False)),
            description=str(data.get("description", "")),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"command": self.command, "args": list(self.args)}
        if self.env:
            data["env"] = dict(self.env)
        if self.shell:
            data["shell"] = True
        if self.description:
            data["description"] = self.description
        return data


def adhoc_adapter(package: str) -> AgentAdapter:
    """Treat ``package`` as an npm package that speaks ACP and launch it with npx."""
    return AgentAdapter(
        command="npx",
        args=(package,),
        shell=sys.platform == "win32",
        description=f"Ad-hoc adapter for {package}",
    )


def builtin_adapters() -> dict[str, AgentAdapter]:
    return {
        DEFAULT_ADAPTER: AgentAdapter(
            command="npx",
            args=("@anthropic-ai/claude-code-acp",),
            shell=sys.platform == "win32",
            description="Claude Code via ACP protocol",
        ),
    }


class AdapterRegistry:
    """Insert-only mapping of adapter id to spawn descriptor.

    Constructed explicitly and handed to whatever needs to resolve adapters.
    With ``allow_adhoc`` (the default), resolving an unregistered id yields an
    ``npx <id>`` descriptor so any ACP-compatible package works without
    registration; with it off, unknown ids raise ``UnknownAdapterError``.
    """

    def __init__(
        self,
        adapters: dict[str, AgentAdapter] | None = None,
        *,
        default_id: str = DEFAULT_ADAPTER,
        allow_adhoc: bool = True,
    ) -> None:
        self._adapters: dict[str, AgentAdapter] = dict(adapters or {})
        self.default_id = default_id
        self.allow_adhoc = allow_adhoc

    @classmethod
    def with_defaults(cls, *, allow_adhoc: bool = True) -> AdapterRegistry:
        return cls(builtin_adapters(), allow_adhoc=allow_adhoc)

    def register(self, adapter_id: str, adapter: AgentAdapter, *, overwrite: bool = False) -> None:
        key = adapter_id.strip()
        if not key:
            raise ValueError("Adapter id cannot be empty")
        if key in self._adapters and not overwrite:
            raise ValueError(f"Adapter '{key}' is already registered")
        self._adapters[key] = adapter

    def get(self, adapter_id: str) -> AgentAdapter | None:
        return self._adapters.get(adapter_id)

    def ids(self) -> list[str]:
        return sorted(self._adapters)

    def __contains__(self, adapter_id: object) -> bool:
        return adapter_id in self._adapters

    def resolve(self, adapter_id: str | None = None) -> AgentAdapter:
        """Registered adapter for ``adapter_id``, the default when omitted."""
        key = adapter_id or self.default_id
        adapter = self._adapters.get(key)
        if adapter is not None:
            return adapter
        if not self.allow_adhoc:
            raise UnknownAdapterError(key, self.ids())
        return adhoc_adapter(key)

    def load_file(self, path: str | Path, *, overwrite: bool = True) -> list[str]:
        """Register the adapters listed under ``adapters:`` in a YAML file.

        Returns the ids registered.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Adapters file not found: {path}")
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        entries = data.get("adapters") if isinstance(data, dict) else None
        if not isinstance(entries, dict):
            raise AdapterConfigError(f"Adapters file must contain an 'adapters' mapping: {path}")
        loaded = []
        for adapter_id, entry in entries.items():
            if not isinstance(entry, dict):
                raise AdapterConfigError(f"Adapter '{adapter_id}' must be a mapping")
            self.register(str(adapter_id), AgentAdapter.from_dict(entry), overwrite=overwrite)
            loaded.append(str(adapter_id))
        return loaded


def registry_from_env(*, allow_adhoc: bool = True) -> AdapterRegistry:
    """Default registry plus any adapters in ``KSPEC_ADAPTERS_FILE``."""
    registry = AdapterRegistry.with_defaults(allow_adhoc=allow_adhoc)
    adapters_file = os.getenv("KSPEC_ADAPTERS_FILE")
    if adapters_file:
        registry.load_file(adapters_file)
    return registry
