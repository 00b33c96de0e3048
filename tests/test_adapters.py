"""Tests for agent adapter descriptors and the registry."""

from __future__ import annotations

import pytest

from kspec.agents.adapters import (
    DEFAULT_ADAPTER,
    AdapterConfigError,
    AdapterRegistry,
    AgentAdapter,
    UnknownAdapterError,
    registry_from_env,
)


def test_default_registry_has_claude_code_adapter() -> None:
    registry = AdapterRegistry.with_defaults()
    adapter = registry.resolve()
    assert DEFAULT_ADAPTER in registry
    assert adapter.command == "npx"
    assert adapter.args == ("@anthropic-ai/claude-code-acp",)
    assert adapter.description == "Claude Code via ACP protocol"


def test_unknown_id_falls_back_to_npx_package() -> None:
    adapter = AdapterRegistry.with_defaults().resolve("@acme/acp-agent")
    assert adapter.command == "npx"
    assert adapter.args == ("@acme/acp-agent",)


def test_unknown_id_raises_when_adhoc_disabled() -> None:
    registry = AdapterRegistry.with_defaults(allow_adhoc=False)
    with pytest.raises(UnknownAdapterError, match="claude-code-acp"):
        registry.resolve("nope")


def test_register_refuses_duplicates_unless_overwrite() -> None:
    registry = AdapterRegistry()
    registry.register("mine", AgentAdapter(command="agent-a"))
    with pytest.raises(ValueError):
        registry.register("mine", AgentAdapter(command="agent-b"))

    registry.register("mine", AgentAdapter(command="agent-b"), overwrite=True)
    assert registry.resolve("mine").command == "agent-b"
    assert registry.ids() == ["mine"]


def test_with_args_returns_copy() -> None:
    base = AgentAdapter(command="npx", args=("pkg",))
    extended = base.with_args("--dangerously-skip-permissions")
    assert base.args == ("pkg",)
    assert extended.args == ("pkg", "--dangerously-skip-permissions")


def test_from_command_splits_like_a_shell() -> None:
    adapter = AgentAdapter.from_command('python "/tmp/my agent.py" --fast')
    assert adapter.command == "python"
    assert adapter.args == ("/tmp/my agent.py", "--fast")
    assert adapter.command_line() == "python '/tmp/my agent.py' --fast"

    with pytest.raises(AdapterConfigError):
        AgentAdapter.from_command("   ")


def test_load_file_registers_adapters(tmp_path) -> None:
    path = tmp_path / "adapters.yaml"
    path.write_text(
        "adapters:\n"
        "  local:\n"
        "    command: ./bin/agent\n"
        "    args: [--acp]\n"
        "    env:\n"
        "      AGENT_MODE: ci\n"
        "    description: Local build\n"
    )
    registry = AdapterRegistry.with_defaults()

    assert registry.load_file(path) == ["local"]
    adapter = registry.resolve("local")
    assert adapter.args == ("--acp",)
    assert adapter.env == {"AGENT_MODE": "ci"}
    assert adapter.to_dict()["description"] == "Local build"


def test_load_file_rejects_bad_shape(tmp_path) -> None:
    path = tmp_path / "adapters.yaml"
    path.write_text("adapters:\n  broken:\n    args: [x]\n")
    with pytest.raises(AdapterConfigError):
        AdapterRegistry().load_file(path)

    path.write_text("- just a list\n")
    with pytest.raises(AdapterConfigError):
        AdapterRegistry().load_file(path)


def test_registry_from_env_reads_adapters_file(tmp_path, monkeypatch) -> None:
    path = tmp_path / "adapters.yaml"
    path.write_text("adapters:\n  extra:\n    command: extra-agent\n")
    monkeypatch.setenv("KSPEC_ADAPTERS_FILE", str(path))

    registry = registry_from_env()

    assert "extra" in registry
    assert DEFAULT_ADAPTER in registry
