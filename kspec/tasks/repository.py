"""Task storage consumed by the loop."""

from __future__ import annotations

import logging
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Any, Protocol, runtime_checkable

import yaml

from .models import Note, Task

logger = logging.getLogger(__name__)


class TaskNotFoundError(LookupError):
    """Raised when a task reference matches no task."""

    def __init__(self, ref: str) -> None:
        self.ref = ref
        super().__init__(f"Task not found: {ref}")


@runtime_checkable
class TaskRepository(Protocol):
    """Read tasks and record the loop's writes to them."""

    def list_tasks(self) -> list[Task]: ...

    def get_task(self, ref: str) -> Task | None: ...

    def add_note(self, task_id: str, content: str, author: str | None = None) -> Note: ...

    def set_automation(self, task_id: str, automation: str | None) -> Task: ...

    def get_spec(self, ref: str) -> dict[str, Any] | None: ...


def match_task(tasks: list[Task], ref: str) -> Task | None:
    """Resolve ``@slug``, a full id, or a unique id prefix."""
    key = ref[1:] if ref.startswith("@") else ref
    for task in tasks:
        if task.id == key or key in task.slugs:
            return task
    prefixed = [t for t in tasks if t.id.startswith(key)]
    return prefixed[0] if len(prefixed) == 1 else None


class YamlTaskRepository:
    """Tasks and linked specs kept in one YAML file.

    The file is re-read on every call so edits made by the agent between
    calls are always visible::

        tasks:
          - id: 01JABC...
            slugs: [add-login]
            title: Add login
            status: in_progress
            spec_ref: "@auth"
            notes: []
        specs:
          "@auth":
            title: Authentication
            acceptance_criteria: [...]
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {"tasks": []}
        with open(self.path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Task file must contain a YAML mapping: {self.path}")
        return data

    def _save(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with NamedTemporaryFile("w", encoding="utf-8", dir=self.path.parent, delete=False) as tmp:
            yaml.safe_dump(data, tmp, default_flow_style=False, sort_keys=False, allow_unicode=True)
            tmp_path = Path(tmp.name)
        tmp_path.replace(self.path)

    def list_tasks(self) -> list[Task]:
        return [Task.from_dict(t) for t in self._load().get("tasks") or []]

    def get_task(self, ref: str) -> Task | None:
        return match_task(self.list_tasks(), ref)

    def save_tasks(self, tasks: list[Task]) -> None:
        data = self._load()
        data["tasks"] = [t.to_dict() for t in tasks]
        self._save(data)

    def _mutate(self, task_id: str, fn) -> Task:
        tasks = self.list_tasks()
        task = next((t for t in tasks if t.id == task_id), None)
        if task is None:
            raise TaskNotFoundError(task_id)
        fn(task)
        self.save_tasks(tasks)
        return task

    def add_note(self, task_id: str, content: str, author: str | None = None) -> Note:
        note = Note(content=content, author=author)
        self._mutate(task_id, lambda t: t.notes.append(note))
        return note

    def set_automation(self, task_id: str, automation: str | None) -> Task:
        def apply(task: Task) -> None:
            task.automation = automation

        return self._mutate(task_id, apply)

    def get_spec(self, ref: str) -> dict[str, Any] | None:
        specs = self._load().get("specs") or {}
        spec = specs.get(ref) if isinstance(specs, dict) else None
        return spec if isinstance(spec, dict) else None
