"""Minimal task model and repository used by the loop."""

from __future__ import annotations

from .models import NEEDS_REVIEW, Note, Task, TaskStatus
from .repository import TaskNotFoundError, TaskRepository, YamlTaskRepository, match_task

__all__ = [
    "NEEDS_REVIEW",
    "Note",
    "Task",
    "TaskNotFoundError",
    "TaskRepository",
    "TaskStatus",
    "YamlTaskRepository",
    "match_task",
]
