"""Per-task failure tracking for the loop.

The failure count lives in task notes: a note starting with ``[LOOP-FAIL:N]``
records the Nth consecutive failed iteration. A task's count is the highest N
among its notes. These functions only decide; callers write the notes.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from ..tasks.models import Task, TaskStatus, parse_timestamp

ESCALATION_THRESHOLD = 3
FAILURE_PREFIX = "[LOOP-FAIL:"

_FAILURE_RE = re.compile(r"^\[LOOP-FAIL:(\d+)\]")


@dataclass
class IterationResult:
    succeeded: bool | None = None
    error: BaseException | str | None = None
    stop_reason: str | None = None


@dataclass
class TaskFailureResult:
    task_ref: str
    failure_count: int
    escalated: bool
    note_added: bool


def parse_failure_count(note_content: str) -> int:
    match = _FAILURE_RE.match(note_content)
    return int(match.group(1)) if match else 0


def get_task_failure_count(task: Task) -> int:
    return max((parse_failure_count(n.content) for n in task.notes), default=0)


def create_failure_note(task_ref: str, description: str, prior_count: int) -> str:
    return f"[LOOP-FAIL:{prior_count + 1}] Task {task_ref} failed: {description}"


def should_escalate(failure_count: int) -> bool:
    return failure_count >= ESCALATION_THRESHOLD


def is_iteration_failure(result: IterationResult) -> bool:
    """Explicit non-success, an error, or a cancelled stop reason."""
    if result.succeeded is False:
        return True
    if result.error:
        return True
    return result.stop_reason == "cancelled"


def has_task_progress(task: Task, since: datetime) -> bool:
    """True if any note other than a failure marker was added after ``since``."""
    since = parse_timestamp(since)
    for note in task.notes:
        if note.content.startswith(FAILURE_PREFIX):
            continue
        try:
            created = parse_timestamp(note.created_at)
        except ValueError:
            continue
        if created > since:
            return True
    return False


def process_failed_iteration(
    tasks_in_progress: Iterable[Task],
    current_tasks: Iterable[Task],
    iteration_start: datetime,
    description: str,
) -> list[TaskFailureResult]:
    """Decide which tasks take a failure for this iteration.

    Only tasks that were in progress when the iteration started and still are
    now count; a task that moved on during the iteration did not fail. A task
    with new notes since ``iteration_start`` made progress and is skipped.
    ``description`` is what the caller will put in the note.
    """
    current = {t.id: t for t in current_tasks}
    results = []
    for original in tasks_in_progress:
        task = current.get(original.id)
        if task is None or task.status != TaskStatus.IN_PROGRESS:
            continue
        if has_task_progress(task, iteration_start):
            continue
        count = get_task_failure_count(task) + 1
        results.append(
            TaskFailureResult(
                task_ref=task.id,
                failure_count=count,
                escalated=should_escalate(count),
                note_added=True,
            )
        )
    return results
