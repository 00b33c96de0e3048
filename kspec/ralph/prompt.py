"""Iteration context and prompt for the primary loop agent."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from ..tasks.models import Task, TaskStatus

MAX_NOTES_PER_TASK = 3


def _task_summary(task: Task) -> dict[str, Any]:
    summary: dict[str, Any] = {
        "ref": task.ref,
        "title": task.title,
        "status": task.status.value,
        "priority": task.priority,
    }
    if task.spec_ref:
        summary["spec_ref"] = task.spec_ref
    if task.automation:
        summary["automation"] = task.automation
    if task.notes:
        summary["recent_notes"] = [n.content for n in task.notes[-MAX_NOTES_PER_TASK:]]
    return summary


def active_tasks(tasks: list[Task]) -> list[Task]:
    """In-progress tasks the loop may keep working on (escalated ones excluded)."""
    return [t for t in tasks if t.status == TaskStatus.IN_PROGRESS and not t.needs_review]


def ready_tasks(tasks: list[Task]) -> list[Task]:
    """Pending tasks whose dependencies are all completed, highest priority first."""
    completed = {t.id for t in tasks if t.status == TaskStatus.COMPLETED}
    ready = [
        t
        for t in tasks
        if t.status == TaskStatus.PENDING
        and not t.needs_review
        and all(dep in completed for dep in t.depends_on)
    ]
    return sorted(ready, key=lambda t: (t.priority, t.id))


def gather_context(tasks: list[Task], branch: str) -> dict[str, Any]:
    """Snapshot of task state handed to the agent each iteration."""
    return {
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "branch": branch,
        "active_tasks": [_task_summary(t) for t in active_tasks(tasks)],
        "ready_tasks": [_task_summary(t) for t in ready_tasks(tasks)],
        "pending_review_tasks": [
            _task_summary(t) for t in tasks if t.status == TaskStatus.PENDING_REVIEW
        ],
        "blocked_tasks": [_task_summary(t) for t in tasks if t.status == TaskStatus.BLOCKED],
        "needs_review_tasks": [_task_summary(t) for t in tasks if t.needs_review],
    }


def build_iteration_prompt(context: dict[str, Any], iteration: int, max_loops: int) -> str:
    final_section = ""
    if iteration == max_loops:
        final_section = """
## FINAL ITERATION
This is the last iteration of the loop. After completing your work:
1. Commit any remaining changes
2. Reflect on the overall session
3. Add any final insights to inbox
"""

    return f"""# Kspec Automation Session

You are running as part of a kspec automation loop. This is iteration {iteration} of {max_loops}.

## Current State
```json
{json.dumps(context, indent=2, default=str)}
```

## Working Procedure

1. **Pick a task**: Review ready_tasks above. Pick the highest priority task (lowest number = higher priority). If there's an active (in_progress) task, continue that instead.

2. **Start the task** (if not already in_progress):
   ```bash
   kspec task start @task-ref
   ```

3. **Do the work**:
   - Read relevant files to understand the task
   - Make changes as needed
   - Run tests if applicable
   - Document as you go with task notes

4. **Document progress**:
   ```bash
   kspec task note @task-ref "What you did, decisions made, etc."
   ```

5. **Complete or checkpoint**:
   - If task is DONE, open a PR and submit it for review:
     ```bash
     kspec task submit @task-ref
     ```
   - If task is NOT done (WIP):
     ```bash
     kspec task note @task-ref "WIP: What's done, what remains..."
     ```

6. **Commit your work**:
   ```bash
   git add -A && git commit -m "feat/fix/chore: description

   Task: @task-ref"
   ```

## Important Notes
- Stay focused on ONE task per iteration
- The loop continues automatically - don't worry about picking the next task
- kspec tracks state across iterations via task status and notes
- Always commit before the iteration ends
{final_section}"""
