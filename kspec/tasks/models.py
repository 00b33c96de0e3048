"""Task records as seen by the autonomous loop."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    PENDING_REVIEW = "pending_review"
    BLOCKED = "blocked"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


NEEDS_REVIEW = "needs_review"


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse an ISO 8601 timestamp, treating naive values as UTC."""
    if isinstance(value, datetime):
        ts = value
    else:
        ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


@dataclass
class Note:
    """An append-only entry in a task's history."""

    content: str
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    author: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "content": self.content, "created_at": self.created_at}
        if self.author:
            data["author"] = self.author
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Note:
        created_at = data.get("created_at")
        if isinstance(created_at, datetime):
            created_at = parse_timestamp(created_at).isoformat()
        return cls(
            content=str(data.get("content", "")),
            created_at=created_at or datetime.now(timezone.utc).isoformat(),
            id=str(data.get("id") or uuid.uuid4().hex),
            author=data.get("author"),
        )


@dataclass
class Task:
    """A unit of work. Only the fields the loop reads or writes are modelled."""

    id: str
    title: str
    status: TaskStatus = TaskStatus.PENDING
    slugs: list[str] = field(default_factory=list)
    description: str = ""
    priority: int = 3
    spec_ref: str | None = None
    automation: str | None = None
    depends_on: list[str] = field(default_factory=list)
    notes: list[Note] = field(default_factory=list)

    @property
    def ref(self) -> str:
        """Human-facing reference: ``@slug`` when the task has one, else a short id."""
        return f"@{self.slugs[0]}" if self.slugs else f"@{self.id[:8]}"

    @property
    def needs_review(self) -> bool:
        return self.automation == NEEDS_REVIEW

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "title": self.title, "status": self.status.value}
        if self.slugs:
            data["slugs"] = list(self.slugs)
        if self.description:
            data["description"] = self.description
        data["priority"] = self.priority
        if self.spec_ref:
            data["spec_ref"] = self.spec_ref
        if self.automation:
            data["automation"] = self.automation
        if self.depends_on:
            data["depends_on"] = list(self.depends_on)
        data["notes"] = [n.to_dict() for n in self.notes]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Task:
        return cls(
            id=str(data["id"]),
            title=str(data.get("title", "")),
            status=TaskStatus(data.get("status", TaskStatus.PENDING.value)),
            slugs=[str(s) for s in data.get("slugs") or []],
            description=str(data.get("description") or ""),
            priority=int(data.get("priority", 3)),
            spec_ref=data.get("spec_ref"),
            automation=data.get("automation"),
            depends_on=[str(d) for d in data.get("depends_on") or []],
            notes=[Note.from_dict(n) for n in data.get("notes") or []],
        )
