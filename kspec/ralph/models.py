"""Configuration and results for a ralph loop run."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any

from ..agents.adapters import DEFAULT_ADAPTER
from ..sessions.models import SessionStatus
from .subagent import DEFAULT_SUBAGENT_PREFIX, DEFAULT_SUBAGENT_TIMEOUT


@dataclass
class RalphConfig:
    """Configuration for a ralph run."""

    max_loops: int = 5
    max_retries: int = 3
    max_failures: int = 3
    dry_run: bool = False
    yolo: bool = True
    adapter_id: str = field(default_factory=lambda: os.getenv("KSPEC_ADAPTER", DEFAULT_ADAPTER))
    adapter_cmd: str | None = None
    cwd: str = "."
    review: bool = True
    subagent_timeout: float = field(
        default_factory=lambda: float(
            os.getenv("KSPEC_SUBAGENT_TIMEOUT", str(DEFAULT_SUBAGENT_TIMEOUT))
        )
    )
    subagent_prefix: str = DEFAULT_SUBAGENT_PREFIX
    acp_timeout: float = field(
        default_factory=lambda: float(os.getenv("KSPEC_ACP_TIMEOUT", "30"))
    )

    def validate(self) -> None:
        if self.max_loops < 1:
            raise ValueError("--max-loops must be a positive integer")
        if self.max_retries < 0:
            raise ValueError("--max-retries must be a non-negative integer")
        if self.max_failures < 1:
            raise ValueError("--max-failures must be a positive integer")
        if self.subagent_timeout <= 0:
            raise ValueError("--subagent-timeout must be positive")


@dataclass
class ReviewOutcome:
    task_ref: str
    success: bool
    timed_out: bool = False
    error: str | None = None


@dataclass
class RalphResult:
    """What happened during one ralph run."""

    session_id: str
    status: SessionStatus = SessionStatus.COMPLETED
    iterations: int = 0
    consecutive_failures: int = 0
    escalated: list[str] = field(default_factory=list)
    reviews: list[ReviewOutcome] = field(default_factory=list)
    dry_run_prompt: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "status": self.status.value,
            "iterations": self.iterations,
            "consecutive_failures": self.consecutive_failures,
            "escalated": list(self.escalated),
            "reviews": [
                {"task": r.task_ref, "success": r.success, "timed_out": r.timed_out, "error": r.error}
                for r in self.reviews
            ],
        }
