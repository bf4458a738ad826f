"""Data models for scheduled tasks."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Literal

from ..pty.driver import PermissionMode

TaskStatus = Literal[
    "pending",
    "starting",
    "running",
    "completed",
    "failed",
    "timeout",
    "killed",
    "error",
]

ACTIVE_STATUSES: frozenset[str] = frozenset({"pending", "starting", "running"})
KILLABLE_STATUSES: frozenset[str] = frozenset({"starting", "running"})
TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed", "timeout", "killed", "error"})
PERMISSION_MODES: frozenset[str] = frozenset({"auto", "cautious"})


@dataclass(slots=True)
class Task:
    id: str
    status: TaskStatus
    project_path: str
    prompt: str
    permission_mode: PermissionMode
    timeout_seconds: int
    created_at: datetime
    log_file: Path
    prompt_file: Path
    started_at: datetime | None = None
    completed_at: datetime | None = None
    exit_code: int | None = None
    last_output: str = ""
    output_size_bytes: int = 0
    error: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(slots=True)
class TaskSummary:
    """Status projection of a task, as reported to callers."""

    id: str
    status: TaskStatus
    project_path: str
    created_at: str
    elapsed_seconds: int
    exit_code: int | None
    last_output: str
    output_size_bytes: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.id,
            "status": self.status,
            "project_path": self.project_path,
            "created_at": self.created_at,
            "elapsed_seconds": self.elapsed_seconds,
            "exit_code": self.exit_code,
            "last_output": self.last_output,
            "output_size_bytes": self.output_size_bytes,
        }


__all__ = [
    "ACTIVE_STATUSES",
    "KILLABLE_STATUSES",
    "PERMISSION_MODES",
    "PermissionMode",
    "TERMINAL_STATUSES",
    "Task",
    "TaskStatus",
    "TaskSummary",
]
