from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from bridge_mcp.tasks import Task, generate_hint

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def _task(status: str, **overrides) -> Task:
    fields = {
        "id": "task_0000abcd",
        "status": status,
        "project_path": "/tmp/project",
        "prompt": "do the thing",
        "permission_mode": "auto",
        "timeout_seconds": 3600,
        "created_at": NOW,
        "log_file": Path("/tmp/project/.claude/mcp-logs/task_0000abcd.log"),
        "prompt_file": Path("/tmp/project/.claude/mcp-logs/prompt_task_0000abcd.md"),
    }
    fields.update(overrides)
    return Task(**fields)


@pytest.mark.parametrize(
    ("elapsed", "expected"),
    [
        (5, "Task is still processing. Please check back in 30 seconds."),
        (59, "Task is still processing. Please check back in 30 seconds."),
        (60, "Task is actively running. Please check back in 1 minute."),
        (299, "Task is actively running. Please check back in 1 minute."),
        (300, "Task is running a long operation. Please check back in 2-3 minutes."),
    ],
)
def test_running_hint_depends_on_elapsed_time(elapsed: int, expected: str) -> None:
    task = _task("running", started_at=NOW - timedelta(seconds=elapsed))
    assert generate_hint(task, now=NOW) == expected


def test_running_without_start_time_is_treated_as_just_started() -> None:
    task = _task("running")
    assert "30 seconds" in generate_hint(task, now=NOW)


def test_failed_hint_includes_exit_code() -> None:
    task = _task("failed", exit_code=3)
    assert generate_hint(task) == "Task failed with exit code 3. Review the error output above."


@pytest.mark.parametrize(
    ("status", "fragment"),
    [
        ("pending", "queued"),
        ("starting", "initializing"),
        ("completed", "completed successfully"),
        ("timeout", "timeout limit"),
        ("killed", "manually terminated"),
        ("error", "internal error"),
    ],
)
def test_terminal_and_early_hints(status: str, fragment: str) -> None:
    assert fragment in generate_hint(_task(status), now=NOW)
