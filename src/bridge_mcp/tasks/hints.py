"""Progress hints for polling callers."""

from __future__ import annotations

from datetime import datetime, timezone

from .models import Task


def generate_hint(task: Task, now: datetime | None = None) -> str:
    """Return a human-readable hint describing what a caller should do next."""

    status = task.status
    if status == "pending":
        return "Task is queued. It will start shortly."
    if status == "starting":
        return "Task is initializing. Please check back in 10 seconds."
    if status == "running":
        elapsed = 0.0
        if task.started_at is not None:
            elapsed = ((now or datetime.now(timezone.utc)) - task.started_at).total_seconds()
        if elapsed < 60:
            return "Task is still processing. Please check back in 30 seconds."
        if elapsed < 300:
            return "Task is actively running. Please check back in 1 minute."
        return "Task is running a long operation. Please check back in 2-3 minutes."
    if status == "completed":
        return "Task completed successfully. Review the output above."
    if status == "failed":
        return f"Task failed with exit code {task.exit_code}. Review the error output above."
    if status == "timeout":
        return "Task exceeded the timeout limit and was terminated."
    if status == "killed":
        return "Task was manually terminated."
    return "An internal error occurred. Check server logs for details."


__all__ = ["generate_hint"]
