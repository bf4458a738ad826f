"""Tool registration for the bridge MCP server."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from fastmcp import Context, FastMCP
from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..config import BridgeSettings
from ..pty.driver import PermissionMode
from ..tasks import KILLABLE_STATUSES, TaskScheduler, generate_hint

MIN_TIMEOUT_SECONDS = 60
MAX_TIMEOUT_SECONDS = 14400


@dataclass(slots=True)
class ToolHandles:
    start_task: Any
    get_task_status: Any
    kill_task: Any
    set_active_project: Any
    get_active_project: Any
    scheduler: TaskScheduler


class StartTaskInput(BaseModel):
    """Arguments accepted by the ``start_task`` tool."""

    model_config = ConfigDict(extra="forbid")

    prompt: str = Field(min_length=1)
    path: str | None = None
    timeout_seconds: int | None = Field(default=None, ge=MIN_TIMEOUT_SECONDS, le=MAX_TIMEOUT_SECONDS)
    permission_mode: PermissionMode | None = None

    @field_validator("prompt")
    @classmethod
    def _require_text(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("prompt must not be blank")
        return value


def _ensure_allowed_path(path: str | Path, settings: BridgeSettings) -> str:
    """Resolve ``path`` and check it is a directory under the configured roots."""

    resolved = Path(path).expanduser().resolve()
    if not resolved.is_dir():
        raise ValueError(f"Project path '{path}' does not exist or is not a directory")

    roots = [Path(root).expanduser().resolve() for root in settings.allowed_roots]
    if roots and not any(resolved == root or resolved.is_relative_to(root) for root in roots):
        allowed = ", ".join(str(root) for root in roots)
        raise ValueError(f"Path '{resolved}' is outside the allowed roots ({allowed})")
    return str(resolved)


def register_tools(
    server: FastMCP,
    *,
    scheduler: TaskScheduler,
    settings: BridgeSettings,
) -> ToolHandles:
    """Register the task tools on the server."""

    async def _start_task(
        prompt: str,
        path: str | None = None,
        timeout_seconds: int | None = None,
        permission_mode: PermissionMode | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Start a coding session for a project in the background."""

        request = StartTaskInput(
            prompt=prompt,
            path=path,
            timeout_seconds=timeout_seconds,
            permission_mode=permission_mode,
        )
        project = _ensure_allowed_path(scheduler.resolve_path(request.path), settings)
        task = await scheduler.start_task(
            request.prompt,
            project,
            timeout_seconds=request.timeout_seconds,
            permission_mode=request.permission_mode or "auto",
        )

        _emit_log(
            context,
            "info",
            "Started task",
            extra={
                "task_id": task.id,
                "project_path": task.project_path,
                "permission_mode": task.permission_mode,
            },
        )

        return {
            "task_id": task.id,
            "status": task.status,
            "message": (
                "Task started. Claude Code is processing your request. "
                "Use get_task_status to check progress."
            ),
        }

    def _get_task_status(task_id: str, context: Context | None = None) -> dict[str, Any]:
        summary = scheduler.get_task_status(task_id)
        task = scheduler.get_task(task_id)
        if summary is None or task is None:
            raise ValueError(f"Task '{task_id}' not found")

        _emit_log(
            context,
            "debug",
            "Task status",
            extra={"task_id": task_id, "status": summary.status},
        )

        return {
            "task_id": summary.id,
            "status": summary.status,
            "elapsed_seconds": summary.elapsed_seconds,
            "exit_code": summary.exit_code,
            "last_output": summary.last_output,
            "hint": generate_hint(task),
        }

    async def _kill_task(task_id: str, context: Context | None = None) -> dict[str, Any]:
        task = scheduler.get_task(task_id)
        if task is None:
            return {"task_id": task_id, "status": "error", "message": f"Task not found: {task_id}"}
        if task.status not in KILLABLE_STATUSES:
            return {
                "task_id": task_id,
                "status": task.status,
                "message": f"Task is not running (current status: {task.status})",
            }

        killed = await scheduler.kill_task(task_id)
        _emit_log(
            context,
            "warning" if killed else "error",
            "Kill requested",
            extra={"task_id": task_id, "killed": killed},
        )
        if not killed:
            return {"task_id": task_id, "status": task.status, "message": "Failed to terminate task."}
        # A timeout can finalize the task while the kill is still in flight.
        return {"task_id": task_id, "status": task.status, "message": "Task terminated successfully."}

    def _set_active_project(path: str, context: Context | None = None) -> dict[str, Any]:
        project = scheduler.set_active_project(_ensure_allowed_path(path, settings))
        _emit_log(context, "info", "Active project changed", extra={"project_path": project})
        return {"path": project, "message": f"Active project set to {project}"}

    def _get_active_project(context: Context | None = None) -> dict[str, Any]:
        project = scheduler.get_active_project()
        if project is None:
            return {
                "path": None,
                "message": "No active project set. Use set_active_project to choose one.",
            }
        return {"path": project, "message": f"Active project: {project}"}

    tool_start = server.tool(
        name="start_task",
        description=(
            "Start a Claude Code task in a project directory. The session runs in the "
            "background; poll get_task_status for progress. Only one task may run per "
            "project. permission_mode=auto answers confirmation prompts automatically, "
            "cautious leaves them unanswered."
        ),
    )(_start_task)

    tool_status = server.tool(
        name="get_task_status",
        description="Report status, elapsed time, exit code, recent output and a polling hint for a task.",
    )(_get_task_status)

    tool_kill = server.tool(
        name="kill_task",
        description="Terminate a starting or running task.",
    )(_kill_task)

    tool_set_project = server.tool(
        name="set_active_project",
        description="Select the project directory used when start_task is called without a path.",
    )(_set_active_project)

    tool_get_project = server.tool(
        name="get_active_project",
        description="Show the currently selected project directory.",
    )(_get_active_project)

    return ToolHandles(
        start_task=tool_start,
        get_task_status=tool_status,
        kill_task=tool_kill,
        set_active_project=tool_set_project,
        get_active_project=tool_get_project,
        scheduler=scheduler,
    )


__all__ = ["MAX_TIMEOUT_SECONDS", "MIN_TIMEOUT_SECONDS", "StartTaskInput", "ToolHandles", "register_tools"]

logger = logging.getLogger(__name__)


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Best-effort logging that prefers the MCP context logger when available."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)
