"""FastMCP server bootstrap for the bridge."""

import json
import logging
import shlex
import shutil
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional

from fastmcp import Context, FastMCP

from . import __version__
from .config import BridgeSettings, get_settings
from .pty import strip_ansi
from .tasks import TaskScheduler
from .tools import register_tools

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """Configure root logging for the bridge server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def _executable_metadata(settings: BridgeSettings) -> dict[str, Any]:
    try:
        argv = shlex.split(settings.claude_command)
    except ValueError as exc:
        return {"command": settings.claude_command, "available": False, "path": None, "error": str(exc)}

    if not argv:
        return {"command": "", "available": False, "path": None, "error": "claude_command is empty"}

    path = shutil.which(argv[0])
    return {
        "command": settings.claude_command,
        "available": path is not None,
        "path": path,
        "error": None if path else f"'{argv[0]}' was not found on PATH",
    }


def create_server(
    settings: Optional[BridgeSettings] = None,
    scheduler: TaskScheduler | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server with task tools and resources."""

    settings = settings or get_settings()
    scheduler = scheduler or TaskScheduler(settings)
    executable_metadata = _executable_metadata(settings)

    @asynccontextmanager
    async def lifespan(_server: FastMCP):
        try:
            yield
        finally:
            logger.info("Shutting down task scheduler")
            await scheduler.shutdown()

    server = FastMCP(
        name="Bridge MCP",
        version=__version__,
        instructions=(
            "Runs Claude Code sessions as background tasks, one per project. Start a "
            "task with start_task, poll get_task_status until it finishes, and use "
            "kill_task to stop it early."
        ),
        lifespan=lifespan,
    )

    handles = register_tools(server, scheduler=scheduler, settings=settings)

    @server.resource(
        "resource://bridge/status",
        name="bridge_status",
        title="Bridge MCP Status",
        description="Provides the current runtime status for the bridge server.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    def status_resource(context: Context) -> str:
        """Return a JSON string summarizing basic runtime state."""

        active = scheduler.get_active_tasks()
        history = scheduler.get_history()
        status_counts: dict[str, int] = {}
        for summary in active:
            status_counts[summary.status] = status_counts.get(summary.status, 0) + 1
        for task in history:
            status_counts[task.status] = status_counts.get(task.status, 0) + 1

        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "executable": executable_metadata,
            "active_project": scheduler.get_active_project(),
            "tasks": {
                "active": len(active),
                "history": len(history),
                "history_size": settings.task_history_size,
                "status_counts": status_counts,
            },
            "request_id": getattr(context, "request_id", None),
        }
        return json.dumps(payload)

    @server.resource(
        "tasks://active",
        name="active_tasks",
        description="Tasks that are pending, starting or running.",
        mime_type="application/json",
    )
    def active_tasks_resource() -> str:
        tasks = [summary.to_dict() for summary in scheduler.get_active_tasks()]
        return json.dumps({"tasks": tasks})

    @server.resource(
        "tasks://history",
        name="task_history",
        description="Recently finished tasks, newest first.",
        mime_type="application/json",
    )
    def task_history_resource() -> str:
        tasks = [scheduler.summarize(task).to_dict() for task in scheduler.get_history()]
        return json.dumps({"tasks": tasks})

    @server.resource(
        "logs://{task_id}",
        name="task_log",
        description="Terminal output of a task with escape sequences removed.",
        mime_type="text/plain",
    )
    def task_log_resource(task_id: str) -> str:
        task = scheduler.get_task(task_id)
        if task is None:
            raise ValueError(f"Task '{task_id}' not found")
        try:
            raw = task.log_file.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            return f"[Log file not available: {exc}]"
        return strip_ansi(raw)

    @server.resource(
        "config://current",
        name="current_config",
        description="Effective bridge configuration.",
        mime_type="application/json",
    )
    def config_resource() -> str:
        return json.dumps(settings.model_dump(mode="json"))

    setattr(server, "settings", settings)
    setattr(server, "scheduler", scheduler)
    setattr(server, "executable_metadata", executable_metadata)
    setattr(server, "tool_handles", handles)
    return server


def main() -> None:
    """Entry point for running the bridge MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logger.info(
        "Launching bridge MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "executable_available": getattr(server, "executable_metadata", {}).get("available"),
        },
    )
    server.run()


if __name__ == "__main__":
    main()
