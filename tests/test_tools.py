from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import pytest

from bridge_mcp.config import BridgeSettings
from bridge_mcp.tasks import NoActiveProjectError, TaskScheduler
from bridge_mcp.tools import register_tools


class StubTool:
    def __init__(self, fn, name):
        self.fn = fn
        self.name = name


class StubServer:
    def __init__(self) -> None:
        self._tools: dict[str, StubTool] = {}

    def tool(self, *args, **kwargs):
        provided_name = None
        if args and isinstance(args[0], str):
            provided_name = args[0]
        provided_name = kwargs.get("name", provided_name)

        def decorator(fn):
            tool_name = provided_name or fn.__name__
            tool = StubTool(fn, tool_name)
            self._tools[tool_name] = tool
            return tool

        return decorator


class StubDriver:
    def __init__(self, listener) -> None:
        self.listener = listener
        self.running: set[str] = set()

    async def spawn(self, session_id, working_directory, prompt_file, permission_mode="auto"):
        self.running.add(session_id)

    async def kill(self, session_id: str) -> bool:
        if session_id not in self.running:
            return False
        self.running.discard(session_id)
        self.listener.on_exit(session_id, 143)
        return True

    def get_last_output(self, session_id: str, max_chars: int = 500) -> str:
        return ""

    def cleanup(self, session_id: str) -> bool:
        return False

    def get_all_session_ids(self) -> list[str]:
        return list(self.running)


class RecordingLogger:
    def __init__(self) -> None:
        self.records: list[tuple[str, str, dict[str, Any]]] = []

    def info(self, message, extra=None):
        self.records.append(("info", message, extra or {}))

    def debug(self, message, extra=None):
        self.records.append(("debug", message, extra or {}))


class StubContext:
    def __init__(self) -> None:
        self.logger = RecordingLogger()


def _setup(**overrides):
    settings = BridgeSettings(**overrides)
    scheduler = TaskScheduler(settings, driver_factory=StubDriver)
    server = StubServer()
    handles = register_tools(server, scheduler=scheduler, settings=settings)
    return server, handles, scheduler


def _project(tmp_path: Path, name: str = "project") -> Path:
    path = tmp_path / name
    path.mkdir(parents=True)
    return path


def test_register_tools_exposes_all_tools() -> None:
    server, handles, scheduler = _setup()

    assert set(server._tools) == {
        "start_task",
        "get_task_status",
        "kill_task",
        "set_active_project",
        "get_active_project",
    }
    assert handles.scheduler is scheduler
    assert handles.start_task is server._tools["start_task"]


def test_start_task_and_status(tmp_path: Path) -> None:
    _, handles, _ = _setup()
    project = _project(tmp_path)

    async def scenario():
        started = await handles.start_task.fn("Add tests", path=str(project), timeout_seconds=120)
        status = handles.get_task_status.fn(started["task_id"])
        return started, status

    started, status = asyncio.run(scenario())

    assert started["status"] == "running"
    assert started["message"].startswith("Task started.")
    assert "get_task_status" in started["message"]
    assert status["task_id"] == started["task_id"]
    assert status["status"] == "running"
    assert status["exit_code"] is None
    assert status["hint"] == "Task is still processing. Please check back in 30 seconds."
    assert set(status) == {"task_id", "status", "elapsed_seconds", "exit_code", "last_output", "hint"}


def test_start_task_uses_active_project(tmp_path: Path) -> None:
    _, handles, scheduler = _setup()
    project = _project(tmp_path)

    with pytest.raises(NoActiveProjectError):
        asyncio.run(handles.start_task.fn("Add tests"))

    selected = handles.set_active_project.fn(str(project))
    assert selected["path"] == str(project.resolve())
    assert handles.get_active_project.fn()["path"] == str(project.resolve())

    started = asyncio.run(handles.start_task.fn("Add tests"))
    assert scheduler.get_task(started["task_id"]).project_path == str(project.resolve())


@pytest.mark.parametrize(
    "arguments",
    [
        {"prompt": ""},
        {"prompt": "   "},
        {"prompt": "ok", "timeout_seconds": 30},
        {"prompt": "ok", "timeout_seconds": 20000},
        {"prompt": "ok", "permission_mode": "yolo"},
    ],
)
def test_start_task_validates_input(tmp_path: Path, arguments) -> None:
    _, handles, scheduler = _setup()
    project = _project(tmp_path)

    with pytest.raises(ValueError):
        asyncio.run(handles.start_task.fn(path=str(project), **arguments))

    assert scheduler.get_active_tasks() == []


def test_paths_must_exist_and_lie_under_allowed_roots(tmp_path: Path) -> None:
    allowed = _project(tmp_path, "allowed")
    inside = _project(tmp_path, "allowed/inner")
    outside = _project(tmp_path, "outside")
    _, handles, _ = _setup(allowed_roots=[str(allowed)])

    with pytest.raises(ValueError, match="outside the allowed roots"):
        asyncio.run(handles.start_task.fn("work", path=str(outside)))
    with pytest.raises(ValueError, match="does not exist"):
        handles.set_active_project.fn(str(tmp_path / "missing"))

    started = asyncio.run(handles.start_task.fn("work", path=str(inside)))
    assert started["status"] == "running"
    assert handles.set_active_project.fn(str(allowed))["path"] == str(allowed.resolve())


def test_get_task_status_unknown_task() -> None:
    _, handles, _ = _setup()

    with pytest.raises(ValueError, match="Task 'task_missing' not found"):
        handles.get_task_status.fn("task_missing")


def test_kill_task_responses(tmp_path: Path) -> None:
    _, handles, _ = _setup()
    project = _project(tmp_path)

    async def scenario():
        started = await handles.start_task.fn("work", path=str(project))
        first = await handles.kill_task.fn(started["task_id"])
        second = await handles.kill_task.fn(started["task_id"])
        missing = await handles.kill_task.fn("task_missing")
        status = handles.get_task_status.fn(started["task_id"])
        return first, second, missing, status

    first, second, missing, status = asyncio.run(scenario())

    assert first["status"] == "killed"
    assert first["message"] == "Task terminated successfully."
    assert second["status"] == "killed"
    assert second["message"] == "Task is not running (current status: killed)"
    assert missing == {
        "task_id": "task_missing",
        "status": "error",
        "message": "Task not found: task_missing",
    }
    assert status["hint"] == "Task was manually terminated."
    assert status["exit_code"] == 143


class SlowKillDriver(StubDriver):
    async def kill(self, session_id: str) -> bool:
        if session_id not in self.running:
            return False
        await asyncio.sleep(0.2)
        if session_id in self.running:
            self.running.discard(session_id)
            self.listener.on_exit(session_id, 143)
        return True


def test_kill_task_reports_timeout_that_finalized_first(tmp_path: Path) -> None:
    settings = BridgeSettings()
    scheduler = TaskScheduler(settings, driver_factory=SlowKillDriver)
    handles = register_tools(StubServer(), scheduler=scheduler, settings=settings)
    project = _project(tmp_path)

    async def scenario():
        task = await scheduler.start_task("work", project, timeout_seconds=0.05)
        response = await handles.kill_task.fn(task.id)
        return task, response

    task, response = asyncio.run(scenario())

    assert task.status == "timeout"
    assert response["status"] == "timeout"
    assert response["message"] == "Task terminated successfully."
    assert task.exit_code == 143


def test_get_active_project_without_selection() -> None:
    _, handles, _ = _setup()

    payload = handles.get_active_project.fn()

    assert payload["path"] is None
    assert "set_active_project" in payload["message"]


def test_tools_log_through_context_logger(tmp_path: Path) -> None:
    _, handles, _ = _setup()
    project = _project(tmp_path)
    context = StubContext()

    started = asyncio.run(handles.start_task.fn("work", path=str(project), context=context))
    handles.get_task_status.fn(started["task_id"], context=context)

    levels = [level for level, _, _ in context.logger.records]
    assert levels == ["info", "debug"]
    assert context.logger.records[0][2]["task_id"] == started["task_id"]
