"""Task scheduling on top of pty sessions."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable
from uuid import uuid4

from ..config import BridgeSettings
from ..pty.driver import PermissionMode, SessionDriver, SessionListener
from ..pty.utils import TASK_LOG_DIR, prompt_file_path, task_log_dir, task_log_path
from .models import KILLABLE_STATUSES, PERMISSION_MODES, Task, TaskStatus, TaskSummary

logger = logging.getLogger(__name__)

GITIGNORE_ENTRY = f"{TASK_LOG_DIR.as_posix()}/"

DriverFactory = Callable[[SessionListener], SessionDriver]


class TaskSchedulerError(RuntimeError):
    """Base class for task scheduler errors."""


class TaskAlreadyRunningError(TaskSchedulerError):
    """Raised when a project already has a task in flight."""

    def __init__(self, project_path: str, existing_task_id: str) -> None:
        super().__init__(
            f"A task is already running for this project ({project_path}). "
            f"Existing task ID: {existing_task_id}. Use kill_task to terminate it first."
        )
        self.project_path = project_path
        self.existing_task_id = existing_task_id


class NoActiveProjectError(TaskSchedulerError):
    """Raised when no path is given and no active project has been selected."""


class TaskScheduler:
    """Own task state, per-project locks, timeouts and the finished-task history.

    All methods are expected to run on a single event loop; session events from
    the driver arrive through :meth:`on_output` and :meth:`on_exit` on that
    same loop. A task is finalized exactly once: whichever of exit, timeout or
    kill gets there first decides its terminal status.
    """

    def __init__(
        self,
        settings: BridgeSettings,
        *,
        driver_factory: DriverFactory | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._settings = settings
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        factory = driver_factory or (lambda listener: SessionDriver(settings, listener))
        self._driver = factory(self)
        self._tasks: dict[str, Task] = {}
        self._project_locks: dict[str, str] = {}
        self._history: deque[Task] = deque()
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._termination_reasons: dict[str, TaskStatus] = {}
        self._background: set[asyncio.Task] = set()
        self._active_project: str | None = None

    @property
    def driver(self) -> SessionDriver:
        return self._driver

    # Active project

    def set_active_project(self, project_path: Path | str) -> str:
        self._active_project = str(Path(project_path).expanduser().resolve())
        return self._active_project

    def get_active_project(self) -> str | None:
        return self._active_project

    def resolve_path(self, path: Path | str | None = None) -> str:
        """Return ``path``, falling back to the active project."""

        if path:
            return str(path)
        if self._active_project:
            return self._active_project
        raise NoActiveProjectError(
            "No path specified and no active project set. Use set_active_project first."
        )

    # Lifecycle

    async def start_task(
        self,
        prompt: str,
        project_path: Path | str,
        timeout_seconds: int | None = None,
        permission_mode: PermissionMode = "auto",
    ) -> Task:
        """Create a task for ``project_path`` and spawn its session.

        Raises :class:`TaskAlreadyRunningError` if the project is locked. Spawn
        failures leave the task in ``error`` with the lock released, and are
        re-raised.
        """

        project = str(Path(project_path).expanduser().resolve())
        existing = self._project_locks.get(project)
        if existing is not None:
            raise TaskAlreadyRunningError(project, existing)
        if permission_mode not in PERMISSION_MODES:
            raise ValueError(
                f"Invalid permission mode '{permission_mode}'. Must be one of {sorted(PERMISSION_MODES)}"
            )
        timeout = self._settings.default_timeout_seconds if timeout_seconds is None else timeout_seconds
        if timeout <= 0:
            raise ValueError("timeout_seconds must be positive")

        task_id = self._new_task_id()
        task = Task(
            id=task_id,
            status="pending",
            project_path=project,
            prompt=prompt,
            permission_mode=permission_mode,
            timeout_seconds=timeout,
            created_at=self._clock(),
            log_file=task_log_path(project, task_id),
            prompt_file=prompt_file_path(project, task_id),
        )
        self._tasks[task_id] = task
        self._project_locks[project] = task_id
        logger.info(
            "Created task",
            extra={"task_id": task_id, "project_path": project, "timeout_seconds": timeout},
        )

        try:
            self._write_prompt_file(task)
            task.status = "starting"
            await self._driver.spawn(task_id, project, task.prompt_file, permission_mode)
        except Exception as exc:
            task.error = str(exc)
            self._finalize(task, "error")
            logger.error("Failed to start task", extra={"task_id": task_id, "error": str(exc)})
            raise

        # The session may already have exited while spawn was being awaited.
        if task.status == "starting":
            task.status = "running"
            task.started_at = self._clock()
            self._arm_timeout(task)
        return task

    def _new_task_id(self) -> str:
        while True:
            task_id = f"task_{uuid4().hex[:8]}"
            if task_id not in self._tasks:
                return task_id

    def _write_prompt_file(self, task: Task) -> None:
        task_log_dir(task.project_path).mkdir(parents=True, exist_ok=True)
        self._ensure_gitignore(Path(task.project_path))
        task.prompt_file.write_text(task.prompt, encoding="utf-8")

    def _ensure_gitignore(self, project: Path) -> None:
        gitignore = project / ".gitignore"
        try:
            content = gitignore.read_text(encoding="utf-8") if gitignore.exists() else ""
            if GITIGNORE_ENTRY in (line.strip() for line in content.splitlines()):
                return
            separator = "" if not content or content.endswith("\n") else "\n"
            with gitignore.open("a", encoding="utf-8") as handle:
                handle.write(f"{separator}{GITIGNORE_ENTRY}\n")
        except OSError as exc:
            logger.debug(
                "Unable to update .gitignore",
                extra={"path": str(gitignore), "error": str(exc)},
            )

    def _arm_timeout(self, task: Task) -> None:
        loop = asyncio.get_running_loop()
        self._timers[task.id] = loop.call_later(task.timeout_seconds, self._on_timeout, task.id)

    def _on_timeout(self, task_id: str) -> None:
        self._timers.pop(task_id, None)
        background = asyncio.get_running_loop().create_task(self._handle_timeout(task_id))
        self._background.add(background)
        background.add_done_callback(self._background.discard)

    async def _handle_timeout(self, task_id: str) -> None:
        task = self._tasks.get(task_id)
        if task is None or task.status != "running":
            return
        logger.warning(
            "Task timed out",
            extra={"task_id": task_id, "timeout_seconds": task.timeout_seconds},
        )
        # Releases the project lock now; a new task may start while this child is still exiting.
        self._finalize(task, "timeout")
        try:
            await self._driver.kill(task_id)
        except Exception:
            logger.exception("Failed to kill timed out task", extra={"task_id": task_id})

    # Session events

    def on_output(self, session_id: str, text: str) -> None:
        task = self._tasks.get(session_id)
        if task is None:
            return
        task.last_output = (task.last_output + text)[-self._settings.status_tail_chars :]
        task.output_size_bytes += len(text.encode("utf-8"))

    def on_exit(self, session_id: str, exit_code: int) -> None:
        task = self._tasks.get(session_id)
        if task is None:
            # Already evicted from history; nothing left to record.
            self._driver.cleanup(session_id)
            return
        if task.exit_code is None:
            task.exit_code = exit_code
        reason = self._termination_reasons.pop(session_id, None)
        self._finalize(task, reason or ("completed" if exit_code == 0 else "failed"))

    def _finalize(self, task: Task, status: TaskStatus) -> bool:
        if task.is_terminal:
            return False

        task.status = status
        task.completed_at = self._clock()
        timer = self._timers.pop(task.id, None)
        if timer is not None:
            timer.cancel()
        self._termination_reasons.pop(task.id, None)
        if self._project_locks.get(task.project_path) == task.id:
            del self._project_locks[task.project_path]
        self._add_to_history(task)

        logger.info(
            "Task finished",
            extra={"task_id": task.id, "status": status, "exit_code": task.exit_code},
        )
        return True

    def _add_to_history(self, task: Task) -> None:
        self._history.appendleft(task)
        while len(self._history) > self._settings.task_history_size:
            evicted = self._history.pop()
            if self._tasks.get(evicted.id) is evicted:
                del self._tasks[evicted.id]
            self._driver.cleanup(evicted.id)

    # Queries

    def get_task(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def get_task_status(self, task_id: str) -> TaskSummary | None:
        task = self._tasks.get(task_id)
        if task is None:
            return None
        return self.summarize(task)

    def summarize(self, task: Task) -> TaskSummary:
        elapsed = 0
        if task.started_at is not None:
            end = task.completed_at or self._clock()
            elapsed = max(0, int((end - task.started_at).total_seconds()))
        last_output = (
            self._driver.get_last_output(task.id, self._settings.status_tail_chars)
            or task.last_output
        )
        return TaskSummary(
            id=task.id,
            status=task.status,
            project_path=task.project_path,
            created_at=task.created_at.isoformat(),
            elapsed_seconds=elapsed,
            exit_code=task.exit_code,
            last_output=last_output,
            output_size_bytes=task.output_size_bytes,
        )

    def get_active_tasks(self) -> list[TaskSummary]:
        return [self.summarize(task) for task in self._tasks.values() if task.is_active]

    def get_history(self) -> list[Task]:
        """Return finished tasks, newest first."""

        return list(self._history)

    # Termination

    async def kill_task(self, task_id: str) -> bool:
        """Terminate a starting or running task. Returns ``False`` if there was nothing to kill."""

        task = self._tasks.get(task_id)
        if task is None or task.status not in KILLABLE_STATUSES:
            return False

        self._termination_reasons[task_id] = "killed"
        killed = await self._driver.kill(task_id)
        if not killed:
            self._termination_reasons.pop(task_id, None)
            return False

        self._finalize(task, "killed")
        return True

    async def shutdown(self) -> None:
        """Kill every tracked session and wait for the kills to settle."""

        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        for task in self._tasks.values():
            if task.status in KILLABLE_STATUSES:
                self._termination_reasons[task.id] = "killed"

        session_ids = self._driver.get_all_session_ids()
        results = await asyncio.gather(
            *(self._driver.kill(session_id) for session_id in session_ids),
            return_exceptions=True,
        )
        for session_id, result in zip(session_ids, results):
            if isinstance(result, BaseException):
                logger.warning(
                    "Failed to kill session during shutdown",
                    extra={"session_id": session_id, "error": str(result)},
                )

        for task in list(self._tasks.values()):
            if task.status in KILLABLE_STATUSES:
                self._finalize(task, "killed")


__all__ = [
    "GITIGNORE_ENTRY",
    "NoActiveProjectError",
    "TaskAlreadyRunningError",
    "TaskScheduler",
    "TaskSchedulerError",
]
