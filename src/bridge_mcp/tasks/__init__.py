"""Task lifecycle: models, scheduling and progress hints."""

from .hints import generate_hint
from .models import (
    ACTIVE_STATUSES,
    KILLABLE_STATUSES,
    PERMISSION_MODES,
    TERMINAL_STATUSES,
    Task,
    TaskStatus,
    TaskSummary,
)
from .scheduler import (
    NoActiveProjectError,
    TaskAlreadyRunningError,
    TaskScheduler,
    TaskSchedulerError,
)

__all__ = [
    "ACTIVE_STATUSES",
    "KILLABLE_STATUSES",
    "NoActiveProjectError",
    "PERMISSION_MODES",
    "TERMINAL_STATUSES",
    "Task",
    "TaskAlreadyRunningError",
    "TaskScheduler",
    "TaskSchedulerError",
    "TaskStatus",
    "TaskSummary",
    "generate_hint",
]
