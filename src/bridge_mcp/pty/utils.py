"""Utility helpers for the pty session driver."""

from __future__ import annotations

import os
import shlex
from pathlib import Path
from typing import Mapping

TASK_LOG_DIR = Path(".claude") / "mcp-logs"

_SANITIZED_VARS = {
    "PYTHONHOME",
    "PYTHONPATH",
    "VIRTUAL_ENV",
    "PIP_RESPECT_VIRTUALENV",
}

_SESSION_VARS = {
    "TERM": "xterm-256color",
    "CI": "true",
    "CLAUDE_CODE_ENTRYPOINT": "mcp-bridge",
}


def build_environment(additional: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return the environment for a child session, marked as an automated terminal."""

    env = dict(os.environ)
    for key in _SANITIZED_VARS:
        env.pop(key, None)
    env.update(_SESSION_VARS)
    if additional:
        env.update(additional)
    return env


def build_command(prompt_file: Path, executable_command: str) -> str:
    """Shell pipeline that feeds the prompt file to the interactive executable."""

    return f"cat {shlex.quote(str(prompt_file))} | {executable_command}"


def task_log_dir(project_path: Path | str) -> Path:
    return Path(project_path) / TASK_LOG_DIR


def task_log_path(project_path: Path | str, task_id: str) -> Path:
    return task_log_dir(project_path) / f"{task_id}.log"


def prompt_file_path(project_path: Path | str, task_id: str) -> Path:
    return task_log_dir(project_path) / f"prompt_{task_id}.md"


__all__ = [
    "TASK_LOG_DIR",
    "build_command",
    "build_environment",
    "prompt_file_path",
    "task_log_dir",
    "task_log_path",
]
