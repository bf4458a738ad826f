"""Pseudo-terminal session management."""

from .ansi import has_ansi, strip_ansi
from .driver import (
    PermissionMode,
    PtySession,
    SessionDriver,
    SessionDriverError,
    SessionListener,
    SessionSpawnError,
)

__all__ = [
    "PermissionMode",
    "PtySession",
    "SessionDriver",
    "SessionDriverError",
    "SessionListener",
    "SessionSpawnError",
    "has_ansi",
    "strip_ansi",
]
