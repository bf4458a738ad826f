"""Pseudo-terminal session driver for interactive coding CLIs."""

from __future__ import annotations

import asyncio
import codecs
import logging
import os
import signal
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, BinaryIO, Literal, Protocol

from ptyprocess import PtyProcess

from ..config import BridgeSettings
from .ansi import strip_ansi
from .utils import build_command, build_environment, task_log_dir, task_log_path

logger = logging.getLogger(__name__)

PermissionMode = Literal["auto", "cautious"]

APPROVAL_RESPONSE = b"y\n"
READ_CHUNK_SIZE = 8192
EXIT_POLL_INTERVAL = 0.1
KILL_POLL_INTERVAL = 0.1


class SessionDriverError(RuntimeError):
    """Base class for session driver errors."""


class SessionSpawnError(SessionDriverError):
    """Raised when a session's log sink or child process cannot be started."""


class SessionListener(Protocol):
    """Receives the events produced by a running session."""

    def on_output(self, session_id: str, text: str) -> None:
        ...

    def on_exit(self, session_id: str, exit_code: int) -> None:
        ...


def _utf8_decoder() -> codecs.IncrementalDecoder:
    return codecs.getincrementaldecoder("utf-8")(errors="replace")


@dataclass(slots=True, eq=False)
class PtySession:
    """Live child process attached to a pseudo-terminal, plus its I/O state."""

    id: str
    process: Any
    permission_mode: PermissionMode
    log_path: Path
    log_file: BinaryIO | None
    started_at: datetime
    output_buffer: str = ""
    exit_code: int | None = None
    exited: bool = False
    reading: bool = False
    decoder: codecs.IncrementalDecoder = field(default_factory=_utf8_decoder)
    watcher: asyncio.Task | None = None


def _exit_code(process: Any) -> int:
    if process.exitstatus is not None:
        return process.exitstatus
    if process.signalstatus is not None:
        return 128 + process.signalstatus
    return -1


class SessionDriver:
    """Spawn and supervise one interactive child process per session id.

    Output is read on the running event loop. Every chunk is appended to the
    session's raw log file, stripped of escape sequences into a bounded text
    buffer and forwarded to the listener. Sessions in ``auto`` permission mode
    answer recognised yes/no prompts with ``y``.
    """

    def __init__(self, settings: BridgeSettings, listener: SessionListener) -> None:
        self._settings = settings
        self._listener = listener
        self._approval_patterns = settings.compiled_approval_patterns()
        self._sessions: dict[str, PtySession] = {}

    async def spawn(
        self,
        session_id: str,
        working_directory: Path | str,
        prompt_file: Path | str,
        permission_mode: PermissionMode = "auto",
    ) -> PtySession:
        """Start the configured executable in a pty, fed by ``prompt_file``."""

        if session_id in self._sessions:
            raise SessionDriverError(f"Session '{session_id}' already exists")

        cwd = Path(working_directory)
        log_path = task_log_path(cwd, session_id)
        try:
            task_log_dir(cwd).mkdir(parents=True, exist_ok=True)
            log_file = open(log_path, "ab")
        except OSError as exc:
            raise SessionSpawnError(f"Unable to prepare session log {log_path}: {exc}") from exc

        command = build_command(Path(prompt_file), self._settings.claude_command)
        try:
            process = PtyProcess.spawn(
                [self._settings.session_shell, "-c", command],
                cwd=str(cwd),
                env=build_environment(),
                dimensions=(self._settings.terminal_rows, self._settings.terminal_cols),
            )
        except Exception as exc:
            log_file.close()
            raise SessionSpawnError(f"Failed to spawn session '{session_id}': {exc}") from exc

        # close() otherwise sleeps on the event loop thread.
        process.delayafterclose = 0

        session = PtySession(
            id=session_id,
            process=process,
            permission_mode=permission_mode,
            log_path=log_path,
            log_file=log_file,
            started_at=datetime.now(timezone.utc),
        )
        self._sessions[session_id] = session

        loop = asyncio.get_running_loop()
        loop.add_reader(process.fd, self._on_readable, session)
        session.reading = True
        session.watcher = loop.create_task(self._watch_exit(session))

        logger.info(
            "Spawned pty session",
            extra={
                "session_id": session_id,
                "pid": process.pid,
                "cwd": str(cwd),
                "permission_mode": permission_mode,
            },
        )
        return session

    def _on_readable(self, session: PtySession) -> None:
        try:
            data = os.read(session.process.fd, READ_CHUNK_SIZE)
        except BlockingIOError:
            return
        except OSError:
            # Linux reports EIO once the child side of the pty is closed.
            data = b""
        if not data:
            self._stop_reading(session)
            return
        self._handle_output(session, data)

    def _stop_reading(self, session: PtySession) -> None:
        if not session.reading:
            return
        session.reading = False
        asyncio.get_running_loop().remove_reader(session.process.fd)

    def _drain(self, session: PtySession) -> None:
        if session.reading:
            os.set_blocking(session.process.fd, False)
            while True:
                try:
                    data = os.read(session.process.fd, READ_CHUNK_SIZE)
                except OSError:
                    break
                if not data:
                    break
                self._handle_output(session, data)
            self._stop_reading(session)

        tail = session.decoder.decode(b"", final=True)
        if tail:
            self._append_clean(session, strip_ansi(tail))

    def _handle_output(self, session: PtySession, data: bytes) -> None:
        self._write_log(session, data)

        text = session.decoder.decode(data)
        if not text:
            return
        self._append_clean(session, strip_ansi(text))

        if session.permission_mode == "auto":
            self._check_for_approval_prompt(session, text)

    def _append_clean(self, session: PtySession, clean: str) -> None:
        if not clean:
            return
        buffer = session.output_buffer + clean
        limit = self._settings.output_buffer_chars
        if len(buffer) > limit:
            buffer = buffer[-limit:]
        session.output_buffer = buffer
        self._notify_output(session.id, clean)

    def _check_for_approval_prompt(self, session: PtySession, text: str) -> None:
        for pattern in self._approval_patterns:
            if pattern.search(text):
                logger.debug(
                    "Approval prompt detected",
                    extra={"session_id": session.id, "pattern": pattern.pattern},
                )
                # Give the prompt time to finish rendering before answering.
                asyncio.get_running_loop().call_later(
                    self._settings.approval_delay_seconds, self._send_approval, session
                )
                break

    def _send_approval(self, session: PtySession) -> None:
        if session.exited:
            return
        try:
            session.process.write(APPROVAL_RESPONSE)
        except OSError as exc:
            logger.warning(
                "Failed to send approval response",
                extra={"session_id": session.id, "error": str(exc)},
            )

    def _write_log(self, session: PtySession, data: bytes) -> None:
        if session.log_file is None:
            return
        try:
            session.log_file.write(data)
            session.log_file.flush()
        except (OSError, ValueError) as exc:
            logger.warning(
                "Session log write failed; disabling log for session",
                extra={"session_id": session.id, "log_path": str(session.log_path), "error": str(exc)},
            )
            self._close_log(session)

    def _close_log(self, session: PtySession) -> None:
        log_file, session.log_file = session.log_file, None
        if log_file is None:
            return
        try:
            log_file.close()
        except OSError as exc:
            logger.debug("Failed to close session log", extra={"session_id": session.id, "error": str(exc)})

    async def _watch_exit(self, session: PtySession) -> None:
        exit_code: int | None = None
        try:
            while session.process.isalive():
                await asyncio.sleep(EXIT_POLL_INTERVAL)
            exit_code = _exit_code(session.process)
        except Exception:
            logger.exception("Failed to observe session process", extra={"session_id": session.id})
            exit_code = -1
        self._drain(session)
        self._handle_exit(session, exit_code)

    def _handle_exit(self, session: PtySession, exit_code: int) -> None:
        if session.exited:
            return
        session.exited = True
        session.exit_code = exit_code
        self._close_log(session)
        try:
            session.process.close(force=True)
        except Exception as exc:  # pragma: no cover - depends on platform pty teardown
            logger.debug("Failed to close pty", extra={"session_id": session.id, "error": str(exc)})

        logger.info("Session exited", extra={"session_id": session.id, "exit_code": exit_code})
        self._notify_exit(session.id, exit_code)

    def _notify_output(self, session_id: str, text: str) -> None:
        try:
            self._listener.on_output(session_id, text)
        except Exception:
            logger.exception("Session output listener failed", extra={"session_id": session_id})

    def _notify_exit(self, session_id: str, exit_code: int) -> None:
        try:
            self._listener.on_exit(session_id, exit_code)
        except Exception:
            logger.exception("Session exit listener failed", extra={"session_id": session_id})

    def _signal(self, session: PtySession, sig: signal.Signals) -> None:
        try:
            # The child leads its own session, so this reaches the whole pipeline.
            os.killpg(session.process.pid, sig)
        except ProcessLookupError:
            pass
        except OSError as exc:
            logger.warning(
                "Failed to signal session",
                extra={"session_id": session.id, "signal": sig.name, "error": str(exc)},
            )

    def get_last_output(self, session_id: str, max_chars: int = 500) -> str:
        """Return the last ``max_chars`` characters of clean output, or ``""``."""

        session = self._sessions.get(session_id)
        if session is None or max_chars <= 0:
            return ""
        return session.output_buffer[-max_chars:]

    async def kill(self, session_id: str) -> bool:
        """Terminate a session: SIGTERM, then SIGKILL after the grace window.

        Returns ``False`` when the session is unknown or has already exited.
        """

        session = self._sessions.get(session_id)
        if session is None or session.exited:
            return False

        self._signal(session, signal.SIGTERM)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._settings.kill_grace_seconds
        while not session.exited and loop.time() < deadline:
            await asyncio.sleep(KILL_POLL_INTERVAL)

        if not session.exited:
            logger.warning(
                "Session ignored SIGTERM, sending SIGKILL",
                extra={"session_id": session_id, "grace_seconds": self._settings.kill_grace_seconds},
            )
            self._signal(session, signal.SIGKILL)

        return True

    def is_running(self, session_id: str) -> bool:
        session = self._sessions.get(session_id)
        return session is not None and not session.exited

    def get_session(self, session_id: str) -> PtySession | None:
        return self._sessions.get(session_id)

    def cleanup(self, session_id: str) -> bool:
        """Forget an exited session. Running sessions are left untouched."""

        session = self._sessions.get(session_id)
        if session is None or not session.exited:
            return False
        self._close_log(session)
        del self._sessions[session_id]
        return True

    def get_all_session_ids(self) -> list[str]:
        return list(self._sessions)


__all__ = [
    "PermissionMode",
    "PtySession",
    "SessionDriver",
    "SessionDriverError",
    "SessionListener",
    "SessionSpawnError",
]
