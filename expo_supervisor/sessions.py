"""
Session manager for long-lived interactive CLI processes.

Keeps named child processes (an Expo dev server, a local native build)
alive, relays operator input to their stdin, and buffers their classified
output in a bounded in-memory log. Sessions move through
starting -> running -> stopped, or to error from any state, and are removed
from the registry a few seconds after they are stopped.

Output is captured by one reader thread per stream and exit by a watcher
thread. Delayed actions (promotion to running, forced kill, removal) run on
timers that capture only the session id and serial and re-fetch the session
before acting, so a session that is already gone or replaced is left alone.
"""

import codecs
import functools
import itertools
import logging
import os
import signal
import subprocess
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

from . import errors
from .classifier import LogLevel, detect_level
from .config import config
from .errors import ErrorCode
from .executor import (
    READ_CHUNK_SIZE,
    ExecuteOptions,
    build_environment,
    describe_exit,
    signal_process_group,
)
from .sanitize import sanitize_command

logger = logging.getLogger(__name__)

# How long the exit watcher waits for the output readers to drain
READER_JOIN_TIMEOUT = 1.0


class SessionStatus(str, Enum):
    STARTING = "starting"
    RUNNING = "running"
    STOPPED = "stopped"
    ERROR = "error"


@dataclass(frozen=True)
class LogEntry:
    """A single classified chunk of session output."""

    timestamp: datetime
    level: LogLevel
    message: str  # trimmed
    raw: str

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.value,
            "message": self.message,
            "raw": self.raw,
        }


@dataclass
class Session:
    """A supervised child process and its buffered output."""

    id: str
    command: list[str]
    working_dir: str
    serial: int
    process: Optional[subprocess.Popen] = None
    start_time: datetime = field(default_factory=datetime.now)
    status: SessionStatus = SessionStatus.STARTING
    logs: list[LogEntry] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def uptime(self) -> float:
        """Seconds since the session was started."""
        return (datetime.now() - self.start_time).total_seconds()

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process else None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "command": self.command,
            "working_dir": self.working_dir,
            "pid": self.pid,
            "start_time": self.start_time.isoformat(),
            "status": self.status.value,
            "uptime_seconds": round(self.uptime, 3),
            "log_count": len(self.logs),
            "metadata": self.metadata,
        }


@dataclass
class SessionEvents:
    """Callbacks for session lifecycle events. All receive the session id first."""

    on_started: Optional[Callable[[str], None]] = None
    on_running: Optional[Callable[[str], None]] = None
    on_log: Optional[Callable[[str, LogEntry], None]] = None
    on_input: Optional[Callable[[str, str], None]] = None
    on_error: Optional[Callable[[str, str], None]] = None
    on_exit: Optional[Callable[[str, Optional[int], Optional[str]], None]] = None
    on_stopped: Optional[Callable[[str], None]] = None
    on_removed: Optional[Callable[[str], None]] = None


@dataclass
class ActionResult:
    success: bool
    error: Optional[str] = None
    code: Optional[ErrorCode] = None


@dataclass
class SessionResult(ActionResult):
    session: Optional[Session] = None


@dataclass
class OutputResult(ActionResult):
    logs: Optional[list[LogEntry]] = None
    status: Optional[SessionStatus] = None


@dataclass
class StatusResult(ActionResult):
    status: Optional[SessionStatus] = None
    uptime: Optional[float] = None
    log_count: Optional[int] = None


class SessionManager:
    """Registry of persistent CLI sessions keyed by caller-chosen id."""

    def __init__(
        self,
        max_log_buffer: Optional[int] = None,
        log_trim_size: Optional[int] = None,
        start_grace: Optional[float] = None,
        kill_delay: Optional[float] = None,
        cleanup_delay: Optional[float] = None,
        events: Optional[SessionEvents] = None,
    ):
        self.max_log_buffer = config.max_log_buffer_size if max_log_buffer is None else max_log_buffer
        self.log_trim_size = config.log_trim_size if log_trim_size is None else log_trim_size
        self.start_grace = config.session_start_grace if start_grace is None else start_grace
        self.kill_delay = config.session_kill_delay if kill_delay is None else kill_delay
        self.cleanup_delay = config.session_cleanup_delay if cleanup_delay is None else cleanup_delay
        self.events = events or SessionEvents()

        if self.log_trim_size > self.max_log_buffer:
            raise ValueError("log_trim_size must not exceed max_log_buffer")

        self._sessions: dict[str, Session] = {}
        self._lock = threading.RLock()
        self._serials = itertools.count(1)

    def start_session(
        self, session_id: str, command: list[str], options: Optional[ExecuteOptions] = None
    ) -> SessionResult:
        """
        Spawn a persistent process under the given id.

        The session starts in `starting` and is promoted to `running` after
        the start grace period. Timeout and stdin payload options do not apply
        to sessions; input is sent with send_input().
        """
        options = options or ExecuteOptions()
        cmd = sanitize_command(command)
        cwd = options.working_dir or os.getcwd()

        with self._lock:
            if session_id in self._sessions:
                logger.warning(f"Session {session_id} already exists")
                return SessionResult(
                    success=False,
                    error=errors.session_already_exists(session_id),
                    code=ErrorCode.SESSION_ALREADY_EXISTS,
                )

            session = Session(
                id=session_id, command=cmd, working_dir=cwd, serial=next(self._serials)
            )
            logger.info(f"Starting session {session_id}: {' '.join(cmd)} (cwd={cwd})")

            try:
                if not cmd or not cmd[0]:
                    raise ValueError("Empty command")
                session.process = subprocess.Popen(
                    cmd,
                    stdin=subprocess.PIPE,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    cwd=cwd,
                    env=build_environment(options.env),
                    start_new_session=True,  # Create new process group
                )
            except (OSError, ValueError) as e:
                # Keep the failed session so its log can be read back.
                logger.error(f"Failed to start session {session_id}: {e}")
                session.status = SessionStatus.ERROR
                entry = self._append_log(session, LogLevel.ERROR, f"Process error: {e}")
                self._sessions[session_id] = session
                spawn_error = str(e)
            else:
                self._sessions[session_id] = session
                spawn_error = None

        if spawn_error is not None:
            self._emit("on_log", session_id, entry)
            self._emit("on_error", session_id, entry.message)
            return SessionResult(
                success=False,
                error=f"Failed to start session {session_id}: {spawn_error}",
                code=ErrorCode.PROCESS_SPAWN_ERROR,
                session=session,
            )

        self._start_capture(session)
        logger.info(f"Started session {session_id} with PID {session.pid}")
        self._emit("on_started", session_id)
        self._schedule(self.start_grace, self._promote, session_id, session.serial)

        return SessionResult(success=True, session=session)

    def send_input(self, session_id: str, text: str) -> ActionResult:
        """Write a line of input to a running session's stdin."""
        with self._lock:
            session = self._sessions.get(session_id)
            if not session:
                return ActionResult(
                    success=False,
                    error=errors.session_not_found(session_id),
                    code=ErrorCode.SESSION_NOT_FOUND,
                )
            if session.status != SessionStatus.RUNNING:
                return ActionResult(
                    success=False,
                    error=errors.session_not_running(session_id),
                    code=ErrorCode.SESSION_NOT_RUNNING,
                )
            process = session.process

        try:
            process.stdin.write((text + "\n").encode("utf-8"))
            process.stdin.flush()
        except (OSError, ValueError) as e:
            logger.error(f"Failed to send input to session {session_id}: {e}")
            return ActionResult(
                success=False,
                error=f"Failed to send input to session {session_id}: {e}",
                code=ErrorCode.PROCESS_RUNTIME_ERROR,
            )

        logger.debug(f"Sent input to session {session_id}: {text[:50]!r}")
        self._emit("on_input", session_id, text)
        return ActionResult(success=True)

    def read_output(self, session_id: str, tail: Optional[int] = None) -> OutputResult:
        """Return buffered logs (the last `tail` entries if given) and status."""
        with self._lock:
            session = self._sessions.get(session_id)
            if not session:
                return OutputResult(
                    success=False,
                    error=errors.session_not_found(session_id),
                    code=ErrorCode.SESSION_NOT_FOUND,
                )
            logs = session.logs[-tail:] if tail and tail > 0 else list(session.logs)
            return OutputResult(success=True, logs=logs, status=session.status)

    def get_status(self, session_id: str) -> StatusResult:
        with self._lock:
            session = self._sessions.get(session_id)
            if not session:
                return StatusResult(
                    success=False,
                    error=errors.session_not_found(session_id),
                    code=ErrorCode.SESSION_NOT_FOUND,
                )
            return StatusResult(
                success=True,
                status=session.status,
                uptime=session.uptime,
                log_count=len(session.logs),
            )

    def stop_session(self, session_id: str) -> ActionResult:
        """
        Ask a session's process to terminate.

        Sends SIGTERM to the process group now, SIGKILL to whatever is left
        of the group after the kill delay, and removes the session after the
        cleanup delay. The status becomes `stopped` immediately, without
        waiting for the exit.
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if not session:
                return ActionResult(
                    success=False,
                    error=errors.session_not_found(session_id),
                    code=ErrorCode.SESSION_NOT_FOUND,
                )
            if session.status != SessionStatus.ERROR:
                session.status = SessionStatus.STOPPED
            process = session.process
            serial = session.serial

        logger.info(f"Stopping session {session_id}")
        if process is not None:
            signal_process_group(process.pid, signal.SIGTERM)

        self._schedule(self.kill_delay, self._force_kill, session_id, serial)
        self._schedule(self.cleanup_delay, self._remove, session_id, serial)
        self._emit("on_stopped", session_id)

        return ActionResult(success=True)

    def list_sessions(self) -> list[dict]:
        """Snapshot of every registered session, including stopped ones awaiting removal."""
        with self._lock:
            return [
                {
                    "id": session.id,
                    "status": session.status.value,
                    "uptime_seconds": round(session.uptime, 3),
                    "log_count": len(session.logs),
                }
                for session in self._sessions.values()
            ]

    def stop_all_sessions(self):
        with self._lock:
            session_ids = list(self._sessions.keys())

        for session_id in session_ids:
            self.stop_session(session_id)

    def get_pid(self, session_id: str) -> Optional[int]:
        """PID of a session's process while it is still alive."""
        with self._lock:
            session = self._sessions.get(session_id)
            if not session or not session.process or session.process.returncode is not None:
                return None
            return session.process.pid

    def shutdown(self, timeout: Optional[float] = None):
        """Stop every session and wait for the processes to exit, killing stragglers."""
        timeout = self.kill_delay if timeout is None else timeout
        with self._lock:
            processes = [s.process for s in self._sessions.values() if s.process]

        self.stop_all_sessions()

        for process in processes:
            try:
                process.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                logger.warning(f"Process {process.pid} did not stop gracefully, forcing kill")
            signal_process_group(process.pid, signal.SIGKILL)

    # Internal helpers

    def _live(self, session_id: str, serial: int) -> Optional[Session]:
        """Current session for id, unless it was removed or replaced. Caller holds the lock."""
        session = self._sessions.get(session_id)
        if session is None or session.serial != serial:
            return None
        return session

    def _schedule(self, delay: float, func: Callable, *args):
        timer = threading.Timer(delay, func, args=args)
        timer.daemon = True
        timer.start()

    def _emit(self, event: str, *args):
        callback = getattr(self.events, event)
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.error(f"Error in {event} callback for session {args[0]}: {e}")

    def _append_log(self, session: Session, level: LogLevel, text: str) -> LogEntry:
        """Append an entry and trim the buffer. Caller holds the lock."""
        entry = LogEntry(timestamp=datetime.now(), level=level, message=text.strip(), raw=text)
        session.logs.append(entry)

        if len(session.logs) > self.max_log_buffer:
            del session.logs[: len(session.logs) - self.log_trim_size]
            logger.debug(
                f"Trimmed logs for session {session.id} from "
                f"{self.max_log_buffer} to {self.log_trim_size}"
            )
        return entry

    def _add_log(self, session_id: str, serial: int, level: LogLevel, text: str):
        with self._lock:
            session = self._live(session_id, serial)
            if session is None:
                return
            entry = self._append_log(session, level, text)
        self._emit("on_log", session_id, entry)

    def _start_capture(self, session: Session):
        process = session.process
        readers = [
            threading.Thread(
                target=self._capture_output,
                args=(session.id, session.serial, stream),
                daemon=True,
            )
            for stream in (process.stdout, process.stderr)
        ]
        watcher = threading.Thread(
            target=self._watch_exit,
            args=(session.id, session.serial, process, readers),
            daemon=True,
        )
        for thread in readers:
            thread.start()
        watcher.start()

    def _capture_output(self, session_id: str, serial: int, stream):
        """Read one output stream into the session log as data arrives."""
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            # read1 returns whatever is available, so a prompt without a
            # trailing newline is logged without waiting for more output.
            for chunk in iter(functools.partial(stream.read1, READ_CHUNK_SIZE), b""):
                self._add_output(session_id, serial, decoder.decode(chunk))
            self._add_output(session_id, serial, decoder.decode(b"", final=True))
        except (OSError, ValueError) as e:
            self._record_error(session_id, serial, f"Process error: {e}")
        finally:
            stream.close()

    def _add_output(self, session_id: str, serial: int, text: str):
        for line in text.splitlines(keepends=True):
            if not line.strip():
                continue
            # Expo and Metro write informational output to stderr too,
            # so the level comes from the content, not the stream.
            self._add_log(session_id, serial, detect_level(line), line)

    def _watch_exit(self, session_id: str, serial: int, process: subprocess.Popen, readers):
        returncode = process.wait()
        for thread in readers:
            thread.join(timeout=READER_JOIN_TIMEOUT)

        exit_code, signal_name = describe_exit(returncode)
        if signal_name:
            message = f"Process killed by signal {signal_name}"
        else:
            message = f"Process exited with code {exit_code}"
        logger.info(f"Session {session_id}: {message}")

        with self._lock:
            session = self._live(session_id, serial)
            if session is None:
                return
            if session.status != SessionStatus.ERROR:
                session.status = SessionStatus.STOPPED
            entry = self._append_log(session, LogLevel.INFO, message)

        self._emit("on_log", session_id, entry)
        self._emit("on_exit", session_id, exit_code, signal_name)

    def _record_error(self, session_id: str, serial: int, message: str):
        logger.error(f"Session {session_id}: {message}")
        with self._lock:
            session = self._live(session_id, serial)
            if session is None:
                return
            session.status = SessionStatus.ERROR
            entry = self._append_log(session, LogLevel.ERROR, message)

        self._emit("on_log", session_id, entry)
        self._emit("on_error", session_id, message)

    def _promote(self, session_id: str, serial: int):
        with self._lock:
            session = self._live(session_id, serial)
            if session is None or session.status != SessionStatus.STARTING:
                return
            session.status = SessionStatus.RUNNING
        self._emit("on_running", session_id)

    def _force_kill(self, session_id: str, serial: int):
        with self._lock:
            session = self._live(session_id, serial)
            if session is None or session.process is None:
                return
            process = session.process

        # Group members (npx -> node) can outlive a leader that exited on SIGTERM.
        if signal_process_group(process.pid, signal.SIGKILL):
            logger.warning(f"Session {session_id} did not stop gracefully, killed process group {process.pid}")

    def _remove(self, session_id: str, serial: int):
        with self._lock:
            session = self._live(session_id, serial)
            if session is None:
                return
            del self._sessions[session_id]

        if session.process and session.process.stdin:
            try:
                session.process.stdin.close()
            except OSError as e:
                logger.debug(f"Error closing stdin for session {session_id}: {e}")

        logger.info(f"Removed session {session_id}")
        self._emit("on_removed", session_id)
