"""
Error codes and messages shared by the executor, the session registry and
the Expo tool layer.

Failures are reported as values (a code plus a human readable message) on
the result objects; nothing here is raised.
"""

from enum import Enum


class ErrorCode(Enum):
    SESSION_NOT_FOUND = "session_not_found"
    SESSION_ALREADY_EXISTS = "session_already_exists"
    SESSION_NOT_RUNNING = "session_not_running"
    COMMAND_TIMEOUT = "command_timeout"
    PROCESS_SPAWN_ERROR = "process_spawn_error"
    PROCESS_RUNTIME_ERROR = "process_runtime_error"
    INVALID_ARGUMENT = "invalid_argument"


def session_not_found(session_id: str) -> str:
    return f"Session not found: {session_id}"


def session_already_exists(session_id: str) -> str:
    return f"Session already exists: {session_id}"


def session_not_running(session_id: str) -> str:
    return f"Session is not running: {session_id}"


def command_timeout(timeout: float) -> str:
    return f"Command timed out after {timeout:g}s"


def invalid_package_name(name: str) -> str:
    return f"Invalid package name: {name}"
