"""
One-shot command execution for Expo, EAS and related CLIs.

Runs a single child process to completion within a time bound, captures its
stdout/stderr, and reports the outcome as an ExecuteResult. A command that
overruns its timeout gets SIGTERM, then SIGKILL if it still has not exited
after a short grace period. Failures are folded into the result; execute()
never raises for process-level problems.
"""

import asyncio
import logging
import os
import signal
import time
from dataclasses import dataclass
from typing import Callable, Optional

from . import errors
from .config import (
    AUTH_TOKEN_VARS,
    EAS_COMMAND,
    EXPO_CLI,
    EXPO_COMMAND,
    EXPO_NO_REDIRECT,
    EXPO_NO_TELEMETRY,
    FORCE_COLOR,
    config,
)
from .errors import ErrorCode
from .sanitize import sanitize_command

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 4096


@dataclass
class ExecuteOptions:
    """Options for spawning a child process."""

    working_dir: Optional[str] = None
    env: Optional[dict[str, str]] = None  # merged over the inherited environment
    timeout: Optional[float] = None  # seconds; None uses the default, 0 disables
    input: Optional[str] = None  # written to stdin once, then stdin is closed


@dataclass
class ExecuteResult:
    """Outcome of a one-shot command."""

    success: bool
    stdout: str = ""
    stderr: str = ""
    exit_code: Optional[int] = None
    error: Optional[str] = None
    code: Optional[ErrorCode] = None
    duration: float = 0.0

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "exit_code": self.exit_code,
            "error": self.error,
            "code": self.code.value if self.code else None,
            "duration_seconds": round(self.duration, 3),
        }


def build_environment(overrides: Optional[dict[str, str]] = None) -> dict[str, str]:
    """Environment for Expo tooling: colors on, telemetry off, tokens forwarded."""
    env = os.environ.copy()
    env[FORCE_COLOR] = "1"
    env[EXPO_NO_TELEMETRY] = "1"
    env[EXPO_NO_REDIRECT] = "1"

    for name in AUTH_TOKEN_VARS:
        token = os.environ.get(name)
        if token:
            env[name] = token

    if overrides:
        env.update(overrides)
    return env


def signal_process_group(pid: int, sig: int) -> bool:
    """
    Send a signal to the process group led by pid.

    Children are spawned with start_new_session=True, so the child is its own
    group leader and its descendants (npx -> node) receive the signal too.
    Returns False if the group no longer exists.
    """
    try:
        os.killpg(pid, sig)
        return True
    except ProcessLookupError:
        return False
    except PermissionError as e:
        logger.warning(f"Not permitted to signal process group {pid}: {e}")
        return False


def describe_exit(returncode: int) -> tuple[Optional[int], Optional[str]]:
    """Split a Popen-style return code into (exit_code, signal_name)."""
    if returncode >= 0:
        return returncode, None
    try:
        return None, signal.Signals(-returncode).name
    except ValueError:
        return None, str(-returncode)


async def _drain(stream: asyncio.StreamReader, chunks: list[bytes]):
    while True:
        chunk = await stream.read(READ_CHUNK_SIZE)
        if not chunk:
            break
        chunks.append(chunk)


def _decode(chunks: list[bytes]) -> str:
    return b"".join(chunks).decode("utf-8", errors="replace")


class CommandExecutor:
    """Executes bounded Expo/EAS CLI commands."""

    def __init__(
        self,
        kill_delay: Optional[float] = None,
        on_complete: Optional[Callable[[list[str], ExecuteOptions, ExecuteResult], None]] = None,
    ):
        self.kill_delay = config.execute_kill_delay if kill_delay is None else kill_delay
        self._on_complete = on_complete

    def set_complete_callback(
        self, callback: Callable[[list[str], ExecuteOptions, ExecuteResult], None]
    ):
        """Set callback run after every command: callback(command, options, result)."""
        self._on_complete = callback

    async def execute_expo(
        self, args: list[str], options: Optional[ExecuteOptions] = None
    ) -> ExecuteResult:
        """Run `npx expo <args>`."""
        return await self.execute([EXPO_CLI, EXPO_COMMAND, *args], options)

    async def execute_eas(
        self, args: list[str], options: Optional[ExecuteOptions] = None
    ) -> ExecuteResult:
        """Run `npx eas <args>`."""
        return await self.execute([EXPO_CLI, EAS_COMMAND, *args], options)

    async def execute(
        self, command: list[str], options: Optional[ExecuteOptions] = None
    ) -> ExecuteResult:
        """
        Run a command to completion and capture its output.

        The command is sanitized and spawned without a shell. The result's
        exit_code is None when the process timed out, was killed by a signal,
        or never started.
        """
        options = options or ExecuteOptions()
        timeout = config.default_timeout if options.timeout is None else options.timeout
        cmd = sanitize_command(command)
        cwd = options.working_dir or os.getcwd()

        logger.info(f"Executing command: {' '.join(cmd)} (cwd={cwd}, timeout={timeout:g}s)")

        started = time.monotonic()
        result = await self._run(cmd, cwd, options, timeout)
        result.duration = time.monotonic() - started

        if result.success:
            logger.info(f"Command completed successfully in {result.duration:.1f}s: {' '.join(cmd)}")
        elif result.code is None:
            logger.warning(
                f"Command failed with exit code {result.exit_code}: {' '.join(cmd)} "
                f"stderr={result.stderr[:200]!r}"
            )

        if self._on_complete:
            try:
                self._on_complete(cmd, options, result)
            except Exception as e:
                logger.error(f"Error in command completion callback: {e}")

        return result

    async def _run(
        self, cmd: list[str], cwd: str, options: ExecuteOptions, timeout: float
    ) -> ExecuteResult:
        if not cmd or not cmd[0]:
            return ExecuteResult(
                success=False, error="Empty command", code=ErrorCode.PROCESS_SPAWN_ERROR
            )

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=build_environment(options.env),
                start_new_session=True,
            )
        except (OSError, ValueError) as e:
            logger.error(f"Failed to spawn {cmd[0]}: {e}")
            return ExecuteResult(
                success=False, error=str(e), code=ErrorCode.PROCESS_SPAWN_ERROR
            )

        stdout_chunks: list[bytes] = []
        stderr_chunks: list[bytes] = []
        readers = [
            asyncio.create_task(_drain(process.stdout, stdout_chunks)),
            asyncio.create_task(_drain(process.stderr, stderr_chunks)),
        ]

        loop = asyncio.get_running_loop()
        timed_out = False
        handles: list[asyncio.TimerHandle] = []

        def hard_kill():
            if process.returncode is None or not all(r.done() for r in readers):
                logger.warning(f"Command did not exit after SIGTERM, killing: {' '.join(cmd)}")
                signal_process_group(process.pid, signal.SIGKILL)

        def on_timeout():
            nonlocal timed_out
            timed_out = True
            logger.warning(f"Command timed out after {timeout:g}s: {' '.join(cmd)}")
            signal_process_group(process.pid, signal.SIGTERM)
            handles.append(loop.call_later(self.kill_delay, hard_kill))

        if timeout > 0:
            handles.append(loop.call_later(timeout, on_timeout))

        try:
            await self._feed_stdin(process, options.input)
            returncode = await process.wait()
            await asyncio.gather(*readers)
        except OSError as e:
            logger.error(f"Command process error: {' '.join(cmd)}: {e}")
            signal_process_group(process.pid, signal.SIGKILL)
            return ExecuteResult(
                success=False,
                stdout=_decode(stdout_chunks),
                stderr=_decode(stderr_chunks),
                error=str(e),
                code=ErrorCode.PROCESS_RUNTIME_ERROR,
            )
        except asyncio.CancelledError:
            signal_process_group(process.pid, signal.SIGKILL)
            raise
        finally:
            for handle in handles:
                handle.cancel()

        stdout = _decode(stdout_chunks)
        stderr = _decode(stderr_chunks)

        # A process that exits after being terminated did not complete normally.
        if timed_out:
            return ExecuteResult(
                success=False,
                stdout=stdout,
                stderr=stderr,
                exit_code=None,
                error=errors.command_timeout(timeout),
                code=ErrorCode.COMMAND_TIMEOUT,
            )

        exit_code, signal_name = describe_exit(returncode)
        return ExecuteResult(
            success=exit_code == 0,
            stdout=stdout,
            stderr=stderr,
            exit_code=exit_code,
            error=f"Process killed by signal {signal_name}" if signal_name else None,
        )

    async def _feed_stdin(self, process: asyncio.subprocess.Process, payload: Optional[str]):
        """Write the one-shot payload, if any, and close stdin."""
        try:
            if payload:
                process.stdin.write(payload.encode("utf-8"))
                await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.warning(f"Child closed stdin before input was written: {e}")
        finally:
            process.stdin.close()

    # Availability and version checks

    async def _quick_run(self, command: list[str]) -> ExecuteResult:
        return await self.execute(command, ExecuteOptions(timeout=config.version_check_timeout))

    async def check_expo_installed(self) -> bool:
        result = await self._quick_run([EXPO_CLI, EXPO_COMMAND, "--version"])
        return result.success

    async def check_eas_installed(self) -> bool:
        result = await self._quick_run([EXPO_CLI, EAS_COMMAND, "--version"])
        return result.success

    async def get_expo_version(self) -> Optional[str]:
        """Installed Expo CLI version, or None if unavailable."""
        result = await self._quick_run([EXPO_CLI, EXPO_COMMAND, "--version"])
        return result.stdout.strip() if result.success else None

    async def get_eas_version(self) -> Optional[str]:
        """Installed EAS CLI version, or None if unavailable."""
        result = await self._quick_run([EXPO_CLI, EAS_COMMAND, "--version"])
        return result.stdout.strip() if result.success else None
