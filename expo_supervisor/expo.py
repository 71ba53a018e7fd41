"""
Expo and EAS operations built on the executor and the session registry.

Interactive commands (the dev server, local native builds) run as sessions;
everything else (EAS builds, submissions, updates, project tooling) runs as
bounded one-shot commands. Each operation returns a ToolResult.
"""

import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Optional

from . import classifier, qr
from .config import EXPO_CLI, EXPO_COMMAND, config
from .errors import ErrorCode, command_timeout, invalid_package_name
from .executor import CommandExecutor, ExecuteOptions, ExecuteResult
from .sanitize import sanitize_package_names
from .sessions import SessionManager, SessionStatus

logger = logging.getLogger(__name__)

# Dev server keyboard shortcuts
DEV_COMMANDS = {
    "reload": "r",
    "clear_cache": "shift+r",
    "toggle_inspector": "i",
    "toggle_performance_monitor": "perf",
    "open_ios": "shift+i",
    "open_android": "shift+a",
    "open_web": "w",
}

DEV_PLATFORMS = ("ios", "android", "web", "all")
BUILD_PLATFORMS = ("ios", "android")
DEFAULT_DEV_PORT = 19000
READY_SCAN_LINES = 100

UUID = r"[a-f0-9-]{36}"
BUILD_ID = re.compile(rf"Build ID:\s*([a-f0-9-]+)|({UUID})", re.IGNORECASE)
SUBMISSION_ID = re.compile(rf"Submission ID:\s*([a-f0-9-]+)|({UUID})", re.IGNORECASE)
UPDATE_ID = re.compile(rf"Update ID:\s*([a-f0-9-]+)|Update.*?({UUID})", re.IGNORECASE)
GROUP_ID = re.compile(rf"Group ID:\s*([a-f0-9-]+)|Group.*?({UUID})", re.IGNORECASE)
RUNTIME_VERSION = re.compile(r"Runtime version:\s*(\S+)", re.IGNORECASE)
EXPO_DEV_PAGE = re.compile(r"https://expo\.dev/\S+")
UPGRADE_CHANGE = re.compile(r"(\S+)\s+(\S+)\s+→\s+(\S+)")
PROJECT_PATH = re.compile(r"(?:Created|Initialized).*?(?:at|in)[:\s]+([^\n]+)", re.IGNORECASE)
SDK_VERSION = re.compile(r"Expo SDK[:\s]+v?(\d+\.\d+\.\d+)|expo@(\d+\.\d+\.\d+)", re.IGNORECASE)
NEXT_STEPS_HEADING = re.compile(r"next steps|to get started|getting started", re.IGNORECASE)
NUMBERED_STEP = re.compile(r"^\d+[.)]")


@dataclass
class ToolResult:
    success: bool
    data: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    code: Optional[ErrorCode] = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "data": self.data,
            "error": self.error,
            "code": self.code.value if self.code else None,
        }


def _invalid(message: str) -> ToolResult:
    return ToolResult(success=False, error=message, code=ErrorCode.INVALID_ARGUMENT)


def _failed(result: ExecuteResult, fallback: str) -> ToolResult:
    """Turn a failed execution into a ToolResult, preferring the CLI's stderr."""
    return ToolResult(
        success=False,
        error=result.stderr.strip() or result.error or fallback,
        code=result.code,
    )


def _first_group(pattern: re.Pattern, text: str) -> Optional[str]:
    match = pattern.search(text)
    if not match:
        return None
    return next((group for group in match.groups() if group), None)


def _parse_json_list(output: str) -> list:
    try:
        data = json.loads(output)
    except ValueError:
        logger.warning("CLI did not return valid JSON")
        return []
    return data if isinstance(data, list) else []


def parse_doctor_output(output: str) -> list[dict]:
    issues = []
    for line in output.splitlines():
        if "✖" in line or "error" in line:
            issues.append({"severity": "error", "description": line.strip()})
        elif "⚠" in line or "warning" in line:
            issues.append({"severity": "warning", "description": line.strip()})
        elif "ℹ" in line or "info" in line:
            issues.append({"severity": "info", "description": line.strip()})
    return issues


def parse_upgrade_output(output: str) -> list[dict]:
    changes = []
    for line in output.splitlines():
        match = UPGRADE_CHANGE.search(line)
        if match:
            changes.append({
                "package": match.group(1),
                "from": match.group(2),
                "to": match.group(3),
                "breaking": "BREAKING" in line,
            })
    return changes


def parse_next_steps(output: str) -> list[str]:
    """Pull the 'next steps' list out of create-expo-app output."""
    steps = []
    in_steps = False
    for line in output.splitlines():
        stripped = line.strip()
        if NEXT_STEPS_HEADING.search(stripped):
            in_steps = True
            continue
        if not in_steps:
            continue
        if stripped.startswith((">", "-")) or NUMBERED_STEP.match(stripped):
            steps.append(re.sub(r"^[>\d.)\-\s]+", "", stripped).strip())
        elif steps and not stripped:
            break
    return steps


class ExpoTools:
    """Expo and EAS operations for an automated caller."""

    def __init__(
        self,
        executor: CommandExecutor,
        sessions: SessionManager,
        poll_interval: float = 1.0,
        start_timeout: Optional[float] = None,
    ):
        self.executor = executor
        self.sessions = sessions
        self.poll_interval = poll_interval
        self.start_timeout = config.dev_server_start_timeout if start_timeout is None else start_timeout

    # Dev server

    async def start_dev_server(
        self,
        platform: str = "all",
        clear_cache: bool = False,
        port: int = DEFAULT_DEV_PORT,
        offline: bool = False,
        working_dir: Optional[str] = None,
        qr_format: str = qr.DEFAULT_QR_FORMAT,
    ) -> ToolResult:
        """
        Start `expo start` in a session and wait until it reports it is ready.

        The result carries the dev server URL and a QR code for it in
        qr_format, or the bare URL if the QR code cannot be rendered.
        """
        if platform not in DEV_PLATFORMS:
            return _invalid(f"Unknown platform: {platform}")
        if qr_format not in qr.QR_FORMATS:
            return _invalid(f"Unknown QR format: {qr_format}")

        command = [EXPO_CLI, EXPO_COMMAND, "start"]
        if platform != "all":
            command.append(f"--{platform}")
        if clear_cache:
            command.append("--clear")
        if port:
            command.extend(["--port", str(port)])
        if offline:
            command.append("--offline")

        session_id = f"expo-dev-{int(time.time() * 1000)}"
        logger.info(f"Starting Expo dev server {session_id} (platform={platform}, port={port})")

        started = self.sessions.start_session(
            session_id, command, ExecuteOptions(working_dir=working_dir)
        )
        if not started.success:
            return ToolResult(success=False, error=started.error, code=started.code)

        result = await self._wait_for_dev_server(session_id, platform, qr_format)
        if not result.success:
            self.sessions.stop_session(session_id)
            return result

        logger.info(f"Dev server {session_id} ready at {result.data['url']}")
        return result

    async def _wait_for_dev_server(self, session_id: str, platform: str, qr_format: str) -> ToolResult:
        deadline = time.monotonic() + self.start_timeout

        while time.monotonic() < deadline:
            output = self.sessions.read_output(session_id, READY_SCAN_LINES)
            if not output.success:
                return ToolResult(success=False, error=output.error, code=output.code)
            if output.status == SessionStatus.ERROR:
                return ToolResult(
                    success=False,
                    error="Dev server encountered an error",
                    code=ErrorCode.PROCESS_RUNTIME_ERROR,
                )

            lines = [entry.message for entry in output.logs]
            if classifier.is_dev_server_ready(lines):
                url = classifier.extract_dev_server_url(lines)
                if not url:
                    return ToolResult(
                        success=False,
                        error="Dev server started but URL not found in logs",
                        code=ErrorCode.PROCESS_RUNTIME_ERROR,
                    )

                try:
                    qr_code = qr.format_qr(url, qr_format)
                except Exception as e:
                    logger.warning(f"Failed to generate QR code, using URL instead: {e}")
                    qr_code = url

                return ToolResult(
                    success=True,
                    data={
                        "session_id": session_id,
                        "url": url,
                        "qr_format": qr_format,
                        "qr_code": qr_code,
                        "port": classifier.extract_port(url),
                        "platform": platform,
                        "status": SessionStatus.RUNNING.value,
                    },
                )

            await asyncio.sleep(self.poll_interval)

        logger.warning(f"Dev server {session_id} not ready after {self.start_timeout:g}s")
        return ToolResult(
            success=False,
            error=command_timeout(self.start_timeout),
            code=ErrorCode.COMMAND_TIMEOUT,
        )

    def send_dev_command(
        self, session_id: str, command: str, custom_input: Optional[str] = None
    ) -> ToolResult:
        """Send a named shortcut (or custom text) to a running dev server."""
        if command == "custom":
            if not custom_input:
                return _invalid('custom_input required when command is "custom"')
            text = custom_input
        elif command in DEV_COMMANDS:
            text = DEV_COMMANDS[command]
        else:
            return _invalid(f"Unknown command: {command}")

        result = self.sessions.send_input(session_id, text)
        if not result.success:
            logger.error(f"Failed to send {command} to dev server {session_id}: {result.error}")
            return ToolResult(success=False, error=result.error, code=result.code)

        return ToolResult(success=True, data={"message": f"Command sent: {command}"})

    def read_dev_logs(self, session_id: str, tail: int = 50) -> ToolResult:
        result = self.sessions.read_output(session_id, tail)
        if not result.success:
            return ToolResult(success=False, error=result.error, code=result.code)

        lines = [entry.raw for entry in result.logs]
        return ToolResult(
            success=True,
            data={
                "logs": [entry.to_dict() for entry in result.logs],
                "status": result.status.value,
                "total_lines": len(result.logs),
                "summary": classifier.summarize(lines),
            },
        )

    def stop_dev_server(self, session_id: str) -> ToolResult:
        result = self.sessions.stop_session(session_id)
        if not result.success:
            return ToolResult(success=False, error=result.error, code=result.code)
        return ToolResult(success=True, data={"message": "Dev server stopped"})

    # Local native builds

    def start_local_build(
        self,
        platform: str,
        device: Optional[str] = None,
        variant: str = "debug",
        clean: bool = False,
        working_dir: Optional[str] = None,
    ) -> ToolResult:
        """Start `expo run:<platform>` in a session; progress is read with read_local_build()."""
        if platform not in BUILD_PLATFORMS:
            return _invalid(f"Unknown platform: {platform}")

        command = [EXPO_CLI, EXPO_COMMAND, f"run:{platform}"]
        if device:
            command.extend(["--device", device])
        if variant == "release":
            command.extend(["--variant", "release"])
        if clean:
            command.append("--clear")

        session_id = f"expo-build-{platform}-{int(time.time() * 1000)}"
        logger.info(f"Starting local {platform} build {session_id}")

        started = self.sessions.start_session(
            session_id, command, ExecuteOptions(working_dir=working_dir)
        )
        if not started.success:
            return ToolResult(success=False, error=started.error, code=started.code)

        return ToolResult(
            success=True,
            data={
                "session_id": session_id,
                "status": "building",
                "platform": platform,
                "message": f"Build started for {platform}",
            },
        )

    def read_local_build(self, session_id: str, tail: int = 100) -> ToolResult:
        result = self.sessions.read_output(session_id, tail)
        if not result.success:
            return ToolResult(success=False, error=result.error, code=result.code)

        lines = [entry.raw for entry in result.logs]
        complete, succeeded = classifier.is_build_complete(lines)
        if complete:
            status = "success" if succeeded else "failed"
        elif result.status == SessionStatus.ERROR:
            status = "failed"
        elif result.status == SessionStatus.STOPPED:
            status = "cancelled"
        else:
            status = "building"

        return ToolResult(
            success=True,
            data={
                "logs": lines,
                "status": status,
                "progress": classifier.latest_progress(lines),
                "errors": classifier.extract_errors(lines),
            },
        )

    def stop_local_build(self, session_id: str) -> ToolResult:
        result = self.sessions.stop_session(session_id)
        if not result.success:
            return ToolResult(success=False, error=result.error, code=result.code)
        return ToolResult(success=True, data={"message": "Build stopped"})

    # EAS cloud builds, submissions and updates

    async def trigger_cloud_build(
        self,
        platform: str,
        profile: str = "production",
        wait: bool = False,
        non_interactive: bool = True,
        clear_cache: bool = False,
        working_dir: Optional[str] = None,
    ) -> ToolResult:
        if platform not in ("ios", "android", "all"):
            return _invalid(f"Unknown platform: {platform}")

        args = ["build", "--platform", platform, "--profile", profile]
        if non_interactive:
            args.append("--non-interactive")
        if clear_cache:
            args.append("--clear-cache")
        if wait:
            args.append("--wait")

        timeout = config.build_cloud_timeout if wait else config.default_timeout
        logger.info(f"Triggering EAS build (platform={platform}, profile={profile}, wait={wait})")
        result = await self.executor.execute_eas(
            args, ExecuteOptions(working_dir=working_dir, timeout=timeout)
        )
        if not result.success:
            return _failed(result, "Build failed")

        page = EXPO_DEV_PAGE.search(result.stdout)
        url = page.group(0) if page else None
        return ToolResult(
            success=True,
            data={
                "build_id": _first_group(BUILD_ID, result.stdout) or "unknown",
                "status": "finished" if wait else "pending",
                "url": url or "https://expo.dev/accounts",
                "logs_url": url,
                "platform": platform,
            },
        )

    async def get_build_status(
        self, build_id: Optional[str] = None, limit: int = 5, working_dir: Optional[str] = None
    ) -> ToolResult:
        args = ["build:list", f"--limit={limit}", "--json"]
        if build_id:
            args.append(f"--buildId={build_id}")

        result = await self.executor.execute_eas(args, ExecuteOptions(working_dir=working_dir))
        if not result.success:
            return _failed(result, "Failed to get build status")

        builds = [
            {
                "id": build.get("id"),
                "status": build.get("status"),
                "platform": build.get("platform"),
                "created_at": build.get("createdAt"),
                "completed_at": build.get("completedAt"),
                "app_version": build.get("appVersion"),
                "sdk_version": build.get("sdkVersion"),
            }
            for build in _parse_json_list(result.stdout)
            if isinstance(build, dict)
        ]
        return ToolResult(success=True, data={"builds": builds, "total": len(builds)})

    async def submit_to_store(
        self,
        platform: str,
        build_id: Optional[str] = None,
        profile: str = "production",
        latest: bool = False,
        working_dir: Optional[str] = None,
    ) -> ToolResult:
        args = ["submit", "--platform", platform, "--profile", profile, "--non-interactive"]
        if latest:
            args.append("--latest")
        elif build_id:
            args.extend(["--id", build_id])
        else:
            return _invalid("Either build_id or latest must be specified")

        logger.info(f"Submitting {platform} build to store (profile={profile})")
        result = await self.executor.execute_eas(args, ExecuteOptions(working_dir=working_dir))
        if not result.success:
            return _failed(result, "Submission failed")

        return ToolResult(
            success=True,
            data={
                "submission_id": _first_group(SUBMISSION_ID, result.stdout) or "unknown",
                "status": "submitted",
                "platform": platform,
                "message": f"Successfully submitted to {platform} store",
            },
        )

    async def publish_update(
        self,
        branch: str,
        message: str,
        rollout_percentage: int = 100,
        runtime_version: Optional[str] = None,
        platform: str = "all",
        working_dir: Optional[str] = None,
    ) -> ToolResult:
        """
        Publish an over-the-air update to a branch.

        rollout_percentage is accepted and echoed back, but gradual rollouts
        need EAS-side configuration; values below 100 only produce a warning.
        """
        args = ["update", "--branch", branch, "--message", message, "--non-interactive"]
        if platform != "all":
            args.extend(["--platform", platform])
        if runtime_version:
            args.extend(["--runtime-version", runtime_version])

        if rollout_percentage < 100:
            logger.warning(
                f"Gradual rollout ({rollout_percentage}%) may require additional EAS configuration"
            )

        result = await self.executor.execute_eas(args, ExecuteOptions(working_dir=working_dir))
        if not result.success:
            return _failed(result, "Failed to publish update")

        return ToolResult(
            success=True,
            data={
                "update_id": _first_group(UPDATE_ID, result.stdout) or "unknown",
                "group_id": _first_group(GROUP_ID, result.stdout) or "unknown",
                "runtime_version": _first_group(RUNTIME_VERSION, result.stdout)
                or runtime_version
                or "auto",
                "message": message,
                "branch": branch,
                "rollout_percentage": rollout_percentage,
            },
        )

    async def get_update_status(
        self, branch: Optional[str] = None, limit: int = 10, working_dir: Optional[str] = None
    ) -> ToolResult:
        args = ["update:list", f"--limit={limit}", "--json"]
        if branch:
            args.extend(["--branch", branch])

        result = await self.executor.execute_eas(args, ExecuteOptions(working_dir=working_dir))
        if not result.success:
            return _failed(result, "Failed to get update status")

        updates = [
            {
                "id": update.get("id"),
                "branch": update.get("branch"),
                "message": update.get("message") or "",
                "created_at": update.get("createdAt"),
                "rollout_percentage": update.get("rolloutPercentage") or 100,
                "runtime_version": update.get("runtimeVersion") or "auto",
                "platform": update.get("platform") or "all",
            }
            for update in _parse_json_list(result.stdout)
            if isinstance(update, dict)
        ]
        return ToolResult(
            success=True, data={"updates": updates, "branch": branch, "total": len(updates)}
        )

    # Project tooling

    async def install_packages(
        self,
        packages: list[str],
        check_compatibility: bool = True,
        fix: bool = False,
        working_dir: Optional[str] = None,
    ) -> ToolResult:
        """Run `expo install` for the valid package names; invalid ones are never passed on."""
        names = sanitize_package_names(packages)
        if names.invalid:
            logger.warning(f"Invalid package names rejected: {names.invalid}")
        if not names.valid:
            return _invalid("; ".join(invalid_package_name(name) for name in names.invalid))

        args = ["install", *names.valid]
        if check_compatibility:
            args.append("--check")
        if fix:
            args.append("--fix")

        result = await self.executor.execute_expo(
            args, ExecuteOptions(working_dir=working_dir, timeout=config.install_timeout)
        )
        installed = names.valid if result.success else []
        data = {
            "installed": installed,
            "failed": names.invalid if result.success else list(packages),
            "warnings": classifier.extract_warnings((result.stdout + result.stderr).splitlines()),
            "message": (
                f"Successfully installed {len(installed)} package(s)"
                if result.success
                else "Installation failed"
            ),
        }
        if not result.success:
            failed = _failed(result, "Installation failed")
            failed.data = data
            return failed
        return ToolResult(success=True, data=data)

    async def run_doctor(self, fix: bool = False, working_dir: Optional[str] = None) -> ToolResult:
        """Run `expo doctor`. Problems found are reported in data, not as a failure."""
        args = ["doctor"]
        if fix:
            args.append("--fix-dependencies")

        result = await self.executor.execute_expo(args, ExecuteOptions(working_dir=working_dir))
        if result.code in (ErrorCode.PROCESS_SPAWN_ERROR, ErrorCode.COMMAND_TIMEOUT):
            return _failed(result, "expo doctor failed")

        issues = parse_doctor_output(result.stdout + "\n" + result.stderr)
        healthy = result.success and not issues
        if healthy:
            summary = "Project is healthy - no issues found"
        else:
            errors = sum(1 for issue in issues if issue["severity"] == "error")
            warnings = sum(1 for issue in issues if issue["severity"] == "warning")
            summary = f"Found {errors} error(s) and {warnings} warning(s)"

        return ToolResult(
            success=True, data={"issues": issues, "summary": summary, "healthy": healthy}
        )

    async def upgrade_sdk(
        self,
        target_version: Optional[str] = None,
        dry_run: bool = False,
        npm: bool = False,
        working_dir: Optional[str] = None,
    ) -> ToolResult:
        args = ["upgrade"]
        if target_version:
            args.append(target_version)
        if npm:
            args.append("--npm")

        timeout = config.default_timeout if dry_run else config.upgrade_timeout
        result = await self.executor.execute_expo(
            args, ExecuteOptions(working_dir=working_dir, timeout=timeout)
        )

        current = re.search(r"current.*?(\d+\.\d+\.\d+)", result.stdout, re.IGNORECASE)
        target = re.search(r"target.*?(\d+\.\d+\.\d+)", result.stdout, re.IGNORECASE)
        data = {
            "current_version": current.group(1) if current else "unknown",
            "target_version": target.group(1) if target else (target_version or "latest"),
            "changes": parse_upgrade_output(result.stdout),
            "breaking_changes": [
                line.strip() for line in result.stdout.splitlines() if "BREAKING" in line
            ],
            "applied": not dry_run and result.success,
        }
        if not result.success:
            failed = _failed(result, "Upgrade failed")
            failed.data = data
            return failed
        return ToolResult(success=True, data=data)

    async def create_app(
        self,
        project_name: str,
        template: str = "blank",
        npm: bool = False,
        install: bool = True,
        yes: bool = False,
        working_dir: Optional[str] = None,
    ) -> ToolResult:
        """Scaffold a new project with create-expo-app."""
        if not project_name or not project_name.strip():
            return _invalid("project_name is required")

        args = [project_name]
        if template and template != "blank":
            args.extend(["--template", template])
        if npm:
            args.append("--npm")
        if not install:
            args.append("--no-install")
        if yes:
            args.append("--yes")

        logger.info(f"Creating Expo app {project_name} (template={template})")
        result = await self.executor.execute(
            [EXPO_CLI, "create-expo-app", *args],
            ExecuteOptions(working_dir=working_dir, timeout=config.upgrade_timeout),
        )
        if not result.success:
            return _failed(result, "Failed to create Expo app")

        path = PROJECT_PATH.search(result.stdout)
        project_path = path.group(1).strip() if path else f"./{project_name}"
        steps = parse_next_steps(result.stdout) or [f"cd {project_path}", "npx expo start"]

        return ToolResult(
            success=True,
            data={
                "project_name": project_name,
                "project_path": project_path,
                "template": template,
                "sdk_version": _first_group(SDK_VERSION, result.stdout) or "unknown",
                "installed": install,
                "next_steps": steps,
            },
        )
