"""
Expo supervisor FastAPI application.

Provides a REST API for running bounded Expo/EAS CLI commands, managing
long-lived CLI sessions (dev servers, local native builds), reading their
output, and browsing execution history.
"""

import logging
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from typing import Literal, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from . import __version__
from .config import config
from .errors import ErrorCode
from .executor import CommandExecutor, ExecuteOptions
from .expo import DEFAULT_DEV_PORT, ExpoTools, ToolResult
from .models import initialize_db, list_executions, record_execution
from .monitor import ResourceMonitor
from .sessions import SessionManager
from .versions import get_cli_versions

# Configure logging with rotation
log_formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

# Rotating file handler (auto-compaction)
file_handler = RotatingFileHandler(
    config.supervisor_log,
    maxBytes=config.log_max_bytes,
    backupCount=config.log_backup_count,
)
file_handler.setFormatter(log_formatter)

# Console handler
console_handler = logging.StreamHandler()
console_handler.setFormatter(log_formatter)

# Configure root logger
logging.basicConfig(
    level=logging.INFO,
    handlers=[file_handler, console_handler],
)
logger = logging.getLogger(__name__)

# Error code -> HTTP status for request-level failures
HTTP_STATUS = {
    ErrorCode.SESSION_NOT_FOUND: 404,
    ErrorCode.SESSION_ALREADY_EXISTS: 409,
    ErrorCode.SESSION_NOT_RUNNING: 409,
    ErrorCode.INVALID_ARGUMENT: 400,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    logger.info("Starting expo-supervisor...")
    initialize_db()

    executor = CommandExecutor(on_complete=record_execution)
    sessions = SessionManager()
    app.state.executor = executor
    app.state.sessions = sessions
    app.state.tools = ExpoTools(executor, sessions)
    app.state.monitor = ResourceMonitor(sessions)

    await app.state.monitor.start()

    yield

    logger.info("Shutting down expo-supervisor...")
    await app.state.monitor.stop()
    sessions.shutdown()


app = FastAPI(
    title="Expo Supervisor",
    description="Process supervisor for Expo and EAS command-line tools",
    version=__version__,
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Dependencies
def get_executor(request: Request) -> CommandExecutor:
    return request.app.state.executor


def get_sessions(request: Request) -> SessionManager:
    return request.app.state.sessions


def get_tools(request: Request) -> ExpoTools:
    return request.app.state.tools


def get_monitor(request: Request) -> ResourceMonitor:
    return request.app.state.monitor


def _raise_for(result, default_status: int = 500):
    """Raise an HTTPException for a failed registry or tool result."""
    status = HTTP_STATUS.get(result.code, default_status)
    raise HTTPException(status_code=status, detail=result.error)


def _tool_response(result: ToolResult) -> dict:
    """
    Tool results go back as a 200 body, except for request-level failures
    (unknown session, bad arguments) which become HTTP errors.
    """
    if not result.success and result.code in HTTP_STATUS:
        _raise_for(result)
    return result.to_dict()


# Pydantic models for API
class SessionCreate(BaseModel):
    id: str = Field(..., min_length=1, description="Caller-chosen session identifier")
    command: list[str] = Field(..., min_length=1, description="Program and arguments")
    working_dir: Optional[str] = Field(None, description="Working directory")
    env: Optional[dict[str, str]] = Field(None, description="Environment overrides")


class SessionInput(BaseModel):
    text: str = Field(..., description="Line of input, a newline is appended")


class ExecuteRequest(BaseModel):
    command: list[str] = Field(..., min_length=1, description="Program and arguments")
    working_dir: Optional[str] = None
    env: Optional[dict[str, str]] = None
    timeout: Optional[float] = Field(None, ge=0, description="Seconds; 0 disables the bound")
    input: Optional[str] = Field(None, description="Written to stdin once, then stdin is closed")


class DevServerStart(BaseModel):
    platform: Literal["ios", "android", "web", "all"] = "all"
    clear_cache: bool = False
    port: int = Field(DEFAULT_DEV_PORT, ge=1, le=65535)
    offline: bool = False
    working_dir: Optional[str] = None
    qr_format: Literal["terminal", "svg", "png", "url"] = "terminal"


class DevCommand(BaseModel):
    command: str = Field(..., description="reload, clear_cache, toggle_inspector, ... or custom")
    custom_input: Optional[str] = None


class LocalBuildStart(BaseModel):
    platform: Literal["ios", "android"]
    device: Optional[str] = None
    variant: Literal["debug", "release"] = "debug"
    clean: bool = False
    working_dir: Optional[str] = None


class CloudBuildRequest(BaseModel):
    platform: Literal["ios", "android", "all"]
    profile: str = "production"
    wait: bool = False
    non_interactive: bool = True
    clear_cache: bool = False
    working_dir: Optional[str] = None


class SubmitRequest(BaseModel):
    platform: Literal["ios", "android"]
    build_id: Optional[str] = None
    profile: str = "production"
    latest: bool = False
    working_dir: Optional[str] = None


class UpdateRequest(BaseModel):
    branch: str
    message: str
    rollout_percentage: int = Field(100, ge=0, le=100)
    runtime_version: Optional[str] = None
    platform: Literal["ios", "android", "all"] = "all"
    working_dir: Optional[str] = None


class InstallRequest(BaseModel):
    packages: list[str] = Field(..., min_length=1)
    check_compatibility: bool = True
    fix: bool = False
    working_dir: Optional[str] = None


class DoctorRequest(BaseModel):
    fix: bool = False
    working_dir: Optional[str] = None


class UpgradeRequest(BaseModel):
    target_version: Optional[str] = None
    dry_run: bool = False
    npm: bool = False
    working_dir: Optional[str] = None


class CreateAppRequest(BaseModel):
    project_name: str = Field(..., min_length=1)
    template: str = "blank"
    npm: bool = False
    install: bool = True
    yes: bool = False
    working_dir: Optional[str] = None


# Sessions
@app.post("/api/sessions")
async def create_session(data: SessionCreate, sessions: SessionManager = Depends(get_sessions)):
    """Start a persistent CLI session."""
    result = sessions.start_session(
        data.id, data.command, ExecuteOptions(working_dir=data.working_dir, env=data.env)
    )
    if not result.success:
        _raise_for(result)
    return result.session.to_dict()


@app.get("/api/sessions")
async def list_sessions(sessions: SessionManager = Depends(get_sessions)):
    return sessions.list_sessions()


@app.post("/api/sessions/stop-all")
async def stop_all_sessions(sessions: SessionManager = Depends(get_sessions)):
    count = len(sessions.list_sessions())
    sessions.stop_all_sessions()
    return {"success": True, "stopped": count}


@app.get("/api/sessions/{session_id}")
async def get_session_status(session_id: str, sessions: SessionManager = Depends(get_sessions)):
    result = sessions.get_status(session_id)
    if not result.success:
        _raise_for(result)
    return {
        "id": session_id,
        "status": result.status.value,
        "uptime_seconds": round(result.uptime, 3),
        "log_count": result.log_count,
    }


@app.get("/api/sessions/{session_id}/output")
async def read_session_output(
    session_id: str,
    tail: Optional[int] = Query(None, ge=1, description="Return only the last N entries"),
    sessions: SessionManager = Depends(get_sessions),
):
    result = sessions.read_output(session_id, tail)
    if not result.success:
        _raise_for(result)
    return {
        "status": result.status.value,
        "logs": [entry.to_dict() for entry in result.logs],
    }


@app.post("/api/sessions/{session_id}/input")
async def send_session_input(
    session_id: str, data: SessionInput, sessions: SessionManager = Depends(get_sessions)
):
    result = sessions.send_input(session_id, data.text)
    if not result.success:
        _raise_for(result)
    return {"success": True}


@app.post("/api/sessions/{session_id}/stop")
async def stop_session(session_id: str, sessions: SessionManager = Depends(get_sessions)):
    result = sessions.stop_session(session_id)
    if not result.success:
        _raise_for(result)
    return {"success": True, "message": f"Session {session_id} stopping"}


@app.get("/api/sessions/{session_id}/metrics")
async def get_session_metrics(session_id: str, monitor: ResourceMonitor = Depends(get_monitor)):
    """Current CPU and memory usage for a session's process tree."""
    metrics = monitor.get_session_metrics(session_id)
    if metrics is None:
        raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
    return metrics


# One-shot execution
@app.post("/api/execute")
async def execute_command(data: ExecuteRequest, executor: CommandExecutor = Depends(get_executor)):
    """Run a command to completion. Failures are reported in the body, not as HTTP errors."""
    result = await executor.execute(
        data.command,
        ExecuteOptions(
            working_dir=data.working_dir, env=data.env, timeout=data.timeout, input=data.input
        ),
    )
    return result.to_dict()


@app.get("/api/executions")
async def get_executions(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    failed_only: bool = Query(False),
):
    return [record.to_dict() for record in list_executions(limit, offset, failed_only)]


@app.get("/api/cli/versions")
async def cli_versions(executor: CommandExecutor = Depends(get_executor)):
    return await get_cli_versions(executor)


# Expo dev server
@app.post("/api/expo/dev/start")
async def start_dev_server(data: DevServerStart, tools: ExpoTools = Depends(get_tools)):
    return _tool_response(await tools.start_dev_server(**data.model_dump()))


@app.post("/api/expo/dev/{session_id}/send")
async def send_dev_command(session_id: str, data: DevCommand, tools: ExpoTools = Depends(get_tools)):
    return _tool_response(tools.send_dev_command(session_id, data.command, data.custom_input))


@app.get("/api/expo/dev/{session_id}/logs")
async def read_dev_logs(
    session_id: str,
    tail: int = Query(50, ge=1, le=1000),
    tools: ExpoTools = Depends(get_tools),
):
    return _tool_response(tools.read_dev_logs(session_id, tail))


@app.post("/api/expo/dev/{session_id}/stop")
async def stop_dev_server(session_id: str, tools: ExpoTools = Depends(get_tools)):
    return _tool_response(tools.stop_dev_server(session_id))


# Local native builds
@app.post("/api/expo/build/local")
async def start_local_build(data: LocalBuildStart, tools: ExpoTools = Depends(get_tools)):
    return _tool_response(tools.start_local_build(**data.model_dump()))


@app.get("/api/expo/build/local/{session_id}")
async def read_local_build(
    session_id: str,
    tail: int = Query(100, ge=1, le=1000),
    tools: ExpoTools = Depends(get_tools),
):
    return _tool_response(tools.read_local_build(session_id, tail))


@app.post("/api/expo/build/local/{session_id}/stop")
async def stop_local_build(session_id: str, tools: ExpoTools = Depends(get_tools)):
    return _tool_response(tools.stop_local_build(session_id))


# EAS
@app.post("/api/eas/build")
async def trigger_cloud_build(data: CloudBuildRequest, tools: ExpoTools = Depends(get_tools)):
    return _tool_response(await tools.trigger_cloud_build(**data.model_dump()))


@app.get("/api/eas/builds")
async def get_build_status(
    build_id: Optional[str] = None,
    limit: int = Query(5, ge=1, le=100),
    tools: ExpoTools = Depends(get_tools),
):
    return _tool_response(await tools.get_build_status(build_id, limit))


@app.post("/api/eas/submit")
async def submit_to_store(data: SubmitRequest, tools: ExpoTools = Depends(get_tools)):
    return _tool_response(await tools.submit_to_store(**data.model_dump()))


@app.post("/api/eas/update")
async def publish_update(data: UpdateRequest, tools: ExpoTools = Depends(get_tools)):
    return _tool_response(await tools.publish_update(**data.model_dump()))


@app.get("/api/eas/updates")
async def get_update_status(
    branch: Optional[str] = None,
    limit: int = Query(10, ge=1, le=100),
    tools: ExpoTools = Depends(get_tools),
):
    return _tool_response(await tools.get_update_status(branch, limit))


# Project tooling
@app.post("/api/expo/install")
async def install_packages(data: InstallRequest, tools: ExpoTools = Depends(get_tools)):
    return _tool_response(await tools.install_packages(**data.model_dump()))


@app.post("/api/expo/doctor")
async def run_doctor(data: DoctorRequest, tools: ExpoTools = Depends(get_tools)):
    return _tool_response(await tools.run_doctor(**data.model_dump()))


@app.post("/api/expo/upgrade")
async def upgrade_sdk(data: UpgradeRequest, tools: ExpoTools = Depends(get_tools)):
    return _tool_response(await tools.upgrade_sdk(**data.model_dump()))


@app.post("/api/expo/create")
async def create_app(data: CreateAppRequest, tools: ExpoTools = Depends(get_tools)):
    return _tool_response(await tools.create_app(**data.model_dump()))


# Supervisor
@app.get("/api/supervisor/logs")
async def get_supervisor_logs(lines: int = Query(100, ge=1, le=1000)):
    """Get recent supervisor log entries."""
    try:
        with open(config.supervisor_log, "r") as f:
            all_lines = f.readlines()
            return {"lines": all_lines[-lines:], "total": len(all_lines)}
    except FileNotFoundError:
        return {"lines": [], "total": 0}


@app.get("/api/status")
async def get_status(sessions: SessionManager = Depends(get_sessions)):
    """Overall supervisor status."""
    active = sessions.list_sessions()
    return {
        "version": __version__,
        "sessions": len(active),
        "running": sum(1 for s in active if s["status"] == "running"),
    }
