"""
Configuration for the Expo supervisor service.

Loads settings from environment variables with sensible defaults.
All persistent data is stored in ~/.expo-supervisor/ unless
EXPO_SUPERVISOR_HOME points elsewhere. Durations are in seconds.
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# CLI invocation
EXPO_CLI = "npx"
EXPO_COMMAND = "expo"
EAS_COMMAND = "eas"

# Environment variables injected into or forwarded to every child process
FORCE_COLOR = "FORCE_COLOR"
EXPO_NO_TELEMETRY = "EXPO_NO_TELEMETRY"
EXPO_NO_REDIRECT = "EXPO_NO_REDIRECT"
AUTH_TOKEN_VARS = ("EXPO_TOKEN", "EAS_TOKEN")


def _float_env(name: str, default: float) -> float:
    return float(os.environ.get(name, str(default)))


def _int_env(name: str, default: int) -> int:
    return int(os.environ.get(name, str(default)))


@dataclass
class Config:
    """Supervisor configuration."""

    # Paths
    data_dir: Path = Path(
        os.environ.get("EXPO_SUPERVISOR_HOME", str(Path.home() / ".expo-supervisor"))
    ).expanduser()
    db_path: Path = None
    supervisor_log: Path = None

    # Logging
    log_max_bytes: int = _int_env("LOG_MAX_BYTES", 10 * 1024 * 1024)  # 10MB
    log_backup_count: int = _int_env("LOG_BACKUP_COUNT", 5)

    # Server
    host: str = os.environ.get("SUPERVISOR_HOST", "0.0.0.0")
    port: int = _int_env("SUPERVISOR_PORT", 9910)

    # One-shot command timeouts
    default_timeout: float = _float_env("DEFAULT_TIMEOUT", 30)
    dev_server_start_timeout: float = _float_env("DEV_SERVER_START_TIMEOUT", 60)
    build_local_timeout: float = _float_env("BUILD_LOCAL_TIMEOUT", 30 * 60)
    build_cloud_timeout: float = _float_env("BUILD_CLOUD_TIMEOUT", 60 * 60)
    install_timeout: float = _float_env("INSTALL_TIMEOUT", 5 * 60)
    upgrade_timeout: float = _float_env("UPGRADE_TIMEOUT", 10 * 60)
    version_check_timeout: float = _float_env("VERSION_CHECK_TIMEOUT", 5)

    # Escalation from SIGTERM to SIGKILL for one-shot commands
    execute_kill_delay: float = _float_env("EXECUTE_KILL_DELAY", 2)

    # Sessions
    max_log_buffer_size: int = _int_env("MAX_LOG_BUFFER_SIZE", 1000)
    log_trim_size: int = _int_env("LOG_TRIM_SIZE", 800)
    session_start_grace: float = _float_env("SESSION_START_GRACE", 1)
    session_kill_delay: float = _float_env("SESSION_KILL_DELAY", 5)
    session_cleanup_delay: float = _float_env("SESSION_CLEANUP_DELAY", 6)

    # Monitoring and history retention
    monitor_interval: int = _int_env("MONITOR_INTERVAL", 60)
    history_retention_days: int = _int_env("HISTORY_RETENTION_DAYS", 7)

    # Package registry used for "latest version" lookups
    npm_registry_url: str = os.environ.get("NPM_REGISTRY_URL", "https://registry.npmjs.org")

    def __post_init__(self):
        """Initialize derived paths and create directories."""
        self.db_path = self.data_dir / "history.db"
        self.supervisor_log = self.data_dir / "expo-supervisor.log"

        if self.log_trim_size > self.max_log_buffer_size:
            raise ValueError(
                f"LOG_TRIM_SIZE ({self.log_trim_size}) must not exceed "
                f"MAX_LOG_BUFFER_SIZE ({self.max_log_buffer_size})"
            )

        self.data_dir.mkdir(parents=True, exist_ok=True)


config = Config()
