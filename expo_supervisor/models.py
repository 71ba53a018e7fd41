"""
Database models for expo-supervisor.

Uses Peewee ORM with SQLite. Stores the history of one-shot CLI executions
(builds, publishes, installs). Session state is in-memory only and never
written here.
"""

import json
import os
from datetime import datetime, timedelta
from typing import Optional

from peewee import (
    AutoField,
    BooleanField,
    DatabaseProxy,
    DateTimeField,
    FloatField,
    IntegerField,
    Model,
    SqliteDatabase,
    TextField,
)

from .config import config

database = DatabaseProxy()

# Per-stream cap on stored output
MAX_OUTPUT_CHARS = 10000


def initialize_db(path: Optional[str] = None):
    """Initialize database connection and create tables."""
    db_path = str(path or config.db_path)
    os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
    db = SqliteDatabase(
        db_path,
        pragmas={
            "journal_mode": "wal",
            "cache_size": -64 * 1000,
            "busy_timeout": 5000,
        },
        check_same_thread=False,
    )
    database.initialize(db)
    database.create_tables([ExecutionRecord], safe=True)


class BaseModel(Model):
    """Base model with common configuration."""

    class Meta:
        database = database


class ExecutionRecord(BaseModel):
    """Record of a one-shot command execution."""

    id = AutoField()
    command = TextField()  # JSON list of tokens
    working_dir = TextField(null=True)
    success = BooleanField(default=False)
    exit_code = IntegerField(null=True)
    error = TextField(null=True)
    error_code = TextField(null=True)
    stdout = TextField(null=True)
    stderr = TextField(null=True)
    duration_seconds = FloatField(null=True)
    started_at = DateTimeField(default=datetime.now, index=True)

    class Meta:
        table_name = "executions"

    def get_command(self) -> list[str]:
        try:
            return json.loads(self.command)
        except (json.JSONDecodeError, TypeError):
            return []

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "command": self.get_command(),
            "working_dir": self.working_dir,
            "success": self.success,
            "exit_code": self.exit_code,
            "error": self.error,
            "code": self.error_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "duration_seconds": self.duration_seconds,
            "started_at": self.started_at.isoformat() if self.started_at else None,
        }


def _truncate(text: Optional[str]) -> Optional[str]:
    if text is None:
        return None
    return text[-MAX_OUTPUT_CHARS:] if len(text) > MAX_OUTPUT_CHARS else text


def record_execution(command: list[str], options, result) -> ExecutionRecord:
    """Persist a finished execution. Installed as the executor's completion callback."""
    return ExecutionRecord.create(
        command=json.dumps(command),
        working_dir=options.working_dir if options else None,
        success=result.success,
        exit_code=result.exit_code,
        error=result.error,
        error_code=result.code.value if result.code else None,
        stdout=_truncate(result.stdout),
        stderr=_truncate(result.stderr),
        duration_seconds=result.duration,
        started_at=datetime.now() - timedelta(seconds=result.duration),
    )


def list_executions(limit: int = 50, offset: int = 0, failed_only: bool = False) -> list[ExecutionRecord]:
    query = ExecutionRecord.select()
    if failed_only:
        query = query.where(ExecutionRecord.success == False)  # noqa: E712
    return list(
        query.order_by(ExecutionRecord.started_at.desc(), ExecutionRecord.id.desc())
        .offset(offset)
        .limit(limit)
    )


def prune_executions(days: Optional[int] = None) -> int:
    """Delete records older than the retention period. Returns the number deleted."""
    days = config.history_retention_days if days is None else days
    cutoff = datetime.now() - timedelta(days=days)
    return ExecutionRecord.delete().where(ExecutionRecord.started_at < cutoff).execute()
