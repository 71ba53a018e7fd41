"""
Tests for execution history persistence.
"""

from datetime import datetime, timedelta

from expo_supervisor.errors import ErrorCode
from expo_supervisor.executor import ExecuteOptions, ExecuteResult
from expo_supervisor.models import (
    MAX_OUTPUT_CHARS,
    ExecutionRecord,
    list_executions,
    prune_executions,
    record_execution,
)


def _result(success=True, **kwargs):
    defaults = {"stdout": "ok", "stderr": "", "exit_code": 0 if success else 1, "duration": 1.5}
    defaults.update(kwargs)
    return ExecuteResult(success=success, **defaults)


class TestRecordExecution:
    def test_creates_record(self, temp_db):
        record = record_execution(
            ["npx", "expo", "doctor"], ExecuteOptions(working_dir="/app"), _result()
        )

        data = ExecutionRecord.get_by_id(record.id).to_dict()
        assert data["command"] == ["npx", "expo", "doctor"]
        assert data["working_dir"] == "/app"
        assert data["success"] is True
        assert data["exit_code"] == 0
        assert data["duration_seconds"] == 1.5
        assert data["code"] is None

    def test_records_error_code(self, temp_db):
        result = _result(
            success=False, exit_code=None, error="Command timed out after 1s",
            code=ErrorCode.COMMAND_TIMEOUT,
        )
        record = record_execution(["sleep", "9"], ExecuteOptions(), result)
        assert record.to_dict()["code"] == "command_timeout"

    def test_truncates_output_keeping_tail(self, temp_db):
        long_output = "a" * MAX_OUTPUT_CHARS + "tail"
        record = record_execution(["x"], None, _result(stdout=long_output))

        stored = ExecutionRecord.get_by_id(record.id).stdout
        assert len(stored) == MAX_OUTPUT_CHARS
        assert stored.endswith("tail")


class TestQueries:
    def test_list_newest_first(self, temp_db):
        first = record_execution(["first"], None, _result())
        second = record_execution(["second"], None, _result(success=False))

        records = list_executions()
        assert [r.id for r in records] == [second.id, first.id]

    def test_failed_only(self, temp_db):
        record_execution(["ok"], None, _result())
        failed = record_execution(["bad"], None, _result(success=False))

        assert [r.id for r in list_executions(failed_only=True)] == [failed.id]

    def test_limit_and_offset(self, temp_db):
        for i in range(5):
            record_execution([f"cmd{i}"], None, _result())

        assert len(list_executions(limit=2)) == 2
        assert len(list_executions(limit=10, offset=3)) == 2

    def test_prune_old_records(self, temp_db):
        old = record_execution(["old"], None, _result())
        old.started_at = datetime.now() - timedelta(days=30)
        old.save()
        recent = record_execution(["recent"], None, _result())

        assert prune_executions(days=7) == 1
        assert [r.id for r in list_executions()] == [recent.id]
