"""Shared pytest fixtures and configuration."""

import os
import tempfile
import time

# Keep the database and supervisor log out of the user's home directory.
# Must run before expo_supervisor.config is imported.
os.environ.setdefault("EXPO_SUPERVISOR_HOME", tempfile.mkdtemp(prefix="expo-supervisor-test-"))

import pytest  # noqa: E402

from expo_supervisor.models import ExecutionRecord, database, initialize_db  # noqa: E402
from expo_supervisor.sessions import SessionManager  # noqa: E402


def wait_for(predicate, timeout=5.0, interval=0.05):
    """Poll until predicate() is truthy or the timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())


@pytest.fixture
def sessions():
    """A session manager with shortened delays, torn down after the test."""
    manager = SessionManager(
        max_log_buffer=1000,
        log_trim_size=800,
        start_grace=0.2,
        kill_delay=0.5,
        cleanup_delay=0.6,
    )
    yield manager
    manager.shutdown(timeout=2)


@pytest.fixture
def temp_db(tmp_path):
    """Fresh execution-history database."""
    initialize_db(tmp_path / "history.db")
    yield database
    database.drop_tables([ExecutionRecord])
    database.close()


@pytest.fixture
def make_script(tmp_path):
    """
    Write a shell script and return its path.

    Commands are sanitized before spawning, so anything using shell syntax
    has to live in a file rather than in an `sh -c` argument.
    """

    def _make(body, name="script.sh"):
        path = tmp_path / name
        path.write_text(body)
        return str(path)

    return _make
