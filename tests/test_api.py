"""
Tests for the REST API.
"""

import pytest
from fastapi.testclient import TestClient

from conftest import wait_for
from expo_supervisor import main
from expo_supervisor.main import app, get_monitor, get_sessions
from expo_supervisor.monitor import ResourceMonitor


@pytest.fixture
def client(sessions):
    app.dependency_overrides[get_sessions] = lambda: sessions
    app.dependency_overrides[get_monitor] = lambda: ResourceMonitor(sessions)
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


class TestSessionEndpoints:
    def test_create_and_get(self, client):
        response = client.post("/api/sessions", json={"id": "api-1", "command": ["cat"]})
        assert response.status_code == 200
        assert response.json()["status"] == "starting"

        response = client.get("/api/sessions/api-1")
        assert response.status_code == 200
        assert response.json()["id"] == "api-1"

    def test_duplicate_is_conflict(self, client):
        client.post("/api/sessions", json={"id": "dup", "command": ["cat"]})
        response = client.post("/api/sessions", json={"id": "dup", "command": ["cat"]})
        assert response.status_code == 409
        assert "already exists" in response.json()["detail"]

    def test_spawn_failure_is_server_error(self, client):
        response = client.post(
            "/api/sessions", json={"id": "bad", "command": ["definitely-not-a-real-binary-xyz"]}
        )
        assert response.status_code == 500

        output = client.get("/api/sessions/bad/output").json()
        assert output["status"] == "error"
        assert output["logs"][0]["level"] == "error"

    def test_empty_command_rejected(self, client):
        response = client.post("/api/sessions", json={"id": "empty", "command": []})
        assert response.status_code == 422

    def test_unknown_session(self, client):
        assert client.get("/api/sessions/missing").status_code == 404
        assert client.get("/api/sessions/missing/output").status_code == 404
        assert client.post("/api/sessions/missing/stop").status_code == 404
        assert client.get("/api/sessions/missing/metrics").status_code == 404

    def test_input_flow(self, client, sessions):
        client.post("/api/sessions", json={"id": "io", "command": ["cat"]})

        response = client.post("/api/sessions/io/input", json={"text": "too early"})
        assert response.status_code == 409

        assert wait_for(lambda: sessions.get_status("io").status.value == "running")
        response = client.post("/api/sessions/io/input", json={"text": "hello"})
        assert response.status_code == 200

        def messages():
            logs = client.get("/api/sessions/io/output", params={"tail": 10}).json()["logs"]
            return [entry["message"] for entry in logs]

        assert wait_for(lambda: "hello" in messages())

    def test_tail_must_be_positive(self, client):
        client.post("/api/sessions", json={"id": "t", "command": ["cat"]})
        assert client.get("/api/sessions/t/output", params={"tail": 0}).status_code == 422

    def test_stop_and_list(self, client):
        client.post("/api/sessions", json={"id": "a", "command": ["cat"]})
        client.post("/api/sessions", json={"id": "b", "command": ["cat"]})

        assert client.post("/api/sessions/a/stop").status_code == 200
        listing = {entry["id"]: entry["status"] for entry in client.get("/api/sessions").json()}
        assert listing["a"] == "stopped"
        assert listing["b"] in ("starting", "running")

        response = client.post("/api/sessions/stop-all")
        assert response.json() == {"success": True, "stopped": 2}

    def test_metrics(self, client):
        client.post("/api/sessions", json={"id": "m", "command": ["cat"]})
        metrics = client.get("/api/sessions/m/metrics").json()
        assert metrics["pid"] is not None


class TestExecutionEndpoints:
    def test_execute_and_history(self, client):
        response = client.post("/api/execute", json={"command": ["echo", "hi"]})
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["stdout"] == "hi\n"

        history = client.get("/api/executions", params={"limit": 5}).json()
        assert history[0]["command"] == ["echo", "hi"]

    def test_execute_failure_is_reported_in_body(self, client):
        response = client.post(
            "/api/execute", json={"command": ["sleep", "5"], "timeout": 0.1}
        )
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "command_timeout"
        assert body["exit_code"] is None

        failed = client.get("/api/executions", params={"failed_only": True}).json()
        assert all(not record["success"] for record in failed)

    def test_negative_timeout_rejected(self, client):
        response = client.post("/api/execute", json={"command": ["true"], "timeout": -1})
        assert response.status_code == 422

    def test_cli_versions(self, client, monkeypatch):
        async def fake_versions(executor):
            return {"expo": {"installed": "50.0.0", "latest": "51.0.0", "update_available": True}}

        monkeypatch.setattr(main, "get_cli_versions", fake_versions)
        response = client.get("/api/cli/versions")
        assert response.json()["expo"]["update_available"] is True


class TestExpoEndpoints:
    def test_dev_send_unknown_session(self, client):
        response = client.post("/api/expo/dev/missing/send", json={"command": "reload"})
        assert response.status_code == 404

    def test_dev_send_unknown_command(self, client):
        response = client.post("/api/expo/dev/missing/send", json={"command": "explode"})
        assert response.status_code == 400

    def test_dev_start_invalid_platform(self, client):
        response = client.post("/api/expo/dev/start", json={"platform": "tvos"})
        assert response.status_code == 422

    def test_dev_start_invalid_qr_format(self, client):
        response = client.post("/api/expo/dev/start", json={"qr_format": "jpeg"})
        assert response.status_code == 422

    def test_local_build_read_unknown(self, client):
        assert client.get("/api/expo/build/local/missing").status_code == 404

    def test_submit_requires_build(self, client):
        response = client.post("/api/eas/submit", json={"platform": "ios"})
        assert response.status_code == 400

    def test_install_all_invalid(self, client):
        response = client.post("/api/expo/install", json={"packages": ["bad;rm"]})
        assert response.status_code == 400
        assert "Invalid package name" in response.json()["detail"]

    def test_rollout_range_validated(self, client):
        response = client.post(
            "/api/eas/update", json={"branch": "main", "message": "m", "rollout_percentage": 150}
        )
        assert response.status_code == 422


class TestSupervisorEndpoints:
    def test_logs(self, client):
        body = client.get("/api/supervisor/logs", params={"lines": 5}).json()
        assert len(body["lines"]) <= 5
        assert "total" in body

    def test_status(self, client):
        client.post("/api/sessions", json={"id": "s", "command": ["cat"]})
        body = client.get("/api/status").json()
        assert body["sessions"] == 1
