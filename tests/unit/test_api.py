"""API tests against a runtime wired with fakes (no Google calls, no real observer)."""

import asyncio
import json

import pytest
from conftest import FakeClient, FakeMailProvider, RecordingScheduler
from cryptography.fernet import Fernet
from fastapi.testclient import TestClient

from triageq.api.app import create_app
from triageq.gmail.auth import GoogleAuthSession
from triageq.runtime import AutomationRuntime
from triageq.storage.watcher_state import WatcherStateRepository

CLASSIFICATION = json.dumps(
    {
        "task_type": "simple_query",
        "requires_vision": False,
        "requires_multi_tool": False,
        "estimated_steps": 1,
        "complexity": 0.1,
        "reasoning": "Single lookup",
    }
)


@pytest.fixture
def runtime(tmp_path):
    rt = AutomationRuntime(
        tmp_path / "data",
        client=FakeClient(CLASSIFICATION),
        mail_provider=FakeMailProvider(),
        state_store=WatcherStateRepository(
            tmp_path / "state.db", encryption_key=Fernet.generate_key()
        ),
    )
    rt.google_auth = GoogleAuthSession(token_path=tmp_path / "token.json")
    rt.mail_watchers.scheduler = RecordingScheduler()
    return rt


@pytest.fixture
def api(runtime):
    with TestClient(create_app(runtime)) as client:
        yield client


class TestHealth:
    def test_root_lists_endpoints(self, api):
        data = api.get("/").json()
        assert data["status"] == "running"
        assert data["endpoints"]["pending"] == "/api/pending"

    def test_health_reports_component_state(self, api):
        response = api.get("/api/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["google_signed_in"] is False
        assert data["folder_watcher"] == "stopped"
        assert data["mail_watchers"] == 0
        assert data["pending_actions"] == 0

    def test_stats_exposes_counters(self, api):
        api.post("/api/agent/classify", json={"message": "what is in this folder?"})

        data = api.get("/api/health/stats").json()

        assert "counters" in data
        assert data["router_classify_p95_seconds"] >= 0


class TestValidation:
    def test_missing_field_uses_sanitized_format(self, api):
        response = api.post("/api/mail-watchers", json={"interval_seconds": 60})

        assert response.status_code == 422
        data = response.json()
        assert data["detail"].startswith("Invalid request format")
        assert "name" in data["invalid_fields"]
        assert data["error_count"] >= 1


class TestMailWatcherRoutes:
    def test_create_list_and_pause(self, api, runtime):
        created = api.post("/api/mail-watchers", json={"id": "w1", "name": "Receipts"})
        assert created.status_code == 200
        assert created.json() == {"success": True, "watcher_id": "w1"}

        watchers = api.get("/api/mail-watchers").json()
        assert [w["config"]["name"] for w in watchers] == ["Receipts"]
        assert runtime.mail_watchers.scheduler.is_armed("w1")

        paused = api.post("/api/mail-watchers/w1/pause")
        assert paused.status_code == 200
        assert api.get("/api/health").json()["mail_watchers"] == 1

    def test_unknown_watcher_is_404(self, api):
        assert api.get("/api/mail-watchers/missing").status_code == 404
        stopped = api.post("/api/mail-watchers/missing/stop")
        assert stopped.status_code == 404
        assert stopped.json()["error"] == "Watcher not found"
        assert api.get("/api/mail-watchers/missing/matches").status_code == 404

    def test_sixth_watcher_is_rejected(self, api):
        for idx in range(5):
            body = {"id": f"w{idx}", "name": f"Watcher {idx}", "is_active": False}
            assert api.post("/api/mail-watchers", json=body).status_code == 200

        response = api.post("/api/mail-watchers", json={"id": "w5", "name": "One too many"})

        assert response.status_code == 409
        assert "Maximum of 5" in response.json()["error"]


class TestPendingRoutes:
    def test_empty_queue(self, api):
        data = api.get("/api/pending").json()
        assert data["count"] == 0
        assert data["actions"] == []

    def test_unknown_action_is_404(self, api):
        response = api.post("/api/pending/action_missing/execute")

        assert response.status_code == 404
        assert response.json()["success"] is False
        assert api.delete("/api/pending/action_missing").status_code == 404

    def test_execute_then_restore(self, api, runtime, tmp_path):
        target = tmp_path / "old.log"
        target.write_text("stale")
        action = asyncio.run(runtime.pending.queue_deletion(target, reason="cleanup"))

        listed = api.get("/api/pending").json()
        assert listed["count"] == 1
        assert listed["actions"][0]["reason"] == "cleanup"

        executed = api.post(f"/api/pending/{action.id}/execute")
        assert executed.status_code == 200
        assert not target.exists()

        trash = api.get("/api/pending/trash").json()
        assert len(trash) == 1

        restored = api.post("/api/pending/trash/restore", json={"trash_path": trash[0]["trash_path"]})
        assert restored.status_code == 200
        assert target.read_text() == "stale"

    def test_restore_unknown_path(self, api, tmp_path):
        response = api.post("/api/pending/trash/restore", json={"trash_path": str(tmp_path / "x")})
        assert response.status_code == 404


class TestFolderWatcherRoutes:
    def test_start_on_missing_folder_is_refused(self, api, tmp_path):
        response = api.post(
            "/api/folder-watcher/start", json={"folder_path": str(tmp_path / "nope"), "rules": []}
        )

        assert response.status_code == 409
        assert response.json()["error"].startswith("Folder does not exist")

    def test_status_and_log_without_config(self, api):
        assert api.get("/api/folder-watcher/status").json()["state"] == "stopped"
        assert api.get("/api/folder-watcher/log/stats").status_code == 404
        assert api.post("/api/folder-watcher/stop").status_code == 409


class TestAgentAndEvents:
    def test_classify_routes_to_minimal(self, api):
        response = api.post("/api/agent/classify", json={"message": "list my files"})

        assert response.status_code == 200
        assert response.json()["recommended_tier"] == "flash-minimal"

    def test_metrics_reset(self, api):
        data = api.post("/api/agent/metrics/reset").json()
        assert data["tasks_completed"] == 0

    def test_events_feed_filters_by_channel(self, api):
        api.post("/api/mail-watchers", json={"id": "w1", "name": "Receipts", "is_active": False})

        data = api.get("/api/events", params={"channel": "email:"}).json()

        assert [e["channel"] for e in data["events"]] == ["email:watcher-started"]
        assert data["last_seq"] >= 1
