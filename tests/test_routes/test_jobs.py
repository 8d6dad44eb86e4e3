"""Tests for the job dashboard, manual trigger and queue routes."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.models import JobState, JobStatus
from app.services.job_runner import TriggerResult


@pytest.fixture
def runtime():
    mock_runtime = MagicMock()
    mock_runtime.status_store.list_all = AsyncMock(
        return_value=[
            JobStatus(
                task_name="content_sync",
                status=JobState.SUCCESS,
                last_run_at=datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc),
                next_run_at=datetime(2026, 1, 1, 12, 15, tzinfo=timezone.utc),
                message="Synced 3 new items",
                run_count=4,
            ),
            JobStatus(
                task_name="missing_data_repair",
                status=JobState.IDLE,
                message="Task initialized",
                run_count=0,
            ),
        ]
    )
    mock_runtime.runner.is_running = MagicMock(side_effect=lambda name: name == "content_sync")
    mock_runtime.runner.trigger_now = AsyncMock(return_value=TriggerResult.ACCEPTED)
    mock_runtime.queue.snapshot = MagicMock(
        return_value={
            "queue_length": 1,
            "active_count": 2,
            "concurrency_limit": 2,
            "queued_ids": [7],
        }
    )
    app.state.runtime = mock_runtime
    yield mock_runtime
    app.state.runtime = None


@pytest.fixture
def client():
    return TestClient(app)


class TestListJobs:
    def test_lists_persisted_status_with_live_lock(self, client, runtime):
        response = client.get("/api/v1/jobs")

        assert response.status_code == 200
        jobs = {job["task_name"]: job for job in response.json()}
        assert jobs["content_sync"]["status"] == "success"
        assert jobs["content_sync"]["run_count"] == 4
        assert jobs["content_sync"]["is_running"] is True
        assert jobs["missing_data_repair"]["status"] == "idle"
        assert jobs["missing_data_repair"]["is_running"] is False

    def test_returns_503_without_runtime(self, client):
        app.state.runtime = None

        response = client.get("/api/v1/jobs")

        assert response.status_code == 503


class TestTriggerJob:
    def test_accepted(self, client, runtime):
        response = client.post("/api/v1/jobs/content_sync/trigger")

        assert response.status_code == 202
        assert response.json() == {"task_name": "content_sync", "result": "accepted"}
        runtime.runner.trigger_now.assert_awaited_once_with("content_sync")

    def test_busy_returns_409(self, client, runtime):
        runtime.runner.trigger_now.return_value = TriggerResult.BUSY

        response = client.post("/api/v1/jobs/content_sync/trigger")

        assert response.status_code == 409
        assert "already running" in response.json()["detail"]

    def test_unknown_job_returns_404(self, client, runtime):
        runtime.runner.trigger_now.side_effect = KeyError("nope")

        response = client.post("/api/v1/jobs/nope/trigger")

        assert response.status_code == 404


class TestQueueSnapshot:
    def test_snapshot(self, client, runtime):
        response = client.get("/api/v1/queue")

        assert response.status_code == 200
        assert response.json() == {
            "queue_length": 1,
            "active_count": 2,
            "concurrency_limit": 2,
            "queued_ids": [7],
        }


def test_health_reports_scheduler_state(client, runtime):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["scheduler"] == "running"
