# tests/test_api.py
"""
Test suite for the admin API

Tests:
1. Submission, lookup, listing and cancellation over HTTP
2. API key enforcement on mutating endpoints
3. Collaborator outages map to 503
4. Correlation id header round-trip
5. Manual reconciliation re-enqueues ready tasks
"""

from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from conftest import future_submission
from delayqueue.api import create_app
from delayqueue.auth import generate_api_key, is_auth_enabled
from delayqueue.config import get_settings
from delayqueue.errors import QueueUnavailableError, StoreUnavailableError


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def client(dispatcher, monkeypatch):
    """Client with authentication disabled"""
    monkeypatch.setattr(get_settings(), "API_KEY", None)
    return TestClient(create_app(dispatcher))


@pytest.fixture
def secured_client(dispatcher, monkeypatch):
    monkeypatch.setattr(get_settings(), "API_KEY", "secret-key")
    return TestClient(create_app(dispatcher))


def submission_body(**overrides):
    body = {
        "task_name": "reminder",
        "task_service": "echo",
        "params": {"user": 7},
        "run_at": (datetime.utcnow() + timedelta(hours=1)).isoformat(),
        "timeout": 10,
    }
    body.update(overrides)
    return body


# =============================================================================
# Test: Task Endpoints
# =============================================================================

class TestTaskEndpoints:
    """Tests for submission and inspection"""

    def test_submit_task(self, client, queue):
        """Submitting persists the record and schedules it"""
        response = client.post("/tasks", json=submission_body())

        assert response.status_code == 201
        data = response.json()
        assert data["state"] == "ready"
        assert queue.score(data["task_id"]) is not None

    def test_submit_with_own_id(self, client):
        response = client.post("/tasks", json=submission_body(task_id="invoice-9"))

        assert response.status_code == 201
        assert response.json()["task_id"] == "invoice-9"

    def test_submit_rejects_unknown_fields(self, client):
        response = client.post("/tasks", json=submission_body(priority=5))

        assert response.status_code == 422

    def test_submit_rejects_blank_service(self, client):
        response = client.post("/tasks", json=submission_body(task_service="   "))

        assert response.status_code == 422

    def test_submit_batch(self, client, queue):
        response = client.post("/tasks/batch", json=[submission_body(), submission_body()])

        assert response.status_code == 201
        assert len(response.json()) == 2
        assert queue.size() == 2

    def test_get_task(self, client):
        task_id = client.post("/tasks", json=submission_body()).json()["task_id"]

        response = client.get(f"/tasks/{task_id}")

        assert response.status_code == 200
        data = response.json()
        assert data["task_service"] == "echo"
        assert data["params"] == {"user": 7}
        assert data["timeout"] == 10
        assert data["result"] is None

    def test_get_missing_task(self, client):
        response = client.get("/tasks/nope")

        assert response.status_code == 404

    def test_list_tasks_by_state(self, client, dispatcher):
        kept = dispatcher.submit(future_submission())
        dropped = dispatcher.submit(future_submission())
        dispatcher.cancel("test", dropped.task_id)

        ready = client.get("/tasks", params={"state": "ready"}).json()
        cancelled = client.get("/tasks", params={"state": "cancelled"}).json()

        assert [t["task_id"] for t in ready] == [kept.task_id]
        assert [t["task_id"] for t in cancelled] == [dropped.task_id]
        assert cancelled[0]["result"] == "test"

    def test_list_rejects_bad_limit(self, client):
        assert client.get("/tasks", params={"limit": 0}).status_code == 422

    def test_cancel(self, client, dispatcher, queue):
        task = dispatcher.submit(future_submission())

        response = client.post("/tasks/cancel", json={"reason": "user request", "task_ids": [task.task_id, "x"]})

        assert response.status_code == 200
        assert response.json() == {"requested": 2, "cancelled": 1}
        assert queue.score(task.task_id) is None

    def test_cancel_requires_ids(self, client):
        response = client.post("/tasks/cancel", json={"reason": "r", "task_ids": []})

        assert response.status_code == 422


# =============================================================================
# Test: Admin and Health
# =============================================================================

class TestAdminEndpoints:
    """Tests for health and reconciliation"""

    def test_health(self, client, dispatcher):
        dispatcher.submit(future_submission())

        data = client.get("/health").json()

        assert data["status"] == "healthy"
        assert data["queue_size"] == 1
        assert data["state_counts"]["ready"] == 1
        assert data["dispatcher"]["circuit_breaker"]["state"] == "closed"

    def test_health_reports_queue_outage(self, client, dispatcher, monkeypatch):
        monkeypatch.setattr(dispatcher.queue, "size", MagicMock(side_effect=QueueUnavailableError("size")))

        data = client.get("/health").json()

        assert data["status"] == "unhealthy"
        assert data["queue_healthy"] is False
        assert data["store_healthy"] is True

    def test_health_degraded_when_breaker_open(self, client, dispatcher):
        dispatcher.breaker.force_open()

        assert client.get("/health").json()["status"] == "degraded"

    def test_reconcile(self, client, dispatcher, queue):
        """Ready tasks lost from the queue are put back"""
        dispatcher.submit([future_submission(), future_submission()])
        queue.clear()

        response = client.post("/admin/reconcile")

        assert response.status_code == 200
        assert response.json()["enqueued"] == 2
        assert queue.size() == 2

    def test_store_outage_is_503(self, client, dispatcher, monkeypatch):
        monkeypatch.setattr(dispatcher.store, "find", MagicMock(side_effect=StoreUnavailableError("find")))

        response = client.get("/tasks/anything")

        assert response.status_code == 503
        assert "task store" in response.json()["detail"]

    def test_correlation_id_echoed(self, client):
        response = client.get("/health", headers={"X-Correlation-ID": "corr-test-1"})

        assert response.headers["X-Correlation-ID"] == "corr-test-1"

    def test_correlation_id_generated(self, client):
        response = client.get("/health")

        assert response.headers["X-Correlation-ID"].startswith("corr-")


# =============================================================================
# Test: Authentication
# =============================================================================

class TestAuthentication:
    """Tests for X-API-Key enforcement"""

    def test_missing_key_401(self, secured_client):
        response = secured_client.post("/tasks", json=submission_body())

        assert response.status_code == 401

    def test_invalid_key_403(self, secured_client):
        response = secured_client.post("/tasks", json=submission_body(), headers={"X-API-Key": "wrong"})

        assert response.status_code == 403

    def test_valid_key(self, secured_client):
        response = secured_client.post("/tasks", json=submission_body(), headers={"X-API-Key": "secret-key"})

        assert response.status_code == 201

    def test_reads_stay_open(self, secured_client):
        """Inspection endpoints do not require a key"""
        assert secured_client.get("/health").status_code == 200
        assert secured_client.get("/tasks").status_code == 200

    def test_reconcile_requires_key(self, secured_client):
        assert secured_client.post("/admin/reconcile").status_code == 401

    def test_auth_enabled_flag(self, monkeypatch):
        monkeypatch.setattr(get_settings(), "API_KEY", None)
        assert not is_auth_enabled()
        monkeypatch.setattr(get_settings(), "API_KEY", "k")
        assert is_auth_enabled()

    def test_generate_api_key(self):
        assert generate_api_key() != generate_api_key()
        assert len(generate_api_key(16)) >= 16
