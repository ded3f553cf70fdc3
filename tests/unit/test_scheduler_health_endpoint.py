"""Tests for the health check endpoints."""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from src.main import app


def job_status(**overrides) -> dict:
    status = {
        "job_name": "auto_award",
        "last_success": "2024-01-01T00:00:00Z",
        "last_failure": None,
        "last_error": None,
        "consecutive_failures": 0,
        "success_count": 10,
        "failure_count": 0,
        "currently_running": False,
        "current_run_started": None,
    }
    status.update(overrides)
    return status


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


@pytest.mark.unit
def test_health_endpoint_returns_healthy(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


@pytest.mark.unit
def test_scheduler_health_all_jobs_healthy(client: TestClient) -> None:
    with patch("src.main.job_tracker") as mock_tracker:
        mock_tracker.get_job_status = AsyncMock(return_value=job_status())
        mock_tracker.get_dead_letter_queue = lambda: []

        response = client.get("/health/scheduler")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert "auto_award" in data["jobs"]
    assert data["dead_letter_queue_size"] == 0


@pytest.mark.unit
def test_scheduler_health_degraded_with_failures(client: TestClient) -> None:
    with patch("src.main.job_tracker") as mock_tracker:
        mock_tracker.get_job_status = AsyncMock(
            return_value=job_status(consecutive_failures=1, last_error="database is locked")
        )
        mock_tracker.get_dead_letter_queue = lambda: []

        response = client.get("/health/scheduler")

    assert response.status_code == 503
    assert response.json()["status"] == "degraded"


@pytest.mark.unit
def test_scheduler_health_critical_with_dead_letters(client: TestClient) -> None:
    with patch("src.main.job_tracker") as mock_tracker:
        mock_tracker.get_job_status = AsyncMock(return_value=job_status(consecutive_failures=3))
        mock_tracker.get_dead_letter_queue = lambda: [
            {"job_name": "auto_award", "error": "boom", "context": "Failed 3 consecutive times"}
        ]

        response = client.get("/health/scheduler")

    assert response.status_code == 503
    data = response.json()
    assert data["status"] == "critical"
    assert data["dead_letter_queue_size"] == 1
