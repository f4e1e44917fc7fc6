"""
Unit tests for analytics API endpoints.
"""
import time
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from prompt_analytics.config import AnalyticsServiceConfig
from prompt_analytics.main import AnalyticsRuntime, create_app

from conftest import BASE_TIME, RecordingSleep, metric_payload

START = (BASE_TIME - timedelta(days=1)).isoformat()
END = (BASE_TIME + timedelta(days=40)).isoformat()


@pytest.fixture
def runtime():
    return AnalyticsRuntime(AnalyticsServiceConfig(), sleep=RecordingSleep())


@pytest.fixture
def client(runtime):
    """Create test client with the runtime started by the lifespan."""
    with TestClient(create_app(runtime)) as test_client:
        yield test_client


def report_body(**config_overrides):
    config = {
        "title": "Weekly usage",
        "description": "Usage for the first week",
        "report_type": "USAGE_SUMMARY",
        "date_range": {"start": START, "end": END},
        "metrics": ["USAGE"],
    }
    config.update(config_overrides)
    return {"workspace_id": "ws-1", "user_id": "user-1", "config": config}


def wait_for_job(client, job_id, attempts=100):
    for _ in range(attempts):
        body = client.get(f"/api/v1/analytics/reports/jobs/{job_id}").json()
        if body["data"]["state"] in ("completed", "failed_terminal"):
            return body["data"]
        time.sleep(0.02)
    raise AssertionError(f"job {job_id} did not finish")


class TestHealthEndpoints:
    """Tests for health and readiness endpoints."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_ready(self, client):
        assert client.get("/ready").json() == {"status": "ready"}

    def test_not_started_returns_503(self, runtime):
        client = TestClient(create_app(runtime))

        response = client.post("/api/v1/analytics/metrics", json=metric_payload())

        assert response.status_code == 503
        assert client.get("/ready").json()["status"] == "not_ready"


class TestMetricsEndpoints:
    """Tests for metric routes."""

    def test_record_metric(self, client):
        response = client.post("/api/v1/analytics/metrics", json=metric_payload(value=12.5))

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["data"]["value"] == 12.5

    def test_invalid_metric_returns_envelope(self, client):
        response = client.post("/api/v1/analytics/metrics", json=metric_payload(metric_type="CLICKS"))

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "VALIDATION_ERROR"

    def test_prompt_metrics(self, client):
        client.post("/api/v1/analytics/metrics", json=metric_payload(value=10))
        client.post("/api/v1/analytics/metrics", json=metric_payload(value=20, metric_type="SUCCESS_RATE"))

        response = client.get(
            "/api/v1/analytics/metrics/prompts/prompt-1",
            params={"start": START, "end": END, "metric_types": ["USAGE"]},
        )

        assert response.status_code == 200
        assert [m["value"] for m in response.json()["data"]] == [10]

    def test_inverted_range(self, client):
        response = client.get(
            "/api/v1/analytics/metrics/prompts/prompt-1", params={"start": END, "end": START},
        )
        assert response.status_code == 400

    def test_workspace_analytics(self, client):
        for value in (10, 20, 30):
            client.post("/api/v1/analytics/metrics", json=metric_payload(value=value))

        response = client.get(
            "/api/v1/analytics/metrics/workspaces/ws-1",
            params={"start": START, "end": END, "interval": "day"},
        )

        data = response.json()["data"]
        assert data["summary"]["metrics"]["USAGE"]["mean"] == 20
        assert len(data["time_series"]) == 1

    def test_roi(self, client):
        client.post("/api/v1/analytics/metrics", json=metric_payload(metric_type="COST_SAVINGS", value=1000))
        client.post("/api/v1/analytics/metrics", json=metric_payload(metric_type="ROI", value=50))

        response = client.get(
            "/api/v1/analytics/metrics/workspaces/ws-1/roi", params={"start": START, "end": END},
        )

        assert response.status_code == 200
        assert response.json()["data"]["figures"]["roi"] == -95.0


class TestReportEndpoints:
    """Tests for report routes."""

    def test_generate_and_fetch_report(self, client):
        client.post("/api/v1/analytics/metrics", json=metric_payload(value=10))

        response = client.post("/api/v1/analytics/reports", json=report_body())
        assert response.status_code == 202
        ticket = response.json()["data"]
        assert ticket["status"] == "queued"

        status = wait_for_job(client, ticket["job_id"])
        assert status["state"] == "completed"

        report = client.get(f"/api/v1/analytics/reports/{status['report_id']}")
        assert report.status_code == 200
        assert report.json()["data"]["title"] == "Weekly usage"

        listing = client.get("/api/v1/analytics/reports/workspaces/ws-1")
        assert listing.json()["data"]["pagination"]["total"] == 1

    def test_invalid_report_config(self, client):
        body = report_body(date_range={"start": END, "end": START})

        response = client.post("/api/v1/analytics/reports", json=body)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_archive_missing_report(self, client):
        response = client.post("/api/v1/analytics/reports/missing/archive", json={"reason": "cleanup"})

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    def test_unknown_job(self, client):
        assert client.get("/api/v1/analytics/reports/jobs/missing").status_code == 404

    def test_list_reports_by_generation_window(self, client):
        ticket = client.post("/api/v1/analytics/reports", json=report_body()).json()["data"]
        assert wait_for_job(client, ticket["job_id"])["state"] == "completed"

        now = datetime.now(timezone.utc)
        url = "/api/v1/analytics/reports/workspaces/ws-1"
        around_now = {"start": (now - timedelta(days=1)).isoformat(), "end": (now + timedelta(days=1)).isoformat()}
        long_ago = {"start": "2000-01-01T00:00:00+00:00", "end": "2000-01-02T00:00:00+00:00"}

        assert client.get(url, params=around_now).json()["data"]["pagination"]["total"] == 1
        assert client.get(url, params=long_ago).json()["data"]["pagination"]["total"] == 0

    def test_list_reports_window_needs_both_bounds(self, client):
        response = client.get(
            "/api/v1/analytics/reports/workspaces/ws-1", params={"start": START},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_page_limit_over_maximum(self, client):
        response = client.get("/api/v1/analytics/reports/workspaces/ws-1", params={"limit": 500})
        assert response.status_code == 400
