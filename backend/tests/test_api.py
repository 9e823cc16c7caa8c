"""
Tests for the HTTP surface: status, health, manual runs.
"""
import pytest
from unittest.mock import MagicMock

from fastapi.testclient import TestClient


@pytest.fixture
def fake_checker():
    checker = MagicMock()
    checker.last_run_time = None
    checker.last_status = None
    checker.is_running = False
    return checker


@pytest.fixture
def client(fake_checker):
    from api.main import app
    from api.services.checker import get_checker

    app.dependency_overrides[get_checker] = lambda: fake_checker
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestRootAndHealth:
    """GET / and GET /health."""

    def test_root_before_first_run(self, client):
        response = client.get("/")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "running"
        assert body["service"] == "Fabric Stock Checker"
        assert body["lastRun"] == "Not yet run"

    def test_root_after_run(self, client, fake_checker):
        fake_checker.last_run_time = "2026-10-19T01:12:44"
        fake_checker.last_status = "SUCCESS"

        body = client.get("/").json()

        assert body["lastRun"] == "2026-10-19T01:12:44"
        assert body["lastStatus"] == "SUCCESS"

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert "timestamp" in body


class TestRunNow:
    """GET /run-now."""

    def test_success(self, client, fake_checker):
        from fabric_checker import StatsTracker

        stats = StatsTracker()
        stats.total_processed = 12
        fake_checker.check_fabric_stock.return_value = stats

        response = client.get("/run-now")

        assert response.status_code == 200
        assert response.json() == {
            "status": "success",
            "message": "Stock check completed",
            "overallStatus": "SUCCESS",
            "totalProcessed": 12,
        }
        fake_checker.check_fabric_stock.assert_called_once_with()

    def test_run_in_progress(self, client, fake_checker):
        from fabric_checker import RunInProgressError

        fake_checker.check_fabric_stock.side_effect = RunInProgressError("A fabric stock check is already running")

        response = client.get("/run-now")

        assert response.status_code == 409
        assert "already running" in response.json()["detail"]

    def test_failure(self, client, fake_checker):
        fake_checker.check_fabric_stock.side_effect = RuntimeError("GOOGLE_SPREADSHEET_ID not found")

        response = client.get("/run-now")

        assert response.status_code == 500
        assert response.json() == {"status": "error", "message": "GOOGLE_SPREADSHEET_ID not found"}


class TestInfoEndpoints:
    """GET /api/status and GET /api/suppliers."""

    def test_status(self, client, fake_checker):
        fake_checker.is_running = True

        body = client.get("/api/status").json()

        assert body["is_running"] is True
        assert body["last_run"] is None

    def test_suppliers(self, client):
        body = client.get("/api/suppliers").json()

        by_key = {s["key"]: s for s in body}
        assert set(by_key) == {"unique", "alendel"}
        assert by_key["unique"]["search_method"] == "navigation"
        assert by_key["alendel"]["sheet_names"] == ["alendel"]
