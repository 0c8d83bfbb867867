"""Tests for the dashboard REST API."""

import asyncio
from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from services.dashboard.app import create_app
from src.config.models import AppConfig, CircuitBreakerConfig, MonitoringConfig
from src.models.events import EventSeverity, EventStatus
from src.services.container import build_services
from tests.conftest import InMemoryDatastore, InMemoryFeed, make_event


async def _fail():
    raise RuntimeError("cycle failed")


class TestDashboardAPI:
    """Tests for the REST endpoints against in-memory stores."""

    def setup_method(self):
        self.datastore = InMemoryDatastore()
        self.services = build_services(AppConfig(), self.datastore)
        now = datetime.now(timezone.utc)
        for minutes, severity in ((3, EventSeverity.CRITICAL), (2, EventSeverity.HIGH), (1, EventSeverity.MEDIUM)):
            asyncio.run(
                self.datastore.insert_event(
                    make_event(severity=severity, detection_timestamp=now - timedelta(minutes=minutes))
                )
            )
        self.client = TestClient(create_app(self.services))

    def test_list_events(self):
        response = self.client.get("/api/events", params={"per_page": 2})

        assert response.status_code == 200
        data = response.json()
        assert data["pagination"]["total"] == 3
        assert data["pagination"]["has_next"]
        assert data["total_critical"] == 1
        assert data["total_open"] == 3
        assert [e["event_id"] for e in data["events"]] == [3, 2]
        assert data["events"][0]["event_data"]["kind"] == "transaction_failure"

    def test_list_events_with_csv_filters(self):
        response = self.client.get("/api/events", params={"severity": "critical,high"})

        assert response.status_code == 200
        data = response.json()
        assert data["pagination"]["total"] == 2
        assert data["filters_applied"]["severity"] == ["CRITICAL", "HIGH"]

    def test_invalid_filter_values(self):
        assert self.client.get("/api/events", params={"severity": "urgent"}).status_code == 422
        assert self.client.get("/api/events", params={"sort_by": "amount"}).status_code == 422
        assert self.client.get("/api/events", params={"per_page": 0}).status_code == 422

    def test_inverted_date_range(self):
        response = self.client.get(
            "/api/events",
            params={
                "start_date": "2025-06-14T12:00:00+00:00",
                "end_date": "2025-06-14T11:00:00+00:00",
            },
        )

        assert response.status_code == 422

    def test_update_event(self):
        response = self.client.patch(
            "/api/events/1",
            json={"status": "RESOLVED", "resolution_notes": "Card reissued"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "RESOLVED"
        assert data["resolution_notes"] == "Card reissued"
        assert data["resolved_at"] is not None

        open_events = self.client.get("/api/events", params={"status": "OPEN"}).json()
        assert open_events["pagination"]["total"] == 2

    def test_update_unknown_event(self):
        response = self.client.patch("/api/events/999", json={"status": "RESOLVED"})

        assert response.status_code == 404
        assert response.json()["detail"] == "Monitoring event 999 not found"

    def test_update_rejects_unknown_status(self):
        response = self.client.patch("/api/events/1", json={"status": "DONE"})

        assert response.status_code == 422

    def test_health(self):
        response = self.client.get("/api/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "UNKNOWN"
        assert data["components"]["database"]["status"] == "UP"
        assert len(data["recent_alerts"]) == 1

    def test_detailed_health_without_feed(self):
        response = self.client.get("/api/health/detailed")

        assert response.status_code == 200
        data = response.json()
        assert data["healthy"]
        assert data["datastore_connected"]
        assert not data["event_feed_connected"]
        assert data["event_feed_ping_ms"] is None

    def test_metrics(self):
        end = datetime.now(timezone.utc)
        response = self.client.get(
            "/api/metrics",
            params={"start": (end - timedelta(hours=2)).isoformat(), "end": end.isoformat()},
        )

        assert response.status_code == 200
        financial = response.json()["financial_metrics"]
        assert financial["balance_discrepancies_detected"] == 0
        assert financial["failed_transaction_count"] == 0

    def test_metrics_range_limits(self):
        end = datetime.now(timezone.utc)

        too_long = self.client.get(
            "/api/metrics",
            params={"start": (end - timedelta(days=8)).isoformat(), "end": end.isoformat()},
        )
        inverted = self.client.get(
            "/api/metrics",
            params={"start": end.isoformat(), "end": (end - timedelta(hours=1)).isoformat()},
        )

        assert too_long.status_code == 422
        assert inverted.status_code == 422

    def test_dashboard(self):
        response = self.client.get("/api/dashboard")

        assert response.status_code == 200
        data = response.json()
        assert len(data["charts"]["transaction_volume_24h"]["labels"]) == 24
        assert data["real_time"]["open_monitoring_events"] == 3
        assert data["system_status"]["circuit_breakers"] == {"monitoring-detection": "CLOSED"}

    def test_status_and_manual_cycle(self):
        before = self.client.get("/api/status").json()
        assert not before["is_running"]
        assert before["cycles_completed"] == 0
        assert before["circuit_breaker"]["state"] == "CLOSED"

        response = self.client.post("/api/detection/run")

        assert response.status_code == 200
        result = response.json()
        assert result["success"]
        assert result["health_snapshot_id"] == 1
        assert self.client.get("/api/status").json()["cycles_completed"] == 1

    def test_datastore_failure_returns_503(self):
        self.datastore.available = False

        response = self.client.get("/api/events")

        assert response.status_code == 503
        assert "unavailable" in response.json()["detail"]


class TestDetectionRejected:
    """Tests for manual cycles refused by the breaker."""

    def test_open_breaker_returns_503(self):
        config = AppConfig(
            monitoring=MonitoringConfig(circuit_breaker=CircuitBreakerConfig(failure_threshold=1))
        )
        services = build_services(config, InMemoryDatastore(), InMemoryFeed())

        async def _trip():
            try:
                await services.breaker.call(_fail)
            except RuntimeError:
                pass

        asyncio.run(_trip())
        client = TestClient(create_app(services))

        response = client.post("/api/detection/run")

        assert response.status_code == 503
        assert response.json()["circuit_breaker_state"] == "OPEN"
        assert client.get("/api/status").json()["cycles_rejected"] == 1


class TestServicesNotInitialized:
    """Tests for requests before the services are wired."""

    def test_returns_503(self):
        client = TestClient(create_app())

        response = client.get("/api/health")

        assert response.status_code == 503
        assert response.json()["detail"] == "Monitoring services not initialized"
