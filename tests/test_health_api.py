"""
Tests for the Health API

Run with: pytest tests/test_health_api.py -v
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock

from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).parent.parent))

from tank_monitor.errors import PersistenceError, SourceUnavailable
from tank_monitor.health_api import create_health_app
from tank_monitor.models.tank_models import DerivedMetrics, SiteListing, TankStatus
from tank_monitor.repositories.retention_store import RetentionStore

NOW = datetime(2025, 7, 15, 17, 5, tzinfo=timezone.utc)


class TestHealthEndpoint:
    def test_healthy(self, health_client, orchestrator, mock_client, sample_site_snapshot):
        mock_client.fetch_all_sites.return_value = SiteListing([sample_site_snapshot])
        orchestrator.run_sync_cycle()

        response = health_client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["sync_count"] == 1
        assert data["success_rate"] == 100.0
        assert data["circuit_breaker"] == "CLOSED"
        assert data["version"] == "1.0.0"
        assert data["last_sync_time"] is not None

    def test_unhealthy_returns_503(self, health_client, orchestrator, mock_client):
        orchestrator.breaker.config.failure_threshold = 100
        mock_client.fetch_all_sites.side_effect = SourceUnavailable("HTTP 500")
        for _ in range(5):
            orchestrator.run_sync_cycle()

        response = health_client.get("/health")

        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "unhealthy"
        assert data["consecutive_failures"] == 5
        assert len(data["recent_errors"]) == 5
        assert data["recent_errors"][0]["context"] == "fetch_all_sites"
        assert data["circuit_breaker_status"]["stats"]["failed_calls"] == 5


class TestTankMetricsEndpoint:
    def test_not_found_until_calculated(self, health_client, retention_store):
        assert health_client.get("/tanks/Mascot/1/metrics").status_code == 404

        retention_store.upsert_derived_metrics(
            "Mascot",
            1,
            DerivedMetrics(
                run_rate=10.0,
                hours_to_critical=500.0,
                status=TankStatus.NORMAL,
                capacity_percentage=9.8,
                predicted_critical_at=NOW + timedelta(hours=500),
                data_quality_score=1.0,
                available_ullage=8020.0,
                qualifying_readings=3,
                calculated_at=NOW,
            ),
        )

        response = health_client.get("/tanks/Mascot/1/metrics")

        assert response.status_code == 200
        data = response.json()
        assert data["run_rate"] == 10.0
        assert data["time_to_critical"] == "20d 20h"
        assert data["status"] == "normal"
        assert data["qualifying_readings"] == 3

    def test_undefined_hours_to_critical(self, health_client, retention_store):
        retention_store.upsert_derived_metrics(
            "Speedi Mart",
            2,
            DerivedMetrics(
                run_rate=0.0,
                hours_to_critical=None,
                status=TankStatus.CRITICAL,
                capacity_percentage=4.0,
                predicted_critical_at=None,
                data_quality_score=0.5,
                calculated_at=NOW,
            ),
        )

        data = health_client.get("/tanks/Speedi Mart/2/metrics").json()

        assert data["hours_to_critical"] is None
        assert data["time_to_critical"] == "N/A"
        assert data["status"] == "critical"

    def test_store_failure_returns_503(self, orchestrator):
        store = MagicMock(spec=RetentionStore)
        store.latest_metrics.side_effect = PersistenceError("connection lost")
        client = TestClient(create_health_app(orchestrator, store))

        response = client.get("/tanks/Mascot/1/metrics")

        assert response.status_code == 503
