"""
Tests for the central tank server ingestion client

Run with: pytest tests/test_ingestion_client.py -v
"""

import sys
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import requests

sys.path.insert(0, str(Path(__file__).parent.parent))

from tank_monitor.errors import MalformedRecord, SourceUnavailable
from tank_monitor.services.ingestion_client import IngestionClient, normalize_reading
from tank_monitor.settings import UpstreamSettings


def _response(payload=None, status_code=200, json_error=False):
    response = MagicMock()
    response.status_code = status_code
    if json_error:
        response.json.side_effect = ValueError("No JSON object could be decoded")
    else:
        response.json.return_value = payload
    return response


def _logs(count, start_hour=10):
    return [
        {
            "timestamp": f"2025-07-15T{start_hour + i:02d}:00:00Z",
            "volume": 5000 - 10 * i,
            "tc_volume": 4990 - 10 * i,
            "height": 50 - 0.1 * i,
        }
        for i in range(count)
    ]


@pytest.fixture
def client():
    settings = UpstreamSettings(
        base_url="http://tank-server.test/",
        timeout_seconds=5.0,
        max_retries=2,
        retry_base_delay_seconds=0.0,
    )
    return IngestionClient(settings, sleep=lambda seconds: None)


class TestNormalizeReading:
    """Field defaults and malformed-record detection"""

    def test_defaults_for_missing_fields(self):
        reading = normalize_reading(
            "Mascot", 1, {"timestamp": "2025-07-15T17:00:00Z", "volume": "6100.5"}
        )
        assert reading.volume == 6100.5
        assert reading.tc_volume == 0.0
        assert reading.ullage == 0.0
        assert reading.height == 0.0
        assert reading.water == 0.0
        assert reading.temperature == 70.0
        assert reading.product == "Unknown"

    def test_product_precedence(self):
        raw = {"timestamp": "2025-07-15T17:00:00Z", "product": "FromLog"}
        assert normalize_reading("S", 1, raw, product_hint="FromTank").product == "FromTank"
        assert normalize_reading("S", 1, raw).product == "FromLog"

    def test_naive_timestamp_is_utc(self):
        reading = normalize_reading("S", 1, {"timestamp": "2025-07-15T17:00:00"})
        assert reading.recorded_at == datetime(2025, 7, 15, 17, tzinfo=timezone.utc)

    def test_offset_timestamp_converted_to_utc(self):
        reading = normalize_reading("S", 1, {"timestamp": "2025-07-15T12:00:00-05:00"})
        assert reading.recorded_at == datetime(2025, 7, 15, 17, tzinfo=timezone.utc)
        assert reading.recorded_at.utcoffset().total_seconds() == 0

    def test_missing_timestamp_uses_ingestion_time(self):
        now = datetime(2025, 7, 15, 18, 30, tzinfo=timezone.utc)
        reading = normalize_reading("S", 1, {"volume": 100}, now=now)
        assert reading.recorded_at == now

    @pytest.mark.parametrize(
        "raw",
        [
            {"timestamp": "not a date"},
            {"timestamp": "2025-07-15T17:00:00Z", "volume": "lots"},
            {"timestamp": "2025-07-15T17:00:00Z", "height": float("nan")},
            {"timestamp": "2025-07-15T17:00:00Z", "temp": True},
            ["not", "a", "dict"],
        ],
    )
    def test_malformed(self, raw):
        with pytest.raises(MalformedRecord):
            normalize_reading("S", 1, raw)


class TestFetchAllSites:
    @patch("tank_monitor.services.ingestion_client.requests.get")
    def test_normalizes_sites_and_tanks(self, mock_get, client, sample_sites_payload):
        mock_get.return_value = _response(sample_sites_payload)

        sites = client.fetch_all_sites().sites

        mock_get.assert_called_once_with(
            "http://tank-server.test/stores/full", params=None, timeout=5.0
        )
        assert [s.site_id for s in sites] == ["Mascot", "Speedi Mart"]

        tank = sites[0].tanks[0]
        assert tank.tank_id == 1
        assert tank.tank_name == "Regular"
        assert tank.latest.tc_volume == 6050.2
        assert tank.latest.temperature == 74.1
        assert tank.latest.product == "Regular"
        assert tank.latest.recorded_at == datetime(2025, 7, 15, 17, tzinfo=timezone.utc)

        premium = sites[0].tanks[1]
        assert premium.latest.temperature == 70.0
        assert premium.latest.ullage == 0.0

        # Tank listed without a latest log
        assert sites[1].tanks[0].latest is None
        assert sites[1].tanks[0].product == "Diesel"

    @patch("tank_monitor.services.ingestion_client.requests.get")
    def test_malformed_tanks_are_dropped_and_counted(self, mock_get, client):
        mock_get.return_value = _response(
            [
                {
                    "store_name": "Mascot",
                    "tanks": [
                        {"tank_id": 1, "latest_log": {"volume": 100}},
                        {"product": "Regular"},
                        {"tank_id": "two"},
                        {"tank_id": 3, "latest_log": {"volume": "n/a"}},
                        "garbage",
                    ],
                }
            ]
        )

        listing = client.fetch_all_sites()

        assert len(listing.sites[0].tanks) == 1
        assert listing.sites[0].dropped_records == 4
        assert listing.malformed_records == 4

    @patch("tank_monitor.services.ingestion_client.requests.get")
    def test_malformed_site_is_dropped(self, mock_get, client):
        mock_get.return_value = _response(
            [{"tanks": []}, {"store_name": "X", "tanks": "nope"}, {"store_name": "Ok", "tanks": []}]
        )

        listing = client.fetch_all_sites()

        assert [s.site_id for s in listing.sites] == ["Ok"]
        assert listing.dropped_sites == 2

    @patch("tank_monitor.services.ingestion_client.requests.get")
    def test_dropped_sites_and_tanks_both_count_as_malformed(self, mock_get, client):
        mock_get.return_value = _response(
            [{"tanks": []}, {"store_name": "Mascot", "tanks": [{"no_tank_id": 1}]}]
        )

        listing = client.fetch_all_sites()

        assert [s.site_id for s in listing.sites] == ["Mascot"]
        assert listing.dropped_sites == 1
        assert listing.malformed_records == 2

    @patch("tank_monitor.services.ingestion_client.requests.get")
    def test_http_error_raises_without_retry(self, mock_get, client):
        mock_get.return_value = _response(status_code=500)

        with pytest.raises(SourceUnavailable) as exc_info:
            client.fetch_all_sites()

        assert exc_info.value.status_code == 500
        assert mock_get.call_count == 1

    @patch("tank_monitor.services.ingestion_client.requests.get")
    def test_transport_error_is_retried(self, mock_get, client):
        mock_get.side_effect = [requests.ConnectionError("refused"), _response([])]

        assert client.fetch_all_sites().sites == []
        assert mock_get.call_count == 2

    @patch("tank_monitor.services.ingestion_client.requests.get")
    def test_persistent_timeout_raises_after_retries(self, mock_get, client):
        mock_get.side_effect = requests.Timeout("read timed out")

        with pytest.raises(SourceUnavailable):
            client.fetch_all_sites()

        assert mock_get.call_count == 3

    @patch("tank_monitor.services.ingestion_client.requests.get")
    def test_non_json_body(self, mock_get, client):
        mock_get.return_value = _response(json_error=True)
        with pytest.raises(SourceUnavailable):
            client.fetch_all_sites()

    @patch("tank_monitor.services.ingestion_client.requests.get")
    def test_non_array_body(self, mock_get, client):
        mock_get.return_value = _response({"error": "maintenance"})
        with pytest.raises(SourceUnavailable):
            client.fetch_all_sites()


class TestFetchHistory:
    @patch("tank_monitor.services.ingestion_client.requests.get")
    def test_request_shape(self, mock_get, client):
        mock_get.return_value = _response(_logs(3))

        readings = client.fetch_history("Speedi Mart", 2, 48, granularity="hourly")

        mock_get.assert_called_once_with(
            "http://tank-server.test/stores/Speedi%20Mart/tanks/2/logs",
            params={"hours": 48, "granularity": "hourly"},
            timeout=5.0,
        )
        assert len(readings) == 3
        assert all(r.site_id == "Speedi Mart" and r.tank_id == 2 for r in readings)

    @patch("tank_monitor.services.ingestion_client.requests.get")
    def test_sorted_oldest_first_and_malformed_dropped(self, mock_get, client):
        logs = list(reversed(_logs(3))) + [{"timestamp": "garbage"}]
        mock_get.return_value = _response({"logs": logs})

        readings = client.fetch_history("Mascot", 1, 24)

        assert len(readings) == 3
        assert readings[0].recorded_at < readings[1].recorded_at < readings[2].recorded_at


class TestFetchHistoryWithFallback:
    """Degraded-data policy: one retry with half the window, then insufficient"""

    @patch("tank_monitor.services.ingestion_client.requests.get")
    def test_retry_with_halved_lookback(self, mock_get, client):
        mock_get.side_effect = [_response(status_code=503), _response(_logs(4))]

        result = client.fetch_history_with_fallback("Mascot", 1, 24)

        assert mock_get.call_args_list[0].kwargs["params"] == {"hours": 24}
        assert mock_get.call_args_list[1].kwargs["params"] == {"hours": 12}
        assert result.lookback_hours == 12
        assert len(result.readings) == 4
        assert result.insufficient_data is False
        assert result.error is None
        assert result.dropped_records == 0

    @patch("tank_monitor.services.ingestion_client.requests.get")
    def test_malformed_logs_are_counted(self, mock_get, client):
        mock_get.return_value = _response(_logs(3) + [{"timestamp": "garbage"}, "junk"])

        result = client.fetch_history_with_fallback("Mascot", 1, 24)

        assert len(result.readings) == 3
        assert result.dropped_records == 2

    @patch("tank_monitor.services.ingestion_client.requests.get")
    def test_insufficient_after_second_failure(self, mock_get, client):
        mock_get.return_value = _response(status_code=500)

        result = client.fetch_history_with_fallback("Mascot", 1, 1)

        assert mock_get.call_count == 2
        assert result.lookback_hours == 1
        assert result.insufficient_data is True
        assert result.readings == []
        assert "500" in result.error

    @patch("tank_monitor.services.ingestion_client.requests.get")
    def test_single_reading_is_insufficient(self, mock_get, client):
        mock_get.return_value = _response(_logs(1))

        result = client.fetch_history_with_fallback("Mascot", 1, 24)

        assert result.insufficient_data is True
        assert len(result.readings) == 1
        assert mock_get.call_count == 1


class TestConnectivity:
    @patch("tank_monitor.services.ingestion_client.requests.get")
    def test_success(self, mock_get, client):
        mock_get.return_value = _response([{"store_name": "Mascot"}])
        assert client.test_connectivity() is True
        assert mock_get.call_args.args[0] == "http://tank-server.test/stores"

    @patch("tank_monitor.services.ingestion_client.requests.get")
    def test_failure(self, mock_get, client):
        mock_get.return_value = _response(status_code=404)
        with pytest.raises(SourceUnavailable):
            client.test_connectivity()
