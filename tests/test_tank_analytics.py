"""
Tests for the Tank Analytics Engine

Run with: pytest tests/test_tank_analytics.py -v
"""

import sys
from datetime import timedelta
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from tank_monitor.models.tank_models import SiteConfig, TankStatus
from tank_monitor.services.tank_analytics import (
    business_hours_between,
    calculate_available_ullage,
    calculate_capacity_percentage,
    calculate_hours_to_critical,
    calculate_run_rate,
    classify_status,
    derive_metrics,
    format_hours_to_critical,
    is_business_hour,
)
from tests.fixtures.tank_fixtures import local_time, make_reading


class TestDeriveMetricsScenario:
    """Three business-hour readings, 10 gal/hr, 0.01 in/gal"""

    def test_run_rate_and_hours_to_critical(self, tank_config, site_config):
        history = [
            make_reading(local_time(10), tc_volume=1000.0, height=60.2),
            make_reading(local_time(11), tc_volume=990.0, height=60.1),
            make_reading(local_time(12), tc_volume=980.0, height=60.0),
        ]
        now = local_time(12, 5)

        metrics = derive_metrics(history, tank_config, site_config, now=now)

        assert metrics.run_rate == pytest.approx(10.0)
        assert metrics.hours_to_critical == pytest.approx(500.0)
        assert metrics.predicted_critical_at == now + timedelta(hours=500)
        assert metrics.status == TankStatus.NORMAL
        assert metrics.data_quality_score == 1.0
        assert metrics.qualifying_readings == 3
        assert metrics.capacity_percentage == pytest.approx(9.8)
        assert metrics.calculated_at == now

    def test_history_order_does_not_matter(self, tank_config, site_config):
        history = [
            make_reading(local_time(12), tc_volume=980.0, height=60.0),
            make_reading(local_time(10), tc_volume=1000.0, height=60.2),
            make_reading(local_time(11), tc_volume=990.0, height=60.1),
        ]
        metrics = derive_metrics(history, tank_config, site_config, now=local_time(13))
        assert metrics.run_rate == pytest.approx(10.0)
        assert metrics.hours_to_critical == pytest.approx(500.0)


class TestBusinessHoursFilter:
    """Readings outside the window never influence run rate"""

    def test_non_business_readings_ignored(self, tank_config, site_config):
        business = [
            make_reading(local_time(10), tc_volume=1000.0),
            make_reading(local_time(11), tc_volume=990.0),
            make_reading(local_time(12), tc_volume=980.0),
        ]
        noisy = business + [
            make_reading(local_time(2), tc_volume=7000.0),
            make_reading(local_time(4, 59), tc_volume=50.0),
            make_reading(local_time(23, 30), tc_volume=9000.0),
        ]
        now = local_time(23, 45)

        clean = derive_metrics(business, tank_config, site_config, now=now)
        dirty = derive_metrics(noisy, tank_config, site_config, now=now)

        assert dirty.run_rate == clean.run_rate
        assert dirty.qualifying_readings == 3

    def test_window_is_half_open(self, site_config):
        assert is_business_hour(local_time(5), site_config)
        assert is_business_hour(local_time(22, 59), site_config)
        assert not is_business_hour(local_time(23), site_config)
        assert not is_business_hour(local_time(4, 59), site_config)

    def test_window_uses_site_timezone(self):
        # 15:00 UTC is 11:00 in New York but 08:00 in Los Angeles
        stamp = local_time(10)  # 15:00 UTC in July
        east = SiteConfig("A", open_hour=9, close_hour=17, timezone="America/New_York")
        west = SiteConfig("B", open_hour=9, close_hour=17, timezone="America/Los_Angeles")
        assert is_business_hour(stamp, east)
        assert not is_business_hour(stamp, west)


class TestRunRate:
    def test_constant_depletion_recovers_rate(self, site_config):
        rate = 37.5
        history = [
            make_reading(local_time(6 + i), tc_volume=5000.0 - rate * i)
            for i in range(8)
        ]
        run_rate, qualifying, elapsed = calculate_run_rate(history, site_config)
        assert run_rate == pytest.approx(rate)
        assert qualifying == 8
        assert elapsed == pytest.approx(7.0)

    def test_refill_clamps_to_zero(self, site_config):
        history = [
            make_reading(local_time(10), tc_volume=1000.0),
            make_reading(local_time(12), tc_volume=8000.0),
        ]
        run_rate, _, _ = calculate_run_rate(history, site_config)
        assert run_rate == 0.0

    def test_falls_back_to_raw_volume_without_tc(self, site_config):
        history = [
            make_reading(local_time(10), tc_volume=0.0, volume=2000.0),
            make_reading(local_time(12), tc_volume=0.0, volume=1960.0),
        ]
        run_rate, _, _ = calculate_run_rate(history, site_config)
        assert run_rate == pytest.approx(20.0)

    def test_overnight_span_counts_only_business_hours(self, site_config):
        # 22:00 day 1 -> 06:00 day 2 = 1h (22-23) + 1h (05-06)
        history = [
            make_reading(local_time(22, day=15), tc_volume=1000.0),
            make_reading(local_time(6, day=16), tc_volume=980.0),
        ]
        run_rate, _, elapsed = calculate_run_rate(history, site_config)
        assert elapsed == pytest.approx(2.0)
        assert run_rate == pytest.approx(10.0)

    def test_single_qualifying_reading_lowers_quality(self, tank_config, site_config):
        history = [
            make_reading(local_time(2), tc_volume=1100.0),
            make_reading(local_time(10), tc_volume=1000.0, height=40.0),
        ]
        metrics = derive_metrics(history, tank_config, site_config, now=local_time(11))

        assert metrics.run_rate == 0.0
        assert metrics.hours_to_critical is None
        assert metrics.predicted_critical_at is None
        assert metrics.data_quality_score == 0.5


class TestBusinessHoursBetween:
    def test_full_day(self, site_config):
        start = local_time(0, day=15)
        end = local_time(0, day=16)
        assert business_hours_between(start, end, site_config) == pytest.approx(18.0)

    def test_reversed_interval_is_zero(self, site_config):
        assert business_hours_between(local_time(12), local_time(10), site_config) == 0.0

    def test_close_hour_24_runs_to_midnight(self):
        site = SiteConfig("S", open_hour=0, close_hour=24, timezone="America/Chicago")
        start = local_time(0, day=15)
        end = local_time(0, day=17)
        assert business_hours_between(start, end, site) == pytest.approx(48.0)


class TestHoursToCritical:
    def test_undefined_when_not_depleting(self):
        assert calculate_hours_to_critical(60.0, 10.0, 0.0, 0.01) is None
        assert calculate_hours_to_critical(60.0, 10.0, -5.0, 0.01) is None

    def test_undefined_at_or_below_critical(self):
        assert calculate_hours_to_critical(10.0, 10.0, 10.0, 0.01) is None
        assert calculate_hours_to_critical(8.0, 10.0, 10.0, 0.01) is None

    def test_undefined_without_geometry(self):
        assert calculate_hours_to_critical(60.0, 10.0, 10.0, 0.0) is None

    def test_positive_when_depleting(self):
        assert calculate_hours_to_critical(30.0, 10.0, 20.0, 0.01) == pytest.approx(100.0)


class TestStatus:
    def test_height_at_critical_wins_over_warning_projection(self, tank_config):
        assert classify_status(9.0, 30.0, tank_config) == TankStatus.CRITICAL
        assert classify_status(10.0, None, tank_config) == TankStatus.CRITICAL

    def test_projection_below_a_day_is_critical(self, tank_config):
        assert classify_status(50.0, 10.0, tank_config) == TankStatus.CRITICAL

    def test_warning_by_height_or_projection(self, tank_config):
        assert classify_status(15.0, 100.0, tank_config) == TankStatus.WARNING
        assert classify_status(50.0, 30.0, tank_config) == TankStatus.WARNING

    def test_normal(self, tank_config):
        assert classify_status(50.0, None, tank_config) == TankStatus.NORMAL
        assert classify_status(50.0, 48.0, tank_config) == TankStatus.NORMAL

    def test_low_tank_end_to_end(self, tank_config, site_config):
        history = [
            make_reading(local_time(10), tc_volume=1000.0, height=9.5),
            make_reading(local_time(11), tc_volume=990.0, height=9.0),
        ]
        metrics = derive_metrics(history, tank_config, site_config, now=local_time(11))
        assert metrics.status == TankStatus.CRITICAL
        assert metrics.hours_to_critical is None


class TestCapacityAndUllage:
    def test_capacity_clamped(self):
        assert calculate_capacity_percentage(12000.0, 10000.0) == 100.0
        assert calculate_capacity_percentage(-5.0, 10000.0) == 0.0
        assert calculate_capacity_percentage(2500.0, 10000.0) == 25.0
        assert calculate_capacity_percentage(2500.0, 0.0) == 0.0

    def test_available_ullage_to_max_fill(self):
        assert calculate_available_ullage(6000.0, 10000.0, 90.0) == pytest.approx(3000.0)
        assert calculate_available_ullage(9500.0, 10000.0, 90.0) == 0.0

    def test_metrics_include_ullage(self, tank_config, site_config):
        history = [make_reading(local_time(10), tc_volume=6000.0)]
        metrics = derive_metrics(history, tank_config, site_config, now=local_time(10))
        assert metrics.available_ullage == pytest.approx(3000.0)


class TestEmptyHistory:
    def test_never_raises(self, tank_config, site_config):
        metrics = derive_metrics([], tank_config, site_config, now=local_time(10))

        assert metrics.run_rate == 0.0
        assert metrics.hours_to_critical is None
        assert metrics.predicted_critical_at is None
        assert metrics.status == TankStatus.NORMAL
        assert metrics.data_quality_score == 0.0
        assert metrics.capacity_percentage == 0.0

    def test_to_dict(self, tank_config, site_config):
        data = derive_metrics([], tank_config, site_config, now=local_time(10)).to_dict()
        assert data["status"] == "normal"
        assert data["hours_to_critical"] is None
        assert data["predicted_critical_at"] is None


class TestFormatHoursToCritical:
    @pytest.mark.parametrize(
        "hours,expected",
        [
            (None, "N/A"),
            (0, "N/A"),
            (-3.0, "N/A"),
            (float("inf"), "N/A"),
            (float("nan"), "N/A"),
            (5.25, "5.2 hrs"),
            (23.9, "23.9 hrs"),
            (24, "1d 0h"),
            (50.5, "2d 2h"),
            (500, "20d 20h"),
        ],
    )
    def test_format(self, hours, expected):
        assert format_hours_to_critical(hours) == expected
