"""
Tank Analytics Engine
=====================

Pure, stateless derivation of depletion metrics from a tank's reading
history:

    - Run rate (gal/hr), measured over business hours only
    - Hours until the critical height and the predicted timestamp
    - Capacity percentage and available ullage
    - normal / warning / critical status
    - Data quality score

The engine never raises for missing data; every output degrades to
None / 0 with a lowered quality score.
"""

import logging
import math
from datetime import datetime, time, timedelta
from typing import Iterable, List, Optional, Sequence, Tuple

from tank_monitor.models.tank_models import (
    DerivedMetrics,
    SiteConfig,
    TankConfig,
    TankStatus,
    TelemetryReading,
)
from tank_monitor.timezone_utils import ensure_utc, get_zone, utc_now, utc_to_local

logger = logging.getLogger(__name__)

QUALITY_FULL = 1.0
QUALITY_CURRENT_ONLY = 0.5
QUALITY_NONE = 0.0

# Projected hours below which the status escalates
CRITICAL_HORIZON_HOURS = 24.0
WARNING_HORIZON_HOURS = 48.0


# ═══════════════════════════════════════════════════════════════════════════════
# BUSINESS HOURS
# ═══════════════════════════════════════════════════════════════════════════════


def is_business_hour(recorded_at: datetime, site: SiteConfig) -> bool:
    """True when the reading's local hour is within [open_hour, close_hour)."""
    local = utc_to_local(recorded_at, site.timezone)
    return site.open_hour <= local.hour < site.close_hour


def filter_business_hours(
    readings: Iterable[TelemetryReading], site: SiteConfig
) -> List[TelemetryReading]:
    return [r for r in readings if is_business_hour(r.recorded_at, site)]


def _window_bounds(day, site: SiteConfig) -> Tuple[datetime, datetime]:
    """A local date's business window as aware UTC datetimes."""
    zone = get_zone(site.timezone)
    start = datetime.combine(day, time(site.open_hour % 24), tzinfo=zone)
    if site.close_hour >= 24:
        end = datetime.combine(day + timedelta(days=1), time(0), tzinfo=zone)
    else:
        end = datetime.combine(day, time(site.close_hour), tzinfo=zone)
    return ensure_utc(start), ensure_utc(end)


def business_hours_between(
    start: datetime, end: datetime, site: SiteConfig
) -> float:
    """
    Hours of [start, end] that fall inside the site's daily business windows.

    Windows are evaluated per local calendar day, so DST days are 23 or 25
    hours long as they should be.
    """
    start = ensure_utc(start)
    end = ensure_utc(end)
    if end <= start or site.close_hour <= site.open_hour:
        return 0.0

    zone = get_zone(site.timezone)
    day = utc_to_local(start, zone).date()
    last_day = utc_to_local(end, zone).date()

    total = 0.0
    while day <= last_day:
        window_start, window_end = _window_bounds(day, site)
        overlap_start = max(start, window_start)
        overlap_end = min(end, window_end)
        if overlap_end > overlap_start:
            total += (overlap_end - overlap_start).total_seconds() / 3600.0
        day += timedelta(days=1)
    return total


# ═══════════════════════════════════════════════════════════════════════════════
# CORE CALCULATIONS
# ═══════════════════════════════════════════════════════════════════════════════


def calculate_run_rate(
    readings: Sequence[TelemetryReading], site: SiteConfig
) -> Tuple[float, int, float]:
    """
    Business-hours consumption rate.

    Returns:
        (run_rate gal/hr, qualifying reading count, elapsed business hours)
    """
    qualifying = sorted(
        filter_business_hours(readings, site), key=lambda r: r.recorded_at
    )
    if len(qualifying) < 2:
        return 0.0, len(qualifying), 0.0

    earliest, latest = qualifying[0], qualifying[-1]
    elapsed = business_hours_between(earliest.recorded_at, latest.recorded_at, site)
    if elapsed <= 0:
        return 0.0, len(qualifying), 0.0

    consumed = earliest.effective_volume - latest.effective_volume
    # Refill over the window: no negative depletion
    rate = max(0.0, consumed / elapsed)
    return rate, len(qualifying), elapsed


def calculate_hours_to_critical(
    current_height: float,
    critical_height: float,
    run_rate: float,
    inches_per_gallon: float,
) -> Optional[float]:
    """(height - critical) / (rate × in/gal); None unless actually depleting."""
    if run_rate <= 0 or inches_per_gallon <= 0:
        return None
    if current_height <= critical_height:
        return None
    hours = (current_height - critical_height) / (run_rate * inches_per_gallon)
    if not math.isfinite(hours) or hours < 0:
        return None
    return hours


def classify_status(
    current_height: float,
    hours_to_critical: Optional[float],
    tank: TankConfig,
) -> TankStatus:
    """Critical wins over warning; height thresholds win over projections."""
    if current_height <= tank.critical_height_inches:
        return TankStatus.CRITICAL
    if hours_to_critical is not None and hours_to_critical < CRITICAL_HORIZON_HOURS:
        return TankStatus.CRITICAL
    if current_height <= tank.warning_height_inches:
        return TankStatus.WARNING
    if hours_to_critical is not None and hours_to_critical < WARNING_HORIZON_HOURS:
        return TankStatus.WARNING
    return TankStatus.NORMAL


def calculate_capacity_percentage(volume: float, capacity: float) -> float:
    if capacity <= 0:
        return 0.0
    return min(100.0, max(0.0, volume / capacity * 100.0))


def calculate_available_ullage(
    volume: float, capacity: float, max_fill_percentage: float
) -> float:
    """Gallons deliverable before reaching the max fill level."""
    return max(0.0, capacity * max_fill_percentage / 100.0 - volume)


def format_hours_to_critical(hours: Optional[float]) -> str:
    """
    Human-readable time remaining.

    >>> format_hours_to_critical(None)
    'N/A'
    >>> format_hours_to_critical(5.25)
    '5.2 hrs'
    >>> format_hours_to_critical(50)
    '2d 2h'
    """
    if hours is None or not math.isfinite(hours) or hours <= 0:
        return "N/A"
    if hours < 24:
        return f"{hours:.1f} hrs"
    days = int(hours // 24)
    remaining = int(hours % 24)
    return f"{days}d {remaining}h"


# ═══════════════════════════════════════════════════════════════════════════════
# ENTRY POINT
# ═══════════════════════════════════════════════════════════════════════════════


def derive_metrics(
    history: Sequence[TelemetryReading],
    tank: TankConfig,
    site: SiteConfig,
    now: Optional[datetime] = None,
) -> DerivedMetrics:
    """
    Derive all metrics for one tank.

    The current reading is the latest of the history, business hours or not.
    An empty history yields a NORMAL placeholder with quality 0.
    """
    now = ensure_utc(now) if now else utc_now()
    ordered = sorted(history, key=lambda r: r.recorded_at)

    if not ordered:
        return DerivedMetrics(
            run_rate=0.0,
            hours_to_critical=None,
            status=TankStatus.NORMAL,
            capacity_percentage=0.0,
            predicted_critical_at=None,
            data_quality_score=QUALITY_NONE,
            available_ullage=calculate_available_ullage(
                0.0, tank.max_capacity_gallons, tank.max_fill_percentage
            ),
            qualifying_readings=0,
            calculated_at=now,
        )

    current = ordered[-1]
    run_rate, qualifying, elapsed = calculate_run_rate(ordered, site)
    quality = QUALITY_FULL if qualifying >= 2 and elapsed > 0 else QUALITY_CURRENT_ONLY

    hours_to_critical = calculate_hours_to_critical(
        current.height,
        tank.critical_height_inches,
        run_rate,
        tank.inches_per_gallon,
    )
    predicted = (
        now + timedelta(hours=hours_to_critical)
        if hours_to_critical is not None
        else None
    )

    volume = current.effective_volume
    metrics = DerivedMetrics(
        run_rate=run_rate,
        hours_to_critical=hours_to_critical,
        status=classify_status(current.height, hours_to_critical, tank),
        capacity_percentage=calculate_capacity_percentage(
            volume, tank.max_capacity_gallons
        ),
        predicted_critical_at=predicted,
        data_quality_score=quality,
        available_ullage=calculate_available_ullage(
            volume, tank.max_capacity_gallons, tank.max_fill_percentage
        ),
        qualifying_readings=qualifying,
        calculated_at=now,
    )

    logger.debug(
        f"📊 {tank.site_id} tank {tank.tank_id}: {run_rate:.2f} gal/hr, "
        f"{format_hours_to_critical(hours_to_critical)} to critical, "
        f"{metrics.status.value}"
    )
    return metrics
