"""
Tank Monitor Data Models
========================

Dataclasses and enums shared by the ingestion client, analytics engine,
retention store and sync orchestrator.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


# ══════════════════════════════════════════════════════════════════════════════
# ENUMS
# ══════════════════════════════════════════════════════════════════════════════


class TankStatus(str, Enum):
    """Tank level classification"""
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"


class UpsertResult(str, Enum):
    """Outcome of an idempotent reading insert"""
    OK = "ok"
    DUPLICATE = "duplicate"


class CycleOutcome(str, Enum):
    """Terminal state of one sync cycle"""
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    SKIPPED = "skipped"


# ══════════════════════════════════════════════════════════════════════════════
# READINGS
# ══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class TelemetryReading:
    """
    One point-in-time tank measurement.

    Identity is (site_id, tank_id, recorded_at); recorded_at is always
    timezone-aware UTC.
    """
    site_id: str
    tank_id: int
    recorded_at: datetime
    product: str = "Unknown"
    volume: float = 0.0  # gallons
    tc_volume: float = 0.0  # temperature-compensated gallons
    ullage: float = 0.0  # gallons
    height: float = 0.0  # inches
    water: float = 0.0  # inches
    temperature: float = 70.0  # °F

    @property
    def identity(self) -> Tuple[str, int, datetime]:
        return (self.site_id, self.tank_id, self.recorded_at)

    @property
    def effective_volume(self) -> float:
        """TC volume when reported, raw volume otherwise"""
        return self.tc_volume if self.tc_volume > 0 else self.volume


@dataclass
class TankSnapshot:
    """A tank as listed by the upstream server, with its latest reading"""
    tank_id: int
    product: str = "Unknown"
    tank_name: Optional[str] = None
    latest: Optional[TelemetryReading] = None


@dataclass
class SiteSnapshot:
    """A site (store) and its tanks from one upstream fetch"""
    site_id: str
    tanks: List[TankSnapshot] = field(default_factory=list)
    dropped_records: int = 0  # malformed tank entries skipped during normalization


@dataclass
class SiteListing:
    """Result of one /stores/full fetch"""
    sites: List[SiteSnapshot] = field(default_factory=list)
    dropped_sites: int = 0  # malformed site entries skipped entirely

    @property
    def malformed_records(self) -> int:
        return self.dropped_sites + sum(site.dropped_records for site in self.sites)


@dataclass
class HistoryResult:
    """
    History fetch result under the degraded-data policy.

    insufficient_data is explicit; readings are never synthesized.
    """
    site_id: str
    tank_id: int
    readings: List[TelemetryReading] = field(default_factory=list)
    lookback_hours: int = 0
    insufficient_data: bool = False
    error: Optional[str] = None
    dropped_records: int = 0  # malformed logs skipped during normalization


# ══════════════════════════════════════════════════════════════════════════════
# DERIVED METRICS
# ══════════════════════════════════════════════════════════════════════════════


@dataclass
class DerivedMetrics:
    """Analytics for one tank. Exactly one stored row per (site, tank)."""
    run_rate: float  # gal/hr, business hours only
    hours_to_critical: Optional[float]
    status: TankStatus
    capacity_percentage: float
    predicted_critical_at: Optional[datetime]
    data_quality_score: float
    available_ullage: float = 0.0
    qualifying_readings: int = 0
    calculated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_rate": round(self.run_rate, 3),
            "hours_to_critical": (
                round(self.hours_to_critical, 2)
                if self.hours_to_critical is not None
                else None
            ),
            "status": self.status.value,
            "capacity_percentage": round(self.capacity_percentage, 2),
            "predicted_critical_at": (
                self.predicted_critical_at.isoformat()
                if self.predicted_critical_at
                else None
            ),
            "data_quality_score": self.data_quality_score,
            "available_ullage": round(self.available_ullage, 2),
            "qualifying_readings": self.qualifying_readings,
            "calculated_at": (
                self.calculated_at.isoformat() if self.calculated_at else None
            ),
        }


# ══════════════════════════════════════════════════════════════════════════════
# CONFIGURATION
# ══════════════════════════════════════════════════════════════════════════════


@dataclass
class SiteConfig:
    """Per-site business window and timezone"""
    site_id: str
    open_hour: int = 5
    close_hour: int = 23
    timezone: str = "America/Chicago"


@dataclass
class TankConfig:
    """Per-tank capacity, geometry and thresholds"""
    site_id: str
    tank_id: int
    tank_name: str = ""
    product: str = "Unknown"
    max_capacity_gallons: float = 10000.0
    critical_height_inches: float = 10.0
    warning_height_inches: float = 20.0
    max_fill_percentage: float = 90.0
    diameter_inches: float = 96.0
    length_inches: float = 319.3
    height_per_gallon: Optional[float] = None

    @property
    def inches_per_gallon(self) -> float:
        """Explicit ratio if configured, else diameter spread over capacity"""
        if self.height_per_gallon:
            return self.height_per_gallon
        if self.max_capacity_gallons > 0:
            return self.diameter_inches / self.max_capacity_gallons
        return 0.0
