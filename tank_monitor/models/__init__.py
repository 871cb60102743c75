"""Dataclasses shared across the sync engine."""

from .tank_models import (
    CycleOutcome,
    DerivedMetrics,
    HistoryResult,
    SiteConfig,
    SiteListing,
    SiteSnapshot,
    TankConfig,
    TankSnapshot,
    TankStatus,
    TelemetryReading,
    UpsertResult,
)

__all__ = [
    "CycleOutcome",
    "DerivedMetrics",
    "HistoryResult",
    "SiteConfig",
    "SiteListing",
    "SiteSnapshot",
    "TankConfig",
    "TankSnapshot",
    "TankStatus",
    "TelemetryReading",
    "UpsertResult",
]
