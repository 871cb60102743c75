"""Service layer: upstream ingestion, tank configuration and analytics."""

from .ingestion_client import IngestionClient
from .tank_analytics import derive_metrics, format_hours_to_critical
from .tank_config import TankConfigRegistry, gallons_at_depth

__all__ = [
    "IngestionClient",
    "TankConfigRegistry",
    "derive_metrics",
    "format_hours_to_critical",
    "gallons_at_depth",
]
