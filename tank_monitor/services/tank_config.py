"""
Tank & Site Configuration
=========================

Per-site business window / timezone and per-tank capacity, geometry and
thresholds, loaded from tanks.yaml. Anything not listed there falls back to
the AnalyticsSettings defaults.

tanks.yaml layout:

    sites:
      Mascot:
        timezone: America/Chicago
        open_hour: 5
        close_hour: 23
        tanks:
          1:
            name: Regular
            max_capacity_gallons: 10000
            critical_height_inches: 10
            warning_height_inches: 20
"""

import logging
import math
from pathlib import Path
from typing import Any, Dict, Optional, Union
from zoneinfo import ZoneInfoNotFoundError

import yaml

from tank_monitor.models.tank_models import SiteConfig, TankConfig
from tank_monitor.settings import AnalyticsSettings
from tank_monitor.timezone_utils import get_zone

logger = logging.getLogger(__name__)

CUBIC_INCHES_PER_GALLON = 231.0
DEFAULT_DIAMETER_INCHES = 96.0
DEFAULT_LENGTH_INCHES = 319.3


def gallons_at_depth(
    depth_inches: float,
    diameter_inches: float = DEFAULT_DIAMETER_INCHES,
    length_inches: float = DEFAULT_LENGTH_INCHES,
) -> float:
    """
    Liquid volume in a horizontal cylindrical tank filled to depth_inches.

    Circular segment area r²(θ - sin2θ/2) with θ = acos((r-h)/r), times the
    tank length, converted from cubic inches to gallons.
    """
    if diameter_inches <= 0 or length_inches <= 0:
        return 0.0
    radius = diameter_inches / 2.0
    depth = min(max(depth_inches, 0.0), diameter_inches)
    theta = math.acos((radius - depth) / radius)
    area = radius**2 * (theta - math.sin(2 * theta) / 2.0)
    return area * length_inches / CUBIC_INCHES_PER_GALLON


class TankConfigRegistry:
    """Resolves SiteConfig / TankConfig for any (site, tank)."""

    def __init__(
        self,
        defaults: Optional[AnalyticsSettings] = None,
        sites: Optional[Dict[str, Dict[str, Any]]] = None,
    ):
        self.defaults = defaults or AnalyticsSettings()
        # Keys normalized to str so YAML ints and upstream strings agree
        self._sites: Dict[str, Dict[str, Any]] = {
            str(site_id): dict(cfg or {}) for site_id, cfg in (sites or {}).items()
        }

    @classmethod
    def from_yaml(
        cls, path: Union[str, Path], defaults: Optional[AnalyticsSettings] = None
    ) -> "TankConfigRegistry":
        """Load tanks.yaml. A missing file yields an all-defaults registry."""
        path = Path(path)
        if not path.exists():
            logger.info(f"ℹ️ {path} not found - using default tank configuration")
            return cls(defaults)

        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"{path}: expected a mapping at top level")

        sites = data.get("sites") or {}
        if not isinstance(sites, dict):
            raise ValueError(f"{path}: 'sites' must be a mapping")

        for site_id, cfg in sites.items():
            if cfg is not None and not isinstance(cfg, dict):
                raise ValueError(f"{path}: site {site_id!r} must be a mapping")
            tz_name = (cfg or {}).get("timezone")
            if tz_name is None:
                continue
            try:
                get_zone(str(tz_name))
            except (ZoneInfoNotFoundError, ValueError) as e:
                raise ValueError(
                    f"{path}: site {site_id!r} has unknown timezone {tz_name!r}"
                ) from e

        registry = cls(defaults, sites)
        logger.info(
            f"✅ Loaded tank configuration for {len(registry._sites)} sites from {path}"
        )
        return registry

    @property
    def site_ids(self):
        return list(self._sites.keys())

    def for_site(self, site_id: str) -> SiteConfig:
        raw = self._sites.get(str(site_id), {})
        return SiteConfig(
            site_id=str(site_id),
            open_hour=int(raw.get("open_hour", self.defaults.open_hour)),
            close_hour=int(raw.get("close_hour", self.defaults.close_hour)),
            timezone=str(raw.get("timezone", self.defaults.timezone)),
        )

    def _raw_tank(self, site_id: str, tank_id: int) -> Dict[str, Any]:
        tanks = self._sites.get(str(site_id), {}).get("tanks") or {}
        for key, cfg in tanks.items():
            if str(key) == str(tank_id):
                return dict(cfg or {})
        return {}

    def for_tank(
        self, site_id: str, tank_id: int, product: Optional[str] = None
    ) -> TankConfig:
        """
        Resolve a tank's configuration.

        Capacity: configured value, else DEFAULT_TANK_CAPACITY when set, else
        cylinder geometry. Height-per-gallon: configured value, else
        diameter / capacity.
        """
        raw = self._raw_tank(site_id, tank_id)

        diameter = float(raw.get("diameter_inches", DEFAULT_DIAMETER_INCHES))
        length = float(raw.get("length_inches", DEFAULT_LENGTH_INCHES))

        capacity = raw.get("max_capacity_gallons")
        if capacity is None:
            if self.defaults.default_tank_capacity > 0:
                capacity = self.defaults.default_tank_capacity
            else:
                capacity = gallons_at_depth(diameter, diameter, length)

        hpg = raw.get("height_per_gallon")

        return TankConfig(
            site_id=str(site_id),
            tank_id=int(tank_id),
            tank_name=str(raw.get("name", f"Tank {tank_id}")),
            product=str(raw.get("product") or product or "Unknown"),
            max_capacity_gallons=float(capacity),
            critical_height_inches=float(
                raw.get("critical_height_inches", self.defaults.critical_height_inches)
            ),
            warning_height_inches=float(
                raw.get("warning_height_inches", self.defaults.warning_height_inches)
            ),
            max_fill_percentage=float(
                raw.get("max_fill_percentage", self.defaults.max_fill_percentage)
            ),
            diameter_inches=diameter,
            length_inches=length,
            height_per_gallon=float(hpg) if hpg is not None else None,
        )
