"""
Tank Monitor Settings
Centralized configuration from environment variables

All sensitive data MUST come from environment variables (or a local .env file).
Intervals keep the millisecond units the deployment scripts already use.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _get_env(key: str, default: str = "", required: bool = False) -> str:
    """Get environment variable with optional requirement enforcement."""
    value = os.getenv(key, default)
    if required and not value:
        raise ValueError(f"Required environment variable {key} is not set!")
    return value


def _get_env_int(key: str, default: int) -> int:
    """Get integer environment variable."""
    return int(os.getenv(key, str(default)))


def _get_env_float(key: str, default: float) -> float:
    """Get float environment variable."""
    return float(os.getenv(key, str(default)))


def _get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean environment variable."""
    return os.getenv(key, str(default)).lower() in ("true", "1", "yes")


# =============================================================================
# UPSTREAM (CENTRAL TANK SERVER) SETTINGS
# =============================================================================
@dataclass
class UpstreamSettings:
    """Central tank server configuration."""

    base_url: str = field(
        default_factory=lambda: _get_env(
            "TANK_SERVER_URL", "https://central-tank-server.onrender.com"
        )
    )
    timeout_seconds: float = field(
        default_factory=lambda: _get_env_float("UPSTREAM_TIMEOUT_SECONDS", 15.0)
    )
    max_retries: int = field(
        default_factory=lambda: _get_env_int("UPSTREAM_MAX_RETRIES", 2)
    )
    retry_base_delay_seconds: float = field(
        default_factory=lambda: _get_env_float("UPSTREAM_RETRY_DELAY_SECONDS", 1.0)
    )


# =============================================================================
# RETENTION STORE SETTINGS
# =============================================================================
@dataclass
class StoreSettings:
    """Retention store (SQLAlchemy URL + service credential)."""

    url: str = field(
        default_factory=lambda: _get_env(
            "STORE_URL", "mysql+pymysql://tank_sync@localhost:3306/tank_monitor"
        )
    )
    service_key: str = field(default_factory=lambda: _get_env("STORE_SERVICE_KEY", ""))

    # Connection pool
    pool_size: int = field(default_factory=lambda: _get_env_int("STORE_POOL_SIZE", 5))
    max_overflow: int = field(
        default_factory=lambda: _get_env_int("STORE_MAX_OVERFLOW", 5)
    )
    pool_timeout: int = field(
        default_factory=lambda: _get_env_int("STORE_POOL_TIMEOUT", 30)
    )
    pool_recycle: int = field(
        default_factory=lambda: _get_env_int("STORE_POOL_RECYCLE", 1800)
    )

    # Retention
    retention_days: float = field(
        default_factory=lambda: _get_env_float("RETENTION_DAYS", 5.0)
    )
    cleanup_batch_size: int = field(
        default_factory=lambda: _get_env_int("CLEANUP_BATCH_SIZE", 1000)
    )


# =============================================================================
# SYNC SCHEDULING SETTINGS
# =============================================================================
@dataclass
class SyncSettings:
    """Periodic task intervals (milliseconds) and failure thresholds."""

    sync_interval_ms: int = field(
        default_factory=lambda: _get_env_int("SYNC_INTERVAL", 30000)
    )
    cleanup_interval_ms: int = field(
        default_factory=lambda: _get_env_int("CLEANUP_INTERVAL", 3600000)
    )
    health_check_interval_ms: int = field(
        default_factory=lambda: _get_env_int("HEALTH_CHECK_INTERVAL", 300000)
    )

    max_consecutive_errors: int = field(
        default_factory=lambda: _get_env_int("MAX_CONSECUTIVE_ERRORS", 5)
    )
    error_ring_size: int = 10

    # Upstream circuit breaker
    circuit_failure_threshold: int = field(
        default_factory=lambda: _get_env_int("CIRCUIT_FAILURE_THRESHOLD", 5)
    )
    circuit_recovery_seconds: float = field(
        default_factory=lambda: _get_env_float("CIRCUIT_RECOVERY_SECONDS", 60.0)
    )

    # One-shot historical backfill
    backfill_days: int = field(default_factory=lambda: _get_env_int("BACKFILL_DAYS", 10))
    backfill_batch_size: int = field(
        default_factory=lambda: _get_env_int("BACKFILL_BATCH_SIZE", 100)
    )
    backfill_tank_delay_seconds: float = field(
        default_factory=lambda: _get_env_float("BACKFILL_TANK_DELAY_SECONDS", 0.1)
    )

    @property
    def sync_interval_seconds(self) -> float:
        return self.sync_interval_ms / 1000.0

    @property
    def cleanup_interval_seconds(self) -> float:
        return self.cleanup_interval_ms / 1000.0

    @property
    def health_check_interval_seconds(self) -> float:
        return self.health_check_interval_ms / 1000.0


# =============================================================================
# ANALYTICS SETTINGS
# =============================================================================
@dataclass
class AnalyticsSettings:
    """Defaults applied to every site/tank not overridden in tanks.yaml."""

    open_hour: int = field(default_factory=lambda: _get_env_int("BUSINESS_OPEN_HOUR", 5))
    close_hour: int = field(
        default_factory=lambda: _get_env_int("BUSINESS_CLOSE_HOUR", 23)
    )
    timezone: str = field(
        default_factory=lambda: _get_env("SITE_TIMEZONE", "America/Chicago")
    )

    critical_height_inches: float = field(
        default_factory=lambda: _get_env_float("CRITICAL_HEIGHT_INCHES", 10.0)
    )
    warning_height_inches: float = field(
        default_factory=lambda: _get_env_float("WARNING_HEIGHT_INCHES", 20.0)
    )
    # 0 = derive from tank geometry
    default_tank_capacity: float = field(
        default_factory=lambda: _get_env_float("DEFAULT_TANK_CAPACITY", 0.0)
    )
    max_fill_percentage: float = field(
        default_factory=lambda: _get_env_float("MAX_FILL_PERCENTAGE", 90.0)
    )

    lookback_hours: int = field(
        default_factory=lambda: _get_env_int("ANALYTICS_LOOKBACK_HOURS", 24)
    )

    tank_config_file: Path = field(
        default_factory=lambda: Path(
            _get_env("TANK_CONFIG_FILE", str(Path.cwd() / "tanks.yaml"))
        )
    )


# =============================================================================
# APPLICATION SETTINGS
# =============================================================================
@dataclass
class AppSettings:
    """General application settings."""

    log_level: str = field(default_factory=lambda: _get_env("LOG_LEVEL", "INFO"))
    log_dir: Path = field(
        default_factory=lambda: Path(_get_env("LOG_DIR", str(Path.cwd() / "logs")))
    )
    log_to_file: bool = field(default_factory=lambda: _get_env_bool("LOG_TO_FILE", True))
    log_format: str = field(default_factory=lambda: _get_env("LOG_FORMAT", "text"))
    health_api_port: int = field(
        default_factory=lambda: _get_env_int("HEALTH_API_PORT", 0)
    )
    version: str = "1.0.0"


# =============================================================================
# SETTINGS CONTAINER
# =============================================================================
class Settings:
    """Settings container, built once at startup and passed to the services."""

    def __init__(self):
        self.upstream = UpstreamSettings()
        self.store = StoreSettings()
        self.sync = SyncSettings()
        self.analytics = AnalyticsSettings()
        self.app = AppSettings()

    def validate(self) -> List[str]:
        """Validate settings and return list of warnings."""
        warnings = []

        if not self.store.service_key and not self.store.url.startswith("sqlite"):
            warnings.append("⚠️ STORE_SERVICE_KEY not set")

        if not 0 <= self.analytics.open_hour < self.analytics.close_hour <= 24:
            warnings.append(
                f"⚠️ Invalid business window {self.analytics.open_hour}-"
                f"{self.analytics.close_hour}"
            )

        if self.analytics.warning_height_inches < self.analytics.critical_height_inches:
            warnings.append(
                "⚠️ WARNING_HEIGHT_INCHES is below CRITICAL_HEIGHT_INCHES"
            )

        if self.sync.cleanup_interval_ms < self.sync.sync_interval_ms:
            warnings.append("ℹ️ Cleanup runs more often than sync")

        if not self.analytics.tank_config_file.exists():
            warnings.append(
                f"ℹ️ {self.analytics.tank_config_file} not found - using defaults for all tanks"
            )

        return warnings

    def to_dict(self) -> Dict:
        """Export settings as dictionary (for debugging, excludes secrets)."""
        return {
            "version": self.app.version,
            "tank_server_url": self.upstream.base_url,
            "store_configured": bool(self.store.service_key),
            "sync_interval_ms": self.sync.sync_interval_ms,
            "cleanup_interval_ms": self.sync.cleanup_interval_ms,
            "health_check_interval_ms": self.sync.health_check_interval_ms,
            "retention_days": self.store.retention_days,
            "business_hours": f"{self.analytics.open_hour:02d}:00-{self.analytics.close_hour:02d}:00",
            "critical_height_inches": self.analytics.critical_height_inches,
            "warning_height_inches": self.analytics.warning_height_inches,
        }


def get_settings() -> Settings:
    """Build settings from the current environment."""
    return Settings()
