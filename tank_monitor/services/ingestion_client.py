"""
Central Tank Server Ingestion Client
Reads tank telemetry from the upstream tank server (read-only)

Endpoints:
    GET {base}/stores                                   connectivity check
    GET {base}/stores/full                              sites + latest log per tank
    GET {base}/stores/{site}/tanks/{tank}/logs?hours=N  reading history

Every raw record is normalized into a TelemetryReading. Malformed records
are dropped and counted; a failed call raises SourceUnavailable.
"""

import logging
import math
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import quote

import requests

from tank_monitor.circuit_breaker import RetryConfig, retry_with_backoff
from tank_monitor.errors import MalformedRecord, SourceUnavailable
from tank_monitor.models.tank_models import (
    HistoryResult,
    SiteListing,
    SiteSnapshot,
    TankSnapshot,
    TelemetryReading,
)
from tank_monitor.settings import UpstreamSettings
from tank_monitor.timezone_utils import parse_timestamp, utc_now

logger = logging.getLogger(__name__)

DEFAULT_TEMPERATURE_F = 70.0
VOLUME_FIELDS = ("volume", "tc_volume", "ullage", "height", "water")


def _number(raw: Dict[str, Any], key: str, default: float) -> float:
    value = raw.get(key)
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise MalformedRecord(f"{key} is not numeric: {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise MalformedRecord(f"{key} is not numeric: {value!r}")
    if not math.isfinite(number):
        raise MalformedRecord(f"{key} is not finite: {value!r}")
    return number


def normalize_reading(
    site_id: str,
    tank_id: int,
    raw: Any,
    product_hint: Optional[str] = None,
    now: Optional[datetime] = None,
) -> TelemetryReading:
    """
    Normalize one upstream log into a TelemetryReading.

    Missing volume-like fields become 0, missing temperature 70°F and a
    missing timestamp the ingestion time. Product: tank product, else log
    product, else "Unknown".

    Raises:
        MalformedRecord: non-numeric values, unparseable timestamp, wrong shape
    """
    if not isinstance(raw, dict):
        raise MalformedRecord(f"log entry is not an object: {type(raw).__name__}")

    stamp = raw.get("timestamp") or raw.get("recorded_at")
    if stamp in (None, ""):
        recorded_at = now or utc_now()
    else:
        try:
            recorded_at = parse_timestamp(stamp)
        except (TypeError, ValueError, OverflowError, OSError):
            raise MalformedRecord(f"unparseable timestamp: {stamp!r}")

    values = {key: _number(raw, key, 0.0) for key in VOLUME_FIELDS}

    return TelemetryReading(
        site_id=site_id,
        tank_id=tank_id,
        recorded_at=recorded_at,
        product=product_hint or raw.get("product") or "Unknown",
        temperature=_number(raw, "temp", DEFAULT_TEMPERATURE_F),
        **values,
    )


def _tank_id(raw: Dict[str, Any]) -> int:
    value = raw.get("tank_id")
    if value is None or isinstance(value, bool):
        raise MalformedRecord("tank entry without tank_id")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise MalformedRecord(f"tank_id is not an integer: {value!r}")


class IngestionClient:
    """
    Client for the central tank server.

    Transport errors (connection refused, timeouts) are retried with
    exponential backoff; HTTP status errors are not.
    """

    def __init__(
        self,
        settings: Optional[UpstreamSettings] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.settings = settings or UpstreamSettings()
        self.base_url = self.settings.base_url.rstrip("/")
        self.timeout = self.settings.timeout_seconds

        retry_kwargs = {"sleep": sleep} if sleep else {}
        self._get_with_retry = retry_with_backoff(
            RetryConfig(
                max_retries=self.settings.max_retries,
                base_delay_seconds=self.settings.retry_base_delay_seconds,
                retry_on=(requests.ConnectionError, requests.Timeout),
            ),
            **retry_kwargs,
        )(self._get)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _get(self, url: str, params: Optional[Dict[str, Any]] = None):
        return requests.get(url, params=params, timeout=self.timeout)

    def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self._get_with_retry(url, params)
        except requests.RequestException as e:
            raise SourceUnavailable(f"GET {path} failed: {e}") from e

        if not 200 <= response.status_code < 300:
            raise SourceUnavailable(
                f"GET {path} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise SourceUnavailable(f"GET {path} returned a non-JSON body") from e

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def test_connectivity(self) -> bool:
        """Raises SourceUnavailable when the tank server is unreachable."""
        self._get_json("/stores")
        logger.info(f"✅ Tank server reachable at {self.base_url}")
        return True

    def fetch_all_sites(self) -> SiteListing:
        """All sites with their tanks and each tank's latest reading."""
        payload = self._get_json("/stores/full")
        if not isinstance(payload, list):
            raise SourceUnavailable(
                f"/stores/full returned {type(payload).__name__}, expected a list"
            )

        now = utc_now()
        listing = SiteListing()
        for raw_site in payload:
            site_id = (
                raw_site.get("store_name") or raw_site.get("name")
                if isinstance(raw_site, dict)
                else None
            )
            tanks = raw_site.get("tanks") if isinstance(raw_site, dict) else None
            if not site_id or not isinstance(tanks, list):
                listing.dropped_sites += 1
                logger.warning(f"⚠️ Dropping malformed site entry: {raw_site!r:.200}")
                continue

            listing.sites.append(self._normalize_site(str(site_id), tanks, now))

        logger.debug(
            f"📡 Fetched {len(listing.sites)} sites, "
            f"{sum(len(s.tanks) for s in listing.sites)} tanks"
        )
        return listing

    def _normalize_site(
        self, site_id: str, raw_tanks: List[Any], now: datetime
    ) -> SiteSnapshot:
        snapshot = SiteSnapshot(site_id=site_id)
        for raw_tank in raw_tanks:
            try:
                if not isinstance(raw_tank, dict):
                    raise MalformedRecord("tank entry is not an object")
                tank_id = _tank_id(raw_tank)
                product = raw_tank.get("product")
                latest = None
                if raw_tank.get("latest_log"):
                    latest = normalize_reading(
                        site_id, tank_id, raw_tank["latest_log"], product, now
                    )
                snapshot.tanks.append(
                    TankSnapshot(
                        tank_id=tank_id,
                        product=product or (latest.product if latest else "Unknown"),
                        tank_name=raw_tank.get("tank_name"),
                        latest=latest,
                    )
                )
            except MalformedRecord as e:
                snapshot.dropped_records += 1
                logger.warning(f"⚠️ {site_id}: dropping malformed tank record: {e}")
        return snapshot

    def fetch_history(
        self,
        site_id: str,
        tank_id: int,
        since_hours: int,
        granularity: Optional[str] = None,
    ) -> List[TelemetryReading]:
        """Readings for one tank over the last `since_hours`, oldest first."""
        readings, _ = self._fetch_history(site_id, tank_id, since_hours, granularity)
        return readings

    def _fetch_history(
        self,
        site_id: str,
        tank_id: int,
        since_hours: int,
        granularity: Optional[str] = None,
    ) -> Tuple[List[TelemetryReading], int]:
        params: Dict[str, Any] = {"hours": int(since_hours)}
        if granularity:
            params["granularity"] = granularity

        path = f"/stores/{quote(str(site_id), safe='')}/tanks/{int(tank_id)}/logs"
        payload = self._get_json(path, params)

        if isinstance(payload, dict):
            payload = payload.get("logs")
        if not isinstance(payload, list):
            raise SourceUnavailable(f"{path} did not return a list of logs")

        readings: List[TelemetryReading] = []
        dropped = 0
        for raw in payload:
            try:
                readings.append(normalize_reading(site_id, tank_id, raw))
            except MalformedRecord as e:
                dropped += 1
                logger.debug(f"Dropping malformed log for {site_id}/{tank_id}: {e}")

        if dropped:
            logger.warning(
                f"⚠️ {site_id} tank {tank_id}: dropped {dropped} malformed logs"
            )

        readings.sort(key=lambda r: r.recorded_at)
        return readings, dropped

    def fetch_history_with_fallback(
        self, site_id: str, tank_id: int, hours: int
    ) -> HistoryResult:
        """
        History under the degraded-data policy.

        One retry with half the lookback after SourceUnavailable, then an
        explicit insufficient-data result. Nothing is synthesized.
        """
        lookback = int(hours)
        try:
            readings, dropped = self._fetch_history(site_id, tank_id, lookback)
        except SourceUnavailable as first_error:
            lookback = max(1, lookback // 2)
            logger.warning(
                f"⚠️ History for {site_id}/{tank_id} failed ({first_error}); "
                f"retrying with {lookback}h lookback"
            )
            try:
                readings, dropped = self._fetch_history(site_id, tank_id, lookback)
            except SourceUnavailable as e:
                return HistoryResult(
                    site_id=site_id,
                    tank_id=tank_id,
                    lookback_hours=lookback,
                    insufficient_data=True,
                    error=str(e),
                )

        return HistoryResult(
            site_id=site_id,
            tank_id=tank_id,
            readings=readings,
            lookback_hours=lookback,
            insufficient_data=len(readings) < 2,
            dropped_records=dropped,
        )
