"""
╔═══════════════════════════════════════════════════════════════════════════════╗
║                       🛢️ TANK SYNC ORCHESTRATOR                                ║
╠═══════════════════════════════════════════════════════════════════════════════╣
║  Periodic tasks (one background process):                                     ║
║  ✓ Sync cycle     fetch sites → upsert readings → derive + upsert metrics     ║
║  ✓ Cleanup        delete readings older than RETENTION_DAYS                   ║
║  ✓ Health report  uptime, cycles, error ring, success rate                    ║
║                                                                                ║
║  At most one sync cycle in flight; per-tank failures are isolated.            ║
╚═══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from tank_monitor.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerOpenError,
)
from tank_monitor.errors import (
    PersistenceError,
    SourceUnavailable,
    StartupConnectivityError,
)
from tank_monitor.models.tank_models import CycleOutcome, TankSnapshot, UpsertResult
from tank_monitor.orchestrators.sync_stats import UNHEALTHY, SyncCycleStats
from tank_monitor.repositories.retention_store import RetentionStore
from tank_monitor.services.ingestion_client import IngestionClient
from tank_monitor.services.tank_analytics import derive_metrics, format_hours_to_critical
from tank_monitor.services.tank_config import TankConfigRegistry
from tank_monitor.settings import Settings
from tank_monitor.timezone_utils import hours_ago, utc_now

logger = logging.getLogger(__name__)


class PeriodicTask:
    """
    Daemon timer thread that hands `func` to the executor every interval.

    The timer never runs the work itself, so a slow sync cycle cannot delay
    the cleanup or health ticks.
    """

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        func: Callable[[], Any],
        executor: ThreadPoolExecutor,
    ):
        self.name = name
        self.interval_seconds = interval_seconds
        self.func = func
        self.executor = executor
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self):
        self._thread = threading.Thread(
            target=self._loop, name=f"tank-{self.name}-timer", daemon=True
        )
        self._thread.start()

    def _loop(self):
        while not self._stop_event.wait(self.interval_seconds):
            try:
                self.executor.submit(self._run)
            except RuntimeError:
                # Executor already shut down
                break

    def _run(self):
        try:
            self.func()
        except Exception:
            logger.exception(f"❌ Periodic task '{self.name}' raised")

    def stop(self, timeout: Optional[float] = 5.0):
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)


@dataclass
class BackfillReport:
    """Result of a one-shot historical load"""
    days: int
    tanks: int = 0
    inserted: int = 0
    duplicates: int = 0
    malformed_records: int = 0
    insufficient_tanks: List[str] = field(default_factory=list)
    failed_tanks: List[str] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "days": self.days,
            "tanks": self.tanks,
            "inserted": self.inserted,
            "duplicates": self.duplicates,
            "malformed_records": self.malformed_records,
            "insufficient_tanks": list(self.insufficient_tanks),
            "failed_tanks": list(self.failed_tanks),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


class SyncOrchestrator:
    """
    Owns the client, store, tank configuration, counters and timers of one
    sync process. Built once at startup and handed to every periodic task.
    """

    def __init__(
        self,
        settings: Settings,
        client: IngestionClient,
        store: RetentionStore,
        tank_configs: TankConfigRegistry,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings
        self.client = client
        self.store = store
        self.tank_configs = tank_configs
        self._clock = clock
        self._sleep = sleep

        self.stats = SyncCycleStats(
            max_errors=settings.sync.error_ring_size,
            max_consecutive_errors=settings.sync.max_consecutive_errors,
            clock=clock,
        )
        self.breaker = CircuitBreaker(
            "tank_server",
            CircuitBreakerConfig(
                failure_threshold=settings.sync.circuit_failure_threshold,
                timeout_seconds=settings.sync.circuit_recovery_seconds,
            ),
        )

        self._executor: Optional[ThreadPoolExecutor] = None
        self._tasks: List[PeriodicTask] = []
        self.running = False

    # ══════════════════════════════════════════════════════════════════════════
    # LIFECYCLE
    # ══════════════════════════════════════════════════════════════════════════

    def check_connectivity(self):
        """Fail fast when the upstream or the store is unreachable."""
        try:
            self.client.test_connectivity()
        except SourceUnavailable as e:
            raise StartupConnectivityError(f"Tank server unreachable: {e}") from e

        try:
            self.store.test_connectivity()
        except PersistenceError as e:
            raise StartupConnectivityError(f"Retention store unreachable: {e}") from e

    def start(self, run_initial_cycle: bool = True):
        """
        Test connectivity, run one cycle immediately, then start the timers.

        Raises:
            StartupConnectivityError: upstream or store unreachable
        """
        logger.info("🚀 TANK SYNC SERVICE STARTING")
        self.check_connectivity()

        self._executor = ThreadPoolExecutor(
            max_workers=3, thread_name_prefix="tank-sync"
        )

        if run_initial_cycle:
            self.run_sync_cycle()

        sync = self.settings.sync
        self._tasks = [
            PeriodicTask(
                "sync", sync.sync_interval_seconds, self.run_sync_cycle, self._executor
            ),
            PeriodicTask(
                "cleanup", sync.cleanup_interval_seconds, self.run_cleanup, self._executor
            ),
            PeriodicTask(
                "health",
                sync.health_check_interval_seconds,
                self.log_health_status,
                self._executor,
            ),
        ]
        for task in self._tasks:
            task.start()

        self.running = True
        logger.info(
            f"✅ Timers started: sync every {sync.sync_interval_seconds:.0f}s, "
            f"cleanup every {sync.cleanup_interval_seconds:.0f}s, "
            f"health every {sync.health_check_interval_seconds:.0f}s"
        )

    def stop(self, timeout: Optional[float] = None):
        """Stop timers, let an in-flight cycle finish, log final stats."""
        logger.info("🛑 Stopping tank sync service...")
        for task in self._tasks:
            task.stop()
        self._tasks = []

        if self.stats.in_flight:
            logger.info("⏳ Waiting for the in-flight sync cycle to finish...")
        self.stats.wait_idle(timeout)

        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

        self.running = False
        self.log_final_stats()

    # ══════════════════════════════════════════════════════════════════════════
    # SYNC CYCLE
    # ══════════════════════════════════════════════════════════════════════════

    def run_sync_cycle(self) -> CycleOutcome:
        """One fetch → persist → analyze pass. Never raises for steady-state errors."""
        if not self.stats.try_begin_cycle():
            logger.warning("⏭️ Sync skipped - previous cycle still in flight")
            self.stats.record_cycle(CycleOutcome.SKIPPED)
            return CycleOutcome.SKIPPED

        try:
            return self._run_cycle()
        finally:
            self.stats.end_cycle()

    def _run_cycle(self) -> CycleOutcome:
        cycle_start = time.time()

        try:
            listing = self.breaker.execute(self.client.fetch_all_sites)
        except CircuitBreakerOpenError:
            logger.warning("⏸️ Sync skipped - tank server circuit breaker OPEN")
            self.stats.record_cycle(CycleOutcome.SKIPPED)
            return CycleOutcome.SKIPPED
        except SourceUnavailable as e:
            self.stats.record_error(str(e), context="fetch_all_sites")
            self.stats.record_cycle(CycleOutcome.FAILED)
            logger.error(f"❌ Tank server unavailable: {e}")
            return CycleOutcome.FAILED
        except Exception as e:
            self.stats.record_error(str(e), context="fetch_all_sites")
            self.stats.record_cycle(CycleOutcome.FAILED)
            logger.exception(f"❌ Site fetch raised unexpectedly: {e}")
            return CycleOutcome.FAILED

        logger.info("=" * 50)
        logger.info(f"🔄 SYNC CYCLE - {self._clock().strftime('%H:%M:%S UTC')}")

        sites = listing.sites
        self.stats.record_malformed(listing.malformed_records)

        tanks_total = tanks_failed = inserted = 0
        for site in sites:
            for tank in site.tanks:
                tanks_total += 1
                label = f"{site.site_id} tank {tank.tank_id}"
                try:
                    if self._sync_tank(site.site_id, tank):
                        inserted += 1
                except PersistenceError as e:
                    tanks_failed += 1
                    self.stats.record_error(f"{label}: {e}", context="persist")
                    logger.error(f"❌ {label}: {e}")
                except Exception as e:
                    # Bad site config or an analytics bug fails only this tank
                    tanks_failed += 1
                    self.stats.record_error(f"{label}: {e}", context="sync_tank")
                    logger.exception(f"❌ {label}: unexpected error")

        outcome = CycleOutcome.PARTIAL if tanks_failed else CycleOutcome.SUCCESS
        self.stats.record_cycle(outcome)

        logger.info(
            f"⏱️ Cycle completed in {time.time() - cycle_start:.2f}s. "
            f"Sites: {len(sites)} | Tanks: {tanks_total - tanks_failed}/{tanks_total} "
            f"| New readings: {inserted} | {outcome.value.upper()}"
        )
        return outcome

    def _sync_tank(self, site_id: str, tank: TankSnapshot) -> bool:
        """
        Persist the latest reading, then re-derive metrics from stored history.

        Returns True when a new reading was inserted.
        """
        inserted = False
        if tank.latest is not None:
            inserted = self.store.upsert_reading(tank.latest) is UpsertResult.OK

        now = self._clock()
        since = hours_ago(self.settings.analytics.lookback_hours, now=now)
        history = self.store.recent_readings(site_id, tank.tank_id, since)
        if not history:
            logger.debug(f"{site_id} tank {tank.tank_id}: no recent readings, keeping last metrics")
            return inserted

        metrics = derive_metrics(
            history,
            self.tank_configs.for_tank(site_id, tank.tank_id, tank.product),
            self.tank_configs.for_site(site_id),
            now=now,
        )
        self.store.upsert_derived_metrics(site_id, tank.tank_id, metrics)

        logger.debug(
            f"   {site_id} T{tank.tank_id}: {metrics.run_rate:.1f} gal/hr, "
            f"{format_hours_to_critical(metrics.hours_to_critical)}, "
            f"{metrics.status.value}"
        )
        return inserted

    # ══════════════════════════════════════════════════════════════════════════
    # CLEANUP / HEALTH
    # ══════════════════════════════════════════════════════════════════════════

    def run_cleanup(self) -> int:
        """Retention cleanup. Failures are recorded, never fatal."""
        max_age = timedelta(days=self.settings.store.retention_days)
        try:
            deleted = self.store.delete_older_than(max_age, now=self._clock())
        except PersistenceError as e:
            self.stats.record_error(str(e), context="cleanup")
            logger.error(f"❌ Cleanup failed: {e}")
            return 0

        self.stats.record_cleanup(deleted)
        logger.info(
            f"🧹 Cleanup removed {deleted} readings older than "
            f"{self.settings.store.retention_days:g} days"
        )
        return deleted

    def health_status(self) -> Dict[str, Any]:
        status = self.stats.snapshot()
        status["circuit_breaker"] = self.breaker.state.value
        status["circuit_breaker_status"] = self.breaker.get_status()
        status["version"] = self.settings.app.version
        return status

    def log_health_status(self) -> Dict[str, Any]:
        status = self.health_status()
        age = status["last_sync_age_seconds"]

        logger.info("📊 HEALTH CHECK")
        logger.info(f"   Status: {status['status'].upper()}")
        logger.info(f"   Uptime: {status['uptime_seconds'] / 3600:.1f}h")
        logger.info(
            f"   Cycles: {status['sync_count']} "
            f"(✅ {status['successful_cycles']} / ⚠️ {status['partial_cycles']} / "
            f"❌ {status['failed_cycles']} / ⏭️ {status['skipped_cycles']})"
        )
        logger.info(
            f"   Last sync: {f'{age:.0f}s ago' if age is not None else 'never'}"
        )
        logger.info(
            f"   Syncs/hour: {status['syncs_per_hour']} | "
            f"Success rate: {status['success_rate']}%"
        )
        if status["recent_errors"]:
            logger.info(f"   Recent errors ({len(status['recent_errors'])}):")
            for error in status["recent_errors"][-3:]:
                logger.info(f"     - {error['timestamp']} {error['message']}")

        if status["status"] == UNHEALTHY:
            logger.warning(
                f"🚨 Service UNHEALTHY: {status['consecutive_failures']} consecutive failed cycles"
            )
        return status

    def log_final_stats(self):
        status = self.health_status()
        logger.info("═" * 50)
        logger.info("📈 FINAL STATISTICS")
        logger.info(f"   Uptime: {status['uptime_seconds'] / 3600:.2f}h")
        logger.info(f"   Total cycles: {status['sync_count']}")
        logger.info(f"   Skipped cycles: {status['skipped_cycles']}")
        logger.info(f"   Total errors: {status['total_errors']}")
        logger.info(f"   Success rate: {status['success_rate']}%")
        logger.info("═" * 50)

    # ══════════════════════════════════════════════════════════════════════════
    # BACKFILL
    # ══════════════════════════════════════════════════════════════════════════

    def backfill(
        self, days: Optional[int] = None, batch_size: Optional[int] = None
    ) -> BackfillReport:
        """
        Load `days` of history for every tank into the store.

        Uses the same idempotent upsert as the sync cycle, so re-running it
        only reports duplicates.

        Raises:
            SourceUnavailable: the site list could not be fetched
        """
        days = days or self.settings.sync.backfill_days
        batch_size = batch_size or self.settings.sync.backfill_batch_size
        delay = self.settings.sync.backfill_tank_delay_seconds

        report = BackfillReport(days=days, started_at=self._clock())
        logger.info(f"📥 Backfilling {days} days of history (batches of {batch_size})")

        listing = self.client.fetch_all_sites()
        report.malformed_records += listing.malformed_records

        for site in listing.sites:
            for tank in site.tanks:
                if report.tanks and delay > 0:
                    self._sleep(delay)
                report.tanks += 1
                label = f"{site.site_id}/{tank.tank_id}"

                history = self.client.fetch_history_with_fallback(
                    site.site_id, tank.tank_id, days * 24
                )
                report.malformed_records += history.dropped_records
                if history.error:
                    report.failed_tanks.append(label)
                    logger.warning(f"⚠️ {label}: history unavailable ({history.error})")
                    continue
                if history.insufficient_data:
                    report.insufficient_tanks.append(label)

                try:
                    inserted, duplicates = self.store.upsert_readings(
                        history.readings, batch_size=batch_size
                    )
                except PersistenceError as e:
                    report.failed_tanks.append(label)
                    logger.error(f"❌ {label}: backfill persist failed: {e}")
                    continue

                report.inserted += inserted
                report.duplicates += duplicates
                logger.info(
                    f"   {label}: {len(history.readings)} readings "
                    f"({inserted} new, {duplicates} duplicates)"
                )

        report.finished_at = self._clock()
        self.stats.record_malformed(report.malformed_records)
        logger.info(
            f"✅ Backfill complete: {report.tanks} tanks, {report.inserted} inserted, "
            f"{report.duplicates} duplicates, {report.malformed_records} malformed, "
            f"{len(report.failed_tanks)} failed"
        )
        return report
