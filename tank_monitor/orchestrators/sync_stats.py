"""
Sync Cycle Statistics

Process-wide counters owned by the orchestrator instance and shared by its
periodic tasks. All mutation happens under one lock.
"""

import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from tank_monitor.models.tank_models import CycleOutcome
from tank_monitor.timezone_utils import utc_now

HEALTHY = "healthy"
UNHEALTHY = "unhealthy"


@dataclass
class SyncError:
    """One entry of the recent-errors ring"""
    timestamp: datetime
    message: str
    context: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "message": self.message,
            "context": self.context,
        }


class SyncCycleStats:
    """
    Counters for the sync service.

    sync_count counts cycles that actually ran (skipped cycles are tracked
    separately). consecutive_failures resets on any cycle that reached the
    upstream; skipped cycles leave it unchanged.
    """

    def __init__(
        self,
        max_errors: int = 10,
        max_consecutive_errors: int = 5,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._lock = threading.Lock()
        self._idle = threading.Event()
        self._idle.set()
        self._clock = clock
        self.max_consecutive_errors = max_consecutive_errors

        self.started_at: datetime = clock()
        self.sync_count = 0
        self.successful_cycles = 0
        self.partial_cycles = 0
        self.failed_cycles = 0
        self.skipped_cycles = 0
        self.consecutive_failures = 0
        self.total_errors = 0
        self.malformed_records = 0
        self.last_sync_time: Optional[datetime] = None
        self.last_cleanup_time: Optional[datetime] = None
        self.last_cleanup_deleted = 0
        self.errors: deque = deque(maxlen=max_errors)
        self._in_flight = False

    # ------------------------------------------------------------------
    # In-flight flag
    # ------------------------------------------------------------------

    def try_begin_cycle(self) -> bool:
        """Atomically claim the cycle slot. False if one is already running."""
        with self._lock:
            if self._in_flight:
                return False
            self._in_flight = True
            self._idle.clear()
            return True

    def end_cycle(self):
        with self._lock:
            self._in_flight = False
            self._idle.set()

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no cycle is in flight."""
        return self._idle.wait(timeout)

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_cycle(self, outcome: CycleOutcome):
        with self._lock:
            if outcome is CycleOutcome.SKIPPED:
                self.skipped_cycles += 1
                return

            self.sync_count += 1
            if outcome is CycleOutcome.FAILED:
                self.failed_cycles += 1
                self.consecutive_failures += 1
                return

            if outcome is CycleOutcome.SUCCESS:
                self.successful_cycles += 1
            else:
                self.partial_cycles += 1
            self.consecutive_failures = 0
            self.last_sync_time = self._clock()

    def record_error(self, message: str, context: str = ""):
        with self._lock:
            self.total_errors += 1
            self.errors.append(SyncError(self._clock(), message, context))

    def record_malformed(self, count: int):
        if count <= 0:
            return
        with self._lock:
            self.malformed_records += count

    def record_cleanup(self, deleted: int):
        with self._lock:
            self.last_cleanup_time = self._clock()
            self.last_cleanup_deleted = deleted

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    def health_status(self) -> str:
        if self.consecutive_failures >= self.max_consecutive_errors:
            return UNHEALTHY
        return HEALTHY

    def recent_errors(self) -> List[SyncError]:
        with self._lock:
            return list(self.errors)

    def snapshot(self) -> Dict[str, Any]:
        """Point-in-time health report."""
        now = self._clock()
        with self._lock:
            uptime_seconds = max(0.0, (now - self.started_at).total_seconds())
            uptime_hours = uptime_seconds / 3600.0
            syncs_per_hour = self.sync_count / uptime_hours if uptime_hours > 0 else 0.0
            success_rate = (
                (self.successful_cycles + self.partial_cycles) / self.sync_count * 100
                if self.sync_count
                else 0.0
            )
            last_sync_age = (
                (now - self.last_sync_time).total_seconds()
                if self.last_sync_time
                else None
            )
            return {
                "status": self.health_status(),
                "started_at": self.started_at.isoformat(),
                "uptime_seconds": round(uptime_seconds, 1),
                "sync_count": self.sync_count,
                "successful_cycles": self.successful_cycles,
                "partial_cycles": self.partial_cycles,
                "failed_cycles": self.failed_cycles,
                "skipped_cycles": self.skipped_cycles,
                "consecutive_failures": self.consecutive_failures,
                "total_errors": self.total_errors,
                "malformed_records": self.malformed_records,
                "syncs_per_hour": round(syncs_per_hour, 2),
                "success_rate": round(success_rate, 1),
                "last_sync_time": (
                    self.last_sync_time.isoformat() if self.last_sync_time else None
                ),
                "last_sync_age_seconds": (
                    round(last_sync_age, 1) if last_sync_age is not None else None
                ),
                "last_cleanup_time": (
                    self.last_cleanup_time.isoformat()
                    if self.last_cleanup_time
                    else None
                ),
                "last_cleanup_deleted": self.last_cleanup_deleted,
                "in_flight": self._in_flight,
                "recent_errors": [e.to_dict() for e in self.errors],
            }
