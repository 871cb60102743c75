"""Orchestration layer for the sync service."""

from .sync_orchestrator import BackfillReport, PeriodicTask, SyncOrchestrator
from .sync_stats import SyncCycleStats

__all__ = [
    "BackfillReport",
    "PeriodicTask",
    "SyncCycleStats",
    "SyncOrchestrator",
]
