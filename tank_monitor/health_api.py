"""
╔═══════════════════════════════════════════════════════════════════════════════╗
║                          TANK SYNC HEALTH API                                  ║
╚═══════════════════════════════════════════════════════════════════════════════╝

Endpoints:
- GET /health                          - Orchestrator health (503 when unhealthy)
- GET /tanks/{site_id}/{tank_id}/metrics - Last-known-good derived metrics
"""

import logging
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from tank_monitor.errors import PersistenceError
from tank_monitor.orchestrators.sync_orchestrator import SyncOrchestrator
from tank_monitor.orchestrators.sync_stats import UNHEALTHY
from tank_monitor.repositories.retention_store import RetentionStore
from tank_monitor.services.tank_analytics import format_hours_to_critical

logger = logging.getLogger(__name__)


class ErrorEntry(BaseModel):
    timestamp: datetime
    message: str
    context: str = ""


class HealthResponse(BaseModel):
    """Health check response model"""

    status: str
    version: str
    uptime_seconds: float
    sync_count: int
    successful_cycles: int
    partial_cycles: int
    failed_cycles: int
    skipped_cycles: int
    consecutive_failures: int
    total_errors: int
    syncs_per_hour: float
    success_rate: float
    last_sync_time: Optional[datetime] = None
    last_sync_age_seconds: Optional[float] = None
    circuit_breaker: str
    circuit_breaker_status: Dict[str, Any] = {}
    recent_errors: List[ErrorEntry] = []


class TankMetricsResponse(BaseModel):
    site_id: str
    tank_id: int
    run_rate: float
    hours_to_critical: Optional[float] = None
    time_to_critical: str
    status: str
    capacity_percentage: float
    predicted_critical_at: Optional[datetime] = None
    data_quality_score: float
    available_ullage: float
    qualifying_readings: int
    calculated_at: Optional[datetime] = None


def create_health_app(orchestrator: SyncOrchestrator, store: RetentionStore) -> FastAPI:
    app = FastAPI(title="Tank Sync Health", version=orchestrator.settings.app.version)

    @app.get("/health", response_model=HealthResponse)
    async def health():
        """200 while healthy, 503 after too many consecutive failed cycles."""
        status = orchestrator.health_status()
        body = HealthResponse(**status)
        if status["status"] == UNHEALTHY:
            return JSONResponse(status_code=503, content=body.model_dump(mode="json"))
        return body

    @app.get("/tanks/{site_id}/{tank_id}/metrics", response_model=TankMetricsResponse)
    def tank_metrics(site_id: str, tank_id: int):
        try:
            metrics = store.latest_metrics(site_id, tank_id)
        except PersistenceError as e:
            raise HTTPException(status_code=503, detail=str(e))

        if metrics is None:
            raise HTTPException(
                status_code=404, detail=f"No metrics for {site_id} tank {tank_id}"
            )

        return TankMetricsResponse(
            site_id=site_id,
            tank_id=tank_id,
            run_rate=metrics.run_rate,
            hours_to_critical=metrics.hours_to_critical,
            time_to_critical=format_hours_to_critical(metrics.hours_to_critical),
            status=metrics.status.value,
            capacity_percentage=metrics.capacity_percentage,
            predicted_critical_at=metrics.predicted_critical_at,
            data_quality_score=metrics.data_quality_score,
            available_ullage=metrics.available_ullage,
            qualifying_readings=metrics.qualifying_readings,
            calculated_at=metrics.calculated_at,
        )

    return app


def start_health_server(app: FastAPI, port: int, host: str = "0.0.0.0") -> threading.Thread:
    """Serve the health API from a daemon thread alongside the sync timers."""
    config = uvicorn.Config(app, host=host, port=port, log_level="warning")
    server = uvicorn.Server(config)
    thread = threading.Thread(target=server.run, name="tank-health-api", daemon=True)
    thread.start()
    logger.info(f"🩺 Health API listening on http://{host}:{port}/health")
    return thread
