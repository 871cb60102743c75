"""
Tank Sync Service - Entry Point

Pulls tank telemetry from the central tank server every SYNC_INTERVAL ms,
stores it with automatic retention and keeps per-tank depletion metrics
current.

Commands:
    python tank_sync_service.py run                  start the background service
    python tank_sync_service.py health               one-shot connectivity/health check
    python tank_sync_service.py backfill --days 10   load history into the store
    python tank_sync_service.py init-db              create the tables

Exit codes: 0 on graceful shutdown, 1 when the upstream or the store is
unreachable at startup.
"""

import argparse
import json
import logging
import signal
import sys
import threading
from typing import List, Optional, Tuple

from tank_monitor.errors import SourceUnavailable, StartupConnectivityError
from tank_monitor.health_api import create_health_app, start_health_server
from tank_monitor.logger_config import CrashLogger, setup_logging
from tank_monitor.orchestrators.sync_orchestrator import SyncOrchestrator
from tank_monitor.repositories.database import create_store_engine
from tank_monitor.repositories.retention_store import RetentionStore
from tank_monitor.services.ingestion_client import IngestionClient
from tank_monitor.services.tank_config import TankConfigRegistry
from tank_monitor.settings import Settings, get_settings

logger = logging.getLogger("tank_monitor.service")


def build_components(settings: Settings) -> Tuple[SyncOrchestrator, RetentionStore]:
    """Wire client, store, tank configuration and orchestrator."""
    engine = create_store_engine(settings.store)
    store = RetentionStore(engine, cleanup_batch_size=settings.store.cleanup_batch_size)
    client = IngestionClient(settings.upstream)
    registry = TankConfigRegistry.from_yaml(
        settings.analytics.tank_config_file, settings.analytics
    )
    orchestrator = SyncOrchestrator(settings, client, store, registry)
    return orchestrator, store


def cmd_run(settings: Settings, args) -> int:
    orchestrator, store = build_components(settings)
    crash_logger = CrashLogger(settings.app.log_dir)

    try:
        orchestrator.start()
    except StartupConnectivityError as e:
        logger.critical(f"💥 Startup failed: {e}")
        crash_logger.log_crash(e, "startup connectivity check")
        return 1

    port = args.health_port if args.health_port is not None else settings.app.health_api_port
    if port:
        start_health_server(create_health_app(orchestrator, store), port)

    stop_event = threading.Event()

    def _handle_signal(signum, frame):
        logger.info(f"🛑 Received {signal.Signals(signum).name}, shutting down...")
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    logger.info("✅ Tank sync service running. Press Ctrl+C to stop.")
    stop_event.wait()

    orchestrator.stop()
    store.engine.dispose()
    logger.info("👋 Tank sync service stopped")
    return 0


def cmd_health(settings: Settings, args) -> int:
    orchestrator, store = build_components(settings)
    try:
        orchestrator.check_connectivity()
    except StartupConnectivityError as e:
        print(json.dumps({"status": "unhealthy", "error": str(e)}, indent=2))
        return 1

    status = orchestrator.health_status()
    status["tank_server"] = "reachable"
    status["store"] = "reachable"
    status["readings_stored"] = store.count_readings()
    status["settings"] = settings.to_dict()
    print(json.dumps(status, indent=2, default=str))
    return 0


def cmd_backfill(settings: Settings, args) -> int:
    orchestrator, store = build_components(settings)
    try:
        orchestrator.check_connectivity()
        report = orchestrator.backfill(days=args.days, batch_size=args.batch_size)
    except (StartupConnectivityError, SourceUnavailable) as e:
        logger.error(f"❌ Backfill aborted: {e}")
        return 1
    finally:
        store.engine.dispose()

    print(json.dumps(report.to_dict(), indent=2))
    return 0


def cmd_init_db(settings: Settings, args) -> int:
    engine = create_store_engine(settings.store)
    try:
        RetentionStore(engine).create_schema()
    finally:
        engine.dispose()
    return 0


COMMANDS = {
    "run": cmd_run,
    "health": cmd_health,
    "backfill": cmd_backfill,
    "init-db": cmd_init_db,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Tank telemetry sync service")
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Start the background sync service")
    run_parser.add_argument(
        "--health-port",
        type=int,
        default=None,
        help="Serve the health API on this port (default: HEALTH_API_PORT, 0 = off)",
    )

    subparsers.add_parser("health", help="Check upstream/store connectivity and exit")

    backfill_parser = subparsers.add_parser(
        "backfill", help="Load historical readings into the store"
    )
    backfill_parser.add_argument(
        "--days", type=int, default=None, help="Days of history (default: BACKFILL_DAYS)"
    )
    backfill_parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Readings per insert transaction (default: BACKFILL_BATCH_SIZE)",
    )

    subparsers.add_parser("init-db", help="Create tank_logs / processed_tank_data")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    command = args.command or "run"
    if args.command is None:
        args.health_port = None

    settings = get_settings()
    setup_logging(
        "tank_monitor",
        level=settings.app.log_level,
        log_to_file=settings.app.log_to_file,
        log_dir=settings.app.log_dir,
        log_format=settings.app.log_format,
    )
    for warning in settings.validate():
        logger.warning(warning)

    return COMMANDS[command](settings, args)


if __name__ == "__main__":
    sys.exit(main())
