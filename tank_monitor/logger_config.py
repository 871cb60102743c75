"""
Logging Configuration for the Tank Monitor Sync Service
Provides rotating file logs, colored console output, optional JSON output
and a crash log for post-mortem analysis
"""

import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler
from pathlib import Path
from typing import Any, Optional, Union

# Default logs directory (overridable through LOG_DIR)
LOGS_DIR = Path.cwd() / "logs"

# Attributes every LogRecord carries; anything else came in through `extra=`
_RESERVED_ATTRS = {
    "name",
    "msg",
    "args",
    "created",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "stack_info",
    "exc_info",
    "exc_text",
    "thread",
    "threadName",
    "taskName",
    "message",
    "asctime",
}


class ColoredFormatter(logging.Formatter):
    """Colored console formatter"""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record):
        original = record.levelname
        if original in self.COLORS:
            record.levelname = f"{self.COLORS[original]}{original}{self.RESET}"
        try:
            return super().format(record)
        finally:
            # Records are shared with the file handlers
            record.levelname = original


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for log aggregation.

    Output format:
    {
        "timestamp": "2025-11-26T12:00:00.000000+00:00",
        "level": "INFO",
        "logger": "tank_monitor.orchestrators.sync_orchestrator",
        "message": "Sync cycle complete",
        "site_id": "Mascot",
        "tank_id": 1
    }
    """

    # Fields to mask in logs (security)
    SENSITIVE_FIELDS = {
        "password",
        "token",
        "secret",
        "api_key",
        "authorization",
        "service_key",
    }

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "source": {
                "file": record.filename,
                "line": record.lineno,
                "function": record.funcName,
            },
        }

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS:
                continue
            if key.lower() in self.SENSITIVE_FIELDS:
                log_entry[key] = "***MASKED***"
            else:
                log_entry[key] = self._serialize_value(value)

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": (
                    traceback.format_exception(*record.exc_info)
                    if record.exc_info[0]
                    else None
                ),
            }

        return json.dumps(log_entry, default=str, ensure_ascii=False)

    def _serialize_value(self, value: Any) -> Any:
        """Serialize value for JSON"""
        if isinstance(value, (str, int, float, bool, type(None))):
            return value
        elif isinstance(value, (list, tuple)):
            return [self._serialize_value(v) for v in value]
        elif isinstance(value, dict):
            return {k: self._serialize_value(v) for k, v in value.items()}
        elif isinstance(value, datetime):
            return value.isoformat()
        else:
            return str(value)


class CrashLogger:
    """Logs crashes and critical errors for post-mortem analysis"""

    def __init__(self, log_dir: Path = LOGS_DIR):
        self.log_dir = Path(log_dir)
        self.crash_log = self.log_dir / "crashes.log"

    def log_crash(self, error: Exception, context: str = ""):
        """Log a crash with full traceback"""
        self.log_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")

        with open(self.crash_log, "a", encoding="utf-8") as f:
            f.write(f"\n{'='*80}\n")
            f.write(f"CRASH: {timestamp}\n")
            f.write(f"Context: {context}\n")
            f.write(f"{'='*80}\n")
            f.write(f"Error: {type(error).__name__}: {str(error)}\n")
            f.write("\nTraceback:\n")
            f.write(
                "".join(
                    traceback.format_exception(type(error), error, error.__traceback__)
                )
            )
            f.write(f"\n{'='*80}\n\n")


def _resolve_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(
    name: str = "tank_monitor",
    level: Union[int, str] = logging.INFO,
    log_to_file: bool = True,
    log_to_console: bool = True,
    log_dir: Optional[Path] = None,
    log_format: str = "text",
) -> logging.Logger:
    """
    Setup logging with rotation and error tracking

    Args:
        name: Logger name (module loggers under it propagate here)
        level: Logging level, int or name ("INFO")
        log_to_file: Enable file logging
        log_to_console: Enable console logging
        log_dir: Directory for log files. Defaults to LOGS_DIR
        log_format: "text" or "json"

    Returns:
        Configured logger
    """
    level = _resolve_level(level)
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Remove existing handlers
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if log_format == "json":
        file_formatter = JSONFormatter()
        console_formatter = JSONFormatter()
    else:
        file_formatter = logging.Formatter(
            fmt="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        console_formatter = ColoredFormatter(
            fmt="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
            datefmt="%H:%M:%S",
        )

    if log_to_file:
        target_dir = Path(log_dir) if log_dir else LOGS_DIR
        target_dir.mkdir(parents=True, exist_ok=True)

        # Main rotating log file (10MB max, keep 5 backups)
        main_handler = RotatingFileHandler(
            target_dir / f"{name}.log",
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding="utf-8",
        )
        main_handler.setLevel(level)
        main_handler.setFormatter(file_formatter)
        logger.addHandler(main_handler)

        # Error log file (only ERROR and CRITICAL)
        error_handler = RotatingFileHandler(
            target_dir / f"{name}_errors.log",
            maxBytes=5 * 1024 * 1024,  # 5MB
            backupCount=3,
            encoding="utf-8",
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(file_formatter)
        logger.addHandler(error_handler)

        # Daily rotating log
        daily_handler = TimedRotatingFileHandler(
            target_dir / f"{name}_daily.log",
            when="midnight",
            interval=1,
            backupCount=7,  # Keep 7 days
            encoding="utf-8",
        )
        daily_handler.setLevel(level)
        daily_handler.setFormatter(file_formatter)
        logger.addHandler(daily_handler)

    if log_to_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(console_formatter)
        logger.addHandler(console_handler)

    return logger
