"""
Tests for logging configuration

Run with: pytest tests/test_logger_config.py -v
"""

import json
import logging
import sys
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from tank_monitor.logger_config import (
    ColoredFormatter,
    CrashLogger,
    JSONFormatter,
    setup_logging,
)


def _record(msg="Sync cycle complete", level=logging.INFO, **extra):
    record = logging.LogRecord(
        "tank_monitor.test", level, __file__, 10, msg, None, None, func="sync"
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestSetupLogging:
    def test_file_handlers(self, tmp_path):
        logger = setup_logging(
            "tank_monitor.test_files", level="DEBUG", log_dir=tmp_path, log_to_console=False
        )
        try:
            handler_types = [type(h) for h in logger.handlers]
            assert handler_types.count(RotatingFileHandler) == 2
            assert handler_types.count(TimedRotatingFileHandler) == 1
            assert logger.level == logging.DEBUG

            logger.error("❌ persist failed")
            for handler in logger.handlers:
                handler.flush()

            assert "persist failed" in (tmp_path / "tank_monitor.test_files_errors.log").read_text(
                encoding="utf-8"
            )
        finally:
            for handler in list(logger.handlers):
                logger.removeHandler(handler)
                handler.close()

    def test_repeated_setup_does_not_duplicate_handlers(self):
        setup_logging("tank_monitor.test_console", log_to_file=False)
        logger = setup_logging("tank_monitor.test_console", log_to_file=False)
        assert len(logger.handlers) == 1

    def test_unknown_level_falls_back_to_info(self):
        logger = setup_logging("tank_monitor.test_level", level="chatty", log_to_file=False)
        assert logger.level == logging.INFO


class TestFormatters:
    def test_json_masks_secrets(self):
        output = json.loads(
            JSONFormatter().format(_record(site_id="Mascot", tank_id=1, service_key="s3cret"))
        )

        assert output["message"] == "Sync cycle complete"
        assert output["site_id"] == "Mascot"
        assert output["tank_id"] == 1
        assert output["service_key"] == "***MASKED***"

    def test_colored_formatter_restores_levelname(self):
        record = _record(level=logging.WARNING)
        formatted = ColoredFormatter("%(levelname)s %(message)s").format(record)

        assert "\033[33m" in formatted
        assert record.levelname == "WARNING"


class TestCrashLogger:
    def test_writes_traceback(self, tmp_path):
        crash_logger = CrashLogger(tmp_path / "logs")
        try:
            raise RuntimeError("store unreachable")
        except RuntimeError as e:
            crash_logger.log_crash(e, "startup connectivity check")

        content = (tmp_path / "logs" / "crashes.log").read_text(encoding="utf-8")
        assert "Context: startup connectivity check" in content
        assert "RuntimeError: store unreachable" in content
