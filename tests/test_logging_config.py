"""Tests for logging configuration."""

import logging
import logging.handlers

from parkqr.logging_config import CHATTY_LOGGERS, LOG_FILENAME, configure_logging


def test_configure_logging_writes_runtime_file(tmp_path) -> None:  # type: ignore[no-untyped-def]
    log_dir = tmp_path / "logs"

    configure_logging("info", log_dir, retention_days=0)
    logging.getLogger("parkqr.test").info("kiosk ready")
    root = logging.getLogger()
    for handler in root.handlers:
        handler.flush()

    file_handlers = [
        handler
        for handler in root.handlers
        if isinstance(handler, logging.handlers.TimedRotatingFileHandler)
    ]
    assert len(file_handlers) == 1
    assert file_handlers[0].backupCount == 1
    assert "kiosk ready" in (log_dir / LOG_FILENAME).read_text(encoding="utf-8")
    assert root.level == logging.INFO


def test_request_loggers_are_quiet_outside_debug(tmp_path) -> None:  # type: ignore[no-untyped-def]
    configure_logging("info", tmp_path, retention_days=3)

    for name in CHATTY_LOGGERS:
        assert logging.getLogger(name).level == logging.WARNING
    assert logging.getLogger("parkqr").level == logging.INFO
    assert not logging.getLogger("httpx").isEnabledFor(logging.INFO)


def test_debug_level_keeps_request_loggers(tmp_path) -> None:  # type: ignore[no-untyped-def]
    configure_logging("debug", tmp_path, retention_days=3)

    assert logging.getLogger("httpx").level == logging.DEBUG
    assert logging.getLogger("uvicorn.access").isEnabledFor(logging.DEBUG)
