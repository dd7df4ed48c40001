"""Logging bootstrap for the ParkQR kiosk."""
from __future__ import annotations

from logging.config import dictConfig
from pathlib import Path
from typing import Dict, Optional

LOG_FILENAME = "kiosk-runtime.log"

# One record per request; held at WARNING unless the service runs at DEBUG.
CHATTY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def _chatty_logger_config(level: str) -> Dict[str, Dict[str, str]]:
    chatty_level = "DEBUG" if level == "DEBUG" else "WARNING"
    return {name: {"level": chatty_level} for name in CHATTY_LOGGERS}


def configure_logging(level: str = "INFO", log_dir: Optional[Path] = None, retention_days: int = 14) -> None:
    """Log to the console and to a daily-rotated ``kiosk-runtime.log``."""

    level = level.upper()
    if log_dir is None:
        log_dir = Path(__file__).resolve().parents[2] / "logs"
    log_dir = Path(log_dir).expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "kiosk": {
                    "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
                }
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "kiosk",
                    "level": level,
                },
                "kiosk_file": {
                    "class": "logging.handlers.TimedRotatingFileHandler",
                    "formatter": "kiosk",
                    "level": level,
                    "filename": str(log_dir / LOG_FILENAME),
                    "when": "midnight",
                    "backupCount": max(int(retention_days), 1),
                    "utc": True,
                    "delay": True,
                    "encoding": "utf-8",
                },
            },
            "loggers": {
                "parkqr": {"level": level},
                **_chatty_logger_config(level),
            },
            "root": {"level": level, "handlers": ["console", "kiosk_file"]},
        }
    )


__all__ = ["configure_logging", "CHATTY_LOGGERS", "LOG_FILENAME"]
