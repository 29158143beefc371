"""Session logging: console plus one file per run, with device context on each line."""
from __future__ import annotations

import logging
from logging.config import dictConfig
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(threadName)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class DeviceFormatter(logging.Formatter):
    """Appends ``device=``, ``cycle=`` and ``reason=`` when a record carries them."""

    CONTEXT = ("device", "cycle", "reason")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = " ".join(
            f"{key}={getattr(record, key)}"
            for key in self.CONTEXT
            if getattr(record, key, None) is not None
        )
        return f"{line} | {context}" if context else line


def setup_logging(
    session_id: str,
    log_dir: Optional[Path] = None,
    level: str = "INFO",
) -> Optional[Path]:
    """Send log records to the console and, when ``log_dir`` is given, a session file."""
    formatter = {
        "()": "ingestbench.logs.DeviceFormatter",
        "fmt": LOG_FORMAT,
        "datefmt": DATE_FORMAT,
    }
    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "level": level,
            "formatter": "device",
        }
    }
    log_path: Optional[Path] = None
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        log_path = log_dir / f"{session_id}.log"
        handlers["file"] = {
            "class": "logging.FileHandler",
            "level": level,
            "formatter": "device",
            "filename": str(log_path),
            "encoding": "utf-8",
        }

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"device": formatter},
            "handlers": handlers,
            "loggers": {
                "paho": {"level": "WARNING"},
            },
            "root": {"handlers": list(handlers), "level": level},
        }
    )
    return log_path
