"""
Placewatch Logging Setup
========================

The CLI and the API call ``setup_logging()`` once, before anything else
logs. Modules only ever use ``logging.getLogger(__name__)``.

Two output formats:
    text  : "2024-06-01 09:00:02 [INFO    ] placewatch...: leeds: success ..."
    json  : one object per line, with the sync context fields
            (run_id, target_id, status, fetched, inserted, job_id)
            copied from ``extra=`` when a log call sets them

Usage:
    from placewatch.orchestrator.logging_config import setup_logging

    setup_logging(level="INFO", json_output=True, log_file="logs/placewatch.log")
"""

import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from typing import List, Optional

SYNC_CONTEXT_FIELDS = ("run_id", "target_id", "status", "fetched", "inserted", "job_id")

TEXT_FORMAT = "%(asctime)s [%(levelname)-8s] %(name)s: %(message)s"
TEXT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Loggers that would otherwise flood DEBUG output; urllib3 also logs Bot API URLs
NOISY_LOGGERS = ("urllib3", "apscheduler")


class JSONFormatter(logging.Formatter):
    """Sync log lines for log shippers: the record time, not the format time."""

    def format(self, record: logging.LogRecord) -> str:
        line = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        line.update({
            name: getattr(record, name)
            for name in SYNC_CONTEXT_FIELDS
            if getattr(record, name, None) is not None
        })
        if record.exc_info and record.exc_info[0] is not None:
            line["exception"] = self.formatException(record.exc_info)
        return json.dumps(line, default=str)


def _handlers(log_file: Optional[str], max_bytes: int, backup_count: int) -> List[logging.Handler]:
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
        handlers.append(logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
        ))
    return handlers


def setup_logging(
    level: str = "INFO",
    json_output: bool = False,
    log_file: Optional[str] = None,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
):
    """
    Route every placewatch logger to stdout, and to ``log_file`` if given.

    Calling it again replaces the previous handlers.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()

    formatter = JSONFormatter() if json_output else logging.Formatter(TEXT_FORMAT, datefmt=TEXT_DATE_FORMAT)
    for handler in _handlers(log_file, max_bytes, backup_count):
        handler.setFormatter(formatter)
        root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root.info(f"Logging ready: level={level.upper()} format={'json' if json_output else 'text'} file={log_file or '-'}")
