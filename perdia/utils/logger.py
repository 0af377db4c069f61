"""Structured JSON logging for the content lifecycle.

Scripts call setup_logging() once; library modules only ever use
``logging.getLogger(__name__)`` and pass structured context via ``extra=``.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler

LOG_FILENAME = "perdia.log"
MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5
CONSOLE_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"

# Structured fields callers pass via ``extra=``
EXTRA_FIELDS = ("article_id", "status", "endpoint", "method", "status_code", "response_time")


class JSONFormatter(logging.Formatter):
    """One JSON object per line: time, level, logger, message, plus any known extras."""

    def format(self, record):
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update({key: getattr(record, key) for key in EXTRA_FIELDS if hasattr(record, key)})
        if record.exc_info and record.exc_info[0]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _already_configured(root: logging.Logger) -> bool:
    return any(isinstance(h.formatter, JSONFormatter) for h in root.handlers)


def setup_logging(log_dir="logs", level=None):
    """Log INFO+ to stdout and everything at ``level`` to a rotating JSON file.

    ``level`` defaults to $PERDIA_LOG_LEVEL, then INFO. Safe to call more
    than once.
    """
    root = logging.getLogger()
    if _already_configured(root):
        return root

    level = (level or os.getenv("PERDIA_LOG_LEVEL") or "INFO").upper()
    root.setLevel(getattr(logging, level, logging.INFO))

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(logging.INFO)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    root.addHandler(console)

    os.makedirs(log_dir, exist_ok=True)
    json_file = RotatingFileHandler(
        os.path.join(log_dir, LOG_FILENAME), maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS
    )
    json_file.setLevel(logging.DEBUG)
    json_file.setFormatter(JSONFormatter())
    root.addHandler(json_file)

    return root
