"""
Logging setup.

- LOG_FORMAT=text: human-readable lines for development
- LOG_FORMAT=json: one JSON object per line for log aggregation
- LOG_LEVEL sets the root level

Signing code logs correlation ids through ``extra=`` (document_id,
recipient_id, element_id, signature_id, event_type); both formatters print
whichever of them are present.
"""

import json
import logging
import sys
from datetime import datetime, timezone

from .config import settings

CORRELATION_FIELDS = (
    "document_id",
    "recipient_id",
    "element_id",
    "signature_id",
    "event_type",
    "method",
    "path",
    "status",
)


def _correlation(record):
    return {key: getattr(record, key) for key in CORRELATION_FIELDS if getattr(record, key, None) is not None}


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        entry.update(_correlation(record))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.now().strftime("%H:%M:%S")
        ids = " ".join(f"{k}={v}" for k, v in _correlation(record).items())
        line = f"{ts} {record.levelname:<8} {record.name}: {record.getMessage()}"
        if ids:
            line += f" [{ids}]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(level_name=None, fmt=None):
    level_name = (level_name or settings.LOG_LEVEL).upper()
    level = getattr(logging, level_name, logging.INFO)
    formatter = JSONFormatter() if (fmt or settings.LOG_FORMAT) == "json" else ReadableFormatter()

    root = logging.getLogger()
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("urllib3", "sqlalchemy.engine", "multipart"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
