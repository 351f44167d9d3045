"""
Logging setup for the proctor service.

Production emits one JSON object per line, tagged with the request id of
the request being served and any session, attempt or user ids passed as
``extra``. Development gets plain text lines.
"""
import json
import logging
import logging.config
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from proctor.core.config import settings

# Set by RequestLoggingMiddleware for the lifetime of each request
request_id_context: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# LogRecord extras copied into JSON output
_STRUCTURED_FIELDS = (
    "method",
    "path",
    "status_code",
    "duration_ms",
    "client_host",
    "error_id",
    "event_data",
    "session_id",
    "attempt_id",
    "user_id",
)

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class JSONFormatter(logging.Formatter):
    """Render a record as a single JSON line with a stable set of keys."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = request_id_context.get()
        if request_id:
            entry["request_id"] = request_id

        for name in _STRUCTURED_FIELDS:
            if hasattr(record, name):
                entry[name] = getattr(record, name)

        if record.levelno >= logging.ERROR:
            entry["source"] = f"{record.pathname}:{record.lineno}"
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def _logger_config(level: int) -> Dict[str, Any]:
    return {"level": level, "handlers": ["console"], "propagate": False}


def setup_logging() -> None:
    """
    Configure application-wide logging.

    JSON output in production, human-readable lines otherwise. SQL echo and
    uvicorn access logs are quieted so domain events stay readable.
    """
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    formatter = "json" if settings.ENV == "production" else "text"

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "text": {"format": TEXT_FORMAT, "datefmt": "%Y-%m-%d %H:%M:%S"},
                "json": {"()": JSONFormatter},
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "level": level,
                    "formatter": formatter,
                    "stream": sys.stdout,
                },
            },
            "root": {"level": level, "handlers": ["console"]},
            "loggers": {
                "proctor": _logger_config(level),
                "uvicorn.access": _logger_config(
                    logging.WARNING if settings.DEBUG else logging.INFO
                ),
                "sqlalchemy.engine": _logger_config(logging.WARNING),
            },
        }
    )
