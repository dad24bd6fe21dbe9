"""
Structured JSON logging configuration (Monolog-style).

Every log line is one JSON object written to stdout. Entries carry a channel
(http, db, attempts, grading, proctor, cache, auth), the current request ID
and business context such as attempt_id or session_id, so a single attempt
can be traced across both engines.
"""

import logging
import json
import os
import uuid
from datetime import datetime, timezone
from contextvars import ContextVar

# Request ID of the HTTP request currently being served ("" outside requests)
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

CHANNELS = ["http", "db", "attempts", "grading", "proctor", "cache", "auth"]


class StructuredJsonFormatter(logging.Formatter):
    """
    Formats a LogRecord as a single JSON object:

    - timestamp: ISO 8601 UTC with millisecond precision
    - level / message / channel
    - context: request_id plus whatever business keys the caller attached
    - extra: free-form metadata (duration_ms, counts, scores)
    - exception: formatted traceback, only when exc_info was given
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z",
            "level": record.levelname,
            "message": record.getMessage(),
            "channel": getattr(record, "channel", record.name.split(".")[-1] if "." in record.name else "app"),
            "context": {
                "request_id": request_id_var.get(""),
                **(getattr(record, "context", {}) or {})
            },
            "extra": getattr(record, "extra_data", {}) or {}
        }
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


def setup_logging(level: str = None):
    """
    Configure the root logger with the JSON formatter and register the
    channel loggers. Safe to call more than once; the root handler list is
    replaced, not appended to.
    """
    level_value = getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO)

    handler = logging.StreamHandler()
    handler.setFormatter(StructuredJsonFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(level_value)
    root_logger.handlers = [handler]

    for channel in CHANNELS:
        logging.getLogger(f"app.{channel}").setLevel(level_value)

    return root_logger


def get_logger(channel: str) -> logging.Logger:
    """Return the logger for a channel (e.g. "attempts" -> app.attempts)."""
    return logging.getLogger(f"app.{channel}")


def log_with_context(logger: logging.Logger, level: str, message: str,
                     context: dict = None, extra_data: dict = None,
                     exc_info=False):
    """
    Emit a structured log entry.

    Args:
        logger: The channel logger to use
        level: Log level string (INFO, WARNING, ERROR, DEBUG)
        message: Human-readable log message
        context: Business identifiers (attempt_id, user_id, session_id, ...)
        extra_data: Additional metadata (duration_ms, score, severity, ...)
        exc_info: True for the active exception, or an exception instance,
                  to attach its traceback
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    logger.log(
        log_level,
        message,
        exc_info=exc_info,
        extra={"context": context or {}, "extra_data": extra_data or {}, "channel": logger.name.split(".")[-1]}
    )


def generate_request_id() -> str:
    """Generate a new UUID for request tracking."""
    return str(uuid.uuid4())
