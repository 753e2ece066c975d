"""
Structured Logging Configuration for the AngstromSCD gateway

Provides:
- JSON logs for production, human-readable logs for development
- Request ID tracking across async calls (set by the HTTP middleware)
- Extra fields passed via logger.info("msg", extra={...}) kept as context
"""

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Context variable to store request ID across async calls
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Attributes every LogRecord has; anything else came in through `extra`
_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime", "taskName"}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class JSONFormatter(logging.Formatter):
    """
    Outputs one JSON object per log line:
    timestamp, level, logger, message, request_id (if set),
    exception (if any) and context (extra fields).
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": _utc_now().isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra_fields = {
            key: value for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS
        }
        if extra_fields:
            log_data["context"] = extra_fields

        return json.dumps(log_data, ensure_ascii=True, default=str)


class StandardFormatter(logging.Formatter):
    """
    Development formatter.

    Format: [TIMESTAMP] LEVEL - logger - message (request_id=...)
    """

    def format(self, record: logging.LogRecord) -> str:
        timestamp = _utc_now().strftime("%Y-%m-%d %H:%M:%S")
        line = f"[{timestamp}] {record.levelname:8s} - {record.name} - {record.getMessage()}"

        request_id = request_id_var.get()
        if request_id:
            line += f" (request_id={request_id})"

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)

        return line


def setup_logging(
    level: str = "INFO",
    json_logs: bool = False,
    log_file: Optional[str] = None
) -> None:
    """
    Configure the root logger.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: Use JSONFormatter (production) instead of StandardFormatter
        log_file: Optional file to write logs to, in addition to stdout

    Environment Variables:
        LOG_LEVEL, JSON_LOGS ("true"/"false") and LOG_FILE override the arguments.
    """
    level = os.getenv("LOG_LEVEL", level).upper()
    json_logs = os.getenv("JSON_LOGS", "true" if json_logs else "false").lower() == "true"
    log_file = os.getenv("LOG_FILE", log_file)

    numeric_level = getattr(logging, level, logging.INFO)
    formatter = JSONFormatter() if json_logs else StandardFormatter()

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    logging.getLogger(__name__).info(
        "Logging configured",
        extra={"level": level, "json_logs": json_logs, "log_file": log_file or "none"}
    )


def set_request_id(request_id: str) -> None:
    """Set the request ID for the current async context"""
    request_id_var.set(request_id)


def clear_request_id() -> None:
    """Clear the request ID so it does not leak into the next request"""
    request_id_var.set(None)


def get_request_id() -> Optional[str]:
    return request_id_var.get()
