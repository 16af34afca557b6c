"""
Centralized Logging Configuration for sastabazar

Provides:
- Consistent log format across all modules
- Structured JSON logging for production
- Request ID injection into log records
- Payment event records with sensitive fields redacted

Usage:
    from sastabazar.core.logging_config import log_payment_event, setup_logging

    # At application startup
    setup_logging()

    # At a payment state change
    log_payment_event("payment_verified", order_id="...")
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime
from typing import Any, Dict, Optional

# =============================================================================
# Module Exports
# =============================================================================
__all__ = [
    "setup_logging",
    "set_request_id",
    "get_request_id",
    "log_payment_event",
    "RequestIdFilter",
    "JsonFormatter",
    "LOG_LEVELS",
]

# Context variable for request ID
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

REDACTED_KEYS = {"signature", "razorpay_signature", "card_number", "cvv", "token", "password", "secret"}

_STANDARD_RECORD_KEYS = {
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "message", "request_id", "taskName",
}

payment_logger = logging.getLogger("sastabazar.payments.events")


def set_request_id(request_id: Optional[str]) -> None:
    """Set the current request ID for logging context"""
    request_id_var.set(request_id)


def get_request_id() -> Optional[str]:
    """Get the current request ID from logging context"""
    return request_id_var.get()


class RequestIdFilter(logging.Filter):
    """
    Logging filter that adds request_id to all log records.
    Uses context variable so concurrent requests do not mix IDs.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id() or "-"
        return True


class JsonFormatter(logging.Formatter):
    """
    JSON log formatter for structured logging in production.
    Outputs logs in a format suitable for log aggregation systems.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", "-"),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Add extra fields
        for key, value in record.__dict__.items():
            if key not in _STANDARD_RECORD_KEYS and not key.startswith("_"):
                log_data[key] = value

        return json.dumps(log_data, default=str)


class StandardFormatter(logging.Formatter):
    """
    Standard text formatter with request ID for development.
    """

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s [%(levelname)8s] [%(request_id)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )


def setup_logging(level: str = "INFO", log_format: str = "text") -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Output format ("json" or "text")
    """
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    log_level = LOG_LEVELS.get(level.upper(), logging.INFO)
    root_logger.setLevel(log_level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.addFilter(RequestIdFilter())

    if log_format.lower() == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(StandardFormatter())

    root_logger.addHandler(handler)

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("boto3").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("stripe").setLevel(logging.WARNING)

    logging.info(f"Logging configured: level={level}, format={log_format}")


def _redact(data: Dict[str, Any]) -> Dict[str, Any]:
    redacted = {}
    for key, value in data.items():
        if key.lower() in REDACTED_KEYS:
            redacted[key] = "[REDACTED]"
        elif isinstance(value, dict):
            redacted[key] = _redact(value)
        else:
            redacted[key] = value
    return redacted


def log_payment_event(event: str, level: int = logging.INFO, **data: Any) -> None:
    """
    Emit one structured record for a payment lifecycle event.

    Operators alert on these records, so every state change in the payment
    core goes through here rather than a free-form message.
    """
    payment_logger.log(
        level,
        f"Payment event: {event}",
        extra={"payment_event": event, "payment_data": _redact(data)},
    )
