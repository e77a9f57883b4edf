"""
Call Rescue SMS - Structured JSON Logging

JSON logs in production (one object per line, for log aggregation),
plain text in development.

Phone numbers and SMS bodies are customer data: log them through
``mask_phone`` / ``preview_body`` only. ``PhoneRedactionFilter`` is a
backstop for any full E.164 number that still reaches a log message.
"""

import re
import sys
import os
import json
import logging
import traceback
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

DEFAULT_SERVICE_NAME = "call-rescue-sms"

_PHONE_PATTERN = re.compile(r"\+\d{10,15}")

# Per-request context; ContextVar keeps concurrent requests apart
_request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
_user_id: ContextVar[Optional[str]] = ContextVar("user_id", default=None)

_RECORD_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


# ==================== PII HELPERS ====================

def mask_phone(phone: Optional[str]) -> str:
    """Keep the country/area prefix only: '+15551234567' -> '+1555***'."""
    if not phone:
        return "<none>"
    return f"{phone[:5]}***"


def preview_body(body: Optional[str], length: int = 20) -> str:
    if not body:
        return ""
    return body if len(body) <= length else body[:length] + "..."


# ==================== FILTERS ====================

class RequestContextFilter(logging.Filter):
    """Stamps request_id / user_id from the current request onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id.get()
        record.user_id = _user_id.get()
        return True


class PhoneRedactionFilter(logging.Filter):
    """Masks full phone numbers left in a formatted message."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        if _PHONE_PATTERN.search(message):
            record.msg = _PHONE_PATTERN.sub(lambda m: mask_phone(m.group(0)), message)
            record.args = None
        return True


# ==================== FORMATTER ====================

class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def __init__(self, service_name: str = DEFAULT_SERVICE_NAME):
        super().__init__()
        self.service_name = service_name
        self.environment = os.environ.get("ENVIRONMENT", "development")

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
            "environment": self.environment,
            "function": f"{record.module}.{record.funcName}:{record.lineno}",
        }

        if record.exc_info and record.exc_info[0]:
            exc_type, exc_value, _ = record.exc_info
            log_data["exception"] = {
                "type": exc_type.__name__,
                "message": str(exc_value),
                "traceback": "".join(traceback.format_exception(*record.exc_info)),
            }

        # request_id / user_id plus anything passed via extra={...}
        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRS and value is not None:
                log_data[key] = value

        return json.dumps(log_data, default=str)


# ==================== SETUP ====================

def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    service_name: str = DEFAULT_SERVICE_NAME
) -> logging.Logger:
    """
    Configure the root logger.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: Use JSON format (True for production)
        service_name: Service name stamped on every JSON record

    Returns:
        Configured root logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    if json_format:
        handler.setFormatter(JSONFormatter(service_name=service_name))
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s"
        ))
    handler.addFilter(RequestContextFilter())
    handler.addFilter(PhoneRedactionFilter())
    root_logger.addHandler(handler)

    # Twilio's HTTP client logs full request bodies at INFO
    for noisy in ("uvicorn.access", "httpx", "httpcore", "twilio.http_client", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def set_request_context(request_id: Optional[str] = None, user_id: Optional[str] = None):
    """Set request context for logging."""
    _request_id.set(request_id)
    _user_id.set(user_id)


def clear_request_context():
    _request_id.set(None)
    _user_id.set(None)
