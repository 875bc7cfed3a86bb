"""
Structured logging configuration.

Provides:
    • JSON-formatted logs for production (one object per line)
    • Pretty console logs for development
    • Request-scoped context set by the middleware (request id, acting user)
    • Domain tags: alert code, rescue request number, delivery channel

Every alert or rescue log line carries the code it concerns, so a single
incident can be followed across publish, dispatch and acknowledgments:

    12:04:31 INFO     [3f9a01c2 USR-0002] bantay.app.alerts.lifecycle: Alert ALT-20261019-001 published ... {alert=ALT-20261019-001}

Usage:
    from bantay.app.core.logging_config import setup_logging, get_logger

    setup_logging()
    logger = get_logger(__name__)
    logger.info("Alert published", extra={"alert_code": "ALT-20261019-001"})
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict

from bantay.app.core.config import settings

_request_context: ContextVar[Dict[str, Any]] = ContextVar(
    "request_context", default={}
)

# record attribute → short tag name
_DOMAIN_TAGS = {
    "alert_code": "alert",
    "request_number": "rescue",
    "channel": "channel",
    "recipient_count": "recipients",
}

# request metrics written by the middleware
_METRIC_FIELDS = ("duration_ms", "status_code", "endpoint")


def set_request_context(**kwargs: Any) -> None:
    """Set request-scoped log context (call from middleware)."""
    _request_context.set(kwargs)


def get_request_context() -> Dict[str, Any]:
    return _request_context.get()


def domain_tags(record: logging.LogRecord) -> Dict[str, Any]:
    """Alert / rescue identifiers attached to a record via ``extra``."""
    return {
        tag: getattr(record, attr)
        for attr, tag in _DOMAIN_TAGS.items()
        if getattr(record, attr, None) is not None
    }


def _actor(record: logging.LogRecord) -> Any:
    return getattr(record, "user_id", None) or get_request_context().get("user_id")


class JSONFormatter(logging.Formatter):
    """One JSON object per line for the log shipper."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "barangay": settings.BARANGAY_NAME,
        }

        ctx = get_request_context()
        if ctx.get("request_id"):
            entry["request_id"] = ctx["request_id"]
        actor = _actor(record)
        if actor:
            entry["actor"] = actor

        tags = domain_tags(record)
        if tags:
            entry["tags"] = tags
        for key in _METRIC_FIELDS:
            if hasattr(record, key):
                entry[key] = getattr(record, key)

        if record.exc_info and record.exc_info[1]:
            entry["exception"] = {
                "type": type(record.exc_info[1]).__name__,
                "message": str(record.exc_info[1]),
            }

        return json.dumps(entry, default=str)


class PrettyFormatter(logging.Formatter):
    """Coloured console output for local development."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        ts = self.formatTime(record, "%H:%M:%S")

        prefix = " ".join(
            p for p in (get_request_context().get("request_id", "")[:8], _actor(record)) if p
        )
        prefix = f" [{prefix}]" if prefix else ""

        tags = domain_tags(record)
        suffix = ""
        if tags:
            suffix = " {" + ", ".join(f"{k}={v}" for k, v in tags.items()) + "}"

        formatted = (
            f"{color}{ts} {record.levelname:8s}{self.RESET}"
            f"{prefix} {record.name}: {record.getMessage()}{suffix}"
        )
        if record.exc_info and record.exc_info[1]:
            formatted += f"\n  {type(record.exc_info[1]).__name__}: {record.exc_info[1]}"
        return formatted


def setup_logging() -> None:
    """Install the environment's formatter on the root logger."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if settings.is_production else PrettyFormatter())
    root.addHandler(handler)

    for noisy in ("uvicorn.access", "httpx", "httpcore", "aiosqlite", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
