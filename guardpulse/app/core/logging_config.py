"""
Structured logging configuration.

Provides:
    • JSON-formatted logs for production (machine-parseable)
    • Pretty console logs for development (human-readable)
    • Alert-scoped context (incident_id, ward_id) bound during dispatch
    • Whitelisted ``extra`` fields for delivery audit lines

Usage:
    from guardpulse.app.core.logging_config import setup_logging, get_logger

    setup_logging()
    logger = get_logger(__name__)
    logger.info("Delivered", extra={"guardian_id": "g-1", "channel": "sms"})
"""

from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator

from guardpulse.app.core.config import settings

_alert_context: ContextVar[Dict[str, Any]] = ContextVar(
    "alert_context", default={}
)

# Fields copied from ``extra=`` into JSON output
AUDIT_FIELDS = (
    "guardian_id", "ward_id", "incident_id", "alert_type", "priority",
    "channel", "success", "error", "message_id", "duration_ms",
    "status_code", "endpoint",
)


def get_alert_context() -> Dict[str, Any]:
    return _alert_context.get()


@contextmanager
def bind_alert_context(**kwargs: Any) -> Iterator[Dict[str, Any]]:
    """
    Attach alert identifiers to every log record emitted inside the block.

    Nested bindings merge with the outer context. Each asyncio task runs in
    a copy of the context, so concurrent fan-out branches never see each
    other's values.
    """
    merged = {**_alert_context.get(), **{k: v for k, v in kwargs.items() if v is not None}}
    token = _alert_context.set(merged)
    try:
        yield merged
    finally:
        _alert_context.reset(token)


# ── JSON Formatter (Production) ──

class JSONFormatter(logging.Formatter):
    """Machine-parseable JSON log output for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        ctx = get_alert_context()
        if ctx:
            log_entry["context"] = ctx

        for key in AUDIT_FIELDS:
            if hasattr(record, key):
                log_entry[key] = getattr(record, key)

        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = {
                "type": type(record.exc_info[1]).__name__,
                "message": str(record.exc_info[1]),
            }

        return json.dumps(log_entry, default=str)


# ── Pretty Formatter (Development) ──

class PrettyFormatter(logging.Formatter):
    """Coloured human-readable format for local development."""

    COLORS = {
        "DEBUG": "\033[36m",    # Cyan
        "INFO": "\033[32m",     # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",    # Red
        "CRITICAL": "\033[35m", # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        ts = self.formatTime(record, "%H:%M:%S")
        msg = record.getMessage()

        ctx = get_alert_context()
        ctx_str = ""
        if ctx.get("incident_id"):
            ctx_str = f" [{str(ctx['incident_id'])[:12]}]"
        elif ctx.get("ward_id"):
            ctx_str = f" [ward:{str(ctx['ward_id'])[:8]}]"

        formatted = (
            f"{color}{ts} {record.levelname:8s}{self.RESET}"
            f"{ctx_str} {record.name}: {msg}"
        )

        if record.exc_info and record.exc_info[1]:
            formatted += f"\n  {type(record.exc_info[1]).__name__}: {record.exc_info[1]}"

        return formatted


# ── Setup ──

def setup_logging() -> None:
    """Configure logging based on environment."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)

    if settings.is_production:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(PrettyFormatter())

    root.addHandler(handler)

    # Quieten noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("twilio.http_client").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a named logger — call once per module."""
    return logging.getLogger(name)
