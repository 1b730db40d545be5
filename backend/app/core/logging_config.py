"""
Structured logging configuration.

Two renderings of the same records:

    production   one JSON object per line; request context under "request",
                 alert/contact/countdown ids and counts as top-level keys
    development  coloured single line:
                 12:04:11 WARNING  [a1b2c3d4] <PRF-…> backend.app.alerts…: msg

Request context (request_id, endpoint, method, profile_id) lives in a
ContextVar so log lines emitted deep inside the alert engine still carry
the request that caused them. Recipient addresses are logged through
``mask_address`` only.

Usage:
    from backend.app.core.logging_config import setup_logging, get_logger

    setup_logging()
    logger = get_logger(__name__)
    logger.info("Alert created", extra={"alert_id": alert.id})
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from backend.app.core.config import settings

_request_context: ContextVar[Dict[str, Any]] = ContextVar(
    "request_context", default={}
)

# `extra=` keys promoted onto JSON lines
_EXTRA_FIELDS = (
    "alert_id", "contact_id", "profile_id", "countdown_id",
    "success_count", "failure_count", "eligible_count",
    "duration_ms", "status_code", "endpoint",
)

_HANDLER_NAME = "guardian-sos"


# ═══════════════════════════════════════════════════════════════════════════
# Request Context
# ═══════════════════════════════════════════════════════════════════════════

def set_request_context(**kwargs: Any) -> None:
    """Replace the request context; call with no arguments to clear it."""
    _request_context.set(kwargs)


def update_request_context(**kwargs: Any) -> None:
    """Merge keys into the current request context."""
    _request_context.set({**_request_context.get(), **kwargs})


def get_request_context() -> Dict[str, Any]:
    return _request_context.get()


def mask_address(address: str) -> str:
    """``jane.doe@x.com`` → ``j***@x.com``; no ``@`` → first char + ``***``."""
    if not address:
        return ""
    local, sep, domain = address.partition("@")
    if not sep:
        return f"{address[:1]}***"
    return f"{local[:1]}***@{domain}"


# ═══════════════════════════════════════════════════════════════════════════
# Formatters
# ═══════════════════════════════════════════════════════════════════════════

class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "source": f"{record.module}.{record.funcName}:{record.lineno}",
        }

        ctx = get_request_context()
        if ctx:
            entry["request"] = dict(ctx)

        entry.update(
            (key, getattr(record, key))
            for key in _EXTRA_FIELDS
            if hasattr(record, key)
        )

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            entry["exception"] = {"type": type(exc).__name__, "message": str(exc)}
            if settings.DEBUG:
                entry["exception"]["traceback"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class PrettyFormatter(logging.Formatter):
    """Coloured console lines for local development."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    @staticmethod
    def _context_prefix(ctx: Dict[str, Any]) -> str:
        parts = []
        if ctx.get("request_id"):
            parts.append(f"[{ctx['request_id'][:8]}]")
        if ctx.get("profile_id"):
            parts.append(f"<{ctx['profile_id']}>")
        return " ".join(parts)

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        head = f"{color}{self.formatTime(record, '%H:%M:%S')} {record.levelname:8s}{self.RESET}"
        prefix = self._context_prefix(get_request_context())

        line = " ".join(p for p in (head, prefix, f"{record.name}: {record.getMessage()}") if p)
        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            line += f"\n  {type(exc).__name__}: {exc}"
        return line


# ═══════════════════════════════════════════════════════════════════════════
# Setup
# ═══════════════════════════════════════════════════════════════════════════

def setup_logging(level: Optional[str] = None, *, json_output: Optional[bool] = None) -> None:
    """
    Install the application's stdout handler on the root logger.

    Safe to call repeatedly: only the handler installed here is replaced,
    handlers added by the server or test runner are left alone.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO))

    for existing in list(root.handlers):
        if existing.get_name() == _HANDLER_NAME:
            root.removeHandler(existing)

    use_json = settings.is_production if json_output is None else json_output
    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(JSONFormatter() if use_json else PrettyFormatter())
    root.addHandler(handler)

    for noisy in ("uvicorn.access", "httpx", "httpcore", "passlib"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
