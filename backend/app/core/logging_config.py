"""
Structured logging configuration.

Two formatters, picked by environment:
    production   one JSON object per line, context and pipeline fields inlined
    development  coloured single line, tagged with request id and event

Log context is layered. The request middleware binds the request id and
endpoint; the pipeline binds event_type/related_id on top of that while an
event is in flight, so fan-out, ledger and dispatcher lines all carry the
event they belong to without passing it around.

Usage:
    from backend.app.core.logging_config import bind_log_context, get_logger

    logger = get_logger(__name__)
    with bind_log_context(event_type="panic_started", related_id="p-1"):
        logger.info("Dispatched", extra={"sent": 4})
"""

from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator

from backend.app.core.config import settings

_log_context: ContextVar[Dict[str, Any]] = ContextVar("log_context", default={})

# Record attributes (from ``extra=``) copied into JSON output
_EXTRA_FIELDS = (
    "event_type", "related_id", "user_id", "priority", "recipient_count",
    "sent", "deduplicated", "failed", "outcome", "duration_ms",
    "status_code", "endpoint",
)

_LEVEL_COLOURS = {
    "DEBUG": "\033[36m",
    "INFO": "\033[32m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[35m",
}
_RESET = "\033[0m"


def set_request_context(**fields: Any) -> None:
    """Replace the whole context (middleware entry/exit)."""
    _log_context.set(dict(fields))


def get_log_context() -> Dict[str, Any]:
    return _log_context.get()


@contextmanager
def bind_log_context(**fields: Any) -> Iterator[Dict[str, Any]]:
    """Layer fields over the current context for the duration of the block."""
    merged = {**_log_context.get(), **{k: v for k, v in fields.items() if v is not None}}
    token = _log_context.set(merged)
    try:
        yield merged
    finally:
        _log_context.reset(token)


def _exception_summary(record: logging.LogRecord) -> Dict[str, str] | None:
    if record.exc_info and record.exc_info[1]:
        exc = record.exc_info[1]
        return {"type": type(exc).__name__, "message": str(exc)}
    return None


class JSONFormatter(logging.Formatter):
    """One JSON document per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(get_log_context())
        for key in _EXTRA_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value

        exc = _exception_summary(record)
        if exc:
            entry["exception"] = exc
        return json.dumps(entry, default=str)


class PrettyFormatter(logging.Formatter):
    """Coloured human-readable format for local development."""

    def format(self, record: logging.LogRecord) -> str:
        colour = _LEVEL_COLOURS.get(record.levelname, _RESET)
        ctx = get_log_context()

        tags = []
        if ctx.get("request_id"):
            tags.append(str(ctx["request_id"])[:8])
        if ctx.get("event_type"):
            tags.append(f"{ctx['event_type']}:{ctx.get('related_id', '?')}")
        tag_str = f" [{' '.join(tags)}]" if tags else ""

        line = (
            f"{colour}{self.formatTime(record, '%H:%M:%S')} {record.levelname:8s}{_RESET}"
            f"{tag_str} {record.name}: {record.getMessage()}"
        )
        exc = _exception_summary(record)
        if exc:
            line += f"\n  {exc['type']}: {exc['message']}"
        return line


def setup_logging() -> None:
    """Install a single stdout handler on the root logger."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if settings.is_production else PrettyFormatter())
    root.addHandler(handler)

    for noisy in ("uvicorn.access", "httpx", "httpcore", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
