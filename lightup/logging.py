"""
Lightup Structured Logging

Log messages are snake_case event names; everything else rides along as
`extra=` fields. A ContextVar carries request/card/session ids so a request
handler or background task can bind them once for every line it emits.
"""

import json
import logging
import os
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Iterator, Optional
from urllib.parse import urlsplit, urlunsplit

# Fields every record carries ("-" when unbound).
CONTEXT_FIELDS = ("request_id", "board_id", "card_id", "session_id")

EXIT_RUNTIME_ERROR = 1

REDACTED = "[REDACTED]"
_SENSITIVE_MARKERS = ("token", "secret", "password", "api_key", "apikey", "authorization", "credential")

_BUILTIN_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"asctime", "message"}

_bound: ContextVar[Dict[str, Any]] = ContextVar("lightup_log_fields", default={})


def _clean(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in fields.items() if v is not None}


def log_extra(**fields: Any) -> Dict[str, Any]:
    """
    Build an `extra=` mapping, dropping None values so bound context still shows.

    Example:
        logger.info("card_dispatched", extra=log_extra(card_id=card.id, session_id=sid))
    """
    return _clean(fields)


@contextmanager
def log_context(**fields: Any) -> Iterator[Dict[str, Any]]:
    """Bind fields for every record logged inside the block."""
    merged = {**_bound.get(), **_clean(fields)}
    token = _bound.set(merged)
    try:
        yield merged
    finally:
        _bound.reset(token)


def redact(key: str, value: Any) -> Any:
    """Mask values under secret-looking keys and strip credentials from URLs."""
    if any(marker in key.lower() for marker in _SENSITIVE_MARKERS):
        return REDACTED
    if isinstance(value, dict):
        return {str(k): redact(str(k), v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [redact(key, v) for v in value]
    if isinstance(value, str) and "://" in value and "@" in value:
        parts = urlsplit(value)
        if parts.netloc and "@" in parts.netloc:
            host = parts.netloc.rsplit("@", 1)[1]
            return urlunsplit(parts._replace(netloc=host))
    return value


class RequestIdFilter(logging.Filter):
    """Copy bound context onto records and default the standard fields to "-"."""

    def filter(self, record: logging.LogRecord) -> bool:
        bound = _bound.get()
        for key, value in bound.items():
            if key not in _BUILTIN_ATTRS and not hasattr(record, key):
                setattr(record, key, value)
        for key in CONTEXT_FIELDS:
            if not hasattr(record, key):
                setattr(record, key, "-")
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line: event name, level, context fields and extras."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update({name: getattr(record, name, "-") for name in CONTEXT_FIELDS})
        payload.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _BUILTIN_ATTRS and key not in payload
        )
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps({k: redact(k, v) for k, v in payload.items()}, default=str)


TEXT_FORMAT = (
    "%(asctime)s %(levelname)-7s %(name)s %(message)s "
    "[req=%(request_id)s card=%(card_id)s session=%(session_id)s]"
)


def setup_logging(level: Optional[str] = None, json_output: bool = False) -> logging.Logger:
    """Install a single stderr handler on the root logger; returns the `lightup` logger."""
    handler = logging.StreamHandler()
    handler.addFilter(RequestIdFilter())
    handler.setFormatter(JsonFormatter() if json_output else logging.Formatter(TEXT_FORMAT))

    root = logging.getLogger()
    root.handlers = [handler]
    name = (level or os.environ.get("LIGHTUP_LOG_LEVEL") or "INFO").upper()
    root.setLevel(getattr(logging, name, logging.INFO))
    return logging.getLogger("lightup")


def init_cli_logging(level: Optional[str] = None, json_output: bool = False) -> logging.Logger:
    return setup_logging(level, json_output=json_output)


def json_logging_from_env() -> bool:
    return os.environ.get("LIGHTUP_LOG_JSON", "").lower() in ("1", "true", "yes")


def get_logger(name: str = "lightup") -> logging.Logger:
    return logging.getLogger(name)
