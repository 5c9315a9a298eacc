"""
Structured JSON logging with correlation ID support.

Features:
- One JSON object per record, ready for log aggregation
- Automatic masking of credential-like fields
- Correlation ID taken from an async-safe ContextVar
- Idempotent configuration
"""
from __future__ import annotations

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Final, Optional

# ============= CORRELATION ID (async-safe) =============

_CORRELATION_ID: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


def set_correlation_id(value: Optional[str]) -> None:
    """Set correlation ID in async-safe context"""
    _CORRELATION_ID.set(value)


def get_correlation_id() -> Optional[str]:
    """Get current correlation ID from context"""
    return _CORRELATION_ID.get()


# ============= JSON FORMATTER =============

class JsonFormatter(logging.Formatter):
    """
    JSON formatter with secret masking and correlation ID support.
    """

    # Substrings that mark a field as sensitive
    SENSITIVE_KEYS: Final[set[str]] = {
        "api_key",
        "api_secret",
        "api_sign",
        "secret",
        "password",
        "token",
        "authorization",
        "credential",
    }

    # Standard LogRecord attributes to exclude from extra fields
    STANDARD_ATTRS: Final[set[str]] = {
        "args", "asctime", "created", "exc_info", "exc_text",
        "filename", "funcName", "levelname", "levelno", "lineno",
        "module", "msecs", "message", "msg", "name", "pathname",
        "process", "processName", "relativeCreated", "stack_info",
        "thread", "threadName", "taskName",
    }

    def __init__(self, *, include_timestamp: bool = True, include_location: bool = False):
        super().__init__()
        self.include_timestamp = include_timestamp
        self.include_location = include_location

    def format(self, record: logging.LogRecord) -> str:
        """Format LogRecord as JSON string"""
        payload: dict[str, Any] = {
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if self.include_timestamp:
            payload["timestamp"] = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()

        if self.include_location:
            payload["location"] = f"{record.filename}:{record.lineno}"
            payload["function"] = record.funcName

        # record attribute > context > None
        cid = (
            getattr(record, "correlation_id", None)
            or getattr(record, "trace_id", None)
            or get_correlation_id()
        )
        if cid:
            payload["trace_id"] = cid

        for key, value in record.__dict__.items():
            if key.startswith("_") or key in self.STANDARD_ATTRS:
                continue
            if key in ("correlation_id", "trace_id"):
                continue

            if self._is_sensitive(key):
                payload[key] = "***MASKED***"
            else:
                payload[key] = self._make_json_safe(value)

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
            payload["exc_type"] = record.exc_info[0].__name__ if record.exc_info[0] else None

        return json.dumps(payload, ensure_ascii=False, default=str)

    def _is_sensitive(self, key: str) -> bool:
        low = str(key).lower().replace("-", "_")
        return any(s in low for s in self.SENSITIVE_KEYS)

    def _make_json_safe(self, value: Any) -> Any:
        """Convert value to JSON-serializable form (dicts are masked recursively)"""
        if isinstance(value, dict):
            out: dict[str, Any] = {}
            for k, v in value.items():
                if self._is_sensitive(k):
                    out[str(k)] = "***MASKED***"
                else:
                    out[str(k)] = self._make_json_safe(v)
            return out

        try:
            json.dumps(value)
            return value
        except (TypeError, ValueError):
            pass

        if hasattr(value, "__iter__") and not isinstance(value, (str, bytes)):
            return [self._make_json_safe(v) for v in value]

        # Decimal, datetime, enums and friends
        return str(value)


# ============= HANDLER CREATION =============

def _create_stream_handler(
    stream=None,
    formatter: Optional[logging.Formatter] = None
) -> logging.StreamHandler:
    handler = logging.StreamHandler(stream=stream or sys.stderr)
    handler.setFormatter(formatter or JsonFormatter())
    return handler


def level_from_name(name: Optional[str], default: int = logging.INFO) -> int:
    """Map a level name ("debug", "WARN", ...) to a logging constant"""
    level_map = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "WARN": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
        "FATAL": logging.CRITICAL,
    }
    return level_map.get(str(name or "").upper().strip(), default)


def _level_from_env(default: str = "INFO") -> int:
    return level_from_name(os.getenv("LOG_LEVEL", default))


# ============= CONFIGURATION =============

def configure_root(
    level: Optional[int] = None,
    formatter: Optional[logging.Formatter] = None,
    remove_existing: bool = False
) -> None:
    """
    Configure root logger with JSON formatting.

    Idempotent: repeated calls never duplicate handlers.

    Args:
        level: Log level (uses LOG_LEVEL env if None)
        formatter: Custom formatter (uses JsonFormatter if None)
        remove_existing: Remove existing handlers before adding new
    """
    root = logging.getLogger()

    if level is None:
        level = _level_from_env()
    root.setLevel(level)

    if remove_existing:
        root.handlers.clear()

    has_json_stream = False
    for handler in root.handlers:
        if isinstance(handler, logging.StreamHandler) and isinstance(handler.formatter, JsonFormatter):
            has_json_stream = True
            handler.setLevel(level)
            if formatter is not None:
                handler.setFormatter(formatter)

    if not has_json_stream:
        handler = _create_stream_handler(formatter=formatter)
        handler.setLevel(level)
        root.addHandler(handler)

    _configure_third_party_loggers()


def _configure_third_party_loggers() -> None:
    """Reduce noise from third-party libraries"""
    for logger_name in ("httpx", "httpcore", "asyncio"):
        logging.getLogger(logger_name).setLevel(logging.WARNING)


def get_logger(name: str, *, level: Optional[int] = None) -> logging.Logger:
    """
    Get a module logger.

    Records propagate to the root logger, which `configure_root` equips with
    the JSON handler; this keeps pytest's caplog working as well.
    """
    logger = logging.getLogger(name)
    if level is not None:
        logger.setLevel(level)
    return logger


__all__ = [
    "get_correlation_id",
    "set_correlation_id",
    "get_logger",
    "configure_root",
    "level_from_name",
    "JsonFormatter",
]
