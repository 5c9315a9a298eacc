"""
Trace ID management for correlating the log records of one DCA pass.

The trace ID lives in a ContextVar, so concurrent passes scheduled as
separate asyncio tasks never see each other's IDs.
"""
from __future__ import annotations

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Optional

from kraken_dca.utils.logging import (
    get_correlation_id as _get_log_cid,
    set_correlation_id as _set_log_cid,
)

_CID: ContextVar[Optional[str]] = ContextVar("cid", default=None)


def generate_trace_id(prefix: str = "") -> str:
    """
    Generate new unique trace ID.

    Examples:
        generate_trace_id() -> "a1b2c3d4e5f6..."
        generate_trace_id("pass_") -> "pass_a1b2c3d4e5f6..."
    """
    uid = uuid.uuid4().hex
    return f"{prefix}{uid}" if prefix else uid


def get_trace_id() -> Optional[str]:
    """Current trace ID from context or logger, None outside a trace"""
    return _CID.get() or _get_log_cid()


@contextmanager
def trace_context(trace_id: Optional[str] = None, prefix: str = "") -> Iterator[str]:
    """
    Context manager for trace ID propagation.

    Usage:
        with trace_context(prefix="pass_") as tid:
            await job.run_once()

    Yields:
        The trace ID being used in this context
    """
    current = get_trace_id()

    new_value = trace_id or generate_trace_id(prefix)
    token = _CID.set(new_value)
    _set_log_cid(new_value)

    try:
        yield new_value
    finally:
        _CID.reset(token)
        _set_log_cid(current)


__all__ = [
    "generate_trace_id",
    "get_trace_id",
    "trace_context",
]
