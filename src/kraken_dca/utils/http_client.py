from __future__ import annotations

import asyncio
from contextlib import suppress
from dataclasses import dataclass
from typing import Any

import httpx

from kraken_dca.utils.logging import get_logger

_log = get_logger(__name__)

DEFAULT_USER_AGENT = "kraken-dca/python"


# ===================== TIMEOUTS =====================


def make_timeout(t: float | httpx.Timeout | None) -> httpx.Timeout:
    """Structured timeout: split the overall budget into phases."""
    if isinstance(t, httpx.Timeout):
        return t
    total = float(t or 30.0)
    return httpx.Timeout(
        connect=min(10.0, total / 3),
        read=total,
        write=min(10.0, total / 2),
        pool=min(5.0, total / 2),
    )


# ===================== SHARED CLIENT POOL =====================


@dataclass
class _ClientConfig:
    timeout: httpx.Timeout


class _AsyncClientPool:
    """
    One shared AsyncClient per process, so every pass and every strategy
    reuses the same TCP connections.
    """

    _client: httpx.AsyncClient | None = None
    _cfg: _ClientConfig | None = None
    _lock: asyncio.Lock | None = None

    @classmethod
    def _get_lock(cls) -> asyncio.Lock:
        if cls._lock is None:
            cls._lock = asyncio.Lock()
        return cls._lock

    @classmethod
    async def get(cls, *, timeout: float | httpx.Timeout = 30.0) -> httpx.AsyncClient:
        t = make_timeout(timeout)
        async with cls._get_lock():
            if cls._client and not cls._client.is_closed and cls._cfg and cls._cfg.timeout == t:
                return cls._client

            if cls._client:
                with suppress(Exception):
                    await cls._client.aclose()

            cls._client = httpx.AsyncClient(timeout=t, headers={"User-Agent": DEFAULT_USER_AGENT})
            cls._cfg = _ClientConfig(timeout=t)
            return cls._client

    @classmethod
    async def close(cls) -> None:
        async with cls._get_lock():
            if cls._client:
                with suppress(Exception):
                    await cls._client.aclose()
                cls._client = None
                cls._cfg = None


async def get_client(*, timeout: float | httpx.Timeout = 30.0) -> httpx.AsyncClient:
    """Shared client from the process pool."""
    return await _AsyncClientPool.get(timeout=timeout)


async def aclose() -> None:
    """Close the shared client (call once on shutdown)."""
    await _AsyncClientPool.close()


# ===================== SINGLE-SHOT REQUEST =====================


async def apost(
    url: str,
    *,
    content: str | bytes | None = None,
    data: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
    timeout: float | httpx.Timeout = 30.0,
    client: httpx.AsyncClient | None = None,
) -> httpx.Response:
    """
    Async POST with exactly one attempt.

    Nothing here retries: a POST that places an order may have reached the
    venue even when the response is lost, so resending it could buy twice.
    Transport errors propagate to the caller unchanged.
    """
    if client is None:
        client = await get_client(timeout=timeout)

    try:
        return await client.post(url, content=content, data=data, headers=headers)
    except httpx.HTTPError as exc:
        _log.warning(
            "http_post_failed",
            extra={"url": url, "error": str(exc), "error_type": type(exc).__name__},
        )
        raise


__all__ = [
    "DEFAULT_USER_AGENT",
    "make_timeout",
    "get_client",
    "aclose",
    "apost",
]
