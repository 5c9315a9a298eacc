"""
Kraken request signing.

API-Sign = base64( HMAC-SHA512( key=b64decode(secret),
                                msg=path + SHA256(nonce + body) ) )

The nonce is passed in, never generated here. Production code draws it from
the process-wide `NonceSource`; tests pass fixed values.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import threading
import time
from typing import Callable, Mapping
from urllib.parse import urlencode

from kraken_dca.core.application.ports import ExchangeCredentials, SignedRequest
from kraken_dca.utils.exceptions import SignatureError


def encode_body(params: Mapping[str, str]) -> str:
    """URL-form-encode params, keeping insertion order (nonce first)."""
    return urlencode(list(params.items()))


def _decode_secret(api_secret: str) -> bytes:
    try:
        return base64.b64decode(api_secret, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise SignatureError("API secret is not valid base64") from exc


def sign(credentials: ExchangeCredentials, path: str, nonce: int | str, body: str) -> str:
    """
    Compute the API-Sign header value.

    Raises:
        SignatureError: if the API secret cannot be base64-decoded
    """
    secret = _decode_secret(credentials.api_secret)
    digest = hashlib.sha256((str(nonce) + body).encode("utf-8")).digest()
    mac = hmac.new(secret, path.encode("utf-8") + digest, hashlib.sha512)
    return base64.b64encode(mac.digest()).decode("ascii")


def sign_request(
    credentials: ExchangeCredentials,
    path: str,
    nonce: int,
    params: Mapping[str, str] | None = None,
) -> SignedRequest:
    """Build the encoded body (nonce first) and its signature."""
    body = encode_body({"nonce": str(nonce), **(params or {})})
    return SignedRequest(path=path, body=body, signature=sign(credentials, path, nonce, body))


class NonceSource:
    """
    Strictly increasing nonces derived from wall-clock microseconds.

    Two calls in the same microsecond (or after the clock steps back) still
    get distinct, increasing values: the result is max(clock, last + 1).
    Safe to share between asyncio tasks and threads.
    """

    def __init__(self, clock_us: Callable[[], int] | None = None) -> None:
        self._clock_us = clock_us or (lambda: time.time_ns() // 1_000)
        self._last = 0
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            candidate = int(self._clock_us())
            if candidate <= self._last:
                candidate = self._last + 1
            self._last = candidate
            return candidate

    @property
    def last(self) -> int:
        return self._last


_DEFAULT_SOURCE = NonceSource()


def default_nonce_source() -> NonceSource:
    """The single nonce source shared by every client in the process."""
    return _DEFAULT_SOURCE


__all__ = [
    "NonceSource",
    "default_nonce_source",
    "encode_body",
    "sign",
    "sign_request",
]
