"""
Kraken private REST client.

Every call is a signed POST to {api_url}/0/private/{Endpoint} with a fresh
nonce. Response envelope: {"error": [...], "result": {...}}; a non-empty
error list is a failure even on HTTP 200.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Mapping, Optional, Sequence

import httpx

from kraken_dca.core.application.ports import (
    BalanceSnapshot,
    ExchangeCredentials,
    OrderHandle,
    OrderStatus,
    QUOTE_VOLUME_FLAG,
)
from kraken_dca.core.infrastructure.brokers.signer import (
    NonceSource,
    default_nonce_source,
    sign_request,
)
from kraken_dca.utils.decimal import dec, to_plain
from kraken_dca.utils.exceptions import ExchangeApiError, ExchangeHttpError
from kraken_dca.utils.http_client import apost
from kraken_dca.utils.logging import get_logger

_log = get_logger(__name__)

API_VERSION = "0"
FIAT_PREFIX = "Z"

@dataclass
class KrakenClient:
    """
    Typed wrapper over the Kraken private API.

    `client` may be injected (tests use httpx.MockTransport); otherwise the
    shared process pool is used.
    """

    credentials: ExchangeCredentials
    nonce_source: NonceSource = field(default_factory=default_nonce_source)
    client: Optional[httpx.AsyncClient] = None
    timeout_sec: float = 30.0

    # ============= TRANSPORT =============

    def _path(self, endpoint: str) -> str:
        return f"/{API_VERSION}/private/{endpoint}"

    async def _private_request(self, endpoint: str, params: dict[str, str] | None = None) -> Any:
        path = self._path(endpoint)
        signed = sign_request(self.credentials, path, self.nonce_source.next(), params)
        headers = {
            "API-Key": self.credentials.api_key,
            "API-Sign": signed.signature,
            "Content-Type": "application/x-www-form-urlencoded; charset=utf-8",
        }
        url = f"{self.credentials.api_url.rstrip('/')}{path}"

        resp = await apost(
            url,
            content=signed.body,
            headers=headers,
            timeout=self.timeout_sec,
            client=self.client,
        )

        if not resp.is_success:
            _log.error("kraken_http_error", extra={"endpoint": endpoint, "status": resp.status_code, "text": resp.text})
            raise ExchangeHttpError(resp.status_code, resp.text)

        try:
            payload = resp.json()
        except ValueError as exc:
            _log.error("kraken_bad_json", extra={"endpoint": endpoint, "text": resp.text[:500]})
            raise ExchangeHttpError(resp.status_code, f"invalid JSON: {resp.text[:200]}") from exc

        if not isinstance(payload, Mapping):
            _log.error("kraken_bad_envelope", extra={"endpoint": endpoint, "text": resp.text[:500]})
            raise ExchangeHttpError(resp.status_code, f"unexpected response: {resp.text[:200]}")

        raw_errors = payload.get("error") or []
        if isinstance(raw_errors, str):
            raw_errors = [raw_errors]
        errors = [str(e) for e in raw_errors]
        if errors:
            _log.error("kraken_api_error", extra={"endpoint": endpoint, "errors": errors})
            raise ExchangeApiError(errors)

        _log.debug("kraken_call_ok", extra={"endpoint": endpoint})
        return payload.get("result")

    # ============= ACCOUNT =============

    async def get_balances(self) -> BalanceSnapshot:
        result = await self._private_request("Balance")
        if result is not None and not isinstance(result, Mapping):
            raise ExchangeApiError([f"Balance returned {type(result).__name__}, expected an object"])
        return {str(k): str(v) for k, v in (result or {}).items()}

    async def get_balance(self, asset: str) -> Decimal:
        """
        Balance of one asset: "Z"-prefixed key first, then the bare code,
        zero when neither exists.
        """
        return normalize_balance(await self.get_balances(), asset)

    # ============= ORDERS =============

    async def place_market_buy(
        self,
        pair: str,
        amount: Decimal,
        currency: str,
        tag: int | None = None,
    ) -> OrderHandle:
        """
        Market buy spending `amount` of the quote currency.

        Sent once. The `userref` tag is for traceability only; Kraken does not
        deduplicate on it.
        """
        params = {
            "pair": pair,
            "type": "buy",
            "ordertype": "market",
            "volume": to_plain(amount),
            "oflags": QUOTE_VOLUME_FLAG,
        }
        if tag is not None:
            params["userref"] = str(int(tag))

        _log.info(
            "kraken_add_order",
            extra={"pair": pair, "amount": str(amount), "currency": currency, "userref": tag},
        )
        result = await self._private_request("AddOrder", params)
        handle = OrderHandle.from_result(result or {})
        if not handle.txids:
            raise ExchangeApiError(["AddOrder returned no txid"])
        return handle

    async def query_orders(self, txids: Sequence[str]) -> dict[str, OrderStatus]:
        result = await self._private_request("QueryOrders", {"txid": ",".join(txids)})
        if result is None:
            return {}
        if not isinstance(result, Mapping):
            raise ExchangeApiError([f"QueryOrders returned {type(result).__name__}, expected an object"])
        return {str(txid): OrderStatus.from_info(info) for txid, info in result.items()}


def normalize_balance(balances: BalanceSnapshot, asset: str) -> Decimal:
    code = asset.upper()
    raw = balances.get(f"{FIAT_PREFIX}{code}")
    if raw is None:
        raw = balances.get(code)
    return dec(raw if raw is not None else "0")


def is_fiat_code(asset: str) -> bool:
    """Rough split used for display: Z-prefixed codes and common bare fiat codes."""
    return asset.startswith(FIAT_PREFIX) or asset in {"USD", "EUR", "GBP", "CAD", "CHF", "JPY", "AUD"}


__all__ = [
    "API_VERSION",
    "FIAT_PREFIX",
    "QUOTE_VOLUME_FLAG",
    "KrakenClient",
    "is_fiat_code",
    "normalize_balance",
]
