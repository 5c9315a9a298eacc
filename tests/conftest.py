from __future__ import annotations

import json
from decimal import Decimal
from typing import Any, Callable
from unittest.mock import AsyncMock

import httpx
import pytest

from kraken_dca.core.application.ports import (
    ExchangeCredentials,
    OrderHandle,
    OrderState,
    OrderStatus,
    PurchaseOrder,
)
from kraken_dca.core.infrastructure.brokers.kraken import KrakenClient
from kraken_dca.core.infrastructure.brokers.signer import NonceSource

# base64 secret from Kraken's public signing example
TEST_SECRET = "kQH5HW/8p1uGOVjbgWA7FunAmGO8lsSUXNsu3eow76sz84Q18fWxnyRzBHCd3pd5nE9qa99HAZtuZuj6F1huXg=="

SETTINGS_ENV = (
    "KRAKEN_API_KEY",
    "KRAKEN_API_KEY_FILE",
    "KRAKEN_API_SECRET",
    "KRAKEN_API_SECRET_FILE",
    "KRAKEN_API_URL",
    "NTFY_TOPIC",
    "NTFY_URL",
    "NTFY_CLICK_URL",
    "LOG_LEVEL",
    "DCA_POLL_INTERVAL_SEC",
    "DCA_POLL_TIMEOUT_SEC",
    "HTTP_TIMEOUT_SEC",
)


class FakeClock:
    """Monotonic clock + sleep pair: sleeping advances time instantly."""

    def __init__(self, start: float = 0.0) -> None:
        self.t = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.t

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.t += delay


@pytest.fixture
def clean_env(monkeypatch):
    for name in SETTINGS_ENV:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def credentials() -> ExchangeCredentials:
    return ExchangeCredentials(api_key="test-key", api_secret=TEST_SECRET, api_url="https://kraken.test")


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_kraken(credentials) -> Callable[..., tuple[KrakenClient, list[httpx.Request]]]:
    """
    KrakenClient over httpx.MockTransport.

    `routes` maps endpoint name -> JSON payload, (status, text) tuple or callable(request).
    """

    def _factory(routes: dict[str, Any]) -> tuple[KrakenClient, list[httpx.Request]]:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            endpoint = request.url.path.rsplit("/", 1)[-1]
            route = routes.get(endpoint)
            if route is None:
                return httpx.Response(404, text="not found")
            if callable(route):
                route = route(request)
            if isinstance(route, tuple):
                status, text = route
                return httpx.Response(status, text=text)
            return httpx.Response(200, content=json.dumps(route).encode("utf-8"))

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        kraken = KrakenClient(credentials=credentials, nonce_source=NonceSource(), client=client)
        return kraken, seen

    return _factory


@pytest.fixture
def order() -> PurchaseOrder:
    return PurchaseOrder(pair="XBTUSD", amount=Decimal("50"), currency="USD")


@pytest.fixture
def handle() -> OrderHandle:
    return OrderHandle(txids=("OABCDE-12345-FGHIJK",), description="buy 50.00 XBTUSD @ market")


def closed_status(price: str = "50000") -> OrderStatus:
    return OrderStatus(
        status=OrderState.CLOSED,
        vol_exec=Decimal("0.001"),
        cost=Decimal("50"),
        fee=Decimal("0.13"),
        price=Decimal(price),
    )


@pytest.fixture
def mock_exchange(handle):
    ex = AsyncMock()
    ex.get_balance.return_value = Decimal("500")
    ex.place_market_buy.return_value = handle
    ex.query_orders.return_value = {handle.primary_txid: closed_status()}
    return ex


@pytest.fixture
def mock_notifier():
    return AsyncMock()


@pytest.fixture
def strategy_doc() -> dict[str, Any]:
    return {
        "name": "bitcoin-weekly",
        "description": "Buy 50 USD of BTC every Monday",
        "dca": {"pair": "XBTUSD", "amount": 50, "currency": "usd", "low_balance_threshold": 100},
        "schedule": {"cron": "0 9 * * 1", "timezone": "America/New_York"},
        "notifications": {"ntfy_topic": "dca-test"},
    }


@pytest.fixture
def strategy_file(tmp_path, strategy_doc):
    p = tmp_path / "bitcoin-weekly.json"
    p.write_text(json.dumps(strategy_doc), encoding="utf-8")
    return p
