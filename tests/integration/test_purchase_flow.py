"""One full pass over mocked Kraken and ntfy HTTP endpoints."""
import json
from urllib.parse import parse_qsl

import httpx
import pytest

from kraken_dca.app.compose import compose
from kraken_dca.core.domain.outcomes import Failed, Filled, Skipped, Unconfirmed
from kraken_dca.core.infrastructure.settings import Settings
from kraken_dca.core.infrastructure.strategy import parse_strategy


class FakeVenue:
    def __init__(self, balance: str = "500.0000", add_order_error=None, query_orders_body=None) -> None:
        self.balance = balance
        self.add_order_error = add_order_error
        self.query_orders_body = query_orders_body
        self.requests: list[httpx.Request] = []
        self.notifications: list[httpx.Request] = []

    def _ok(self, result) -> httpx.Response:
        return httpx.Response(200, content=json.dumps({"error": [], "result": result}).encode())

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == "ntfy.test":
            self.notifications.append(request)
            return httpx.Response(200, text="{}")

        self.requests.append(request)
        endpoint = request.url.path.rsplit("/", 1)[-1]
        if endpoint == "Balance":
            return self._ok({"ZUSD": self.balance, "XXBT": "0.0100000000"})
        if endpoint == "AddOrder":
            if self.add_order_error:
                return httpx.Response(200, content=json.dumps({"error": [self.add_order_error]}).encode())
            return self._ok({"txid": ["OQCLML-BW3P3-BUCMWZ"], "descr": {"order": "buy 50.00 XBTUSD @ market"}})
        if endpoint == "QueryOrders":
            if self.query_orders_body is not None:
                return httpx.Response(200, text=self.query_orders_body)
            return self._ok(
                {
                    "OQCLML-BW3P3-BUCMWZ": {
                        "status": "closed",
                        "vol_exec": "0.00100000",
                        "cost": "50.00000",
                        "fee": "0.13000",
                        "price": "50000.0",
                    }
                }
            )
        return httpx.Response(404)

    def endpoints(self) -> list[str]:
        return [r.url.path for r in self.requests]


@pytest.fixture
def settings(clean_env) -> Settings:
    clean_env.setenv("KRAKEN_API_KEY", "key")
    clean_env.setenv("KRAKEN_API_SECRET", "c2VjcmV0")
    clean_env.setenv("KRAKEN_API_URL", "https://kraken.test")
    clean_env.setenv("NTFY_URL", "https://ntfy.test")
    return Settings.load()


def _title(request: httpx.Request) -> str:
    raw = dict((k.lower(), v) for k, v in request.headers.raw)
    return raw[b"title"].decode("utf-8")


async def _run_pass(settings, strategy_doc, venue: FakeVenue):
    async with httpx.AsyncClient(transport=httpx.MockTransport(venue)) as client:
        container = compose(settings, [parse_strategy(strategy_doc)], client=client)
        return await container.runtimes[0].job.run_once()


@pytest.mark.asyncio
async def test_full_pass_buys_and_notifies(settings, strategy_doc):
    venue = FakeVenue()

    outcome = await _run_pass(settings, strategy_doc, venue)

    assert isinstance(outcome, Filled)
    assert venue.endpoints() == ["/0/private/Balance", "/0/private/AddOrder", "/0/private/QueryOrders"]
    add = dict(parse_qsl(venue.requests[1].content.decode()))
    assert (add["pair"], add["volume"], add["oflags"]) == ("XBTUSD", "50", "viqc")

    nonces = [int(parse_qsl(r.content.decode())[0][1]) for r in venue.requests]
    assert nonces == sorted(nonces) and len(set(nonces)) == 3

    assert len(venue.notifications) == 1
    note = venue.notifications[0]
    assert str(note.url) == "https://ntfy.test/dca-test"
    assert "OQCLML-BW3P3-BUCMWZ" in note.content.decode("utf-8")
    assert note.headers["Tags"].startswith("white_check_mark")
    title = _title(note)
    assert title.startswith("✅")
    assert "OQCLML-BW3P3-BUCMWZ" in title


@pytest.mark.asyncio
async def test_full_pass_skips_on_low_balance(settings, strategy_doc):
    venue = FakeVenue(balance="80.0000")

    outcome = await _run_pass(settings, strategy_doc, venue)

    assert isinstance(outcome, Skipped)
    assert venue.endpoints() == ["/0/private/Balance"]
    assert len(venue.notifications) == 1
    body = venue.notifications[0].content.decode("utf-8")
    assert "80.00 USD" in body and "100.00 USD" in body and "50.00 USD" in body


@pytest.mark.asyncio
async def test_full_pass_reports_rejected_order(settings, strategy_doc):
    venue = FakeVenue(add_order_error="EOrder:Insufficient funds")

    outcome = await _run_pass(settings, strategy_doc, venue)

    assert isinstance(outcome, Failed)
    assert venue.endpoints() == ["/0/private/Balance", "/0/private/AddOrder"]
    note = venue.notifications[0]
    assert note.headers["Priority"] == "high"
    assert "EOrder:Insufficient funds" in note.content.decode("utf-8")


@pytest.mark.asyncio
async def test_full_pass_malformed_poll_reply_still_reports_the_order(settings, strategy_doc, clean_env):
    clean_env.setenv("DCA_POLL_INTERVAL_SEC", "0.01")
    clean_env.setenv("DCA_POLL_TIMEOUT_SEC", "0.05")
    venue = FakeVenue(query_orders_body="[]")

    outcome = await _run_pass(Settings.load(), strategy_doc, venue)

    assert isinstance(outcome, Unconfirmed)
    assert outcome.handle.primary_txid == "OQCLML-BW3P3-BUCMWZ"
    assert venue.endpoints().count("/0/private/AddOrder") == 1
    assert len(venue.notifications) == 1
    note = venue.notifications[0]
    assert "OQCLML-BW3P3-BUCMWZ" in note.content.decode("utf-8")
    assert _title(note).startswith("⚠️")
