from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

from kraken_dca.utils.decimal import ZERO, dec

# Kraken order flag: volume is expressed in the quote currency
QUOTE_VOLUME_FLAG = "viqc"

# =========================
#  Exchange DTOs
# =========================


@dataclass(frozen=True)
class ExchangeCredentials:
    """API key, base64 API secret and base URL. Loaded once at startup."""

    api_key: str
    api_secret: str
    api_url: str = "https://api.kraken.com"

    def __repr__(self) -> str:
        return f"ExchangeCredentials(api_key='***', api_secret='***', api_url={self.api_url!r})"


@dataclass(frozen=True)
class SignedRequest:
    path: str
    body: str
    signature: str


@dataclass(frozen=True)
class PurchaseOrder:
    """A purchase intent; `amount` is denominated in the quote currency."""

    pair: str
    amount: Decimal
    currency: str
    tag: int | None = None


@dataclass(frozen=True)
class OrderHandle:
    """What the venue returns once it accepted an order."""

    txids: tuple[str, ...]
    description: str = ""

    @property
    def primary_txid(self) -> str:
        return self.txids[0] if self.txids else ""

    @classmethod
    def from_result(cls, result: Any) -> "OrderHandle":
        if not isinstance(result, Mapping):
            return cls(txids=())
        raw = result.get("txid") or []
        if isinstance(raw, (list, tuple)):
            txids = tuple(str(t) for t in raw)
        else:
            txids = (str(raw),) if isinstance(raw, str) else ()
        descr = result.get("descr")
        return cls(txids=txids, description=str(descr.get("order", "")) if isinstance(descr, Mapping) else "")


class OrderState(str, Enum):
    PENDING = "pending"
    OPEN = "open"
    CLOSED = "closed"
    CANCELED = "canceled"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw: Any) -> "OrderState":
        try:
            return cls(str(raw or "").lower())
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class OrderStatus:
    """One observed snapshot of an order at the venue."""

    status: OrderState
    vol_exec: Decimal = ZERO
    cost: Decimal = ZERO
    fee: Decimal = ZERO
    price: Decimal = ZERO
    description: str = ""

    @property
    def is_closed(self) -> bool:
        return self.status is OrderState.CLOSED

    @classmethod
    def from_info(cls, info: Any) -> "OrderStatus":
        """Malformed entries map to UNKNOWN so they never end a poll loop"""
        if not isinstance(info, Mapping):
            return cls(status=OrderState.UNKNOWN)
        descr = info.get("descr") or {}
        return cls(
            status=OrderState.parse(info.get("status")),
            vol_exec=dec(info.get("vol_exec")),
            cost=dec(info.get("cost")),
            fee=dec(info.get("fee")),
            price=dec(info.get("price")),
            description=str(descr.get("order", "")) if isinstance(descr, Mapping) else "",
        )


BalanceSnapshot = Mapping[str, str]


# =========================
#  Ports
# =========================


@runtime_checkable
class ExchangePort(Protocol):
    """Private venue operations the purchase routine depends on."""

    async def get_balances(self) -> BalanceSnapshot: ...
    async def get_balance(self, asset: str) -> Decimal: ...
    async def place_market_buy(
        self, pair: str, amount: Decimal, currency: str, tag: int | None = None
    ) -> OrderHandle: ...
    async def query_orders(self, txids: Sequence[str]) -> dict[str, OrderStatus]: ...


class Severity(str, Enum):
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    INFO = "info"


@dataclass(frozen=True)
class Notification:
    title: str
    body: str
    tags: tuple[str, ...] = field(default_factory=tuple)


@runtime_checkable
class NotifierPort(Protocol):
    async def notify(
        self, severity: Severity, title: str, body: str, tags: Sequence[str] = ()
    ) -> None: ...


__all__ = [
    "BalanceSnapshot",
    "ExchangeCredentials",
    "ExchangePort",
    "Notification",
    "NotifierPort",
    "OrderHandle",
    "OrderState",
    "OrderStatus",
    "PurchaseOrder",
    "QUOTE_VOLUME_FLAG",
    "Severity",
    "SignedRequest",
]
