"""
Terminal results of one DCA pass.

Exactly one outcome is produced per scheduled trigger, and each outcome maps
to exactly one notification (severity, title, body).
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Union

from kraken_dca.core.application.ports import QUOTE_VOLUME_FLAG, OrderHandle, OrderStatus, PurchaseOrder, Severity
from kraken_dca.core.domain.balance_guard import GuardDecision
from kraken_dca.utils.decimal import ZERO, fmt_amount, fmt_decimal, to_plain

TITLE_PREFIX = "Kraken DCA"


@dataclass(frozen=True)
class Skipped:
    decision: GuardDecision
    currency: str

    kind = "skipped"
    severity = Severity.WARNING

    @property
    def title(self) -> str:
        return f"{TITLE_PREFIX}: Low {self.currency} balance"

    def render(self) -> str:
        c = self.currency
        return "\n".join(
            [
                f"• Balance: {fmt_amount(self.decision.balance, c)}",
                f"• Required: {fmt_amount(self.decision.amount, c)}",
                f"• Threshold: {fmt_amount(self.decision.threshold, c)}",
                "",
                "No order was placed.",
            ]
        )


def _order_lines(order: PurchaseOrder, handle: OrderHandle, status: Optional[OrderStatus]) -> list[str]:
    c = order.currency
    state = status.status.value if status is not None else "unknown"
    lines = [
        f"• Pair: {order.pair}",
        f"• Spent (target): {fmt_amount(order.amount, c)} (via oflags={QUOTE_VOLUME_FLAG})",
        f"• Status: {state}",
        f"• txid: {', '.join(handle.txids)}",
        f"• Order: {handle.description}",
    ]
    if status is not None:
        if status.price > ZERO:
            lines.append(f"• Avg price: {fmt_amount(status.price, c)}")
        if status.vol_exec > ZERO:
            lines.append(f"• Filled: {to_plain(status.vol_exec)}")
        if status.cost > ZERO:
            lines.append(f"• Cost: {fmt_amount(status.cost, c)}")
        if status.fee > ZERO:
            lines.append(f"• Fee: {fmt_amount(status.fee, c)}")
    return lines


@dataclass(frozen=True)
class Filled:
    order: PurchaseOrder
    handle: OrderHandle
    status: OrderStatus

    kind = "filled"
    severity = Severity.SUCCESS

    @property
    def title(self) -> str:
        return f"{TITLE_PREFIX}: Purchase complete ({self.handle.primary_txid})"

    @property
    def price(self) -> Decimal:
        return self.status.price

    def render(self) -> str:
        return "\n".join(_order_lines(self.order, self.handle, self.status))


@dataclass(frozen=True)
class Unconfirmed:
    """The order was accepted but no poll saw it closed before the timeout."""

    order: PurchaseOrder
    handle: OrderHandle
    waited_sec: float
    last_status: Optional[OrderStatus] = None

    kind = "unconfirmed"
    severity = Severity.WARNING

    @property
    def title(self) -> str:
        return f"{TITLE_PREFIX}: Purchase unconfirmed"

    def render(self) -> str:
        lines = _order_lines(self.order, self.handle, None)
        if self.last_status is not None:
            lines.append(f"• Last seen status: {self.last_status.status.value}")
        lines += [
            "",
            f"Fill not confirmed within {fmt_decimal(self.waited_sec, 1)}s. "
            "The order was accepted and was not cancelled; check it on Kraken.",
        ]
        return "\n".join(lines)


@dataclass(frozen=True)
class Failed:
    """Any exception raised during the pass, converted into a report."""

    error_type: str
    message: str
    handle: Optional[OrderHandle] = None

    kind = "failed"
    severity = Severity.ERROR

    @classmethod
    def from_exception(cls, exc: BaseException, *, handle: Optional[OrderHandle] = None) -> "Failed":
        return cls(error_type=type(exc).__name__, message=str(exc), handle=handle)

    @property
    def order_placed(self) -> bool:
        return self.handle is not None

    @property
    def title(self) -> str:
        return f"{TITLE_PREFIX}: Error"

    def render(self) -> str:
        text = f"{self.error_type}: {self.message}"
        if self.handle is None:
            return text
        return "\n".join(
            [
                text,
                "",
                f"An order was placed before the failure (txid: {', '.join(self.handle.txids)}).",
                "It was not cancelled; check it on Kraken.",
            ]
        )


PurchaseOutcome = Union[Skipped, Filled, Unconfirmed, Failed]


__all__ = [
    "Failed",
    "Filled",
    "PurchaseOutcome",
    "Skipped",
    "TITLE_PREFIX",
    "Unconfirmed",
]
