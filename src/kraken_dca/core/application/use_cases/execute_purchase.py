"""
Execute Purchase use case: the only place where DCA orders are placed.

Critical rules:
- One pass = balance check -> guard -> (place -> poll) -> exactly one outcome
- Placement is never retried; a lost response may still mean a live order
- A fill that is not confirmed in time is reported as Unconfirmed, not as an error
- Nothing escapes `DCAJob.run_once`; the scheduler must survive every pass
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Awaitable, Callable, Optional

import httpx

from kraken_dca.core.application.ports import (
    ExchangePort,
    NotifierPort,
    OrderHandle,
    OrderStatus,
    PurchaseOrder,
)
from kraken_dca.core.domain.balance_guard import decide
from kraken_dca.core.domain.outcomes import Failed, Filled, PurchaseOutcome, Skipped, Unconfirmed
from kraken_dca.utils.exceptions import ExchangeError
from kraken_dca.utils.logging import get_logger
from kraken_dca.utils.trace import trace_context

_log = get_logger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]

DEFAULT_POLL_INTERVAL_SEC = 1.5
DEFAULT_POLL_TIMEOUT_SEC = 30.0


# ============= ORDER EXECUTOR =============

class ExecutionState(Enum):
    PLACED = "placed"
    POLLING = "polling"
    CLOSED = "closed"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class ExecutionResult:
    state: ExecutionState
    handle: OrderHandle
    status: Optional[OrderStatus] = None
    polls: int = 0
    waited_sec: float = 0.0

    @property
    def closed(self) -> bool:
        return self.state is ExecutionState.CLOSED


class OrderExecutor:
    """
    Places a market buy, then polls its status at a fixed interval until it
    is closed or the timeout elapses. Never cancels, never re-places.
    """

    def __init__(
        self,
        exchange: ExchangePort,
        *,
        poll_interval_sec: float = DEFAULT_POLL_INTERVAL_SEC,
        poll_timeout_sec: float = DEFAULT_POLL_TIMEOUT_SEC,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if poll_interval_sec <= 0:
            raise ValueError("poll_interval_sec must be > 0")
        if poll_timeout_sec <= 0:
            raise ValueError("poll_timeout_sec must be > 0")
        self._exchange = exchange
        self._interval = float(poll_interval_sec)
        self._timeout = float(poll_timeout_sec)
        self._clock = clock
        self._sleep = sleep

    async def execute(self, order: PurchaseOrder) -> ExecutionResult:
        """Place `order` once and wait for its fill."""
        handle = await self.place(order)
        return await self.wait_until_closed(handle)

    async def place(self, order: PurchaseOrder) -> OrderHandle:
        """Send the market buy once. Errors propagate unchanged; nothing is re-sent."""
        handle = await self._exchange.place_market_buy(order.pair, order.amount, order.currency, order.tag)
        _log.info(
            "order_accepted",
            extra={"state": ExecutionState.PLACED.value, "txids": list(handle.txids), "order": handle.description},
        )
        return handle

    async def wait_until_closed(self, handle: OrderHandle) -> ExecutionResult:
        start = self._clock()
        polls = 0
        last: Optional[OrderStatus] = None

        while self._clock() - start < self._timeout:
            polls += 1
            try:
                statuses = await self._exchange.query_orders(list(handle.txids))
            except (ExchangeError, httpx.HTTPError) as exc:
                # The order exists; a failed status read only delays confirmation
                _log.warning(
                    "order_poll_failed",
                    extra={"txids": list(handle.txids), "poll": polls, "error": str(exc)},
                )
                statuses = {}
            except Exception as exc:  # noqa: BLE001
                _log.error(
                    "order_poll_failed",
                    extra={"txids": list(handle.txids), "poll": polls, "error": repr(exc)},
                    exc_info=True,
                )
                statuses = {}

            for txid in handle.txids:
                status = statuses.get(txid)
                if status is None:
                    continue
                last = status
                if status.is_closed:
                    waited = self._clock() - start
                    _log.info(
                        "order_closed",
                        extra={
                            "state": ExecutionState.CLOSED.value,
                            "txid": txid,
                            "polls": polls,
                            "price": str(status.price),
                            "vol_exec": str(status.vol_exec),
                            "cost": str(status.cost),
                            "fee": str(status.fee),
                        },
                    )
                    return ExecutionResult(ExecutionState.CLOSED, handle, status, polls, waited)

            _log.debug(
                "order_poll",
                extra={
                    "state": ExecutionState.POLLING.value,
                    "poll": polls,
                    "status": last.status.value if last else None,
                },
            )
            await self._sleep(self._interval)

        waited = self._clock() - start
        _log.warning(
            "order_unconfirmed",
            extra={"state": ExecutionState.TIMED_OUT.value, "txids": list(handle.txids), "polls": polls},
        )
        return ExecutionResult(ExecutionState.TIMED_OUT, handle, last, polls, waited)


# ============= ONE DCA PASS =============

class DCAJob:
    """
    The scheduled routine. `run_once` is re-entrant: concurrent passes share
    nothing but the exchange client (and therefore the nonce source).
    """

    def __init__(
        self,
        *,
        name: str,
        exchange: ExchangePort,
        notifier: NotifierPort,
        order: PurchaseOrder,
        low_balance_threshold: Decimal,
        executor: Optional[OrderExecutor] = None,
    ) -> None:
        self.name = name
        self._exchange = exchange
        self._notifier = notifier
        self._order = order
        self._threshold = low_balance_threshold
        self._executor = executor or OrderExecutor(exchange)

    @property
    def order(self) -> PurchaseOrder:
        return self._order

    async def evaluate(self) -> PurchaseOutcome:
        """
        Balance -> guard -> place -> poll.

        Failures before placement raise; after placement they become a
        Failed outcome that still carries the order handle.
        """
        o = self._order
        _log.info("balance_check", extra={"strategy": self.name, "currency": o.currency})
        balance = await self._exchange.get_balance(o.currency)
        _log.info("balance_retrieved", extra={"strategy": self.name, "currency": o.currency, "balance": str(balance)})

        decision = decide(balance, o.amount, self._threshold)
        if not decision.proceed:
            _log.warning(
                "low_balance_skip",
                extra={
                    "strategy": self.name,
                    "currency": o.currency,
                    "balance": str(decision.balance),
                    "threshold": str(decision.threshold),
                    "amount": str(decision.amount),
                    "reasons": [r.value for r in decision.reasons],
                },
            )
            return Skipped(decision=decision, currency=o.currency)

        _log.info(
            "placing_market_buy",
            extra={"strategy": self.name, "pair": o.pair, "amount": str(o.amount), "currency": o.currency},
        )
        handle = await self._executor.place(o)
        try:
            result = await self._executor.wait_until_closed(handle)
        except Exception as exc:  # noqa: BLE001
            # money may already be spent: keep the txid in the report
            _log.error(
                "pass_failed_after_placement",
                extra={"strategy": self.name, "txids": list(handle.txids), "error": str(exc)},
                exc_info=True,
            )
            return Failed.from_exception(exc, handle=handle)

        if result.closed and result.status is not None:
            return Filled(order=o, handle=result.handle, status=result.status)
        return Unconfirmed(order=o, handle=result.handle, waited_sec=result.waited_sec, last_status=result.status)

    async def run_once(self) -> PurchaseOutcome:
        """
        One full pass, ending in exactly one outcome and one notification.
        Never raises (task cancellation excepted).
        """
        with trace_context(prefix="pass_") as trace_id:
            _log.info("pass_started", extra={"strategy": self.name, "trace_id": trace_id})
            try:
                outcome = await self.evaluate()
            except Exception as exc:  # noqa: BLE001
                _log.error("pass_failed", extra={"strategy": self.name, "error": str(exc)}, exc_info=True)
                outcome = Failed.from_exception(exc)

            await self._report(outcome)
            _log.info("pass_finished", extra={"strategy": self.name, "outcome": outcome.kind})
            return outcome

    async def _report(self, outcome: PurchaseOutcome) -> None:
        """Notify once; a delivery failure is logged and swallowed."""
        try:
            await self._notifier.notify(outcome.severity, outcome.title, outcome.render())
        except Exception as exc:  # noqa: BLE001
            _log.error(
                "notification_failed",
                extra={"strategy": self.name, "outcome": outcome.kind, "error": str(exc)},
            )


__all__ = [
    "DEFAULT_POLL_INTERVAL_SEC",
    "DEFAULT_POLL_TIMEOUT_SEC",
    "DCAJob",
    "ExecutionResult",
    "ExecutionState",
    "OrderExecutor",
]
