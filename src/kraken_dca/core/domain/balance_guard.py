"""
Balance guard: decides whether a DCA pass may spend money.

Skip when the balance is below the low-balance threshold OR below the spend
amount. Both comparisons are strict, so equality proceeds.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from kraken_dca.utils.decimal import NumberLike, dec


class GuardAction(Enum):
    PROCEED = "proceed"
    SKIP = "skip"


class SkipReason(Enum):
    BELOW_THRESHOLD = "below_threshold"
    BELOW_AMOUNT = "below_amount"


@dataclass(frozen=True)
class GuardDecision:
    action: GuardAction
    balance: Decimal
    amount: Decimal
    threshold: Decimal
    reasons: tuple[SkipReason, ...] = ()

    @property
    def proceed(self) -> bool:
        return self.action is GuardAction.PROCEED


def decide(balance: NumberLike, amount: NumberLike, low_balance_threshold: NumberLike) -> GuardDecision:
    """Pure proceed/skip decision; never touches the network."""
    b, a, t = dec(balance), dec(amount), dec(low_balance_threshold)

    reasons: list[SkipReason] = []
    if b < t:
        reasons.append(SkipReason.BELOW_THRESHOLD)
    if b < a:
        reasons.append(SkipReason.BELOW_AMOUNT)

    action = GuardAction.SKIP if reasons else GuardAction.PROCEED
    return GuardDecision(action=action, balance=b, amount=a, threshold=t, reasons=tuple(reasons))


__all__ = ["GuardAction", "GuardDecision", "SkipReason", "decide"]
