"""
Decimal utilities for money handling.

Balances, spend amounts and fills are kept as Decimal end to end:
- venue strings are parsed without passing through float
- order volumes are rendered without exponent notation
- amounts are formatted for humans with fixed decimals
"""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

NumberLike = Union[Decimal, int, float, str, bool, None]

ZERO = Decimal("0")


def _is_bad_string(s: str) -> bool:
    s = s.strip().lower()
    return s in {"", "none", "nan", "inf", "-inf", "null", "undefined"}


def dec(x: NumberLike) -> Decimal:
    """
    Lenient conversion to Decimal.

    - Decimal -> as is
    - float -> via str() so 0.1 stays 0.1
    - int/bool -> Decimal(int(x))
    - str -> parsed, bad strings ("", "nan", "inf") -> 0
    - None -> 0

    Never raises. Use `parse_decimal` where garbage must be rejected.
    """
    try:
        if isinstance(x, Decimal):
            return x
        if isinstance(x, bool):
            return Decimal(int(x))
        if isinstance(x, float):
            return Decimal(repr(x))
        if isinstance(x, int):
            return Decimal(x)
        if x is None:
            return ZERO
        s = str(x)
        if _is_bad_string(s):
            return ZERO
        return Decimal(s.strip())
    except (InvalidOperation, ValueError, TypeError):
        return ZERO


def parse_decimal(x: NumberLike) -> Decimal:
    """
    Strict conversion to a finite Decimal.

    Raises:
        ValueError: on None, booleans, empty/non-numeric strings, NaN or infinity
    """
    if x is None or isinstance(x, bool):
        raise ValueError(f"not a number: {x!r}")
    try:
        d = Decimal(repr(x)) if isinstance(x, float) else Decimal(str(x).strip())
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise ValueError(f"not a number: {x!r}") from exc
    if not d.is_finite():
        raise ValueError(f"not a finite number: {x!r}")
    return d


def to_plain(value: NumberLike) -> str:
    """
    Render a Decimal the way the venue expects it: no exponent, no trailing zeros.

    Examples:
        to_plain("50.00") -> "50"
        to_plain(Decimal("1E+2")) -> "100"
        to_plain("0.00012300") -> "0.000123"
    """
    d = dec(value)
    if d == d.to_integral_value():
        return str(d.quantize(Decimal(1)))
    return format(d.normalize(), "f")


def fmt_decimal(value: NumberLike, decimals: int = 2) -> str:
    """
    Format Decimal for display.

    Examples:
        fmt_decimal(1.2345, 2) -> "1.23"
        fmt_decimal(1000.5, 0) -> "1001"
    """
    q = Decimal(10) ** -decimals
    return str(dec(value).quantize(q, rounding=ROUND_HALF_UP))


def fmt_amount(value: NumberLike, currency: str, decimals: int = 2) -> str:
    """
    Format an amount with its currency code.

    Examples:
        fmt_amount(120.5, "USD") -> "120.50 USD"
    """
    return f"{fmt_decimal(value, decimals)} {currency}".rstrip()


__all__ = [
    "NumberLike",
    "ZERO",
    "dec",
    "parse_decimal",
    "to_plain",
    "fmt_decimal",
    "fmt_amount",
]
