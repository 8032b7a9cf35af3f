"""Exact conversion between human token amounts and raw integer units."""

from __future__ import annotations

from decimal import ROUND_DOWN, Decimal, InvalidOperation, localcontext
from typing import Union

from .errors import InvalidAmount

AmountLike = Union[Decimal, int, str, float]

WEI_DECIMALS = 18


def parse_amount(value: AmountLike) -> Decimal:
    """Turn user input into a finite ``Decimal``.

    Floats go through ``str`` so ``0.1`` stays ``0.1`` rather than its binary
    expansion.
    """
    if isinstance(value, bool):
        raise InvalidAmount(f"Invalid amount: {value!r}")
    try:
        amount = Decimal(str(value).strip()) if not isinstance(value, Decimal) else value
    except (InvalidOperation, ValueError) as exc:
        raise InvalidAmount(f"Invalid amount: {value!r}", cause=exc) from exc
    if not amount.is_finite():
        raise InvalidAmount(f"Invalid amount: {value!r}")
    return amount


def to_raw_amount(amount: AmountLike, decimals: int) -> int:
    """Scale a human amount by ``10**decimals`` without any rounding.

    Raises InvalidAmount when the amount carries more fractional digits than
    the token can represent.
    """
    value = parse_amount(amount)
    with localcontext() as ctx:
        ctx.prec = max(80, len(value.as_tuple().digits) + decimals + 2)
        scaled = value.scaleb(decimals)
        raw = scaled.to_integral_value()
        if raw != scaled:
            raise InvalidAmount(
                f"Amount {value} has more than {decimals} decimal places"
            )
    return int(raw)


def from_raw_amount(raw: int, decimals: int) -> Decimal:
    """Inverse of :func:`to_raw_amount`; exact for any uint256 value."""
    with localcontext() as ctx:
        ctx.prec = 100
        return Decimal(int(raw)).scaleb(-decimals)


def from_wei(wei: int) -> Decimal:
    return from_raw_amount(wei, WEI_DECIMALS)


def format_amount(amount: Decimal, places: int = 4) -> str:
    """Display helper: fixed number of places, truncated toward zero."""
    quantum = Decimal(1).scaleb(-places)
    with localcontext() as ctx:
        ctx.prec = 100
        return str(amount.quantize(quantum, rounding=ROUND_DOWN))


__all__ = [
    "parse_amount",
    "to_raw_amount",
    "from_raw_amount",
    "from_wei",
    "format_amount",
    "WEI_DECIMALS",
]
