"""
Money helpers.

Amounts are stored as NUMERIC(12, 2). Arithmetic runs on integer cents and
everything leaving the engine is rounded half-to-even to two places.
"""
from __future__ import annotations

from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from typing import Any, Iterable

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
EPSILON = Decimal("0.005")


def to_decimal(value: Any) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        raw = value
    elif isinstance(value, bool):
        raise TypeError("boolean is not a money amount")
    elif isinstance(value, int):
        raw = Decimal(value)
    elif isinstance(value, float):
        raw = Decimal(repr(value))
    else:
        try:
            raw = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise ValueError(f"invalid money amount: {value!r}") from exc
    if not raw.is_finite():
        raise ValueError(f"invalid money amount: {value!r}")
    return raw.quantize(CENT, rounding=ROUND_HALF_EVEN)


def to_cents(value: Any) -> int:
    return int(to_decimal(value) * 100)


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT, rounding=ROUND_HALF_EVEN)


def add(*values: Any) -> Decimal:
    return from_cents(sum(to_cents(v) for v in values))


def sub(left: Any, right: Any) -> Decimal:
    return from_cents(to_cents(left) - to_cents(right))


def neg(value: Any) -> Decimal:
    return from_cents(-to_cents(value))


def total(values: Iterable[Any]) -> Decimal:
    return from_cents(sum(to_cents(v) for v in values))


def is_zero(value: Any) -> bool:
    return to_cents(value) == 0


def nearly_equal(left: Any, right: Any) -> bool:
    """Equality within half a cent."""
    return abs(to_decimal(left) - to_decimal(right)) < EPSILON


def as_float(value: Any) -> float:
    return float(to_decimal(value))
