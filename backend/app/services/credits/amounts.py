"""Fixed-point credit amounts.

Credits are charged in fractional amounts (0.5, 1.0, 2.0). They are stored and
summed as integer minor units so repeated deductions never drift.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Union

MINOR_UNITS = 100
_QUANTUM = Decimal("0.01")

AmountLike = Union[int, float, str, Decimal]


def to_minor(amount: AmountLike) -> int:
    if isinstance(amount, bool):
        raise ValueError("credit amount must be numeric")
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount).strip())
    except (InvalidOperation, ValueError):
        raise ValueError(f"invalid credit amount: {amount!r}")
    if not value.is_finite():
        raise ValueError(f"invalid credit amount: {amount!r}")
    scaled = value * MINOR_UNITS
    if scaled != scaled.to_integral_value():
        raise ValueError(f"credit amount has more than 2 decimal places: {amount!r}")
    return int(scaled)


def positive_minor(amount: AmountLike) -> int:
    minor = to_minor(amount)
    if minor <= 0:
        raise ValueError(f"credit amount must be positive: {amount!r}")
    return minor


def from_minor(minor: int | None) -> Decimal:
    return (Decimal(int(minor or 0)) / MINOR_UNITS).quantize(_QUANTUM)


def as_float(minor: int | None) -> float:
    return float(from_minor(minor))
