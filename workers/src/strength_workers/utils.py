"""Shared numeric helpers for the ranking engine."""

import math
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

_CENT = Decimal("0.01")


def to_float(value: Any) -> float | None:
    """Coerce to a finite float. NaN, infinities and junk give None."""
    try:
        if value is None:
            return None
        result = float(value)
    except (TypeError, ValueError):
        return None
    return result if math.isfinite(result) else None


def to_int(value: Any) -> int | None:
    try:
        if value is None:
            return None
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return None


def as_decimal(value: float | int | Decimal) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # repr() keeps the shortest round-tripping form, so 116.67 stays 116.67
    return Decimal(repr(value))


def round_half_up(value: float | int | Decimal) -> int:
    """Round to the nearest integer, halves away from zero.

    Python's round() uses banker's rounding; scores are defined with the
    conventional half-up rule (5833.5 -> 5834).
    """
    return int(as_decimal(value).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def round_cents(value: float | int | Decimal) -> Decimal:
    """Quantize to two decimals with half-up rounding."""
    return as_decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP)


def safe_weighted_average(pairs: list[tuple[float, float]]) -> float:
    """Weighted mean of (value, weight) pairs. Returns 0 when the weights sum to 0."""
    denominator = sum(weight for _, weight in pairs)
    if denominator <= 0:
        return 0.0
    numerator = sum(value * weight for value, weight in pairs)
    return numerator / denominator
