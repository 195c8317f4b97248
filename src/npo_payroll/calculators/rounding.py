"""Rounding rules used by the payroll calculators.

Computed premiums truncate toward zero. Percentage edits and tax amounts
round half away from zero (``ROUND_HALF_UP`` on ``Decimal``).
"""

from __future__ import annotations

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, localcontext

PERCENT_PLACES = 3
_HUNDRED = Decimal("100")


def _exponent(digits: int) -> Decimal:
    return Decimal(1).scaleb(-digits)


def _quantize(value: Decimal, digits: int, rounding: str) -> Decimal:
    value = Decimal(value)
    with localcontext() as ctx:
        # quantize fails once the result has more digits than the precision
        if value.is_finite():
            ctx.prec = max(ctx.prec, value.adjusted() + digits + 2)
        return value.quantize(_exponent(digits), rounding=rounding)


def round_toward_zero(value: Decimal, digits: int = 0) -> Decimal:
    """Floor for non-negative values, ceiling for negative values."""
    return _quantize(value, digits, ROUND_DOWN)


def round_half_away_from_zero(value: Decimal, digits: int = 0) -> Decimal:
    """Round to ``digits`` places; ties move away from zero."""
    return _quantize(value, digits, ROUND_HALF_UP)


def percent_to_rate(percent: Decimal) -> Decimal:
    """Convert an edited percentage (4.5) to a stored fraction (0.045)."""
    return round_half_away_from_zero(Decimal(percent), PERCENT_PLACES) / _HUNDRED


def rate_to_percent(rate: Decimal) -> Decimal:
    """Convert a stored fraction to a percentage rounded for display."""
    return round_half_away_from_zero(Decimal(rate) * _HUNDRED, PERCENT_PLACES)
