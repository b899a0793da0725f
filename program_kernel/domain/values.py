"""
Decimal helpers shared by engines and services.

All money in the program finance core is ``Decimal``.  Money outputs are
quantized to 2 places and performance ratios (CPI, SPI, TCPI) to 4 places,
both with ROUND_HALF_UP.  The asymmetric precision keeps a persisted
snapshot identical when it is read back and recomputed.
"""

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal

MONEY_DECIMAL_PLACES = 2
RATIO_DECIMAL_PLACES = 4
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")

_MONEY_QUANTUM = Decimal("0.01")
_RATIO_QUANTUM = Decimal("0.0001")


def to_decimal(value: Decimal | int | float | str) -> Decimal:
    """
    Coerce a numeric input to Decimal.

    Floats go through ``str`` so that ``0.1`` becomes ``Decimal("0.1")``
    rather than its binary expansion.

    Raises:
        decimal.InvalidOperation: if ``value`` is not numeric.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def round_money(value: Decimal, rounding: str = DEFAULT_ROUNDING) -> Decimal:
    """Quantize to 2 decimal places."""
    return value.quantize(_MONEY_QUANTUM, rounding=rounding)


def round_ratio(value: Decimal, rounding: str = DEFAULT_ROUNDING) -> Decimal:
    """Quantize to 4 decimal places."""
    return value.quantize(_RATIO_QUANTUM, rounding=rounding)


def round_places(value: Decimal, places: int) -> Decimal:
    return value.quantize(Decimal(1).scaleb(-places), rounding=DEFAULT_ROUNDING)


def truncate_to_int(value: Decimal) -> int:
    """Drop the fractional part toward zero."""
    return int(value.to_integral_value(rounding=ROUND_DOWN))


def percent_of(part: Decimal, whole: Decimal) -> Decimal:
    """``part / whole * 100`` at money precision, or 0 when whole is not positive."""
    if whole <= ZERO:
        return round_money(ZERO)
    return round_money(part / whole * HUNDRED)


def format_amount(value: Decimal) -> str:
    """Render an amount for audit notes: 2 places, no grouping."""
    return str(round_money(value))
