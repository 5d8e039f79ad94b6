"""
DECIMAL PRECISION & MONEY HELPERS

All money math runs on Decimal and is rounded to 2 places (ROUND_HALF_UP)
at the boundary, right before a value is compared or stored.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Union
import logging

logger = logging.getLogger(__name__)

DECIMAL_PLACES = 2
QUANTIZE_PATTERN = Decimal('0.01')
MATCH_TOLERANCE = Decimal('0.01')

Number = Union[float, int, str, Decimal]


class FinancialPrecisionError(Exception):
    """Raised when a value cannot be interpreted as money"""
    pass


def to_decimal(value: Number) -> Decimal:
    """
    Convert any numeric value to Decimal.
    Does NOT round - preserves full precision for intermediate calculations.
    None is treated as zero (missing money fields on legacy documents).
    """
    if value is None:
        return Decimal('0')
    if isinstance(value, bool):
        raise FinancialPrecisionError("Cannot convert bool to Decimal")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        # Convert via string to avoid float precision issues
        result = Decimal(str(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip() or '0')
        except InvalidOperation:
            raise FinancialPrecisionError(f"Cannot convert '{value}' to Decimal")
    else:
        raise FinancialPrecisionError(f"Cannot convert {type(value)} to Decimal")

    # NaN and Infinity cannot be quantized or compared as money
    if not result.is_finite():
        raise FinancialPrecisionError(f"Financial value must be finite: {value}")
    return result


def round_financial(value: Number) -> Decimal:
    """Round a value to 2 decimal places, half up (cent granularity)."""
    return to_decimal(value).quantize(QUANTIZE_PATTERN, rounding=ROUND_HALF_UP)


def to_float(value: Number) -> float:
    """
    Convert back to float for MongoDB storage.
    Rounds to 2 decimal places first.
    """
    return float(round_financial(value))


def amounts_match(a: Number, b: Number, tolerance: Decimal = MATCH_TOLERANCE) -> bool:
    """True when two amounts agree at cent precision within the tolerance."""
    return abs(round_financial(a) - round_financial(b)) <= tolerance


def validate_positive(value: Number, field_name: str) -> None:
    """Raise FinancialPrecisionError unless value > 0."""
    if to_decimal(value) <= Decimal('0'):
        raise FinancialPrecisionError(
            f"Financial value '{field_name}' must be positive: {value}"
        )


def format_money(value: Number, currency: str = "INR") -> str:
    """Format for human-facing messages: 'INR 1,234.50'."""
    return f"{currency} {round_financial(value):,.2f}"
