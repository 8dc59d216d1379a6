"""
Money and Rate Primitives

Decimal-safe amount and rate handling. NEVER uses float for monetary values:
every amount is coerced to Decimal and rounded half-up to whole cents.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from typing import Union
import re

from .errors import InvalidAmount, ValidationError

# Set global decimal context for financial precision
getcontext().prec = 28

CENT = Decimal('0.01')
ZERO = Decimal('0')
MONTHS_PER_YEAR = Decimal('12')

AmountLike = Union[Decimal, int, str, float]

# Optional currency code or symbol, then a plain decimal number (no exponent)
AMOUNT_PATTERN = re.compile(r'^(?:[A-Za-z]{2,4}\.?|[$€£])?\s*([+-]?(?:\d+(?:\.\d*)?|\.\d+))$')


def to_decimal(value: AmountLike) -> Decimal:
    """
    Convert a number or numeric string to Decimal

    Floats go through str() so 0.1 becomes Decimal('0.1') rather than its
    binary expansion. Strings may carry a currency symbol and thousands
    separators ("KES 1,200.50").

    Raises:
        ValidationError: If the value cannot be read as a finite number
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        raise ValidationError(f"Cannot convert {value!r} to Decimal")
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        match = AMOUNT_PATTERN.match(value.strip().replace(',', ''))
        if not match:
            raise ValidationError(f"Cannot convert '{value}' to Decimal")
        try:
            result = Decimal(match.group(1))
        except InvalidOperation:
            raise ValidationError(f"Cannot convert '{value}' to Decimal")
    else:
        raise ValidationError(f"Cannot convert {value!r} to Decimal")

    if not result.is_finite():
        raise ValidationError(f"Amount must be finite, got {value!r}")
    return result


def round_money(value: AmountLike) -> Decimal:
    """Round to cents using round-half-up (never banker's rounding)"""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def positive_amount(value: AmountLike, field_name: str = "amount") -> Decimal:
    """
    Validate a money movement amount

    Returns:
        The amount rounded to cents

    Raises:
        InvalidAmount: If the amount is not strictly positive after rounding
    """
    try:
        amount = round_money(value)
    except ValidationError as e:
        raise InvalidAmount(f"{field_name} is not a valid amount: {e.message}")
    if amount <= ZERO:
        raise InvalidAmount(f"{field_name} must be positive, got {amount}")
    return amount


def validate_rate(value: AmountLike, field_name: str = "annual_interest_rate") -> Decimal:
    """Annual rates are fractions: 0.15 means 15%. Accepts 0 <= rate <= 1."""
    rate = to_decimal(value)
    if rate < ZERO or rate > Decimal('1'):
        raise ValidationError(f"{field_name} must be between 0 and 1, got {rate}")
    return rate


def monthly_rate(annual_rate: Decimal) -> Decimal:
    """Periodic rate for monthly amortization"""
    return annual_rate / MONTHS_PER_YEAR


def daily_rate(annual_rate: Decimal, days_in_year: int = 365) -> Decimal:
    """Simple daily rate used by savings accrual"""
    return annual_rate / Decimal(days_in_year)


def format_amount(amount: Decimal) -> str:
    """Format for display and log messages"""
    return f"{round_money(amount):,.2f}"
