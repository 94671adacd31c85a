"""
Money Helpers Module

Decimal conversion, rounding and display formatting for monetary values.
Balances and accumulators are kept exact; rounding only happens for display
and for values entering the system from text. NEVER uses float for money.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from enum import Enum
from typing import Union
import re

from .errors import ValidationError

# High precision for interest accumulation
getcontext().prec = 28

ZERO = Decimal('0')


class Currency(Enum):
    """ISO 4217 codes with minor-unit precision"""
    EUR = ("EUR", 2, "€")
    USD = ("USD", 2, "$")
    GBP = ("GBP", 2, "£")

    def __init__(self, code: str, precision: int, symbol: str):
        self.code = code
        self.precision = precision
        self.symbol = symbol


# The simulated bank books everything in euro
DEFAULT_CURRENCY = Currency.EUR


# Decorations allowed around a typed amount
_CURRENCY_MARKS = re.compile(
    "|".join([re.escape(c.symbol) for c in Currency] + [c.code for c in Currency]),
    re.IGNORECASE
)
_AMOUNT_PATTERN = re.compile(r'[+-]?[\d.,]+')


def to_decimal(value: Union[str, int, Decimal]) -> Decimal:
    """
    Convert user or storage input to Decimal

    Args:
        value: Decimal, int or numeric string ("1,234.50" and "85,50" accepted;
            a currency symbol or code such as "€" or "EUR" is ignored)

    Returns:
        Decimal value

    Raises:
        ValidationError: If the value is a float, contains any other
            character, or is not a finite number
    """
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise ValidationError("Monetary values must be finite")
        return value
    if isinstance(value, bool) or isinstance(value, float):
        raise ValidationError("Monetary values must be Decimal, int or str, not float")
    if isinstance(value, int):
        return Decimal(value)
    if not value or not isinstance(value, str):
        raise ValidationError("Value must be a non-empty string")

    clean_value = re.sub(r'\s', '', _CURRENCY_MARKS.sub('', value))
    if not _AMOUNT_PATTERN.fullmatch(clean_value):
        raise ValidationError(f"Cannot convert '{value}' to Decimal")

    if ',' in clean_value and '.' in clean_value:
        # Comma as thousands separator
        clean_value = clean_value.replace(',', '')
    elif clean_value.count(',') == 1:
        whole, fraction = clean_value.split(',')
        if len(fraction) <= 2:
            clean_value = f"{whole}.{fraction}"
        else:
            clean_value = whole + fraction

    try:
        return Decimal(clean_value)
    except InvalidOperation:
        raise ValidationError(f"Cannot convert '{value}' to Decimal")


def quantize_amount(value: Decimal, currency: Currency = DEFAULT_CURRENCY) -> Decimal:
    """Round to the currency's minor unit (half-up)"""
    return value.quantize(Decimal('0.1') ** currency.precision, rounding=ROUND_HALF_UP)


def format_amount(value: Decimal, currency: Currency = DEFAULT_CURRENCY) -> str:
    """Format for display, e.g. '1,000.82 EUR'"""
    rounded = quantize_amount(value, currency)
    return f"{rounded:,.{currency.precision}f} {currency.code}"
