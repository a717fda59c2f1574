"""
Money parsing utilities with multi-locale support.

Handles the number formats seen on receipts:
- US: 1,234.56
- European: 1.234,56 or 1 234,56
- Zero-decimal currencies: ¥1,200
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Optional
import re

CENTS = Decimal('0.01')

# Currency symbols stripped before numeric parsing
_SYMBOL_PATTERN = re.compile(r'(?:NT|HK|US|[ACS])?[$£€¥￥฿₩]\s*|\b[A-Z]{3}\b\s*', re.IGNORECASE)


class MoneyFormat(Enum):
    """Money format locale hints."""
    US = "US"  # 1,234.56
    EUROPEAN = "EUROPEAN"  # 1.234,56 or 1 234,56
    AUTO = "AUTO"  # Auto-detect based on patterns


def parse_money(
    amount_str: str,
    format_hint: Optional[MoneyFormat] = None,
) -> Optional[Decimal]:
    """
    Parse a money string into a non-negative Decimal.

    Args:
        amount_str: String containing amount (e.g., "$1,234.56", "1.234,56 EUR")
        format_hint: Optional locale hint (US, EUROPEAN, AUTO)

    Returns:
        Decimal amount or None if parsing fails

    Examples:
        >>> parse_money("$1,234.56")
        Decimal('1234.56')
        >>> parse_money("1.234,56", format_hint=MoneyFormat.EUROPEAN)
        Decimal('1234.56')
        >>> parse_money("¥1,200")
        Decimal('1200')
    """
    if not amount_str or not isinstance(amount_str, str):
        return None

    cleaned = _SYMBOL_PATTERN.sub('', amount_str).strip()
    if not cleaned:
        return None

    money_format = format_hint or MoneyFormat.AUTO
    if money_format == MoneyFormat.AUTO:
        money_format = _detect_money_format(cleaned)

    decimal_sep = ',' if money_format == MoneyFormat.EUROPEAN else '.'
    result = _to_decimal(cleaned, decimal_sep)

    if result is None or result < 0:
        return None
    return result


def to_cents(amount: Decimal) -> Decimal:
    """Round an amount to two decimal places (half-up)."""
    return Decimal(amount).quantize(CENTS, rounding=ROUND_HALF_UP)


def _detect_money_format(amount_str: str) -> MoneyFormat:
    """European when the string ends in ,dd or a dot precedes the last comma."""
    if re.search(r',\d{2}$', amount_str):
        return MoneyFormat.EUROPEAN
    if '.' in amount_str and ',' in amount_str and amount_str.index('.') < amount_str.rindex(','):
        return MoneyFormat.EUROPEAN
    return MoneyFormat.US


def _to_decimal(amount_str: str, decimal_sep: str) -> Optional[Decimal]:
    # Everything except digits, sign and the decimal separator is grouping
    digits = re.sub(r'[^\d\-' + re.escape(decimal_sep) + r']', '', amount_str.replace('，', ','))
    if decimal_sep != '.':
        digits = digits.replace(decimal_sep, '.')
    try:
        return Decimal(digits)
    except (InvalidOperation, ValueError):
        return None
