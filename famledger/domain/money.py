"""
Money helpers: exact Decimal amounts with a fixed minor unit (cents).

Usage:
    from famledger.domain.money import parse_amount, format_money

    parse_amount("1200,5")        -> Decimal("1200.50")
    format_money(Decimal("1500")) -> "1,500.00 USD"
"""
import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from famledger.domain.errors import InvalidInputError

ZERO = Decimal("0.00")
CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def quantize(amount: Decimal) -> Decimal:
    """Round half-up to the currency minor unit."""
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def percent_of(amount: Decimal, percentage: Decimal) -> Decimal:
    """``amount × percentage / 100`` rounded half-up to cents."""
    return quantize(Decimal(amount) * Decimal(percentage) / HUNDRED)


def ratio_percent(part: Decimal, whole: Decimal) -> Decimal:
    """``part / whole × 100`` rounded to 0.01, zero when ``whole`` is zero."""
    if not whole:
        return ZERO
    return quantize(Decimal(part) / Decimal(whole) * HUNDRED)


def normalize_decimal_input(value: str) -> str:
    """Accept both decimal separators: "100,50" -> "100.50"."""
    return value.strip().replace(",", ".")


def parse_amount(value, field: str = "amount", max_decimal_places: int = 2,
                 allow_zero: bool = False, allow_negative: bool = False) -> Decimal:
    """
    Validate a money amount and return it as a cent-quantized Decimal.

    Floats are rejected: amounts are exchanged as exact decimals only.

    Raises:
        InvalidInputError: malformed, too many decimal places, or out of range
    """
    if isinstance(value, (float, bool)):
        raise InvalidInputError(f"{field} must be an exact decimal, not {type(value).__name__}", field=field)
    if isinstance(value, Decimal):
        raw = format(value, "f")
    else:
        raw = normalize_decimal_input(str(value))

    pattern = rf"^-?\d+(\.\d{{1,{max_decimal_places}}})?$"
    if not re.match(pattern, raw):
        raise InvalidInputError(
            f"{field} must be a number with at most {max_decimal_places} decimal places, got {value!r}",
            field=field,
        )
    try:
        amount = Decimal(raw)
    except (InvalidOperation, ValueError):
        raise InvalidInputError(f"{field} is not a valid amount: {value!r}", field=field)

    if amount < 0 and not allow_negative:
        raise InvalidInputError(f"{field} must not be negative", field=field)
    if amount == 0 and not allow_zero:
        raise InvalidInputError(f"{field} must be greater than zero", field=field)
    return quantize(amount)


def parse_percentage(value, field: str = "percentage") -> Decimal:
    """Percentages live in [0, 100] with two decimal places."""
    pct = parse_amount(value, field=field, allow_zero=True)
    if pct > HUNDRED:
        raise InvalidInputError(f"{field} must be between 0 and 100, got {pct}", field=field)
    return pct


def format_money(amount, currency: str = "USD") -> str:
    """Thousands-separated amount with 2 decimals and the currency code."""
    if isinstance(amount, str):
        amount = Decimal(amount)
    return f"{quantize(amount):,.2f} {currency}"
