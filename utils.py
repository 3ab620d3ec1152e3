from decimal import Decimal, InvalidOperation, ROUND_DOWN, ROUND_HALF_UP
from typing import Iterable, Optional


CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


def round2(value) -> Decimal:
    """Round to 2 decimal places, half-up."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def sum2(values: Iterable[Decimal]) -> Decimal:
    return round2(sum(values, ZERO))


def to_decimal(value) -> Optional[Decimal]:
    """
    Parse a client-supplied number. Returns None for anything that is not a
    finite number (None, booleans, blank or non-numeric strings, NaN, inf).
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            return None
    if not result.is_finite():
        return None
    return result


def to_quantity(value) -> Optional[int]:
    """Parse a quantity, truncating any fractional part."""
    number = to_decimal(value)
    if number is None:
        return None
    return int(number.to_integral_value(rounding=ROUND_DOWN))


def to_percentage(value) -> Optional[Decimal]:
    """Parse a percentage; None when missing, malformed or outside [0, 100]."""
    number = to_decimal(value)
    if number is None or number < 0 or number > HUNDRED:
        return None
    return round2(number)


def validate_percentage(value, field: str) -> Decimal:
    """Raise ValueError unless value is a number in [0, 100]."""
    number = to_percentage(value)
    if number is None:
        raise ValueError(f"'{field}' must be a number between 0 and 100, got {value!r}")
    return number


def is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())
