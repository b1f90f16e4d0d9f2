"""
Input parsing and validation for weights, money and codes.

Service functions accept loosely-typed input (JSON numbers, strings,
floats from form posts) and normalise it here into quantized Decimals
according to the precision policy in ``constants``.

Functions return ``(is_valid, error_message)`` tuples in the same style
for the simple checks; the ``parse_*`` helpers return the parsed value or
raise ``ValueError`` with a field-qualified message.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Tuple

from .constants import (
    MAX_NOTES_LENGTH,
    MONEY_PRECISION,
    PRICE_PRECISION,
    ROUNDING,
    UNIT_COST_PRECISION,
    WEIGHT_PRECISION,
)


def to_decimal(value: Any, field_name: str = "Field") -> Decimal:
    """
    Convert a number-like value to Decimal.

    Floats go through ``str()`` so 0.1 becomes Decimal("0.1") rather than
    its binary expansion.

    Raises:
        ValueError: If the value is missing or not numeric
    """
    if value is None or (isinstance(value, str) and value.strip() == ""):
        raise ValueError(f"{field_name}: This field is required")
    if isinstance(value, bool):
        raise ValueError(f"{field_name}: Must be a valid number")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError) as e:
            raise ValueError(f"{field_name}: Must be a valid number") from e
    if not result.is_finite():
        raise ValueError(f"{field_name}: Must be a valid number")
    return result


def quantize_weight(value: Decimal) -> Decimal:
    """Round a weight to gram precision."""
    return value.quantize(WEIGHT_PRECISION, rounding=ROUNDING)


def quantize_money(value: Decimal) -> Decimal:
    """Round a money total to cents."""
    return value.quantize(MONEY_PRECISION, rounding=ROUNDING)


def quantize_unit_cost(value: Decimal) -> Decimal:
    """Round a per-kg cost to four decimal places."""
    return value.quantize(UNIT_COST_PRECISION, rounding=ROUNDING)


def quantize_price(value: Decimal) -> Decimal:
    """Round a suggested sale price to a whole currency unit."""
    return value.quantize(PRICE_PRECISION, rounding=ROUNDING)


def parse_weight(value: Any, field_name: str = "weight") -> Decimal:
    """Parse a weight in kg and quantize it. Sign is not checked here."""
    return quantize_weight(to_decimal(value, field_name))


def validate_code(value: Optional[str], max_length: int, field_name: str = "code") -> Tuple[bool, str]:
    """
    Validate a natural-key code (lot code, batch code).

    Returns:
        Tuple of (is_valid, error_message)
    """
    if value is None:
        return False, f"{field_name}: This field is required"
    if not isinstance(value, str):
        return False, f"{field_name}: Must be a string"
    if value.strip() == "":
        return False, f"{field_name}: This field is required"
    if len(value.strip()) > max_length:
        return False, f"{field_name}: Must be {max_length} characters or fewer"
    return True, ""


def sanitize_notes(value: Optional[str]) -> Optional[str]:
    """
    Strip free-text notes; empty strings become None.

    Raises:
        ValueError: If the notes are not a string or exceed MAX_NOTES_LENGTH
    """
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError("notes: Must be a string")
    value = value.strip()
    if not value:
        return None
    if len(value) > MAX_NOTES_LENGTH:
        raise ValueError(f"notes: Must be {MAX_NOTES_LENGTH} characters or fewer")
    return value
