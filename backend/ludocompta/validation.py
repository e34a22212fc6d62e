from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable

from ludocompta.errors import ValidationError
from ludocompta.time_utils import parse_iso_date


CENT = Decimal("0.01")

# Maximum amount: 9,999,999,999.99 (fits Numeric(12, 2))
MAX_AMOUNT = Decimal("9999999999.99")


def parse_amount(value: Any, field: str = "amount", *, allow_zero: bool = False, allow_negative: bool = False) -> Decimal:
    """
    Coerce an incoming monetary value to a 2-decimal Decimal.

    Accepts Decimal, int and plain decimal strings. Floats are converted
    through their repr so 0.1 stays 0.1. Booleans and scientific notation
    are rejected.
    """
    if value is None:
        raise ValidationError(f"{field} is required")
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")

    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, int):
        amount = Decimal(value)
    elif isinstance(value, float):
        amount = Decimal(repr(value))
    elif isinstance(value, str):
        stripped = value.strip().replace(",", ".")
        if not stripped:
            raise ValidationError(f"{field} is required")
        # Reject scientific notation (e.g., "1e3")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain decimal (scientific notation not allowed)")
        try:
            amount = Decimal(stripped)
        except InvalidOperation:
            raise ValidationError(f"{field} must be a number")
    else:
        raise ValidationError(f"{field} must be a number")

    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite number")

    if amount != amount.quantize(CENT, rounding=ROUND_HALF_UP):
        raise ValidationError(f"{field} cannot have more than 2 decimal places")
    amount = amount.quantize(CENT)

    if amount.copy_abs() > MAX_AMOUNT:
        raise ValidationError(f"{field} cannot exceed {MAX_AMOUNT}")
    if not allow_negative and amount < 0:
        raise ValidationError(f"{field} must be positive")
    if not allow_zero and amount == 0:
        raise ValidationError(f"{field} must be positive")

    return amount


def require_choice(value: Any, choices: Iterable[str], field: str) -> str:
    allowed = list(choices)
    if value not in allowed:
        raise ValidationError(f"Invalid {field}: {value}. Must be one of {allowed}")
    return value


def require_text(value: Any, field: str, *, max_length: int | None = None) -> str:
    if value is None:
        raise ValidationError(f"{field} is required")
    text = str(value).strip()
    if not text:
        raise ValidationError(f"{field} cannot be blank")
    if max_length and len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text


def optional_text(value: Any, field: str, *, max_length: int | None = None) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if max_length and len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text


def require_id(value: Any, field: str) -> int:
    """Strict positive integer id (rejects floats, bools and '12.0')."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} is required")
    if isinstance(value, int):
        parsed = value
    elif isinstance(value, str) and value.strip().isdigit():
        parsed = int(value.strip())
    else:
        raise ValidationError(f"{field} must be an integer")
    if parsed <= 0:
        raise ValidationError(f"{field} must be a positive integer")
    return parsed


def coerce_date(value: Any, field: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            parsed = parse_iso_date(value)
        except ValueError:
            raise ValidationError(f"{field} must be an ISO-8601 date")
        if parsed is not None:
            return parsed
    raise ValidationError(f"{field} must be a date")
