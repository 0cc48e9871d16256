from __future__ import annotations

from datetime import date
from typing import Any

from portal.errors import ValidationError
from portal.time_utils import parse_iso_date


# Maximum amount: $9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical invoices
MAX_AMOUNT_CENTS = 999_999_999


def coerce_int(name: str, value: Any, *, minimum: int | None = None, maximum: int | None = None) -> int:
    """
    Strict integer coercion for client input.

    Rejects bools, floats, decimals and scientific notation: amounts are
    integer cents and must never be rounded on the way in.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{name} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if "e" in stripped.lower():
            raise ValidationError(f"{name} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{name} must be an integer (no decimals)")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{name} must be an integer")
    elif isinstance(value, float):
        raise ValidationError(f"{name} must be an integer, not a decimal")
    else:
        raise ValidationError(f"{name} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{name} must be >= {minimum}")
    if maximum is not None and result > maximum:
        raise ValidationError(f"{name} must be <= {maximum}")
    return result


def coerce_cents(name: str, value: Any, *, allow_zero: bool = True) -> int:
    return coerce_int(name, value, minimum=0 if allow_zero else 1, maximum=MAX_AMOUNT_CENTS)


def coerce_optional_cents(name: str, value: Any) -> int | None:
    if value is None:
        return None
    return coerce_cents(name, value)


def coerce_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "1", "yes"):
        return True
    if isinstance(value, str) and value.strip().lower() in ("false", "0", "no"):
        return False
    raise ValidationError(f"{name} must be a boolean")


def require_text(name: str, value: Any, *, max_length: int | None = None) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} is required")
    text = value.strip()
    if max_length is not None and len(text) > max_length:
        raise ValidationError(f"{name} must be at most {max_length} characters")
    return text


def optional_text(name: str, value: Any, *, max_length: int | None = None) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{name} must be a string")
    text = value.strip()
    if not text:
        return None
    if max_length is not None and len(text) > max_length:
        raise ValidationError(f"{name} must be at most {max_length} characters")
    return text


def coerce_date(name: str, value: Any, *, required: bool = False) -> date | None:
    try:
        result = parse_iso_date(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an ISO date (YYYY-MM-DD)")
    if result is None and required:
        raise ValidationError(f"{name} is required")
    return result


def require_choice(name: str, value: Any, choices) -> str:
    if value not in choices:
        raise ValidationError(f"Invalid {name} '{value}'. Must be one of: {', '.join(choices)}")
    return value
