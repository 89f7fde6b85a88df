from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

from .time_utils import normalize_datetime, utcnow


# Quantities and money are stored as scaled integers with four decimal places
DECIMAL_PLACES = 4
DECIMAL_QUANTUM = Decimal(1).scaleb(-DECIMAL_PLACES)
MAX_DECIMAL = Decimal("99999999999999.9999")

ADJUSTMENT_INCREASE = "increase"
ADJUSTMENT_DECREASE = "decrease"
ADJUSTMENT_TYPES = (ADJUSTMENT_INCREASE, ADJUSTMENT_DECREASE)


class ValidationError(ValueError):
    """400-level input problem. Nothing was committed."""


class InvalidUnitError(ValidationError):
    """Unit is unknown or has a non-positive base_unit_multiplier."""


class InsufficientStockError(ValidationError):
    """A decrease would take qty_available below zero and the policy forbids it."""


class NotFoundError(LookupError):
    """404-level: variation, unit, location or transaction does not exist for this business."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., completing a final transaction)."""


class ConcurrencyConflict(Exception):
    """
    Lost update detected by the conditional stock update.

    Raised inside a unit of work so run_with_retry can roll back and replay it;
    escapes to the caller only when the bounded attempts are exhausted.
    """


class StorageError(Exception):
    """Underlying persistence failure. The unit of work was rolled back."""


@dataclass(frozen=True)
class LinePolicy:
    """
    Shape of one line in a batch payload:
    - required: keys that must be present and non-null
    - optional: keys that may be present
    Any other key is rejected so typos never pass silently.
    """
    required: frozenset[str]
    optional: frozenset[str] = frozenset()


def parse_decimal(value: Any, field: str, *, positive: bool = False) -> Decimal:
    """
    Coerce JSON input into a Decimal without going through binary floats.

    Floats are converted via str() so 0.1 stays 0.1. Values with more than
    DECIMAL_PLACES significant decimals are rejected rather than rounded;
    trailing zeros ("1.50000") are fine.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")

    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(str(value))
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be a number")
        try:
            result = Decimal(stripped)
        except InvalidOperation:
            raise ValidationError(f"{field} must be a number")
    else:
        raise ValidationError(f"{field} must be a number")

    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    if positive and result <= 0:
        raise ValidationError(f"{field} must be > 0")
    if not positive and result < 0:
        raise ValidationError(f"{field} must be >= 0")
    if result > MAX_DECIMAL:
        raise ValidationError(f"{field} exceeds maximum {MAX_DECIMAL}")
    return require_scale(result, field)


def require_scale(value: Decimal, field: str) -> Decimal:
    """Return value quantized to DECIMAL_QUANTUM, or raise if that would lose digits."""
    quantized = value.quantize(DECIMAL_QUANTUM)
    if quantized != value:
        raise ValidationError(f"{field} allows at most {DECIMAL_PLACES} decimal places")
    return quantized


def parse_int_id(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise ValidationError(f"{field} must be an integer")


def parse_datetime_field(value: Any, field: str, *, end_of_day: bool = False):
    try:
        return normalize_datetime(value, end_of_day=end_of_day)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an ISO-8601 date or datetime")


def validate_line(line: Any, policy: LinePolicy, *, label: str) -> dict:
    """Check one batch line against a LinePolicy and return a shallow copy."""
    if not isinstance(line, dict):
        raise ValidationError(f"{label} must be an object")

    allowed = policy.required | policy.optional
    for key in line.keys():
        if key not in allowed:
            raise ValidationError(f"{label}: field not allowed: {key}")

    missing = sorted(k for k in policy.required if line.get(k) is None)
    if missing:
        raise ValidationError(f"{label}: missing required fields: {', '.join(missing)}")

    return dict(line)


def require_reason(value: Any, *, label: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{label}: reason is required")
    reason = str(value).strip()
    if len(reason) > 255:
        raise ValidationError(f"{label}: reason exceeds max length 255")
    return reason


def require_adjustment_type(value: Any, *, label: str) -> str:
    direction = str(value or "").strip().lower()
    if direction not in ADJUSTMENT_TYPES:
        raise ValidationError(f"{label}: adjustment_type must be 'increase' or 'decrease'")
    return direction


def parse_occurred_at(value: Any) -> datetime:
    """
    Business date of a submission, normalized to UTC-naive.

    None means now. Dates more than two minutes in the future are rejected so
    a wrong client clock cannot post into next month.
    """
    occurred = parse_datetime_field(value, "date")
    now = utcnow()
    if occurred is None:
        return now
    if occurred > now + timedelta(minutes=2):
        raise ValidationError("date cannot be in the future")
    return occurred
