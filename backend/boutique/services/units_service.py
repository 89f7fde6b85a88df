# Overview: Unit conversion between entered units and the base unit stock is counted in.

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from ..extensions import db
from ..models import Unit, Variation
from ..validation import (
    DECIMAL_QUANTUM,
    MAX_DECIMAL,
    InvalidUnitError,
    NotFoundError,
    ValidationError,
    parse_decimal,
    require_scale,
)


def _multiplier(unit: Unit | None) -> Decimal:
    if unit is None:
        raise InvalidUnitError("unit is required")

    raw = unit.base_unit_multiplier
    if raw is None:
        # A base unit with no explicit multiplier is 1:1 with itself
        if unit.base_unit_id is None:
            return Decimal(1)
        raise InvalidUnitError(f"unit {unit.actual_name!r} has no base_unit_multiplier")

    multiplier = raw if isinstance(raw, Decimal) else Decimal(str(raw))
    if multiplier <= 0:
        raise InvalidUnitError(f"unit {unit.actual_name!r} has non-positive multiplier {multiplier}")
    return multiplier


def to_base_units(quantity, unit: Unit | None) -> Decimal:
    """
    Convert a quantity expressed in `unit` into base units.

    quantity * unit.base_unit_multiplier, in Decimal. No side effects.
    Raises InvalidUnitError for a missing unit or a multiplier <= 0, and
    ValidationError when the product does not fit four decimal places or the
    storable range; it is never rounded.
    """
    multiplier = _multiplier(unit)
    base_quantity = parse_decimal(quantity, "quantity") * multiplier
    if base_quantity > MAX_DECIMAL:
        raise ValidationError(f"quantity in base units exceeds maximum {MAX_DECIMAL}")
    return require_scale(base_quantity, "quantity in base units")


def from_base_units(quantity, unit: Unit | None) -> Decimal:
    """
    Inverse of to_base_units; used for display in the entered unit.

    Display only: the quotient is rounded half-up to four places.
    """
    multiplier = _multiplier(unit)
    return (parse_decimal(quantity, "quantity") / multiplier).quantize(DECIMAL_QUANTUM, rounding=ROUND_HALF_UP)


def variation_base_unit(variation: Variation) -> Unit:
    unit = variation.reference_unit
    if unit is None:
        raise InvalidUnitError(f"variation {variation.id} has no reference unit")
    # Reference unit may itself be a sub-unit; stock is counted in its base
    return unit.base_unit if unit.base_unit_id is not None else unit


def resolve_unit_for_variation(business_id: int, unit_id, variation: Variation) -> Unit:
    """
    Load a unit and check it can be converted into the variation's base unit.

    - NotFoundError: no such unit in this business
    - ValidationError: unit belongs to a different unit family
    - InvalidUnitError: multiplier <= 0
    """
    unit = db.session.get(Unit, unit_id) if unit_id is not None else None
    if unit is None or unit.business_id != business_id:
        raise NotFoundError(f"Unit {unit_id} not found")

    base = variation_base_unit(variation)
    if unit.id != base.id and unit.base_unit_id != base.id:
        raise ValidationError(
            f"unit {unit.actual_name!r} cannot be converted to {base.actual_name!r} "
            f"for variation {variation.id}"
        )

    _multiplier(unit)
    return unit
