# Overview: Pytest coverage for unit conversion.

from decimal import Decimal

import pytest

from boutique.models import Unit
from boutique.services.units_service import (
    from_base_units,
    resolve_unit_for_variation,
    to_base_units,
    variation_base_unit,
)
from boutique.validation import InvalidUnitError, NotFoundError, ValidationError


class TestConversion:

    def test_dozen_to_pieces(self, dozen):
        assert to_base_units(Decimal("3"), dozen) == Decimal("36")

    def test_base_unit_is_identity(self, pieces):
        assert to_base_units(7, pieces) == Decimal("7")

    def test_float_input_is_exact(self, dozen):
        # 0.1 dozen is 1.2 pieces, not 1.2000000000000002
        assert to_base_units(0.1, dozen) == Decimal("1.2")

    def test_round_trip(self, dozen):
        for q in (Decimal("1"), Decimal("2.5"), Decimal("0.0833")):
            assert abs(from_base_units(to_base_units(q, dozen), dozen) - q) < Decimal("1e-12")

    def test_display_quotient_rounded_half_up(self, dozen):
        # 1 piece is 0.08333.. dozen
        assert from_base_units(Decimal("1"), dozen) == Decimal("0.0833")
        assert from_base_units(Decimal("2"), dozen) == Decimal("0.1667")

    def test_sub_unit_product_must_fit_four_places(self, business, pieces):
        quarter = Unit(business_id=business.id, actual_name="Quarter", base_unit_id=pieces.id, base_unit_multiplier=Decimal("0.25"))
        with pytest.raises(ValidationError):
            to_base_units(Decimal("0.0001"), quarter)

    def test_missing_unit(self):
        with pytest.raises(InvalidUnitError):
            to_base_units(1, None)

    def test_non_positive_multiplier(self, business):
        unit = Unit(business_id=business.id, actual_name="Broken", base_unit_id=1, base_unit_multiplier=Decimal(0))
        with pytest.raises(InvalidUnitError):
            to_base_units(1, unit)


class TestResolveUnitForVariation:

    def test_base_unit_accepted(self, business, pieces, variation):
        assert resolve_unit_for_variation(business.id, pieces.id, variation).id == pieces.id

    def test_sub_unit_accepted(self, business, dozen, variation):
        assert resolve_unit_for_variation(business.id, dozen.id, variation).id == dozen.id

    def test_unknown_unit(self, business, variation):
        with pytest.raises(NotFoundError):
            resolve_unit_for_variation(business.id, 99999, variation)

    def test_other_business_unit(self, db_session, business, other_business, variation):
        foreign = Unit(business_id=other_business.id, actual_name="Pieces", base_unit_multiplier=1)
        db_session.add(foreign)
        db_session.commit()
        with pytest.raises(NotFoundError):
            resolve_unit_for_variation(business.id, foreign.id, variation)

    def test_unrelated_unit_family(self, db_session, business, variation):
        grams = Unit(business_id=business.id, actual_name="Grams", base_unit_multiplier=1)
        db_session.add(grams)
        db_session.commit()
        with pytest.raises(ValidationError):
            resolve_unit_for_variation(business.id, grams.id, variation)

    def test_variation_base_unit_falls_back_to_product(self, pieces, variation):
        assert variation_base_unit(variation).id == pieces.id
