# Overview: Pytest coverage for stock transfers between locations.

from decimal import Decimal

import pytest

from boutique.extensions import db
from boutique.models import Transaction, TransferLine
from boutique.services.stock_service import get_quantity
from boutique.services.transfer_service import (
    apply_transfer_batch,
    complete_transfer,
    get_transfer,
    list_transfers,
)
from boutique.validation import ConflictError, InsufficientStockError, NotFoundError, ValidationError
from conftest import set_stock


def _item(variation, unit, quantity):
    return {"variation_id": variation.id, "quantity": quantity, "unit_id": unit.id}


class TestApplyTransferBatch:

    def test_transfer_conserves_total_quantity(self, ctx, location, back_room, pieces, dozen, variation):
        set_stock(variation.id, location.id, 30)

        result = apply_transfer_batch(
            ctx,
            from_location_id=location.id,
            to_location_id=back_room.id,
            items=[_item(variation, dozen, 2)],
        )

        assert result["success"] is True
        assert result["ref_no"].startswith("TRF-")
        assert get_quantity(variation.id, location.id) == Decimal("6")
        assert get_quantity(variation.id, back_room.id) == Decimal("24")
        assert get_quantity(variation.id, location.id) + get_quantity(variation.id, back_room.id) == Decimal("30")

        line = db.session.query(TransferLine).one()
        assert line.quantity == Decimal("2")
        assert line.base_quantity == Decimal("24")
        assert db.session.get(Transaction, result["transaction_id"]).status == "final"

    def test_insufficient_source_stock_rolls_back(self, ctx, location, back_room, pieces, variation, second_variation):
        set_stock(variation.id, location.id, 10)
        set_stock(second_variation.id, location.id, 1)

        with pytest.raises(InsufficientStockError):
            apply_transfer_batch(
                ctx,
                from_location_id=location.id,
                to_location_id=back_room.id,
                items=[_item(variation, pieces, 4), _item(second_variation, pieces, 2)],
            )

        assert get_quantity(variation.id, location.id) == Decimal("10")
        assert get_quantity(variation.id, back_room.id) == Decimal(0)
        assert db.session.query(Transaction).count() == 0

    def test_same_location_rejected(self, ctx, location, pieces, variation):
        with pytest.raises(ValidationError):
            apply_transfer_batch(
                ctx,
                from_location_id=location.id,
                to_location_id=location.id,
                items=[_item(variation, pieces, 1)],
            )

    def test_unknown_destination(self, ctx, location, pieces, variation):
        set_stock(variation.id, location.id, 10)
        with pytest.raises(NotFoundError):
            apply_transfer_batch(
                ctx,
                from_location_id=location.id,
                to_location_id=987654,
                items=[_item(variation, pieces, 1)],
            )

    def test_empty_items_rejected(self, ctx, location, back_room):
        with pytest.raises(ValidationError):
            apply_transfer_batch(ctx, from_location_id=location.id, to_location_id=back_room.id, items=[])

    def test_quantity_beyond_four_places_rejected(self, ctx, location, back_room, pieces, variation):
        set_stock(variation.id, location.id, 10)
        with pytest.raises(ValidationError):
            apply_transfer_batch(
                ctx,
                from_location_id=location.id,
                to_location_id=back_room.id,
                items=[_item(variation, pieces, "0.00001")],
            )
        assert db.session.query(Transaction).count() == 0


class TestDraftTransfers:

    def _draft(self, ctx, location, back_room, unit, variation, quantity=2):
        return apply_transfer_batch(
            ctx,
            from_location_id=location.id,
            to_location_id=back_room.id,
            items=[_item(variation, unit, quantity)],
            status="draft",
        )

    def test_draft_does_not_move_stock(self, ctx, location, back_room, dozen, variation):
        set_stock(variation.id, location.id, 30)

        result = self._draft(ctx, location, back_room, dozen, variation)

        assert result["status"] == "draft"
        assert result["items"] == []
        assert get_quantity(variation.id, location.id) == Decimal("30")
        assert get_quantity(variation.id, back_room.id) == Decimal(0)
        assert db.session.query(TransferLine).one().base_quantity == Decimal("24")

    def test_complete_moves_stock_once(self, ctx, location, back_room, dozen, variation):
        set_stock(variation.id, location.id, 30)
        txn_id = self._draft(ctx, location, back_room, dozen, variation)["transaction_id"]

        result = complete_transfer(ctx, txn_id)

        assert result["status"] == "final"
        assert result["items"][0]["from_stock"] == Decimal("6")
        assert get_quantity(variation.id, back_room.id) == Decimal("24")
        with pytest.raises(ConflictError):
            complete_transfer(ctx, txn_id)
        assert get_quantity(variation.id, back_room.id) == Decimal("24")

    def test_complete_with_short_source_stays_draft(self, ctx, location, back_room, pieces, variation):
        set_stock(variation.id, location.id, 1)
        txn_id = self._draft(ctx, location, back_room, pieces, variation, quantity=5)["transaction_id"]

        with pytest.raises(InsufficientStockError):
            complete_transfer(ctx, txn_id)

        assert db.session.get(Transaction, txn_id).status == "draft"
        assert get_quantity(variation.id, location.id) == Decimal("1")

    def test_complete_unknown(self, ctx):
        with pytest.raises(NotFoundError):
            complete_transfer(ctx, 424242)


class TestTransferQueries:

    def test_get_transfer_names_both_ends(self, ctx, location, back_room, pieces, variation):
        set_stock(variation.id, location.id, 5)
        result = apply_transfer_batch(
            ctx,
            from_location_id=location.id,
            to_location_id=back_room.id,
            items=[_item(variation, pieces, 2)],
        )

        transfer = get_transfer(ctx, result["transaction_id"])

        assert transfer["from_location"] == {"id": location.id, "name": "Shop Floor"}
        assert transfer["to_location"] == {"id": back_room.id, "name": "Back Room"}
        assert transfer["items"][0]["product_name"] == "Linen Dress"
        assert transfer["items"][0]["unit_name"] == "Pieces"

    def test_list_matches_either_end_and_status(self, ctx, location, back_room, pieces, variation):
        set_stock(variation.id, location.id, 10)
        apply_transfer_batch(
            ctx, from_location_id=location.id, to_location_id=back_room.id, items=[_item(variation, pieces, 1)]
        )
        apply_transfer_batch(
            ctx,
            from_location_id=location.id,
            to_location_id=back_room.id,
            items=[_item(variation, pieces, 1)],
            status="draft",
        )

        assert list_transfers(ctx, location_id=back_room.id)["meta"]["total"] == 2
        drafts = list_transfers(ctx, status="draft")
        assert drafts["meta"]["total"] == 1
        assert drafts["data"][0]["status"] == "draft"

    def test_other_business_cannot_read(self, ctx, other_business, location, back_room, pieces, variation):
        from boutique.context import EngineContext

        set_stock(variation.id, location.id, 5)
        result = apply_transfer_batch(
            ctx, from_location_id=location.id, to_location_id=back_room.id, items=[_item(variation, pieces, 1)]
        )
        with pytest.raises(NotFoundError):
            get_transfer(EngineContext(business_id=other_business.id), result["transaction_id"])
