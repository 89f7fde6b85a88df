# backend/boutique/services/transfer_service.py
"""
Stock transfer between two locations of the same business.

A final transfer is posted in one unit of work:
- the source is decremented (never clamped: a transfer cannot move stock
  that is not there)
- the destination is incremented by the same base-unit quantity
- a stock_transfer Transaction with one TransferLine per item is written

Either everything commits or nothing does, so total stock across locations
is conserved.

A draft transfer stores the Transaction and its lines without touching
stock. complete_transfer later moves the stock under the same rules and
flips the status to final last.
"""
from __future__ import annotations

from decimal import Decimal

from flask import current_app
from sqlalchemy.orm import joinedload

from ..extensions import db
from ..models import Transaction, TransferLine, Variation
from ..models.ledger import STATUS_FINAL, TRANSACTION_STATUSES, TRANSACTION_TYPE_TRANSFER
from ..context import EngineContext
from ..time_utils import utcnow
from ..validation import (
    ConflictError,
    LinePolicy,
    NotFoundError,
    ValidationError,
    parse_decimal,
    parse_int_id,
    parse_occurred_at,
    validate_line,
)
from .catalog_service import get_location, get_variation
from .concurrency import run_with_retry
from .document_service import next_document_number
from .ledger_service import filter_transactions, paginate
from .stock_service import OVERDRAFT_REJECT, apply_stock_delta, lock_stock_records
from .units_service import resolve_unit_for_variation, to_base_units


TRANSFER_LINE_POLICY = LinePolicy(
    required=frozenset({"variation_id", "quantity", "unit_id"}),
)


def _move_stock(lines) -> list[dict]:
    """Apply every TransferLine: source down, destination up. Locks all pairs first."""
    pairs = []
    for line in lines:
        pairs.append((line.variation_id, line.from_location_id))
        pairs.append((line.variation_id, line.to_location_id))
    lock_stock_records(pairs)

    movements = []
    for line in lines:
        base_quantity = Decimal(line.base_quantity)
        out_change = apply_stock_delta(line.variation_id, line.from_location_id, -base_quantity, policy=OVERDRAFT_REJECT)
        in_change = apply_stock_delta(line.variation_id, line.to_location_id, base_quantity, policy=OVERDRAFT_REJECT)
        movements.append(
            {
                "variation_id": line.variation_id,
                "quantity": line.quantity,
                "base_quantity": base_quantity,
                "from_stock": out_change.new_qty,
                "to_stock": in_change.new_qty,
            }
        )
    return movements


def apply_transfer_batch(
    ctx: EngineContext,
    *,
    from_location_id,
    to_location_id,
    occurred_at=None,
    items,
    note: str | None = None,
    status: str = STATUS_FINAL,
) -> dict:
    """
    Move stock from one location to another, or record a draft to move later.

    Raises:
        ValidationError: same location, bad item, or not enough stock at the source
        NotFoundError: unknown location, variation or unit
        ConcurrencyConflict: retries exhausted
    """
    from_id = parse_int_id(from_location_id, "from_location_id")
    to_id = parse_int_id(to_location_id, "to_location_id")
    if from_id == to_id:
        raise ValidationError("Cannot transfer to the same location")
    if status not in TRANSACTION_STATUSES:
        raise ValidationError("status must be draft or final")
    if not isinstance(items, (list, tuple)) or not items:
        raise ValidationError("items must be a non-empty list")
    occurred_dt = parse_occurred_at(occurred_at)

    def _op() -> dict:
        source = get_location(ctx, from_id)
        destination = get_location(ctx, to_id)

        prepared = []
        for index, raw in enumerate(items):
            label = f"items[{index}]"
            line = validate_line(raw, TRANSFER_LINE_POLICY, label=label)
            quantity = parse_decimal(line["quantity"], f"{label}.quantity", positive=True)
            variation = get_variation(ctx, line["variation_id"])
            unit = resolve_unit_for_variation(
                ctx.business_id,
                parse_int_id(line["unit_id"], f"{label}.unit_id"),
                variation,
            )
            prepared.append((variation, unit, quantity, to_base_units(quantity, unit)))

        ref_no = next_document_number(
            business_id=ctx.business_id,
            document_type=TRANSACTION_TYPE_TRANSFER,
            occurred_at=occurred_dt,
        )
        is_final = status == STATUS_FINAL
        txn = Transaction(
            business_id=ctx.business_id,
            location_id=source.id,
            type=TRANSACTION_TYPE_TRANSFER,
            status=status,
            ref_no=ref_no,
            transaction_date=occurred_dt,
            final_total=Decimal(0),
            additional_notes=note,
            finalized_at=utcnow() if is_final else None,
        )
        db.session.add(txn)
        db.session.flush()

        lines = []
        for variation, unit, quantity, base_quantity in prepared:
            lines.append(
                TransferLine(
                    transaction_id=txn.id,
                    variation_id=variation.id,
                    unit_id=unit.id,
                    from_location_id=source.id,
                    to_location_id=destination.id,
                    quantity=quantity,
                    base_quantity=base_quantity,
                )
            )

        movements = _move_stock(lines) if is_final else []
        db.session.add_all(lines)
        db.session.commit()

        current_app.logger.info(
            "Stock transfer %s (%s) committed: %s -> %s, %s lines",
            ref_no,
            status,
            source.id,
            destination.id,
            len(lines),
        )
        return {
            "success": True,
            "transaction_id": txn.id,
            "ref_no": ref_no,
            "status": status,
            "from_location_id": source.id,
            "to_location_id": destination.id,
            "items": movements,
        }

    return run_with_retry(_op)


def _load_transfer(ctx: EngineContext, transaction_id, *, lock: bool = False) -> Transaction:
    transaction_id = parse_int_id(transaction_id, "transaction_id")
    query = db.session.query(Transaction).filter_by(
        id=transaction_id,
        business_id=ctx.business_id,
        type=TRANSACTION_TYPE_TRANSFER,
    )
    if lock:
        query = query.with_for_update()
    txn = query.first()
    if txn is None:
        raise NotFoundError(f"Transfer {transaction_id} not found")
    return txn


def complete_transfer(ctx: EngineContext, transaction_id) -> dict:
    """
    Finalize a draft transfer and move its stock atomically.

    ConflictError if it is already final; InsufficientStockError if the source
    no longer holds enough stock, in which case it stays a draft.
    """

    def _op() -> dict:
        txn = _load_transfer(ctx, transaction_id, lock=True)
        if txn.status == STATUS_FINAL:
            raise ConflictError("Transfer is already finalized")

        lines = (
            db.session.query(TransferLine)
            .filter_by(transaction_id=txn.id)
            .order_by(TransferLine.id.asc())
            .all()
        )
        movements = _move_stock(lines)

        txn.status = STATUS_FINAL
        txn.finalized_at = utcnow()
        db.session.commit()

        current_app.logger.info("Stock transfer %s completed: %s lines", txn.ref_no, len(lines))
        return {
            "success": True,
            "transaction_id": txn.id,
            "ref_no": txn.ref_no,
            "status": txn.status,
            "items": movements,
        }

    return run_with_retry(_op)


def get_transfer(ctx: EngineContext, transaction_id) -> dict:
    txn = _load_transfer(ctx, transaction_id)
    lines = (
        db.session.query(TransferLine)
        .options(
            joinedload(TransferLine.variation).joinedload(Variation.product),
            joinedload(TransferLine.unit),
        )
        .filter_by(transaction_id=txn.id)
        .order_by(TransferLine.id.asc())
        .all()
    )

    items = []
    for line in lines:
        row = line.to_dict()
        row["product_id"] = line.variation.product_id
        row["product_name"] = line.variation.product.name
        row["variation_name"] = line.variation.name
        row["unit_name"] = line.unit.actual_name
        items.append(row)

    to_location = lines[0].to_location if lines else None
    return {
        **txn.to_dict(),
        "from_location": {"id": txn.location.id, "name": txn.location.name} if txn.location else None,
        "to_location": {"id": to_location.id, "name": to_location.name} if to_location else None,
        "items": items,
    }


def list_transfers(
    ctx: EngineContext,
    *,
    page: int = 1,
    per_page: int = 20,
    location_id: int | None = None,
    status: str | None = None,
    date_from=None,
    date_to=None,
) -> dict:
    """Transfers newest first, paginated. location_id matches either end."""
    query = db.session.query(Transaction).filter(
        Transaction.business_id == ctx.business_id,
        Transaction.type == TRANSACTION_TYPE_TRANSFER,
    )
    if location_id is not None:
        query = query.filter(
            (Transaction.location_id == location_id)
            | Transaction.id.in_(
                db.session.query(TransferLine.transaction_id).filter(
                    TransferLine.to_location_id == location_id
                )
            )
        )
    query = filter_transactions(query, status=status, date_from=date_from, date_to=date_to)

    return paginate(
        query.order_by(Transaction.transaction_date.desc(), Transaction.id.desc()),
        page=page,
        per_page=per_page,
    )
