# Overview: Stock adjustment batches: validate, convert to base units, mutate stock, write audit lines.

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from flask import current_app
from sqlalchemy.orm import joinedload

from ..extensions import db
from ..models import Location, StockAdjustmentLine, Transaction, Unit, Variation
from ..models.ledger import STATUS_FINAL, TRANSACTION_STATUSES, TRANSACTION_TYPE_ADJUSTMENT
from ..context import EngineContext
from ..time_utils import utcnow
from ..validation import (
    ADJUSTMENT_INCREASE,
    ConflictError,
    LinePolicy,
    NotFoundError,
    ValidationError,
    parse_decimal,
    parse_int_id,
    parse_occurred_at,
    require_adjustment_type,
    require_reason,
    validate_line,
)
from .catalog_service import get_location, get_variation
from .concurrency import run_with_retry
from .document_service import next_document_number
from .ledger_service import filter_transactions, paginate
from .stock_service import apply_stock_delta, lock_stock_records, normalize_policy
from .units_service import resolve_unit_for_variation, to_base_units
"""
Stock Adjustment Invariants (authoritative)

- A batch is validated completely before anything is written. One bad item
  (quantity <= 0, blank reason, unknown direction, unit not convertible for
  the variation, unknown variation/location/unit) rejects the whole batch.
- A final batch is one database transaction: the Transaction row, every
  stock mutation and every StockAdjustmentLine commit together or not at all.
- Quantities are converted to base units before touching stock.
- increase: qty + delta. decrease: qty - delta, and when that is negative the
  configured overdraft policy decides:
    clamp  -> floor at 0; the discarded excess is recorded on the audit line
    reject -> InsufficientStockError, batch aborted
- An empty batch is a no-op: no transaction, no stock change, no audit line.
- Draft batches store lines without touching stock until complete_adjustment.
"""


ADJUSTMENT_LINE_POLICY = LinePolicy(
    required=frozenset({"variation_id", "location_id", "quantity", "unit_id", "adjustment_type", "reason"}),
)


@dataclass(frozen=True)
class PreparedAdjustment:
    variation: Variation
    location: Location
    unit: Unit
    quantity: Decimal
    adjustment_type: str
    reason: str
    base_delta: Decimal  # signed, base units


@dataclass
class AdjustmentResult:
    success: bool
    transaction_id: int | None = None
    ref_no: str | None = None
    status: str | None = None
    overdraft_policy: str | None = None
    stock_updates: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "transaction_id": self.transaction_id,
            "ref_no": self.ref_no,
            "status": self.status,
            "overdraft_policy": self.overdraft_policy,
            "stock_updates": self.stock_updates,
        }


def _configured_policy(override: str | None) -> str:
    if override is not None:
        return normalize_policy(override)
    return normalize_policy(current_app.config.get("OVERDRAFT_POLICY"))


def prepare_adjustment_items(ctx: EngineContext, items) -> list[PreparedAdjustment]:
    """Validate every item and resolve its master data. Raises on the first bad item."""
    if not isinstance(items, (list, tuple)):
        raise ValidationError("items must be a list")

    prepared: list[PreparedAdjustment] = []
    for index, raw in enumerate(items):
        label = f"items[{index}]"
        line = validate_line(raw, ADJUSTMENT_LINE_POLICY, label=label)

        quantity = parse_decimal(line["quantity"], f"{label}.quantity", positive=True)
        reason = require_reason(line.get("reason"), label=label)
        direction = require_adjustment_type(line.get("adjustment_type"), label=label)
        unit_id = parse_int_id(line["unit_id"], f"{label}.unit_id")

        variation = get_variation(ctx, line["variation_id"])
        location = get_location(ctx, line["location_id"])
        unit = resolve_unit_for_variation(ctx.business_id, unit_id, variation)

        base_quantity = to_base_units(quantity, unit)
        sign = 1 if direction == ADJUSTMENT_INCREASE else -1

        prepared.append(
            PreparedAdjustment(
                variation=variation,
                location=location,
                unit=unit,
                quantity=quantity,
                adjustment_type=direction,
                reason=reason,
                base_delta=base_quantity * sign,
            )
        )
    return prepared


def _stock_update_row(line: StockAdjustmentLine, unit: Unit, change) -> dict:
    return {
        "variation_id": line.variation_id,
        "location_id": line.location_id,
        "adjustment_type": line.adjustment_type,
        "quantity": line.quantity,
        "unit": unit.actual_name,
        "quantity_in_base_units": abs(change.requested_delta),
        "applied_delta": change.applied_delta,
        "discarded": change.discarded,
        "new_stock": change.new_qty,
    }


def apply_adjustment_batch(
    ctx: EngineContext,
    *,
    occurred_at=None,
    items,
    status: str = STATUS_FINAL,
    note: str | None = None,
    overdraft_policy: str | None = None,
) -> AdjustmentResult:
    """
    Apply a batch of signed stock adjustments as one unit of work.

    Raises:
        ValidationError / InsufficientStockError: bad input, nothing committed
        NotFoundError: unknown variation, location or unit, nothing committed
        ConcurrencyConflict: lost-update retries exhausted, nothing committed
        StorageError: persistence failure, nothing committed
    """
    policy = _configured_policy(overdraft_policy)
    if status not in TRANSACTION_STATUSES:
        raise ValidationError("status must be draft or final")
    occurred_dt = parse_occurred_at(occurred_at)

    if not isinstance(items, (list, tuple)):
        raise ValidationError("items must be a list")
    if len(items) == 0:
        return AdjustmentResult(success=True, status=status, overdraft_policy=policy)

    def _op() -> AdjustmentResult:
        prepared = prepare_adjustment_items(ctx, items)

        ref_no = next_document_number(
            business_id=ctx.business_id,
            document_type=TRANSACTION_TYPE_ADJUSTMENT,
            occurred_at=occurred_dt,
        )
        is_final = status == STATUS_FINAL
        txn = Transaction(
            business_id=ctx.business_id,
            type=TRANSACTION_TYPE_ADJUSTMENT,
            status=status,
            ref_no=ref_no,
            transaction_date=occurred_dt,
            final_total=Decimal(0),
            additional_notes=note,
            finalized_at=utcnow() if is_final else None,
        )
        db.session.add(txn)
        db.session.flush()

        if is_final:
            lock_stock_records((p.variation.id, p.location.id) for p in prepared)

        stock_updates = []
        for item in prepared:
            line = StockAdjustmentLine(
                transaction_id=txn.id,
                variation_id=item.variation.id,
                location_id=item.location.id,
                unit_id=item.unit.id,
                quantity=item.quantity,
                adjustment_type=item.adjustment_type,
                reason=item.reason,
                quantity_delta=item.base_delta,
                discarded_quantity=Decimal(0),
            )
            if is_final:
                # Stock first, then the line is inserted already complete
                change = apply_stock_delta(
                    item.variation.id,
                    item.location.id,
                    item.base_delta,
                    policy=policy,
                )
                line.applied_delta = change.applied_delta
                line.discarded_quantity = change.discarded
                line.resulting_qty = change.new_qty
                stock_updates.append(_stock_update_row(line, item.unit, change))
            db.session.add(line)

        db.session.commit()

        current_app.logger.info(
            "Stock adjustment %s (%s) committed: %s lines, policy=%s",
            ref_no,
            status,
            len(prepared),
            policy,
        )
        return AdjustmentResult(
            success=True,
            transaction_id=txn.id,
            ref_no=ref_no,
            status=status,
            overdraft_policy=policy,
            stock_updates=stock_updates,
        )

    return run_with_retry(_op)


def _load_adjustment(ctx: EngineContext, transaction_id, *, lock: bool = False) -> Transaction:
    transaction_id = parse_int_id(transaction_id, "transaction_id")
    query = db.session.query(Transaction).filter_by(
        id=transaction_id,
        business_id=ctx.business_id,
        type=TRANSACTION_TYPE_ADJUSTMENT,
    )
    if lock:
        query = query.with_for_update()
    txn = query.first()
    if txn is None:
        raise NotFoundError(f"Adjustment {transaction_id} not found")
    return txn


def complete_adjustment(
    ctx: EngineContext,
    transaction_id,
    *,
    overdraft_policy: str | None = None,
) -> AdjustmentResult:
    """
    Finalize a draft adjustment and apply its lines to stock atomically.

    Completing an already final adjustment raises ConflictError.
    """
    policy = _configured_policy(overdraft_policy)

    def _op() -> AdjustmentResult:
        txn = _load_adjustment(ctx, transaction_id, lock=True)
        if txn.status == STATUS_FINAL:
            raise ConflictError("Adjustment is already finalized")

        lines = (
            db.session.query(StockAdjustmentLine)
            .options(joinedload(StockAdjustmentLine.unit))
            .filter_by(transaction_id=txn.id)
            .order_by(StockAdjustmentLine.id.asc())
            .all()
        )
        lock_stock_records((line.variation_id, line.location_id) for line in lines)

        stock_updates = []
        for line in lines:
            change = apply_stock_delta(
                line.variation_id,
                line.location_id,
                Decimal(line.quantity_delta),
                policy=policy,
            )
            line.applied_delta = change.applied_delta
            line.discarded_quantity = change.discarded
            line.resulting_qty = change.new_qty
            stock_updates.append(_stock_update_row(line, line.unit, change))

        # Lines are written while the row is still a draft; status flips last
        db.session.flush()
        txn.status = STATUS_FINAL
        txn.finalized_at = utcnow()
        db.session.commit()

        current_app.logger.info("Stock adjustment %s completed: %s lines", txn.ref_no, len(lines))
        return AdjustmentResult(
            success=True,
            transaction_id=txn.id,
            ref_no=txn.ref_no,
            status=txn.status,
            overdraft_policy=policy,
            stock_updates=stock_updates,
        )

    return run_with_retry(_op)


def get_adjustment(ctx: EngineContext, transaction_id) -> dict:
    txn = _load_adjustment(ctx, transaction_id)
    lines = (
        db.session.query(StockAdjustmentLine)
        .options(
            joinedload(StockAdjustmentLine.variation).joinedload(Variation.product),
            joinedload(StockAdjustmentLine.unit),
            joinedload(StockAdjustmentLine.location),
        )
        .filter_by(transaction_id=txn.id)
        .order_by(StockAdjustmentLine.id.asc())
        .all()
    )

    items = []
    for line in lines:
        row = line.to_dict()
        row["product_id"] = line.variation.product_id
        row["product_name"] = line.variation.product.name
        row["variation_name"] = line.variation.name
        row["unit_name"] = line.unit.actual_name
        row["location_name"] = line.location.name
        items.append(row)

    return {**txn.to_dict(), "items": items}


def list_adjustments(
    ctx: EngineContext,
    *,
    page: int = 1,
    per_page: int = 20,
    location_id: int | None = None,
    status: str | None = None,
    date_from=None,
    date_to=None,
) -> dict:
    """Adjustments newest first, paginated. location_id matches any line's location."""
    query = db.session.query(Transaction).filter(
        Transaction.business_id == ctx.business_id,
        Transaction.type == TRANSACTION_TYPE_ADJUSTMENT,
    )
    if location_id is not None:
        query = query.filter(
            Transaction.id.in_(
                db.session.query(StockAdjustmentLine.transaction_id).filter(
                    StockAdjustmentLine.location_id == location_id
                )
            )
        )
    query = filter_transactions(query, status=status, date_from=date_from, date_to=date_to)

    return paginate(
        query.order_by(Transaction.transaction_date.desc(), Transaction.id.desc()),
        page=page,
        per_page=per_page,
    )
