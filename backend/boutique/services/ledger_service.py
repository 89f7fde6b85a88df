# Overview: Sell/purchase posting and the line queries the report aggregators read from.

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterator

from flask import current_app
from sqlalchemy.orm import joinedload

from ..extensions import db
from ..models import PurchaseLine, SellLine, Transaction, Variation
from ..models.ledger import (
    STATUS_DRAFT,
    STATUS_FINAL,
    TRANSACTION_STATUSES,
    TRANSACTION_TYPE_PURCHASE,
    TRANSACTION_TYPE_SELL,
)
from ..context import EngineContext
from ..time_utils import utcnow
from ..validation import (
    DECIMAL_QUANTUM,
    MAX_DECIMAL,
    ConflictError,
    LinePolicy,
    NotFoundError,
    ValidationError,
    parse_datetime_field,
    parse_decimal,
    parse_int_id,
    parse_occurred_at,
    validate_line,
)
from .catalog_service import get_location, get_variation
from .concurrency import run_with_retry
from .document_service import next_document_number
from .stock_service import OVERDRAFT_REJECT, apply_stock_delta, lock_stock_records
from .units_service import resolve_unit_for_variation, to_base_units
"""
Ledger Store Invariants (authoritative)

- A transaction and all of its lines are inserted in one database transaction.
- line_total = quantity * price (as entered, not base units), rounded half-up
  to four decimal places; final_total is the sum of the rounded line totals.
- Only final transactions move stock: a final sale decrements (never clamps),
  a final purchase increments. Drafts are inert until finalize_transaction.
- Final transactions and their lines are immutable (see models.ledger).
- Line queries used by reports only ever return lines of final transactions.
"""


LINE_MODELS = {
    TRANSACTION_TYPE_SELL: SellLine,
    TRANSACTION_TYPE_PURCHASE: PurchaseLine,
}

PRICE_FIELDS = {
    TRANSACTION_TYPE_SELL: "unit_price",
    TRANSACTION_TYPE_PURCHASE: "purchase_price",
}


def _line_model(transaction_type: str):
    model = LINE_MODELS.get(transaction_type)
    if model is None:
        raise ValidationError(f"transaction_type must be one of {', '.join(LINE_MODELS)}")
    return model


def _stock_sign(transaction_type: str) -> int:
    return -1 if transaction_type == TRANSACTION_TYPE_SELL else 1


def _apply_lines_to_stock(transaction_type: str, location_id: int, lines) -> None:
    """Apply final stock side effects for sell/purchase lines, in base units."""
    lock_stock_records((line.variation_id, location_id) for line in lines)
    sign = _stock_sign(transaction_type)
    for line in lines:
        base_quantity = to_base_units(line.quantity, line.unit)
        apply_stock_delta(line.variation_id, location_id, base_quantity * sign, policy=OVERDRAFT_REJECT)


def _record(
    ctx: EngineContext,
    transaction_type: str,
    *,
    location_id,
    occurred_at,
    lines,
    status: str,
    note: str | None,
) -> dict:
    model = _line_model(transaction_type)
    price_field = PRICE_FIELDS[transaction_type]
    policy = LinePolicy(required=frozenset({"variation_id", "quantity", "unit_id", price_field}))

    if status not in TRANSACTION_STATUSES:
        raise ValidationError("status must be draft or final")
    if not isinstance(lines, (list, tuple)) or not lines:
        raise ValidationError("lines must be a non-empty list")
    occurred_dt = parse_occurred_at(occurred_at)

    def _op() -> dict:
        location = get_location(ctx, location_id)

        built = []
        final_total = Decimal(0)
        for index, raw in enumerate(lines):
            label = f"lines[{index}]"
            line = validate_line(raw, policy, label=label)
            quantity = parse_decimal(line["quantity"], f"{label}.quantity", positive=True)
            price = parse_decimal(line[price_field], f"{label}.{price_field}")
            variation = get_variation(ctx, line["variation_id"])
            unit = resolve_unit_for_variation(
                ctx.business_id,
                parse_int_id(line["unit_id"], f"{label}.unit_id"),
                variation,
            )
            line_total = quantity * price
            if line_total + final_total > MAX_DECIMAL:
                raise ValidationError(f"{label}: total exceeds maximum {MAX_DECIMAL}")
            line_total = line_total.quantize(DECIMAL_QUANTUM, rounding=ROUND_HALF_UP)
            final_total += line_total
            built.append(
                model(
                    variation_id=variation.id,
                    unit_id=unit.id,
                    unit=unit,
                    quantity=quantity,
                    line_total=line_total,
                    **{price_field: price},
                )
            )

        is_final = status == STATUS_FINAL
        if is_final:
            # Stock first: a sale that would oversell aborts before anything is inserted
            _apply_lines_to_stock(transaction_type, location.id, built)

        txn = Transaction(
            business_id=ctx.business_id,
            location_id=location.id,
            type=transaction_type,
            status=status,
            ref_no=next_document_number(
                business_id=ctx.business_id,
                document_type=transaction_type,
                occurred_at=occurred_dt,
            ),
            transaction_date=occurred_dt,
            final_total=final_total,
            additional_notes=note,
            finalized_at=utcnow() if is_final else None,
        )
        for line in built:
            line.transaction = txn
        db.session.add(txn)
        db.session.commit()

        current_app.logger.info(
            "%s %s (%s) committed: %s lines, total=%s",
            transaction_type,
            txn.ref_no,
            status,
            len(built),
            final_total,
        )
        payload = txn.to_dict()
        payload["lines"] = [line.to_dict() for line in built]
        return payload

    return run_with_retry(_op)


def record_sale(ctx: EngineContext, *, location_id, occurred_at=None, lines, status: str = STATUS_FINAL, note=None) -> dict:
    """Post a sell transaction. Lines: variation_id, quantity, unit_id, unit_price."""
    return _record(
        ctx,
        TRANSACTION_TYPE_SELL,
        location_id=location_id,
        occurred_at=occurred_at,
        lines=lines,
        status=status,
        note=note,
    )


def record_purchase(ctx: EngineContext, *, location_id, occurred_at=None, lines, status: str = STATUS_FINAL, note=None) -> dict:
    """Post a purchase transaction. Lines: variation_id, quantity, unit_id, purchase_price."""
    return _record(
        ctx,
        TRANSACTION_TYPE_PURCHASE,
        location_id=location_id,
        occurred_at=occurred_at,
        lines=lines,
        status=status,
        note=note,
    )


def finalize_transaction(ctx: EngineContext, transaction_id) -> dict:
    """Move a draft sale or purchase to final and apply its stock side effect."""
    transaction_id = parse_int_id(transaction_id, "transaction_id")

    def _op() -> dict:
        txn = (
            db.session.query(Transaction)
            .filter_by(id=transaction_id, business_id=ctx.business_id)
            .with_for_update()
            .first()
        )
        if txn is None:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        if txn.type not in LINE_MODELS:
            raise ConflictError(f"Transactions of type {txn.type} are not finalized here")
        if txn.status != STATUS_DRAFT:
            raise ConflictError("Transaction is already finalized")

        model = LINE_MODELS[txn.type]
        lines = (
            db.session.query(model)
            .options(joinedload(model.unit))
            .filter_by(transaction_id=txn.id)
            .order_by(model.id.asc())
            .all()
        )
        _apply_lines_to_stock(txn.type, txn.location_id, lines)

        txn.status = STATUS_FINAL
        txn.finalized_at = utcnow()
        db.session.commit()

        current_app.logger.info("%s %s finalized", txn.type, txn.ref_no)
        return txn.to_dict()

    return run_with_retry(_op)


def query_lines(
    ctx: EngineContext,
    *,
    transaction_type: str,
    date_from=None,
    date_to=None,
    location_id: int | None = None,
    after_id: int | None = None,
    limit: int = 500,
) -> list:
    """
    One keyset page of lines from final transactions of one type.

    Ordered by line id; pass the last id back as after_id for the next page.
    Variation and product come back loaded as single objects.
    """
    model = _line_model(transaction_type)
    query = (
        db.session.query(model)
        .join(Transaction, model.transaction_id == Transaction.id)
        .options(joinedload(model.variation).joinedload(Variation.product))
        .filter(
            Transaction.business_id == ctx.business_id,
            Transaction.type == transaction_type,
            Transaction.status == STATUS_FINAL,
        )
    )
    if date_from is not None:
        query = query.filter(Transaction.transaction_date >= date_from)
    if date_to is not None:
        query = query.filter(Transaction.transaction_date <= date_to)
    if location_id is not None:
        query = query.filter(Transaction.location_id == location_id)
    if after_id is not None:
        query = query.filter(model.id > after_id)

    return query.order_by(model.id.asc()).limit(max(1, int(limit))).all()


def iter_lines(ctx: EngineContext, *, transaction_type: str, batch_size: int | None = None, **filters) -> Iterator:
    """Walk every matching line page by page so one report never loads a whole window."""
    if batch_size is None:
        batch_size = current_app.config.get("REPORT_SCAN_BATCH_SIZE", 500)

    after_id = None
    while True:
        page = query_lines(
            ctx,
            transaction_type=transaction_type,
            after_id=after_id,
            limit=batch_size,
            **filters,
        )
        if not page:
            return
        yield from page
        if len(page) < batch_size:
            return
        after_id = page[-1].id


def lines_for_variation(ctx: EngineContext, variation_id) -> dict:
    """Final sell and purchase lines that reference one variation, oldest first."""
    variation = get_variation(ctx, variation_id)

    result = {}
    for transaction_type, model in LINE_MODELS.items():
        rows = (
            db.session.query(model)
            .join(Transaction, model.transaction_id == Transaction.id)
            .filter(
                Transaction.business_id == ctx.business_id,
                Transaction.status == STATUS_FINAL,
                model.variation_id == variation.id,
            )
            .order_by(model.id.asc())
            .all()
        )
        result[transaction_type] = [row.to_dict() for row in rows]
    return result


def paginate(query, *, page=1, per_page=20, max_per_page: int = 200) -> dict:
    """Run an ordered query for one page; returns {"data": [...], "meta": {...}}."""
    page = max(1, int(page or 1))
    per_page = max(1, min(int(per_page or 20), max_per_page))

    total = query.count()
    rows = query.offset((page - 1) * per_page).limit(per_page).all()
    return {
        "data": [row.to_dict() for row in rows],
        "meta": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": (total + per_page - 1) // per_page,
        },
    }


def filter_transactions(
    query,
    *,
    status: str | None = None,
    date_from=None,
    date_to=None,
):
    """Apply the status and inclusive date window filters shared by list endpoints."""
    if status:
        if status not in TRANSACTION_STATUSES:
            raise ValidationError("status must be draft or final")
        query = query.filter(Transaction.status == status)

    start_dt = parse_datetime_field(date_from, "date_from")
    end_dt = parse_datetime_field(date_to, "date_to", end_of_day=True)
    if start_dt:
        query = query.filter(Transaction.transaction_date >= start_dt)
    if end_dt:
        query = query.filter(Transaction.transaction_date <= end_dt)
    return query


def list_transactions(
    ctx: EngineContext,
    *,
    transaction_type: str,
    page: int = 1,
    per_page: int = 20,
    location_id: int | None = None,
    status: str | None = None,
    date_from=None,
    date_to=None,
) -> dict:
    """Sales or purchases of this business, newest first, paginated. Drafts included unless filtered."""
    _line_model(transaction_type)

    query = db.session.query(Transaction).filter(
        Transaction.business_id == ctx.business_id,
        Transaction.type == transaction_type,
    )
    if location_id is not None:
        query = query.filter(Transaction.location_id == location_id)
    query = filter_transactions(query, status=status, date_from=date_from, date_to=date_to)

    return paginate(
        query.order_by(Transaction.transaction_date.desc(), Transaction.id.desc()),
        page=page,
        per_page=per_page,
    )


def get_transaction(ctx: EngineContext, transaction_type: str, transaction_id) -> dict:
    """One sale or purchase with its lines and the names a receipt needs."""
    model = _line_model(transaction_type)
    transaction_id = parse_int_id(transaction_id, "transaction_id")

    txn = (
        db.session.query(Transaction)
        .filter_by(id=transaction_id, business_id=ctx.business_id, type=transaction_type)
        .first()
    )
    if txn is None:
        raise NotFoundError(f"Transaction {transaction_id} not found")

    lines = (
        db.session.query(model)
        .options(
            joinedload(model.variation).joinedload(Variation.product),
            joinedload(model.unit),
        )
        .filter_by(transaction_id=txn.id)
        .order_by(model.id.asc())
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

    payload = txn.to_dict()
    payload["location_name"] = txn.location.name if txn.location else None
    payload["items"] = items
    return payload
