# Overview: Read-only profit, stock, top-seller and sales/purchase summary reports.

from __future__ import annotations

from decimal import Decimal

from flask import current_app
from sqlalchemy.orm import joinedload

from ..extensions import db
from ..models import Product, StockRecord, Transaction, Unit, Variation
from ..models.ledger import STATUS_FINAL, TRANSACTION_TYPE_PURCHASE, TRANSACTION_TYPE_SELL
from ..context import EngineContext
from ..time_utils import to_utc_z, utcnow
from ..validation import ValidationError, parse_datetime_field, parse_int_id
from .catalog_service import get_location, get_product
from .costing_service import CostBasisResolver
from .ledger_service import iter_lines
from .units_service import from_base_units, variation_base_unit
"""
Report Invariants (authoritative)

- Reports are read-only and take no locks; each returns generated_at so the
  caller knows how fresh the numbers are.
- Only final sell transactions feed profit and top-seller numbers.
- Unit cost comes from a CostBasisResolver built for this run only.
- An empty window is not an error: zero summary, empty items.
- Data-integrity errors (e.g. a unit multiplier <= 0) propagate unmodified.
"""


ZERO = Decimal(0)
HUNDRED = Decimal(100)


class ReportError(ValidationError):
    """Raised when report parameters are invalid."""
    pass


def _parse_period(date_from, date_to):
    start_dt = parse_datetime_field(date_from, "date_from")
    end_dt = parse_datetime_field(date_to, "date_to", end_of_day=True)
    if start_dt and end_dt and start_dt > end_dt:
        raise ReportError("date_from must be on or before date_to")
    return start_dt, end_dt


def _period(start_dt, end_dt) -> dict:
    return {
        "date_from": to_utc_z(start_dt) if start_dt else None,
        "date_to": to_utc_z(end_dt) if end_dt else None,
    }


def _resolve_location_id(ctx: EngineContext, location_id) -> int | None:
    if location_id is None or location_id == "":
        return None
    return get_location(ctx, parse_int_id(location_id, "location_id")).id


def margin_percent(sales: Decimal, profit: Decimal) -> Decimal:
    if sales > 0:
        return profit / sales * HUNDRED
    return ZERO


def _sell_lines(ctx: EngineContext, start_dt, end_dt, location_id):
    return iter_lines(
        ctx,
        transaction_type=TRANSACTION_TYPE_SELL,
        date_from=start_dt,
        date_to=end_dt,
        location_id=location_id,
    )


def profit_margin_report(ctx: EngineContext, *, date_from=None, date_to=None, location_id=None) -> dict:
    """
    Profit and margin per product over final sales in [date_from, date_to].

    cost = line quantity * unit cost of the variation. The quantity is taken
    as entered on the line, matching how the line was priced.
    """
    start_dt, end_dt = _parse_period(date_from, date_to)
    location_id = _resolve_location_id(ctx, location_id)
    generated_at = utcnow()
    unit_cost = CostBasisResolver(ctx)

    products: dict[int, dict] = {}
    for line in _sell_lines(ctx, start_dt, end_dt, location_id):
        product = line.variation.product
        row = products.get(product.id)
        if row is None:
            row = {
                "product_id": product.id,
                "product_name": product.name,
                "sku": product.sku,
                "total_sales": ZERO,
                "total_cost": ZERO,
                "total_quantity_sold": ZERO,
            }
            products[product.id] = row

        quantity = Decimal(line.quantity)
        row["total_sales"] += Decimal(line.line_total)
        row["total_cost"] += quantity * unit_cost(line.variation_id)
        row["total_quantity_sold"] += quantity

    items = []
    total_sales = total_cost = total_items = ZERO
    for row in products.values():
        row["profit"] = row["total_sales"] - row["total_cost"]
        row["margin_percent"] = margin_percent(row["total_sales"], row["profit"])
        total_sales += row["total_sales"]
        total_cost += row["total_cost"]
        total_items += row["total_quantity_sold"]
        items.append(row)

    items.sort(key=lambda r: r["total_sales"], reverse=True)
    total_profit = total_sales - total_cost

    return {
        "summary": {
            "total_sales": total_sales,
            "total_cost": total_cost,
            "total_profit": total_profit,
            "overall_margin_percent": margin_percent(total_sales, total_profit),
            "total_items_sold": total_items,
        },
        "items": items,
        "period": _period(start_dt, end_dt),
        "location_id": location_id,
        "generated_at": to_utc_z(generated_at),
    }


def _iter_stock_records(ctx: EngineContext, *, location_id=None, product_id=None):
    """Stock records of this business in keyset batches, product and units loaded."""
    batch_size = current_app.config.get("REPORT_SCAN_BATCH_SIZE", 500)

    query = (
        db.session.query(StockRecord)
        .join(Variation, StockRecord.variation_id == Variation.id)
        .join(Product, Variation.product_id == Product.id)
        .options(
            joinedload(StockRecord.variation).joinedload(Variation.product).joinedload(Product.unit),
            joinedload(StockRecord.variation).joinedload(Variation.product).joinedload(Product.secondary_unit),
            joinedload(StockRecord.variation).joinedload(Variation.unit),
            joinedload(StockRecord.location),
        )
        .filter(Product.business_id == ctx.business_id)
    )
    if location_id is not None:
        query = query.filter(StockRecord.location_id == location_id)
    if product_id is not None:
        query = query.filter(Product.id == product_id)

    after_id = 0
    while True:
        page = query.filter(StockRecord.id > after_id).order_by(StockRecord.id.asc()).limit(batch_size).all()
        yield from page
        if len(page) < batch_size:
            return
        after_id = page[-1].id


def stock_valuation_report(ctx: EngineContext, *, location_id=None) -> dict:
    """Value every stock record (optionally one location) at its unit cost."""
    location_id = _resolve_location_id(ctx, location_id)
    generated_at = utcnow()
    unit_cost = CostBasisResolver(ctx)

    items = []
    locations = set()
    total_quantity = total_value = ZERO
    for record in _iter_stock_records(ctx, location_id=location_id):
        variation = record.variation
        quantity = Decimal(record.qty_available)
        cost = unit_cost(variation.id)
        value = quantity * cost

        items.append(
            {
                "variation_id": variation.id,
                "product_id": variation.product_id,
                "product_name": variation.product.name,
                "variation_name": variation.name,
                "sku": variation.sub_sku or variation.product.sku,
                "location_id": record.location_id,
                "location_name": record.location.name,
                "base_unit": variation_base_unit(variation).actual_name,
                "qty_available": quantity,
                "unit_cost": cost,
                "total_value": value,
            }
        )
        locations.add(record.location_id)
        total_quantity += quantity
        total_value += value

    items.sort(key=lambda r: r["total_value"], reverse=True)

    return {
        "summary": {
            "total_items": len(items),
            "total_quantity": total_quantity,
            "total_value": total_value,
            "locations_count": len(locations),
        },
        "items": items,
        "location_id": location_id,
        "generated_at": to_utc_z(generated_at),
    }


def _validate_limit(limit) -> int:
    max_limit = current_app.config.get("TOP_PRODUCTS_MAX_LIMIT", 100)
    if limit is None or limit == "":
        return current_app.config.get("TOP_PRODUCTS_DEFAULT_LIMIT", 10)
    try:
        value = int(limit)
    except (TypeError, ValueError):
        raise ReportError("limit must be an integer")
    if isinstance(limit, bool) or value < 1 or value > max_limit:
        raise ReportError(f"limit must be between 1 and {max_limit}")
    return value


def top_selling_products(ctx: EngineContext, *, date_from=None, date_to=None, limit=None, location_id=None) -> dict:
    """
    Products ranked by sales over final sales in the window.

    Ties keep first-seen order (sorted() is stable); that order carries no
    meaning for callers.
    """
    limit = _validate_limit(limit)
    start_dt, end_dt = _parse_period(date_from, date_to)
    location_id = _resolve_location_id(ctx, location_id)
    generated_at = utcnow()

    products: dict[int, dict] = {}
    for line in _sell_lines(ctx, start_dt, end_dt, location_id):
        product = line.variation.product
        row = products.setdefault(
            product.id,
            {
                "product_id": product.id,
                "product_name": product.name,
                "sku": product.sku,
                "total_quantity_sold": ZERO,
                "total_sales": ZERO,
                "transaction_count": 0,
            },
        )
        row["total_quantity_sold"] += Decimal(line.quantity)
        row["total_sales"] += Decimal(line.line_total)
        row["transaction_count"] += 1

    for row in products.values():
        qty = row["total_quantity_sold"]
        row["average_price"] = row["total_sales"] / qty if qty > 0 else ZERO

    ranked = sorted(products.values(), key=lambda r: r["total_sales"], reverse=True)

    return {
        "items": ranked[:limit],
        "period": _period(start_dt, end_dt),
        "limit": limit,
        "location_id": location_id,
        "generated_at": to_utc_z(generated_at),
    }


def _secondary_quantity(quantity: Decimal, product: Product, base_unit: Unit):
    """Stock expressed in the product's secondary unit, or None when it has none that converts."""
    unit = product.secondary_unit
    if unit is None or unit.id == base_unit.id or unit.base_unit_id != base_unit.id:
        return None
    return from_base_units(quantity, unit)


def inventory_report(ctx: EngineContext, *, location_id=None, product_id=None, low_stock_only=False) -> dict:
    """
    Current stock per (variation, location) in base units.

    A row is low stock when qty_available <= the product's alert_quantity
    (0 when unset, so an empty shelf is always flagged). The secondary unit
    column is for display only.
    """
    location_id = _resolve_location_id(ctx, location_id)
    if product_id is not None and product_id != "":
        product_id = get_product(ctx, product_id).id
    else:
        product_id = None
    generated_at = utcnow()

    items = []
    for record in _iter_stock_records(ctx, location_id=location_id, product_id=product_id):
        variation = record.variation
        product = variation.product
        base_unit = variation_base_unit(variation)
        quantity = Decimal(record.qty_available)
        alert_quantity = Decimal(product.alert_quantity) if product.alert_quantity is not None else ZERO
        is_low_stock = quantity <= alert_quantity
        if low_stock_only and not is_low_stock:
            continue

        items.append(
            {
                "variation_id": variation.id,
                "variation_name": variation.name,
                "sub_sku": variation.sub_sku,
                "product_id": product.id,
                "product_name": product.name,
                "sku": product.sku,
                "location_id": record.location_id,
                "location_name": record.location.name,
                "qty_available": quantity,
                "base_unit": base_unit.actual_name,
                "secondary_unit": product.secondary_unit.actual_name if product.secondary_unit else None,
                "qty_in_secondary_unit": _secondary_quantity(quantity, product, base_unit),
                "alert_quantity": alert_quantity,
                "is_low_stock": is_low_stock,
            }
        )

    return {
        "summary": {
            "total_variations": len(items),
            "total_locations": len({row["location_id"] for row in items}),
            "low_stock_items": sum(1 for row in items if row["is_low_stock"]),
        },
        "items": items,
        "location_id": location_id,
        "product_id": product_id,
        "generated_at": to_utc_z(generated_at),
    }


def _iter_final_transactions(ctx: EngineContext, transaction_type: str, start_dt, end_dt, location_id):
    batch_size = current_app.config.get("REPORT_SCAN_BATCH_SIZE", 500)
    query = db.session.query(Transaction).filter(
        Transaction.business_id == ctx.business_id,
        Transaction.type == transaction_type,
        Transaction.status == STATUS_FINAL,
    )
    if start_dt is not None:
        query = query.filter(Transaction.transaction_date >= start_dt)
    if end_dt is not None:
        query = query.filter(Transaction.transaction_date <= end_dt)
    if location_id is not None:
        query = query.filter(Transaction.location_id == location_id)

    after_id = 0
    while True:
        page = query.filter(Transaction.id > after_id).order_by(Transaction.id.asc()).limit(batch_size).all()
        yield from page
        if len(page) < batch_size:
            return
        after_id = page[-1].id


def _transaction_summary(ctx: EngineContext, transaction_type: str, total_key: str, date_from, date_to, location_id) -> dict:
    start_dt, end_dt = _parse_period(date_from, date_to)
    location_id = _resolve_location_id(ctx, location_id)
    generated_at = utcnow()

    transactions = []
    total_amount = ZERO
    for txn in _iter_final_transactions(ctx, transaction_type, start_dt, end_dt, location_id):
        total_amount += Decimal(txn.final_total)
        transactions.append(
            {
                "id": txn.id,
                "ref_no": txn.ref_no,
                "transaction_date": to_utc_z(txn.transaction_date),
                "location_id": txn.location_id,
                "final_total": txn.final_total,
            }
        )

    total_items = ZERO
    for line in iter_lines(
        ctx,
        transaction_type=transaction_type,
        date_from=start_dt,
        date_to=end_dt,
        location_id=location_id,
    ):
        total_items += Decimal(line.quantity)

    count = len(transactions)
    return {
        "summary": {
            total_key: total_amount,
            "total_transactions": count,
            "total_items": total_items,
            "average_transaction_value": total_amount / count if count else ZERO,
        },
        "transactions": transactions,
        "period": _period(start_dt, end_dt),
        "location_id": location_id,
        "generated_at": to_utc_z(generated_at),
    }


def sales_summary(ctx: EngineContext, *, date_from=None, date_to=None, location_id=None) -> dict:
    """Totals over final sales in the window: amount, count, items, average ticket."""
    return _transaction_summary(ctx, TRANSACTION_TYPE_SELL, "total_sales", date_from, date_to, location_id)


def purchase_summary(ctx: EngineContext, *, date_from=None, date_to=None, location_id=None) -> dict:
    """Totals over final purchases in the window: amount, count, items, average value."""
    return _transaction_summary(ctx, TRANSACTION_TYPE_PURCHASE, "total_purchases", date_from, date_to, location_id)


REPORTS = {
    "profit-margin": profit_margin_report,
    "stock-valuation": stock_valuation_report,
    "top-products": top_selling_products,
    "inventory": inventory_report,
    "sales": sales_summary,
    "purchases": purchase_summary,
}
