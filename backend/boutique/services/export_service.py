# Overview: Flat five-column rows for ledger and report downloads. Encoding is the caller's job.

from __future__ import annotations

from ..extensions import db
from ..models import Transaction
from ..models.ledger import STATUS_FINAL, TRANSACTION_TYPE_PURCHASE, TRANSACTION_TYPE_SELL, TRANSACTION_TYPES
from ..context import EngineContext
from ..time_utils import to_utc_z
from ..validation import ValidationError, parse_datetime_field


EXPORT_COLUMNS = ("date", "type", "amount", "description", "reference")


def _row(date, type_, amount, description, reference) -> dict:
    return dict(zip(EXPORT_COLUMNS, (date, type_, amount, description, reference)))


def export_ledger_entries(ctx: EngineContext, *, date_from=None, date_to=None, types=None) -> list[dict]:
    """One row per final transaction in the window, oldest first."""
    start_dt = parse_datetime_field(date_from, "date_from")
    end_dt = parse_datetime_field(date_to, "date_to", end_of_day=True)

    query = db.session.query(Transaction).filter(
        Transaction.business_id == ctx.business_id,
        Transaction.status == STATUS_FINAL,
    )
    if types:
        unknown = [t for t in types if t not in TRANSACTION_TYPES]
        if unknown:
            raise ValidationError(f"unknown transaction types: {', '.join(unknown)}")
        query = query.filter(Transaction.type.in_(list(types)))
    if start_dt:
        query = query.filter(Transaction.transaction_date >= start_dt)
    if end_dt:
        query = query.filter(Transaction.transaction_date <= end_dt)

    rows = []
    for txn in query.order_by(Transaction.transaction_date.asc(), Transaction.id.asc()):
        rows.append(
            _row(
                to_utc_z(txn.transaction_date),
                txn.type,
                txn.final_total,
                txn.additional_notes or "",
                txn.ref_no,
            )
        )
    return rows


def _profit_margin_rows(report: dict) -> list[dict]:
    date = report.get("generated_at")
    rows = []
    for item in report["items"]:
        rows.append(_row(date, "sales", item["total_sales"], item["product_name"], item["sku"]))
        rows.append(_row(date, "cost", item["total_cost"], item["product_name"], item["sku"]))
        rows.append(_row(date, "profit", item["profit"], item["product_name"], item["sku"]))
    return rows


def _stock_valuation_rows(report: dict) -> list[dict]:
    date = report.get("generated_at")
    return [
        _row(
            date,
            "stock_value",
            item["total_value"],
            f"{item['product_name']} / {item['variation_name']} @ {item['location_name']}",
            item["sku"],
        )
        for item in report["items"]
    ]


def _top_products_rows(report: dict) -> list[dict]:
    date = report.get("generated_at")
    return [
        _row(date, "sales", item["total_sales"], item["product_name"], item["sku"])
        for item in report["items"]
    ]


def _inventory_rows(report: dict) -> list[dict]:
    date = report.get("generated_at")
    return [
        _row(
            date,
            "low_stock" if item["is_low_stock"] else "stock",
            item["qty_available"],
            f"{item['product_name']} / {item['variation_name']} @ {item['location_name']} ({item['base_unit']})",
            item["sub_sku"] or item["sku"],
        )
        for item in report["items"]
    ]


def _summary_rows(type_: str):
    def _rows(report: dict) -> list[dict]:
        return [
            _row(txn["transaction_date"], type_, txn["final_total"], "", txn["ref_no"])
            for txn in report["transactions"]
        ]
    return _rows


REPORT_EXPORTERS = {
    "profit-margin": _profit_margin_rows,
    "stock-valuation": _stock_valuation_rows,
    "top-products": _top_products_rows,
    "inventory": _inventory_rows,
    "sales": _summary_rows(TRANSACTION_TYPE_SELL),
    "purchases": _summary_rows(TRANSACTION_TYPE_PURCHASE),
}


def export_report_rows(report_name: str, report: dict) -> list[dict]:
    """Flatten a report produced by reporting_service into EXPORT_COLUMNS rows."""
    exporter = REPORT_EXPORTERS.get(report_name)
    if exporter is None:
        raise ValidationError(f"unknown report: {report_name}")
    return exporter(report)
