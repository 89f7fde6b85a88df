import csv
import io

from flask import Blueprint, Response, g, jsonify, request

from ..decorators import engine_errors, require_business
from ..services import export_service, reporting_service


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


def _run_report(name: str) -> dict:
    if name == "profit-margin":
        return reporting_service.profit_margin_report(
            g.ctx,
            date_from=request.args.get("date_from"),
            date_to=request.args.get("date_to"),
            location_id=request.args.get("location_id"),
        )
    if name == "stock-valuation":
        return reporting_service.stock_valuation_report(
            g.ctx,
            location_id=request.args.get("location_id"),
        )
    if name == "top-products":
        return reporting_service.top_selling_products(
            g.ctx,
            date_from=request.args.get("date_from"),
            date_to=request.args.get("date_to"),
            limit=request.args.get("limit"),
            location_id=request.args.get("location_id"),
        )
    if name == "inventory":
        return reporting_service.inventory_report(
            g.ctx,
            location_id=request.args.get("location_id"),
            product_id=request.args.get("product_id"),
            low_stock_only=request.args.get("low_stock_only", "").lower() == "true",
        )
    if name in ("sales", "purchases"):
        summary = reporting_service.sales_summary if name == "sales" else reporting_service.purchase_summary
        return summary(
            g.ctx,
            date_from=request.args.get("date_from"),
            date_to=request.args.get("date_to"),
            location_id=request.args.get("location_id"),
        )
    raise reporting_service.ReportError(f"unknown report: {name}")


def _export_response(rows: list[dict], filename: str):
    """JSON rows by default; ?format=csv returns a download with the same columns."""
    fmt = request.args.get("format", "json").lower()
    if fmt == "json":
        return jsonify({"columns": list(export_service.EXPORT_COLUMNS), "rows": rows}), 200
    if fmt != "csv":
        return jsonify({"error": "format must be json or csv"}), 400

    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=export_service.EXPORT_COLUMNS)
    writer.writeheader()
    writer.writerows(rows)
    return Response(
        buffer.getvalue(),
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}.csv"},
    )


@reports_bp.get("/profit-margin")
@require_business
@engine_errors
def profit_margin_report():
    return jsonify(_run_report("profit-margin")), 200


@reports_bp.get("/stock-valuation")
@require_business
@engine_errors
def stock_valuation_report():
    return jsonify(_run_report("stock-valuation")), 200


@reports_bp.get("/top-products")
@require_business
@engine_errors
def top_products_report():
    return jsonify(_run_report("top-products")), 200


@reports_bp.get("/inventory")
@require_business
@engine_errors
def inventory_report():
    """Stock per variation and location. Query: location_id, product_id, low_stock_only=true."""
    return jsonify(_run_report("inventory")), 200


@reports_bp.get("/sales")
@require_business
@engine_errors
def sales_summary_report():
    return jsonify(_run_report("sales")), 200


@reports_bp.get("/purchases")
@require_business
@engine_errors
def purchase_summary_report():
    return jsonify(_run_report("purchases")), 200


@reports_bp.get("/ledger-export")
@require_business
@engine_errors
def ledger_export():
    types = request.args.get("types")
    rows = export_service.export_ledger_entries(
        g.ctx,
        date_from=request.args.get("date_from"),
        date_to=request.args.get("date_to"),
        types=[t.strip() for t in types.split(",") if t.strip()] if types else None,
    )
    return _export_response(rows, "ledger")


@reports_bp.get("/<name>/export")
@require_business
@engine_errors
def report_export(name: str):
    if name not in reporting_service.REPORTS:
        return jsonify({"error": f"unknown report: {name}"}), 404
    rows = export_service.export_report_rows(name, _run_report(name))
    return _export_response(rows, name)
