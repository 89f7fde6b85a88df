# Overview: Flask API routes for sell/purchase posting and lookup; parses input and returns JSON responses.

from flask import Blueprint, g, jsonify, request

from ..decorators import engine_errors, require_business
from ..models.ledger import TRANSACTION_TYPE_PURCHASE, TRANSACTION_TYPE_SELL
from ..services import ledger_service
from ..validation import ValidationError

"""
Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- Omitted date means now.
"""

ledger_bp = Blueprint("ledger", __name__, url_prefix="/api")


def _posting_args(payload: dict) -> dict:
    if payload.get("location_id") is None:
        raise ValidationError("location_id is required")
    if "lines" not in payload:
        raise ValidationError("lines is required")
    return {
        "location_id": payload["location_id"],
        "occurred_at": payload.get("date"),
        "lines": payload["lines"],
        "status": payload.get("status", "final"),
        "note": payload.get("note"),
    }


@ledger_bp.post("/sales")
@require_business
@engine_errors
def record_sale_route():
    """
    Post a sale. Lines: [{variation_id, quantity, unit_id, unit_price}].

    A final sale that would take stock below zero is rejected (400).
    """
    payload = request.get_json(silent=True) or {}
    txn = ledger_service.record_sale(g.ctx, **_posting_args(payload))
    return jsonify(txn), 201


@ledger_bp.post("/purchases")
@require_business
@engine_errors
def record_purchase_route():
    """Post a purchase. Lines: [{variation_id, quantity, unit_id, purchase_price}]."""
    payload = request.get_json(silent=True) or {}
    txn = ledger_service.record_purchase(g.ctx, **_posting_args(payload))
    return jsonify(txn), 201


@ledger_bp.post("/transactions/<int:transaction_id>/finalize")
@require_business
@engine_errors
def finalize_transaction_route(transaction_id: int):
    txn = ledger_service.finalize_transaction(g.ctx, transaction_id)
    return jsonify(txn), 200


def _list_args() -> dict:
    return {
        "page": request.args.get("page", default=1, type=int),
        "per_page": request.args.get("per_page", default=20, type=int),
        "location_id": request.args.get("location_id", type=int),
        "status": request.args.get("status"),
        "date_from": request.args.get("date_from"),
        "date_to": request.args.get("date_to"),
    }


@ledger_bp.get("/sales")
@require_business
@engine_errors
def list_sales_route():
    """Sales newest first. Query: page, per_page, location_id, status, date_from, date_to."""
    result = ledger_service.list_transactions(g.ctx, transaction_type=TRANSACTION_TYPE_SELL, **_list_args())
    return jsonify(result), 200


@ledger_bp.get("/sales/<int:transaction_id>")
@require_business
@engine_errors
def get_sale_route(transaction_id: int):
    return jsonify(ledger_service.get_transaction(g.ctx, TRANSACTION_TYPE_SELL, transaction_id)), 200


@ledger_bp.get("/purchases")
@require_business
@engine_errors
def list_purchases_route():
    result = ledger_service.list_transactions(g.ctx, transaction_type=TRANSACTION_TYPE_PURCHASE, **_list_args())
    return jsonify(result), 200


@ledger_bp.get("/purchases/<int:transaction_id>")
@require_business
@engine_errors
def get_purchase_route(transaction_id: int):
    return jsonify(ledger_service.get_transaction(g.ctx, TRANSACTION_TYPE_PURCHASE, transaction_id)), 200


@ledger_bp.get("/variations/<int:variation_id>/lines")
@require_business
@engine_errors
def variation_lines_route(variation_id: int):
    """Final sell and purchase lines that reference one variation."""
    return jsonify(ledger_service.lines_for_variation(g.ctx, variation_id)), 200
