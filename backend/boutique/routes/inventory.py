# backend/boutique/routes/inventory.py
"""
Stock adjustment, transfer and stock lookup routes.

Tenant: every route requires the X-Business-Id header (or business_id arg).

Time semantics:
- API accepts ISO-8601 dates/datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- date_from/date_to filters are inclusive; a bare date covers the whole day.
"""
from flask import Blueprint, g, jsonify, request

from ..decorators import engine_errors, require_business
from ..services import adjustment_service, stock_service, transfer_service
from ..services.catalog_service import get_location, get_variation
from ..validation import ValidationError


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api")


@inventory_bp.post("/adjustments")
@require_business
@engine_errors
def create_adjustment_route():
    """
    Apply a stock adjustment batch.

    Body:
        {
          "date": "2026-10-01T10:00:00Z",        optional, defaults to now
          "status": "final" | "draft",           optional, defaults to final
          "overdraft_policy": "clamp" | "reject", optional, defaults to config
          "note": "...",
          "items": [{variation_id, location_id, quantity, unit_id, adjustment_type, reason}]
        }

    Whole batch is rejected (400) if any item is invalid; nothing is written.
    """
    payload = request.get_json(silent=True) or {}
    if "items" not in payload:
        raise ValidationError("items is required")

    result = adjustment_service.apply_adjustment_batch(
        g.ctx,
        occurred_at=payload.get("date"),
        items=payload["items"],
        status=payload.get("status", "final"),
        note=payload.get("note"),
        overdraft_policy=payload.get("overdraft_policy"),
    )
    status_code = 201 if result.transaction_id is not None else 200
    return jsonify(result.to_dict()), status_code


@inventory_bp.get("/adjustments")
@require_business
@engine_errors
def list_adjustments_route():
    result = adjustment_service.list_adjustments(
        g.ctx,
        page=request.args.get("page", default=1, type=int),
        per_page=request.args.get("per_page", default=20, type=int),
        location_id=request.args.get("location_id", type=int),
        status=request.args.get("status"),
        date_from=request.args.get("date_from"),
        date_to=request.args.get("date_to"),
    )
    return jsonify(result), 200


@inventory_bp.get("/adjustments/<int:transaction_id>")
@require_business
@engine_errors
def get_adjustment_route(transaction_id: int):
    return jsonify(adjustment_service.get_adjustment(g.ctx, transaction_id)), 200


@inventory_bp.post("/adjustments/<int:transaction_id>/complete")
@require_business
@engine_errors
def complete_adjustment_route(transaction_id: int):
    """Finalize a draft adjustment. 409 if it is already final."""
    payload = request.get_json(silent=True) or {}
    result = adjustment_service.complete_adjustment(
        g.ctx,
        transaction_id,
        overdraft_policy=payload.get("overdraft_policy"),
    )
    return jsonify(result.to_dict()), 200


@inventory_bp.post("/transfers")
@require_business
@engine_errors
def create_transfer_route():
    """
    Move stock between two locations.

    Body: {from_location_id, to_location_id, date?, note?, status?, items: [{variation_id, quantity, unit_id}]}

    status "draft" records the transfer without moving stock; complete it later.
    """
    payload = request.get_json(silent=True) or {}
    for key in ("from_location_id", "to_location_id", "items"):
        if payload.get(key) is None:
            raise ValidationError(f"{key} is required")

    result = transfer_service.apply_transfer_batch(
        g.ctx,
        from_location_id=payload["from_location_id"],
        to_location_id=payload["to_location_id"],
        occurred_at=payload.get("date"),
        items=payload["items"],
        note=payload.get("note"),
        status=payload.get("status", "final"),
    )
    return jsonify(result), 201


@inventory_bp.get("/transfers")
@require_business
@engine_errors
def list_transfers_route():
    result = transfer_service.list_transfers(
        g.ctx,
        page=request.args.get("page", default=1, type=int),
        per_page=request.args.get("per_page", default=20, type=int),
        location_id=request.args.get("location_id", type=int),
        status=request.args.get("status"),
        date_from=request.args.get("date_from"),
        date_to=request.args.get("date_to"),
    )
    return jsonify(result), 200


@inventory_bp.get("/transfers/<int:transaction_id>")
@require_business
@engine_errors
def get_transfer_route(transaction_id: int):
    return jsonify(transfer_service.get_transfer(g.ctx, transaction_id)), 200


@inventory_bp.post("/transfers/<int:transaction_id>/complete")
@require_business
@engine_errors
def complete_transfer_route(transaction_id: int):
    """Finalize a draft transfer. 409 if it is already final, 400 if the source is short."""
    return jsonify(transfer_service.complete_transfer(g.ctx, transaction_id)), 200


@inventory_bp.get("/stock")
@require_business
@engine_errors
def get_stock_route():
    """Current quantity in base units for one (variation, location)."""
    variation_id = request.args.get("variation_id")
    location_id = request.args.get("location_id")
    if not variation_id or not location_id:
        raise ValidationError("variation_id and location_id are required")

    variation = get_variation(g.ctx, variation_id)
    location = get_location(g.ctx, location_id)
    record = stock_service.get_stock_record(variation.id, location.id)

    return jsonify({
        "variation_id": variation.id,
        "location_id": location.id,
        "qty_available": stock_service.get_quantity(variation.id, location.id),
        "version_id": record.version_id if record else None,
    }), 200
