# Overview: The only writer of StockRecord.qty_available; atomic, versioned stock mutation.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import StockRecord
from ..validation import MAX_DECIMAL, ConcurrencyConflict, InsufficientStockError, ValidationError, require_scale
from .concurrency import lock_for_update
"""
Stock Record Invariants (authoritative)

- qty_available is stored in base units and is never negative after commit.
- Rows are created lazily at 0 the first time a (variation, location) pair is
  stocked and are never deleted.
- Every write is a single conditional UPDATE:

      UPDATE variation_location_details
         SET qty_available = :new, version_id = :seen + 1
       WHERE id = :id AND version_id = :seen

  so two writers that read the same version cannot both succeed. The loser
  gets rowcount 0 and raises ConcurrencyConflict; run_with_retry rolls back
  the whole unit of work and replays it. On databases that honor
  SELECT ... FOR UPDATE the row lock serializes writers before that point.
- This module never commits. Callers own the transaction boundary.
"""


OVERDRAFT_CLAMP = "clamp"
OVERDRAFT_REJECT = "reject"
OVERDRAFT_POLICIES = (OVERDRAFT_CLAMP, OVERDRAFT_REJECT)

ZERO = Decimal(0)


@dataclass(frozen=True)
class StockChange:
    variation_id: int
    location_id: int
    previous_qty: Decimal
    requested_delta: Decimal
    applied_delta: Decimal
    discarded: Decimal
    new_qty: Decimal

    def to_dict(self) -> dict:
        return {
            "variation_id": self.variation_id,
            "location_id": self.location_id,
            "previous_qty": self.previous_qty,
            "requested_delta": self.requested_delta,
            "applied_delta": self.applied_delta,
            "discarded": self.discarded,
            "new_qty": self.new_qty,
        }


def normalize_policy(policy: str | None) -> str:
    value = (policy or OVERDRAFT_CLAMP).strip().lower()
    if value not in OVERDRAFT_POLICIES:
        raise ValidationError(f"overdraft policy must be one of {', '.join(OVERDRAFT_POLICIES)}")
    return value


def get_quantity(variation_id: int, location_id: int) -> Decimal:
    """Current qty_available in base units; 0 when the pair was never stocked."""
    qty = (
        db.session.query(StockRecord.qty_available)
        .filter_by(variation_id=variation_id, location_id=location_id)
        .scalar()
    )
    return Decimal(qty) if qty is not None else ZERO


def get_stock_record(variation_id: int, location_id: int) -> StockRecord | None:
    return (
        db.session.query(StockRecord)
        .filter_by(variation_id=variation_id, location_id=location_id)
        .first()
    )


def _locked_record(variation_id: int, location_id: int) -> StockRecord:
    query = db.session.query(StockRecord).filter_by(
        variation_id=variation_id,
        location_id=location_id,
    )
    record = lock_for_update(query).populate_existing().first()
    if record is not None:
        return record

    record = StockRecord(
        variation_id=variation_id,
        location_id=location_id,
        qty_available=ZERO,
        version_id=1,
    )
    db.session.add(record)
    try:
        db.session.flush()
    except IntegrityError as exc:
        # Another writer created the row first; replay against the real one
        raise ConcurrencyConflict(
            f"stock record for variation {variation_id} at location {location_id} created concurrently"
        ) from exc
    return record


def lock_stock_records(pairs: Iterable[tuple[int, int]]) -> None:
    """
    Lock (and lazily create) every pair up front in a stable order.

    Batches touching overlapping pairs then acquire locks in the same order
    and cannot deadlock each other.
    """
    for variation_id, location_id in sorted(set(pairs)):
        _locked_record(variation_id, location_id)


def apply_stock_delta(
    variation_id: int,
    location_id: int,
    delta: Decimal,
    *,
    policy: str = OVERDRAFT_REJECT,
) -> StockChange:
    """
    Add a signed base-unit delta to one stock record.

    policy decides what happens when current + delta < 0:
    - "reject": InsufficientStockError, nothing written
    - "clamp": write 0 and report the discarded overdraft

    The delta must already fit four decimal places; ValidationError otherwise.
    """
    policy = normalize_policy(policy)
    delta = require_scale(Decimal(delta), "stock delta")

    record = _locked_record(variation_id, location_id)
    seen_version = record.version_id
    current = Decimal(record.qty_available)

    target = current + delta
    discarded = ZERO
    if target < 0:
        if policy == OVERDRAFT_REJECT:
            raise InsufficientStockError(
                f"Insufficient stock for variation {variation_id} at location {location_id}. "
                f"Available: {current}, requested change: {delta}"
            )
        discarded = -target
        target = ZERO
    if target > MAX_DECIMAL:
        raise ValidationError(
            f"Stock for variation {variation_id} at location {location_id} would exceed {MAX_DECIMAL}"
        )

    stmt = (
        update(StockRecord)
        .where(
            StockRecord.id == record.id,
            StockRecord.version_id == seen_version,
        )
        .values(qty_available=target, version_id=seen_version + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        raise ConcurrencyConflict(
            f"stock record for variation {variation_id} at location {location_id} changed concurrently"
        )

    db.session.expire(record)

    return StockChange(
        variation_id=variation_id,
        location_id=location_id,
        previous_qty=current,
        requested_delta=delta,
        applied_delta=target - current,
        discarded=discarded,
        new_qty=target,
    )
