# Overview: Cost basis lookup used by stock valuation and profit reports.

from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..models import PurchaseLine, Transaction, Variation
from ..models.ledger import STATUS_FINAL, TRANSACTION_TYPE_PURCHASE
from ..context import EngineContext
"""
Cost basis policy (reporting estimate, NOT authoritative accounting):

1. The purchase_price of the most recently created purchase line for the
   variation with purchase_price > 0 (final purchases only; ties on
   created_at are broken by the higher line id).
2. Otherwise the variation's default_purchase_price.
3. Otherwise 0.

This is not FIFO, weighted-average, or lot costing. The same single price is
applied to every unit on hand and every unit sold, so margins shift as soon
as a new purchase is recorded. Callers that need real inventory accounting
must not treat these numbers as the books.

Never cached across calls: purchase history changes between reports.
"""


ZERO = Decimal(0)


def latest_purchase_price(ctx: EngineContext, variation_id: int) -> Decimal | None:
    row = (
        db.session.query(PurchaseLine.purchase_price)
        .join(Transaction, PurchaseLine.transaction_id == Transaction.id)
        .filter(
            Transaction.business_id == ctx.business_id,
            Transaction.type == TRANSACTION_TYPE_PURCHASE,
            Transaction.status == STATUS_FINAL,
            PurchaseLine.variation_id == variation_id,
            PurchaseLine.purchase_price > 0,
        )
        .order_by(PurchaseLine.created_at.desc(), PurchaseLine.id.desc())
        .first()
    )
    return Decimal(row.purchase_price) if row else None


def resolve_unit_cost(ctx: EngineContext, variation_id: int) -> Decimal:
    """Unit cost for a variation under the policy above. Always >= 0."""
    price = latest_purchase_price(ctx, variation_id)
    if price is not None:
        return price

    default = (
        db.session.query(Variation.default_purchase_price)
        .filter(Variation.id == variation_id)
        .scalar()
    )
    if default is not None and Decimal(default) > 0:
        return Decimal(default)
    return ZERO


class CostBasisResolver:
    """
    Memo for a single report run.

    One report asks for the same variation many times; a fresh resolver is
    built per report invocation so nothing leaks into the next run.
    """

    def __init__(self, ctx: EngineContext):
        self.ctx = ctx
        self._costs: dict[int, Decimal] = {}

    def __call__(self, variation_id: int) -> Decimal:
        if variation_id not in self._costs:
            self._costs[variation_id] = resolve_unit_cost(self.ctx, variation_id)
        return self._costs[variation_id]
