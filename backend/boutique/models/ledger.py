from __future__ import annotations

from sqlalchemy import event, inspect, select

from ..extensions import db
from ..time_utils import to_utc_z
from ..validation import ConflictError
from .catalog import MONEY, QTY


TRANSACTION_TYPE_SELL = "sell"
TRANSACTION_TYPE_PURCHASE = "purchase"
TRANSACTION_TYPE_ADJUSTMENT = "stock_adjustment"
TRANSACTION_TYPE_TRANSFER = "stock_transfer"
TRANSACTION_TYPES = (
    TRANSACTION_TYPE_SELL,
    TRANSACTION_TYPE_PURCHASE,
    TRANSACTION_TYPE_ADJUSTMENT,
    TRANSACTION_TYPE_TRANSFER,
)

STATUS_DRAFT = "draft"
STATUS_FINAL = "final"
TRANSACTION_STATUSES = (STATUS_DRAFT, STATUS_FINAL)


class Transaction(db.Model):
    """
    Append-only ledger entry.

    LIFECYCLE:
    - draft: stored, does not affect stock or reports
    - final: stock side effects applied; the row and its lines are immutable

    Only final transactions feed the profit, valuation and top-seller reports.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.UniqueConstraint("business_id", "ref_no", name="uq_transactions_business_ref"),
        db.Index("ix_transactions_business_type_status_date", "business_id", "type", "status", "transaction_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)

    # Sell/purchase are single-location; adjustments carry a location per line
    location_id = db.Column(db.Integer, db.ForeignKey("business_locations.id"), nullable=True, index=True)

    type = db.Column(db.String(32), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default=STATUS_DRAFT, index=True)

    ref_no = db.Column(db.String(64), nullable=False)
    transaction_date = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    final_total = db.Column(MONEY, nullable=False, default=0)
    additional_notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    finalized_at = db.Column(db.DateTime(timezone=True), nullable=True)

    location = db.relationship("Location")

    def __repr__(self) -> str:
        return f"<Transaction id={self.id} type={self.type} status={self.status} ref={self.ref_no!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "location_id": self.location_id,
            "type": self.type,
            "status": self.status,
            "ref_no": self.ref_no,
            "transaction_date": to_utc_z(self.transaction_date),
            "final_total": self.final_total,
            "additional_notes": self.additional_notes,
            "created_at": to_utc_z(self.created_at),
            "finalized_at": to_utc_z(self.finalized_at) if self.finalized_at else None,
        }


class SellLine(db.Model):
    __tablename__ = "transaction_sell_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    variation_id = db.Column(db.Integer, db.ForeignKey("variations.id"), nullable=False, index=True)
    unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=False)

    # Quantity as entered, in unit_id (not necessarily base units)
    quantity = db.Column(QTY, nullable=False)
    unit_price = db.Column(MONEY, nullable=False)
    # Persisted quantity * unit_price
    line_total = db.Column(MONEY, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    transaction = db.relationship("Transaction", backref=db.backref("sell_lines", lazy=True, passive_deletes="all"))
    variation = db.relationship("Variation")
    unit = db.relationship("Unit")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "variation_id": self.variation_id,
            "product_id": self.variation.product_id if self.variation else None,
            "unit_id": self.unit_id,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "line_total": self.line_total,
        }


class PurchaseLine(db.Model):
    __tablename__ = "purchase_lines"
    __table_args__ = (
        db.Index("ix_purchase_lines_variation_created", "variation_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    variation_id = db.Column(db.Integer, db.ForeignKey("variations.id"), nullable=False, index=True)
    unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=False)

    quantity = db.Column(QTY, nullable=False)
    purchase_price = db.Column(MONEY, nullable=False)
    line_total = db.Column(MONEY, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    transaction = db.relationship("Transaction", backref=db.backref("purchase_lines", lazy=True, passive_deletes="all"))
    variation = db.relationship("Variation")
    unit = db.relationship("Unit")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "variation_id": self.variation_id,
            "unit_id": self.unit_id,
            "quantity": self.quantity,
            "purchase_price": self.purchase_price,
            "line_total": self.line_total,
            "created_at": to_utc_z(self.created_at),
        }


class StockAdjustmentLine(db.Model):
    """
    Immutable audit line for one adjustment item.

    quantity_delta is the signed request in base units; applied_delta is what
    actually hit the stock record. They differ only when a decrease was
    clamped at zero, in which case discarded_quantity holds the overdraft.
    """
    __tablename__ = "stock_adjustment_lines"
    __table_args__ = (
        db.Index("ix_adjustment_lines_variation_location", "variation_id", "location_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    variation_id = db.Column(db.Integer, db.ForeignKey("variations.id"), nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey("business_locations.id"), nullable=False)
    unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=False)

    quantity = db.Column(QTY, nullable=False)
    adjustment_type = db.Column(db.String(16), nullable=False)
    reason = db.Column(db.String(255), nullable=False)

    quantity_delta = db.Column(QTY, nullable=False)
    applied_delta = db.Column(QTY, nullable=True)
    discarded_quantity = db.Column(QTY, nullable=False, default=0)
    resulting_qty = db.Column(QTY, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    transaction = db.relationship("Transaction", backref=db.backref("adjustment_lines", lazy=True, passive_deletes="all"))
    variation = db.relationship("Variation")
    location = db.relationship("Location")
    unit = db.relationship("Unit")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "variation_id": self.variation_id,
            "location_id": self.location_id,
            "unit_id": self.unit_id,
            "quantity": self.quantity,
            "adjustment_type": self.adjustment_type,
            "reason": self.reason,
            "quantity_delta": self.quantity_delta,
            "applied_delta": self.applied_delta,
            "discarded_quantity": self.discarded_quantity,
            "resulting_qty": self.resulting_qty,
            "created_at": to_utc_z(self.created_at),
        }


class TransferLine(db.Model):
    __tablename__ = "transfer_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    variation_id = db.Column(db.Integer, db.ForeignKey("variations.id"), nullable=False)
    unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=False)

    from_location_id = db.Column(db.Integer, db.ForeignKey("business_locations.id"), nullable=False)
    to_location_id = db.Column(db.Integer, db.ForeignKey("business_locations.id"), nullable=False)

    quantity = db.Column(QTY, nullable=False)
    base_quantity = db.Column(QTY, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    transaction = db.relationship("Transaction", backref=db.backref("transfer_lines", lazy=True, passive_deletes="all"))
    variation = db.relationship("Variation")
    unit = db.relationship("Unit")
    from_location = db.relationship("Location", foreign_keys=[from_location_id])
    to_location = db.relationship("Location", foreign_keys=[to_location_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "variation_id": self.variation_id,
            "unit_id": self.unit_id,
            "from_location_id": self.from_location_id,
            "to_location_id": self.to_location_id,
            "quantity": self.quantity,
            "base_quantity": self.base_quantity,
        }


def _persisted_status(txn: Transaction) -> str | None:
    """Status as last loaded from the database, ignoring pending changes."""
    history = inspect(txn).attrs.status.history
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    return txn.status


@event.listens_for(Transaction, "before_update")
def _guard_final_transaction(mapper, connection, target):
    if _persisted_status(target) == STATUS_FINAL:
        raise ConflictError(f"Transaction {target.id} is final and cannot be modified")


@event.listens_for(Transaction, "before_delete")
def _guard_transaction_delete(mapper, connection, target):
    raise ConflictError("Transactions are append-only and cannot be deleted")


def _persisted_transaction_id(line) -> int | None:
    """Parent id as stored, even if the flush is about to null or repoint it."""
    history = inspect(line).attrs.transaction_id.history
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    return line.transaction_id


def _guard_final_line(mapper, connection, target):
    transaction_id = _persisted_transaction_id(target)
    status = connection.execute(
        select(Transaction.status).where(Transaction.id == transaction_id)
    ).scalar()
    if status == STATUS_FINAL:
        raise ConflictError(f"Lines of final transaction {transaction_id} are immutable")


for _line_model in (SellLine, PurchaseLine, StockAdjustmentLine, TransferLine):
    event.listen(_line_model, "before_update", _guard_final_line)
    event.listen(_line_model, "before_delete", _guard_final_line)
