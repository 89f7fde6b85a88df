from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .catalog import QTY


class StockRecord(db.Model):
    """
    On-hand stock for one (variation, location) pair, always in base units.

    INVARIANTS:
    - qty_available >= 0 after every committed mutation (CHECK constraint).
    - Exactly one row per (variation_id, location_id); created lazily at 0.
    - Rows are never deleted, only zeroed.

    CONCURRENCY:
    qty_available is only written by stock_service.apply_stock_delta, which
    issues a conditional UPDATE guarded by version_id. A concurrent writer
    that read the same version gets zero rows back and must retry.
    """
    __tablename__ = "variation_location_details"
    __table_args__ = (
        db.UniqueConstraint("variation_id", "location_id", name="uq_stock_variation_location"),
        db.CheckConstraint("qty_available >= 0", name="ck_stock_qty_non_negative"),
        db.Index("ix_stock_location", "location_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    variation_id = db.Column(db.Integer, db.ForeignKey("variations.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("business_locations.id"), nullable=False)

    qty_available = db.Column(QTY, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    variation = db.relationship("Variation", backref=db.backref("stock_records", lazy=True))
    location = db.relationship("Location", backref=db.backref("stock_records", lazy=True))

    def __repr__(self) -> str:
        return (
            f"<StockRecord variation_id={self.variation_id} location_id={self.location_id} "
            f"qty={self.qty_available}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "variation_id": self.variation_id,
            "location_id": self.location_id,
            "qty_available": self.qty_available,
            "version_id": self.version_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class DocumentSequence(db.Model):
    """
    Atomic per-business document sequences.

    WHY: Prevent race conditions when generating reference numbers
    (sales, purchases, adjustments, transfers).
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("business_id", "document_type", name="uq_doc_sequences_business_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    document_type = db.Column(db.String(32), nullable=False, index=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "document_type": self.document_type,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
