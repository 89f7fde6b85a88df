from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .types import FixedDecimal


# Quantities and money are fixed-point everywhere: never binary floats.
QTY = FixedDecimal()
MONEY = FixedDecimal()


class Unit(db.Model):
    """
    Unit of measure.

    A unit with base_unit_id NULL is a base unit (e.g., Pieces) and stock is
    always counted in base units. A sub-unit (e.g., Dozen) points at its base
    unit and carries base_unit_multiplier: one Dozen = 12 Pieces.

    INVARIANT: base_unit_multiplier > 0 (CHECK constraint).
    """
    __tablename__ = "units"
    __table_args__ = (
        db.UniqueConstraint("business_id", "actual_name", name="uq_units_business_name"),
        db.CheckConstraint("base_unit_multiplier > 0", name="ck_units_multiplier_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)

    actual_name = db.Column(db.String(64), nullable=False)
    short_name = db.Column(db.String(16), nullable=True)

    base_unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=True, index=True)
    base_unit_multiplier = db.Column(QTY, nullable=False, default=1)

    base_unit = db.relationship("Unit", remote_side=[id], backref=db.backref("sub_units", lazy=True))

    def __repr__(self) -> str:
        return f"<Unit id={self.id} name={self.actual_name!r} multiplier={self.base_unit_multiplier}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "actual_name": self.actual_name,
            "short_name": self.short_name,
            "base_unit_id": self.base_unit_id,
            "base_unit_multiplier": self.base_unit_multiplier,
        }


class Product(db.Model):
    """
    Product master data. Identity is immutable; name/sku are editable metadata.

    SKUs are unique within a business.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("business_id", "sku", name="uq_products_business_sku"),
        db.Index("ix_products_business_name", "business_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)

    # Reference unit: the base unit every variation's stock is counted in
    unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=False)
    # Optional display unit for stock reports (e.g., Dozen next to Pieces)
    secondary_unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=True)

    # Stock at or below this level is flagged as low in the inventory report
    alert_quantity = db.Column(QTY, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    unit = db.relationship("Unit", foreign_keys=[unit_id])
    secondary_unit = db.relationship("Unit", foreign_keys=[secondary_unit_id])

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "sku": self.sku,
            "name": self.name,
            "unit_id": self.unit_id,
            "secondary_unit_id": self.secondary_unit_id,
            "alert_quantity": self.alert_quantity,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Variation(db.Model):
    """
    A sellable configuration (size/style) of a Product.

    default_purchase_price is the fallback cost basis when no purchase with a
    positive price exists. unit_id overrides the product's reference unit.
    """
    __tablename__ = "variations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False, default="DUMMY")
    sub_sku = db.Column(db.String(64), nullable=True)

    default_purchase_price = db.Column(MONEY, nullable=True)
    unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=True)

    product = db.relationship("Product", backref=db.backref("variations", lazy=True))
    unit = db.relationship("Unit")

    @property
    def reference_unit(self) -> Unit:
        return self.unit or self.product.unit

    def __repr__(self) -> str:
        return f"<Variation id={self.id} product_id={self.product_id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "name": self.name,
            "sub_sku": self.sub_sku,
            "default_purchase_price": self.default_purchase_price,
            "unit_id": self.unit_id,
        }
