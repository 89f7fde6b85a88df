# Overview: Master data lookups (products, variations, locations) scoped to the request's business.

from __future__ import annotations

from sqlalchemy.orm import joinedload

from ..extensions import db
from ..models import Location, Product, Variation
from ..context import EngineContext
from ..validation import NotFoundError, parse_int_id


def get_variation(ctx: EngineContext, variation_id) -> Variation:
    """Variation with its product and units loaded as single objects."""
    variation_id = parse_int_id(variation_id, "variation_id")
    variation = (
        db.session.query(Variation)
        .options(
            joinedload(Variation.product).joinedload(Product.unit),
            joinedload(Variation.unit),
        )
        .filter(Variation.id == variation_id)
        .first()
    )
    if variation is None or variation.product.business_id != ctx.business_id:
        raise NotFoundError(f"Variation {variation_id} not found")
    return variation


def get_location(ctx: EngineContext, location_id) -> Location:
    location_id = parse_int_id(location_id, "location_id")
    location = db.session.get(Location, location_id)
    if location is None or location.business_id != ctx.business_id:
        raise NotFoundError(f"Location {location_id} not found")
    if not location.is_active:
        raise NotFoundError(f"Location {location_id} is inactive")
    return location


def get_product(ctx: EngineContext, product_id) -> Product:
    product_id = parse_int_id(product_id, "product_id")
    product = db.session.get(Product, product_id)
    if product is None or product.business_id != ctx.business_id:
        raise NotFoundError(f"Product {product_id} not found")
    return product
