"""
Pytest fixtures for boutique backend tests.

Provides test database setup, a two-tenant catalog, and test client.
"""

from decimal import Decimal

import pytest
from boutique import create_app
from boutique.context import EngineContext
from boutique.extensions import db
from boutique.models import Business, Location, Unit, Product, Variation, StockRecord


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'OVERDRAFT_POLICY': 'clamp',
        'STOCK_RETRY_ATTEMPTS': 3,
        'STOCK_RETRY_BACKOFF': 0,
        'REPORT_SCAN_BATCH_SIZE': 2,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def business(db_session):
    """Business A (first tenant)."""
    biz = Business(name="Boutique A", code="BOUTA", is_active=True)
    db_session.add(biz)
    db_session.commit()
    return biz


@pytest.fixture(scope='function')
def other_business(db_session):
    """Business B (second tenant)."""
    biz = Business(name="Boutique B", code="BOUTB", is_active=True)
    db_session.add(biz)
    db_session.commit()
    return biz


@pytest.fixture(scope='function')
def ctx(business):
    return EngineContext(business_id=business.id)


@pytest.fixture(scope='function')
def location(db_session, business):
    loc = Location(business_id=business.id, name="Shop Floor")
    db_session.add(loc)
    db_session.commit()
    return loc


@pytest.fixture(scope='function')
def back_room(db_session, business):
    loc = Location(business_id=business.id, name="Back Room")
    db_session.add(loc)
    db_session.commit()
    return loc


@pytest.fixture(scope='function')
def pieces(db_session, business):
    """Base unit."""
    unit = Unit(business_id=business.id, actual_name="Pieces", short_name="pc", base_unit_multiplier=1)
    db_session.add(unit)
    db_session.commit()
    return unit


@pytest.fixture(scope='function')
def dozen(db_session, business, pieces):
    """Sub-unit: 1 dozen = 12 pieces."""
    unit = Unit(
        business_id=business.id,
        actual_name="Dozen",
        short_name="dz",
        base_unit_id=pieces.id,
        base_unit_multiplier=12,
    )
    db_session.add(unit)
    db_session.commit()
    return unit


@pytest.fixture(scope='function')
def product(db_session, business, pieces):
    prod = Product(business_id=business.id, sku="DRESS-001", name="Linen Dress", unit_id=pieces.id)
    db_session.add(prod)
    db_session.commit()
    return prod


@pytest.fixture(scope='function')
def variation(db_session, product):
    var = Variation(product_id=product.id, name="Size M", sub_sku="DRESS-001-M")
    db_session.add(var)
    db_session.commit()
    return var


@pytest.fixture(scope='function')
def second_product(db_session, business, pieces):
    prod = Product(business_id=business.id, sku="SCARF-001", name="Silk Scarf", unit_id=pieces.id)
    db_session.add(prod)
    db_session.commit()
    return prod


@pytest.fixture(scope='function')
def second_variation(db_session, second_product):
    var = Variation(product_id=second_product.id, name="DUMMY")
    db_session.add(var)
    db_session.commit()
    return var


def set_stock(variation_id: int, location_id: int, qty) -> StockRecord:
    """Seed a stock record directly, bypassing the engine."""
    record = StockRecord(variation_id=variation_id, location_id=location_id, qty_available=Decimal(qty), version_id=1)
    db.session.add(record)
    db.session.commit()
    return record


def adjustment_item(variation, location, unit, quantity, adjustment_type="increase", reason="Stock count"):
    return {
        "variation_id": variation.id,
        "location_id": location.id,
        "quantity": quantity,
        "unit_id": unit.id,
        "adjustment_type": adjustment_type,
        "reason": reason,
    }


def business_headers(business_id: int) -> dict:
    """Helper to create tenant headers."""
    return {'X-Business-Id': str(business_id)}
