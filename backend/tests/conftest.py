"""
Pytest fixtures for storefront backend tests.

Provides test database setup, store/catalog factories, and test client.
"""

import pytest
from app import create_app
from app.extensions import db
from app.models import Order, Product, ProductPriceTier, ProductVariation, Store
from app.services import event_service
from app.services.cart_service import build_cart_line
from app.services.order_service import create_order
from app.services.pricing_service import ProductPricing, VariationPricing


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'ORDER_WEBHOOK_URL': None,
    'PAYMENT_GATEWAY_URL': None,
    'LEDGER_RETRY_ATTEMPTS': 3,
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app, db_session):
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
        event_service.clear_subscribers()


@pytest.fixture(scope='function')
def store(db_session):
    store = Store(name="Main Store", code="MAIN")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def other_store(db_session):
    store = Store(name="Second Store", code="SECOND")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def make_product(db_session, store):
    """Factory: product with stock counters set directly (test arrangement only)."""
    counter = {"n": 0}

    def _make(**kwargs):
        counter["n"] += 1
        values = {
            "store_id": store.id,
            "sku": f"SKU-{counter['n']:03d}",
            "name": f"Product {counter['n']}",
            "retail_price_cents": 5000,
            "wholesale_price_cents": 4000,
            "min_wholesale_qty": 1,
            "stock": 10,
            "reserved_stock": 0,
        }
        values.update(kwargs)
        product = Product(**values)
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def product(make_product):
    return make_product(name="Sneaker", sku="SNK-1")


@pytest.fixture(scope='function')
def make_variation(db_session):
    def _make(product, **kwargs):
        values = {
            "product_id": product.id,
            "color": "Black",
            "size": "38",
            "stock": 10,
            "reserved_stock": 0,
        }
        values.update(kwargs)
        variation = ProductVariation(**values)
        db_session.add(variation)
        db_session.commit()
        return variation

    return _make


@pytest.fixture(scope='function')
def make_tiers(db_session):
    def _make(product, tiers):
        rows = []
        for order, (tier_type, min_quantity, price_cents) in enumerate(tiers, start=1):
            row = ProductPriceTier(
                product_id=product.id,
                tier_order=order,
                tier_type=tier_type,
                tier_name=f"Tier {order}",
                min_quantity=min_quantity,
                price_cents=price_cents,
                is_active=True,
            )
            db_session.add(row)
            rows.append(row)
        db_session.commit()
        return rows

    return _make


@pytest.fixture(scope='function')
def bare_order(db_session, store):
    """Order row with no lines, for ledger tests that reserve against an order id."""
    def _make():
        order = Order(store_id=store.id, customer_name="Ledger Test", items=[], total_amount_cents=0)
        db_session.add(order)
        db_session.commit()
        return order

    return _make


@pytest.fixture(scope='function')
def place_order(db_session, store):
    """
    Factory: checkout through order_service.

    lines: list of (product, quantity) or (product, quantity, variation).
    """
    def _place(lines, *, status="pending", catalog_mode="retail", store_id=None):
        cart_lines = []
        for entry in lines:
            product, quantity = entry[0], entry[1]
            variation = entry[2] if len(entry) > 2 else None
            cart_lines.append(build_cart_line(
                ProductPricing.from_model(product),
                catalog_mode=catalog_mode,
                quantity=quantity,
                variation=VariationPricing.from_model(variation) if variation else None,
            ))
        return create_order(
            store_id or store.id,
            cart_lines,
            customer_name="Maria Souza",
            customer_email="maria@example.com",
            status=status,
        )

    return _place
