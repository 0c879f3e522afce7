"""
Concurrent confirmations against a file-backed SQLite database.

Each thread gets its own app context (and so its own session and
connection), the way separate requests would.
"""

import os
import threading

import pytest

from app import create_app
from app.extensions import db
from app.models import Order, Product, Store
from app.services.order_service import transition_order
from app.services.stock_ledger_service import InsufficientStock


@pytest.fixture
def file_app(tmp_path):
    db_path = os.path.join(str(tmp_path), "concurrency.db")
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
        "ORDER_WEBHOOK_URL": None,
        "LEDGER_RETRY_ATTEMPTS": 5,
    })
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def _seed(app, *, stock, orders, qty=1):
    with app.app_context():
        store = Store(name="Race Store", code="RACE")
        db.session.add(store)
        db.session.commit()

        product = Product(
            store_id=store.id, sku="LAST-1", name="Last Pair",
            retail_price_cents=9900, stock=stock, reserved_stock=0,
        )
        db.session.add(product)
        db.session.commit()

        order_ids = []
        for n in range(orders):
            order = Order(
                store_id=store.id,
                customer_name=f"Buyer {n}",
                items=[{"line_id": f"{product.id}-retail", "product_id": product.id, "variation_id": None,
                        "quantity": qty, "unit_price_cents": 9900, "line_total_cents": 9900 * qty}],
                total_amount_cents=9900 * qty,
            )
            db.session.add(order)
            db.session.commit()
            order_ids.append(order.id)
        return product.id, order_ids


def _race(app, order_ids):
    barrier = threading.Barrier(len(order_ids))
    outcomes = {}

    def _confirm(order_id):
        with app.app_context():
            barrier.wait()
            try:
                transition_order(order_id, "confirmed")
                outcomes[order_id] = "confirmed"
            except InsufficientStock:
                outcomes[order_id] = "insufficient"
            finally:
                db.session.remove()

    threads = [threading.Thread(target=_confirm, args=(oid,)) for oid in order_ids]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return outcomes


def test_last_unit_cannot_be_reserved_twice(file_app):
    product_id, order_ids = _seed(file_app, stock=1, orders=2)

    outcomes = _race(file_app, order_ids)

    assert sorted(outcomes.values()) == ["confirmed", "insufficient"]
    with file_app.app_context():
        product = db.session.get(Product, product_id)
        assert product.reserved_stock == 1
        assert product.stock == 1


def test_reservations_never_exceed_stock(file_app):
    product_id, order_ids = _seed(file_app, stock=3, orders=6)

    outcomes = _race(file_app, order_ids)

    assert list(outcomes.values()).count("confirmed") == 3
    assert list(outcomes.values()).count("insufficient") == 3
    with file_app.app_context():
        product = db.session.get(Product, product_id)
        assert product.reserved_stock == 3
        confirmed = db.session.query(Order).filter_by(status="confirmed", stock_reserved=True).count()
        assert confirmed == 3
