"""Order lifecycle: allowed transitions, stock side effects, atomicity and events."""

from datetime import datetime, timedelta
from itertools import product as cartesian

import pytest

from app.extensions import db
from app.models import Order, OrderEvent, Product, StockMovement
from app.services import event_service
from app.services.order_service import (
    ALLOWED_TRANSITIONS,
    ORDER_STATUSES,
    InvalidTransition,
    OrderError,
    can_transition,
    create_order,
    list_orders,
    transition_order,
)
from app.services.stock_ledger_service import InsufficientStock, StockEntity, list_movements, outstanding_reservation
from app.services.store_service import set_store_config


PATH_TO = {
    "pending": [],
    "confirmed": ["confirmed"],
    "preparing": ["confirmed", "preparing"],
    "shipping": ["confirmed", "preparing", "shipping"],
    "delivered": ["confirmed", "preparing", "shipping", "delivered"],
    "cancelled": ["cancelled"],
}


def _counters(product_id):
    row = db.session.get(Product, product_id)
    db.session.refresh(row)
    return row.stock, row.reserved_stock


def _reload(order_id):
    order = db.session.get(Order, order_id)
    db.session.refresh(order)
    return order


@pytest.mark.parametrize("from_status,to_status", list(cartesian(ORDER_STATUSES, ORDER_STATUSES)))
def test_every_transition_pair(db_session, product, place_order, from_status, to_status):
    order = place_order([(product, 1)])
    for step in PATH_TO[from_status]:
        transition_order(order.id, step)
    events_before = db_session.query(OrderEvent).filter_by(order_id=order.id).count()
    movements_before = db_session.query(StockMovement).count()

    if to_status in ALLOWED_TRANSITIONS[from_status]:
        result = transition_order(order.id, to_status)
        assert result.status == to_status
        assert can_transition(from_status, to_status)
    else:
        with pytest.raises(InvalidTransition):
            transition_order(order.id, to_status)
        assert not can_transition(from_status, to_status)
        assert _reload(order.id).status == from_status
        assert db_session.query(OrderEvent).filter_by(order_id=order.id).count() == events_before
        assert db_session.query(StockMovement).count() == movements_before


def test_terminal_states_have_no_exits():
    assert ALLOWED_TRANSITIONS["delivered"] == frozenset()
    assert ALLOWED_TRANSITIONS["cancelled"] == frozenset()


def test_unknown_status_is_rejected(product, place_order):
    order = place_order([(product, 1)])
    with pytest.raises(OrderError):
        transition_order(order.id, "lost")


def test_confirm_reserves_every_line(db_session, make_product, place_order):
    boots = make_product(name="Boots", stock=10)
    socks = make_product(name="Socks", stock=20)
    order = place_order([(boots, 2), (socks, 5)])

    now = datetime(2026, 5, 1, 9, 30)
    transition_order(order.id, "confirmed", now=now)

    order = _reload(order.id)
    assert order.stock_reserved
    assert order.reservation_expires_at == now + timedelta(hours=24)
    assert _counters(boots.id) == (10, 2)
    assert _counters(socks.id) == (20, 5)
    assert outstanding_reservation(StockEntity(socks.id), order.id) == 5


def test_failed_confirm_leaves_nothing_reserved(db_session, make_product, place_order, bare_order):
    boots = make_product(name="Boots", stock=10)
    socks = make_product(name="Socks", stock=3)
    order = place_order([(boots, 2), (socks, 3)])

    # Someone else takes two pairs of socks after checkout
    from app.services.stock_ledger_service import reserve_stock
    reserve_stock(StockEntity(socks.id), bare_order().id, 2)
    db_session.commit()

    with pytest.raises(InsufficientStock) as exc:
        transition_order(order.id, "confirmed")
    assert "Socks" in str(exc.value)

    order = _reload(order.id)
    assert order.status == "pending"
    assert not order.stock_reserved
    assert _counters(boots.id) == (10, 0)
    assert _counters(socks.id) == (3, 2)
    assert list_movements(order_id=order.id) == []


def test_cancel_releases_reservation(db_session, product, place_order):
    order = place_order([(product, 5)])
    transition_order(order.id, "confirmed")
    assert _counters(product.id) == (10, 5)

    transition_order(order.id, "cancelled")

    order = _reload(order.id)
    assert order.status == "cancelled"
    assert not order.stock_reserved
    assert _counters(product.id) == (10, 0)
    releases = list_movements(order_id=order.id, movement_type="release")
    assert len(releases) == 1
    assert releases[0].quantity == 5


def test_cancel_from_preparing_releases_reservation(product, place_order):
    order = place_order([(product, 4)])
    transition_order(order.id, "confirmed")
    transition_order(order.id, "preparing")
    transition_order(order.id, "cancelled")
    assert _counters(product.id) == (10, 0)


def test_cancel_pending_without_reservation_moves_no_stock(product, place_order):
    order = place_order([(product, 2)])
    transition_order(order.id, "cancelled")
    assert list_movements(order_id=order.id) == []
    assert _counters(product.id) == (10, 0)


def test_deliver_commits_sale(product, place_order):
    order = place_order([(product, 3)])
    for step in ("confirmed", "preparing", "shipping", "delivered"):
        transition_order(order.id, step)

    assert _counters(product.id) == (7, 0)
    sales = list_movements(order_id=order.id, movement_type="sale")
    assert [(m.quantity, m.previous_stock, m.new_stock) for m in sales] == [(3, 10, 7)]
    assert not _reload(order.id).stock_reserved


def test_lines_for_same_product_are_aggregated(product, place_order, make_variation):
    variation = make_variation(product, stock=5)
    order = place_order([(product, 2), (product, 3), (product, 1, variation)])
    transition_order(order.id, "confirmed")

    assert _counters(product.id) == (10, 5)
    reservations = list_movements(order_id=order.id, movement_type="reservation")
    assert {(m.variation_id, m.quantity) for m in reservations} == {(None, 5), (variation.id, 1)}


# -----------------------------------------------------------------------------
# Checkout
# -----------------------------------------------------------------------------

def test_create_order_persists_snapshot_and_total(product, place_order):
    order = place_order([(product, 2)])
    order = _reload(order.id)

    assert order.status == "pending"
    assert order.total_amount_cents == 10000
    assert order.items[0]["line_id"] == f"{product.id}-retail"
    assert order.items[0]["quantity"] == 2
    assert not order.stock_reserved
    assert _counters(product.id) == (10, 0)


def test_create_order_rejects_unavailable_lines(db_session, make_product, place_order):
    boots = make_product(name="Boots", stock=1)
    socks = make_product(name="Socks", stock=0)

    with pytest.raises(InsufficientStock) as exc:
        place_order([(boots, 2), (socks, 1)])

    shortages = exc.value.details["items"]
    assert [s["label"] for s in shortages] == ["Boots", "Socks"]
    assert db_session.query(Order).count() == 0


def test_create_confirmed_order_reserves_immediately(product, place_order):
    order = place_order([(product, 4)], status="confirmed")
    assert _reload(order.id).stock_reserved
    assert _counters(product.id) == (10, 4)


def test_reserve_on_checkout_store_flag(store, product, place_order):
    set_store_config(store.id, "reserve_on_checkout", "true")
    order = place_order([(product, 2)])
    order = _reload(order.id)
    assert order.status == "pending"
    assert order.stock_reserved
    assert _counters(product.id) == (10, 2)


def test_create_order_requires_lines(store):
    with pytest.raises(OrderError):
        create_order(store.id, [], customer_name="Nobody")


def test_create_order_rejects_inactive_store(db_session, store, product, place_order):
    store.is_active = False
    db_session.commit()
    from app.errors import NotFoundError
    with pytest.raises(NotFoundError):
        place_order([(product, 1)])


def test_list_orders_filters_by_status(store, product, place_order):
    first = place_order([(product, 1)])
    place_order([(product, 1)])
    transition_order(first.id, "confirmed")

    assert [o.id for o in list_orders(store.id, status="confirmed")] == [first.id]
    assert len(list_orders(store.id)) == 2


# -----------------------------------------------------------------------------
# Events
# -----------------------------------------------------------------------------

def test_transition_emits_event_to_subscribers(db_session, product, place_order):
    received = []
    event_service.subscribe(received.append)

    order = place_order([(product, 1)])
    transition_order(order.id, "confirmed")

    assert [(e["old_status"], e["new_status"]) for e in received] == [(None, "pending"), ("pending", "confirmed")]
    payload = received[-1]
    assert payload["order_id"] == order.id
    assert payload["store_id"] == order.store_id
    assert payload["items"][0]["product_id"] == product.id
    assert payload["timestamp"].endswith("Z")

    events = db_session.query(OrderEvent).filter_by(order_id=order.id).order_by(OrderEvent.id).all()
    assert [e.new_status for e in events] == ["pending", "confirmed"]
    assert all(e.delivered_at is not None for e in events)


def test_failing_subscriber_does_not_undo_transition(product, place_order):
    def _boom(payload):
        raise RuntimeError("listener down")

    event_service.subscribe(_boom)
    order = place_order([(product, 1)])
    transition_order(order.id, "confirmed")
    assert _reload(order.id).status == "confirmed"
