"""Order event outbox: webhook delivery, failure bookkeeping and retries."""

import httpx
import pytest

from app.models import OrderEvent
from app.services import event_service
from app.services.order_service import transition_order


@pytest.fixture
def webhook(app, monkeypatch):
    """Route webhook POSTs to a recorder; set `fail` to make the endpoint return 500."""
    state = {"calls": [], "fail": False}

    def _post(url, json=None, headers=None, timeout=None):
        state["calls"].append({"url": url, "json": json, "headers": headers})
        status = 500 if state["fail"] else 204
        return httpx.Response(status, request=httpx.Request("POST", url))

    monkeypatch.setattr(event_service.httpx, "post", _post)
    monkeypatch.setitem(app.config, "ORDER_WEBHOOK_URL", "https://hooks.test/orders")
    monkeypatch.setitem(app.config, "ORDER_WEBHOOK_MAX_ATTEMPTS", 3)
    return state


def _events(db_session, order_id):
    return db_session.query(OrderEvent).filter_by(order_id=order_id).order_by(OrderEvent.id).all()


def test_transition_event_is_posted(db_session, webhook, product, place_order):
    order = place_order([(product, 1)])
    transition_order(order.id, "confirmed")

    assert [c["json"]["new_status"] for c in webhook["calls"]] == ["pending", "confirmed"]
    call = webhook["calls"][-1]
    assert call["url"] == "https://hooks.test/orders"
    assert call["json"]["old_status"] == "pending"
    assert call["json"]["order_id"] == order.id
    assert call["headers"]["X-Event-Type"] == "order.status_changed"

    events = _events(db_session, order.id)
    assert all(e.delivered_at is not None and e.delivery_attempts == 1 for e in events)


def test_failed_delivery_is_recorded_and_retried(db_session, webhook, product, place_order):
    webhook["fail"] = True
    order = place_order([(product, 1)])
    transition_order(order.id, "confirmed")

    events = _events(db_session, order.id)
    assert all(e.delivered_at is None for e in events)
    assert all(e.delivery_attempts == 1 and e.last_error for e in events)

    webhook["fail"] = False
    result = event_service.dispatch_pending_events()
    assert result == {"delivered": 2, "failed": 0}

    for event in _events(db_session, order.id):
        db_session.refresh(event)
        assert event.delivered_at is not None
        assert event.delivery_attempts == 2
        assert event.last_error is None


def test_retries_stop_at_max_attempts(db_session, webhook, product, place_order):
    webhook["fail"] = True
    order = place_order([(product, 1)])

    assert event_service.dispatch_pending_events() == {"delivered": 0, "failed": 1}
    assert event_service.dispatch_pending_events() == {"delivered": 0, "failed": 1}
    assert event_service.dispatch_pending_events() == {"delivered": 0, "failed": 0}

    event = _events(db_session, order.id)[0]
    db_session.refresh(event)
    assert event.delivery_attempts == 3
    assert event.delivered_at is None


def test_unsubscribe_stops_notifications(product, place_order):
    received = []
    unsubscribe = event_service.subscribe(received.append)
    order = place_order([(product, 1)])
    unsubscribe()
    transition_order(order.id, "cancelled")
    assert [e["new_status"] for e in received] == ["pending"]
