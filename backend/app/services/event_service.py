# Overview: Service-layer operations for order events; transition outbox, subscribers and webhook delivery.

"""
Order Event Delivery

OUTBOX:
- record_order_event() writes an OrderEvent in the caller's transaction, so an
  event exists if and only if the transition committed.
- dispatch_order_event() runs after commit: in-process subscribers first,
  then one webhook attempt when ORDER_WEBHOOK_URL is set.
- dispatch_pending_events() retries undelivered events until
  ORDER_WEBHOOK_MAX_ATTEMPTS is reached (CLI: flask events dispatch).

Delivery failures are logged and stored on the row (last_error); they never
undo a transition.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

import httpx
from flask import current_app

from ..extensions import db
from ..models import Order, OrderEvent
from app.time_utils import normalize_utc, to_utc_z, utcnow
from .concurrency import run_with_retry

logger = logging.getLogger(__name__)

Subscriber = Callable[[dict], None]

_subscribers: list[Subscriber] = []


def subscribe(callback: Subscriber) -> Callable[[], None]:
    """Register an in-process listener; returns a function that unregisters it."""
    _subscribers.append(callback)

    def _unsubscribe():
        if callback in _subscribers:
            _subscribers.remove(callback)

    return _unsubscribe


def clear_subscribers() -> None:
    _subscribers.clear()


def build_event_payload(order: Order, old_status: str | None, new_status: str, occurred_at: datetime) -> dict:
    return {
        "order_id": order.id,
        "store_id": order.store_id,
        "old_status": old_status,
        "new_status": new_status,
        "items": list(order.items or []),
        "total_amount_cents": order.total_amount_cents,
        "customer_name": order.customer_name,
        "timestamp": to_utc_z(occurred_at),
    }


def record_order_event(
    order: Order,
    old_status: str | None,
    new_status: str,
    *,
    now: datetime | None = None,
) -> OrderEvent:
    """Append the outbox row; caller owns the transaction."""
    occurred_at = normalize_utc(now) if now else utcnow()
    event = OrderEvent(
        order_id=order.id,
        store_id=order.store_id,
        old_status=old_status,
        new_status=new_status,
        payload=build_event_payload(order, old_status, new_status, occurred_at),
        occurred_at=occurred_at,
        delivery_attempts=0,
    )
    db.session.add(event)
    db.session.flush()
    return event


def _notify_subscribers(payload: dict) -> None:
    for callback in list(_subscribers):
        try:
            callback(payload)
        except Exception:
            logger.exception("Order event subscriber failed for order %s", payload.get("order_id"))


def _post_webhook(url: str, payload: dict) -> None:
    timeout = float(current_app.config.get("ORDER_WEBHOOK_TIMEOUT", 5.0))
    response = httpx.post(
        url,
        json=payload,
        headers={"X-Event-Type": "order.status_changed"},
        timeout=timeout,
    )
    response.raise_for_status()


def _attempt_delivery(event_id: int) -> bool:
    url = current_app.config.get("ORDER_WEBHOOK_URL")

    event = db.session.get(OrderEvent, event_id)
    if event is None or event.delivered_at is not None:
        return False

    error = None
    if url:
        try:
            _post_webhook(url, event.payload)
        except httpx.HTTPError as exc:
            error = str(exc)[:255] or exc.__class__.__name__
            logger.warning(
                "Order event %s delivery failed (attempt %s): %s",
                event_id, event.delivery_attempts + 1, error,
            )

    def _op():
        row = db.session.get(OrderEvent, event_id)
        row.delivery_attempts = (row.delivery_attempts or 0) + 1
        if error is None:
            row.delivered_at = utcnow()
            row.last_error = None
        else:
            row.last_error = error
        db.session.commit()
        return error is None

    return run_with_retry(_op)


def dispatch_order_event(event_id: int) -> bool:
    """Post-commit fan-out for a single event. Returns True when delivered."""
    event = db.session.get(OrderEvent, event_id)
    if event is None:
        return False
    _notify_subscribers(dict(event.payload))
    return _attempt_delivery(event_id)


def list_pending_events(limit: int = 100) -> list[OrderEvent]:
    max_attempts = int(current_app.config.get("ORDER_WEBHOOK_MAX_ATTEMPTS", 3))
    return (
        db.session.query(OrderEvent)
        .filter(
            OrderEvent.delivered_at.is_(None),
            OrderEvent.delivery_attempts < max_attempts,
        )
        .order_by(OrderEvent.id.asc())
        .limit(limit)
        .all()
    )


def dispatch_pending_events(limit: int = 100) -> dict:
    """Retry webhook delivery for undelivered events (subscribers are not re-notified)."""
    delivered = 0
    failed = 0
    for event_id in [e.id for e in list_pending_events(limit)]:
        if _attempt_delivery(event_id):
            delivered += 1
        else:
            failed += 1
    if delivered or failed:
        logger.info("Order event dispatch: %s delivered, %s failed", delivered, failed)
    return {"delivered": delivered, "failed": failed}


def list_order_events(order_id: int) -> list[OrderEvent]:
    return db.session.query(OrderEvent).filter_by(order_id=order_id).order_by(OrderEvent.id.asc()).all()
