# Overview: Service-layer operations for orders; checkout and the order status state machine.

"""
Order Lifecycle (authoritative)

STATES: pending -> confirmed -> preparing -> shipping -> delivered
        cancelled is reachable from pending, confirmed and preparing.
        delivered and cancelled are terminal.

STOCK SIDE EFFECTS (same DB transaction as the status change):
- -> confirmed, not yet reserved: reserve every line. One short line fails the
  whole transition and nothing stays reserved (the transaction rolls back).
- -> delivered: commit_sale for every line (idempotent per order/entity).
- -> cancelled while reserved: release every outstanding reservation.
- anything else: status only.

SERIALIZATION:
- order_guard(order_id) keeps transitions of one order in this process
  sequential; the row lock and version_id cover other processes.
- This module is the only writer of Order.status.

EVENTS:
- Every committed transition (and checkout) writes an OrderEvent in the same
  transaction and is dispatched after commit. Dispatch errors are logged only.
"""

from __future__ import annotations

import logging
from datetime import datetime

from ..errors import DomainError, NotFoundError
from ..extensions import db
from ..models import Order
from app.time_utils import hours_from, normalize_utc, utcnow
from .cart_service import CartLine, line_snapshot
from .concurrency import begin_immediate, lock_for_update, order_guard, run_with_retry
from .event_service import dispatch_order_event, record_order_event
from .pricing_service import CATALOG_MODES, CATALOG_WHOLESALE
from .stock_ledger_service import (
    InsufficientStock,
    StockEntity,
    commit_sale,
    get_stock_summary,
    release_order_reservations,
    reserve_stock,
)
from .store_service import require_active_store, reservation_ttl_hours, reserve_on_checkout

logger = logging.getLogger(__name__)


ORDER_STATUSES = ("pending", "confirmed", "preparing", "shipping", "delivered", "cancelled")

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"confirmed", "cancelled"}),
    "confirmed": frozenset({"preparing", "cancelled"}),
    "preparing": frozenset({"shipping", "cancelled"}),
    "shipping": frozenset({"delivered"}),
    "delivered": frozenset(),
    "cancelled": frozenset(),
}

CHECKOUT_STATUSES = ("pending", "confirmed")


class OrderError(DomainError):
    """Raised for invalid order input."""
    code = "ORDER_ERROR"


class InvalidTransition(OrderError):
    """The requested status change is not in ALLOWED_TRANSITIONS."""
    code = "INVALID_TRANSITION"
    http_status = 409

    def __init__(self, from_status: str, to_status: str):
        super().__init__(
            f"Cannot transition order from {from_status} to {to_status}",
            details={
                "from_status": from_status,
                "to_status": to_status,
                "allowed": sorted(ALLOWED_TRANSITIONS.get(from_status, ())),
            },
        )
        self.from_status = from_status
        self.to_status = to_status


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(from_status, frozenset())


def _aggregate_items(items: list[dict]) -> dict[StockEntity, int]:
    """Total quantity per stocked entity, in first-seen order."""
    totals: dict[StockEntity, int] = {}
    for item in items:
        entity = StockEntity(int(item["product_id"]), item.get("variation_id"))
        totals[entity] = totals.get(entity, 0) + int(item["quantity"])
    return totals


def _reserve_order(order: Order, now: datetime) -> None:
    ttl = reservation_ttl_hours(order.store_id)
    for entity, qty in _aggregate_items(order.items or []).items():
        reserve_stock(entity, order.id, qty, ttl_hours=ttl, now=now)
    order.stock_reserved = True
    order.reservation_expires_at = hours_from(now, ttl)


def _release_order(order: Order) -> None:
    release_order_reservations(order, note=f"order {order.id} cancelled")
    order.stock_reserved = False
    order.reservation_expires_at = None


def _commit_order(order: Order) -> None:
    for entity, qty in _aggregate_items(order.items or []).items():
        commit_sale(entity, order.id, qty)
    order.stock_reserved = False
    order.reservation_expires_at = None


def _dispatch_quietly(event_id: int) -> None:
    try:
        dispatch_order_event(event_id)
    except Exception:
        logger.exception("Order event %s dispatch failed; left for retry", event_id)


def _check_availability(items: list[dict]) -> None:
    shortages = []
    first = None
    for entity, qty in _aggregate_items(items).items():
        summary = get_stock_summary(entity)
        if summary["allow_negative_stock"] or summary["available_stock"] >= qty:
            continue
        shortage = {
            **entity.to_dict(),
            "label": summary["label"],
            "requested": qty,
            "available": summary["available_stock"],
        }
        shortages.append(shortage)
        first = first or shortage

    if first is not None:
        raise InsufficientStock(
            first["label"],
            first["requested"],
            first["available"],
            details={"items": shortages},
        )


def create_order(
    store_id: int,
    lines: list[CartLine],
    *,
    customer_name: str,
    customer_email: str | None = None,
    customer_phone: str | None = None,
    order_type: str | None = None,
    status: str = "pending",
    notes: str | None = None,
    now: datetime | None = None,
) -> Order:
    """
    Checkout: persist an order from priced cart lines.

    WHY availability is checked up front: a short line is reported with every
    other short line in one error, before anything is written. Reservation
    (confirmed orders, or stores with reserve_on_checkout) still goes through
    the conditional UPDATE, so a race lost after the check rolls back cleanly.

    Raises:
        OrderError: bad input
        InsufficientStock: any line exceeds available stock
    """
    if status not in CHECKOUT_STATUSES:
        raise OrderError(f"New orders must be one of: {', '.join(CHECKOUT_STATUSES)}")
    if not lines:
        raise OrderError("Order must contain at least one line")
    if not customer_name or not customer_name.strip():
        raise OrderError("customer_name is required")

    if order_type is None:
        order_type = CATALOG_WHOLESALE if any(l.catalog_mode == CATALOG_WHOLESALE for l in lines) else "retail"
    if order_type not in CATALOG_MODES:
        raise OrderError(f"order_type must be one of: {', '.join(CATALOG_MODES)}")

    require_active_store(store_id)

    items = [line_snapshot(line) for line in lines]
    total = sum(line.line_total_cents for line in lines)
    now = normalize_utc(now) if now else utcnow()
    reserve_now = status == "confirmed" or reserve_on_checkout(store_id)

    _check_availability(items)

    def _op():
        begin_immediate()
        order = Order(
            store_id=store_id,
            customer_name=customer_name.strip(),
            customer_email=customer_email,
            customer_phone=customer_phone,
            status=status,
            order_type=order_type,
            items=items,
            total_amount_cents=total,
            stock_reserved=False,
            notes=notes,
            created_at=now,
            updated_at=now,
        )
        db.session.add(order)
        db.session.flush()

        if reserve_now:
            _reserve_order(order, now)

        event = record_order_event(order, None, status, now=now)
        db.session.commit()
        return order, event.id

    order, event_id = run_with_retry(_op)
    logger.info("Order %s created for store %s (%s, %s cents)", order.id, store_id, status, total)
    _dispatch_quietly(event_id)
    return order


def transition_order(order_id: int, new_status: str, *, now: datetime | None = None) -> Order:
    """
    Move an order to new_status with its stock side effects, atomically.

    Raises:
        OrderError: unknown status
        NotFoundError: no such order
        InvalidTransition: not allowed from the current status (nothing is written)
        InsufficientStock: confirming an order whose lines cannot all be reserved
    """
    if new_status not in ORDER_STATUSES:
        raise OrderError(f"Invalid status. Must be one of: {', '.join(ORDER_STATUSES)}")

    now = normalize_utc(now) if now else utcnow()

    with order_guard(order_id):
        def _op():
            begin_immediate()
            order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
            if order is None:
                raise NotFoundError("Order not found", details={"order_id": order_id})

            old_status = order.status
            if not can_transition(old_status, new_status):
                raise InvalidTransition(old_status, new_status)

            if new_status == "confirmed" and not order.stock_reserved:
                _reserve_order(order, now)
            elif new_status == "delivered":
                _commit_order(order)
            elif new_status == "cancelled" and order.stock_reserved:
                _release_order(order)

            order.status = new_status
            order.updated_at = now
            event = record_order_event(order, old_status, new_status, now=now)
            db.session.commit()
            return order, event.id, old_status

        order, event_id, old_status = run_with_retry(_op)

    logger.info("Order %s: %s -> %s", order_id, old_status, new_status)
    _dispatch_quietly(event_id)
    return order


def get_order(order_id: int, store_id: int | None = None) -> Order:
    q = db.session.query(Order).filter_by(id=order_id)
    if store_id is not None:
        q = q.filter_by(store_id=store_id)
    order = q.first()
    if order is None:
        raise NotFoundError("Order not found", details={"order_id": order_id})
    return order


def list_orders(store_id: int, status: str | None = None, limit: int = 100) -> list[Order]:
    if status is not None and status not in ORDER_STATUSES:
        raise OrderError(f"Invalid status. Must be one of: {', '.join(ORDER_STATUSES)}")
    q = db.session.query(Order).filter_by(store_id=store_id)
    if status is not None:
        q = q.filter_by(status=status)
    return q.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).all()
