# Overview: Service-layer operations for the stock ledger; reservations, releases, sales and adjustments.

"""
Storefront Stock Invariants (authoritative)

Counters:
- Product and ProductVariation each carry `stock` (on-hand) and `reserved_stock`.
- available = stock - reserved_stock
- reserved_stock <= stock unless the product allows negative stock
  (variations inherit the flag from their product).

Writers:
- This module is the ONLY writer of stock / reserved_stock.
- Counters change through conditional UPDATE statements whose WHERE clause
  re-checks availability, so two buyers racing for the last unit cannot both
  succeed. Every UPDATE also bumps version_id.

Ledger:
- Every counter change appends one StockMovement (append-only).
- reservation: reserved += qty                      (on-hand unchanged)
- release:     reserved -= qty, floored at zero     (on-hand unchanged)
- sale:        stock -= qty, reserved -= the order's outstanding reservation
- adjustment:  stock += delta                       (intake / correction)

Transactions:
- reserve_stock / release_stock / commit_sale flush but do not commit; the
  caller (order_service) owns the transaction so a failed line rolls back
  every line of the same transition.
- adjust_stock and expire_reservations commit their own unit of work.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import case, func, select, update

from ..errors import DomainError, NotFoundError
from ..extensions import db
from ..models import Order, Product, ProductVariation, StockMovement
from app.time_utils import hours_from, normalize_utc, utcnow
from .concurrency import begin_immediate, lock_for_update, order_guard, run_with_retry

logger = logging.getLogger(__name__)


MOVEMENT_RESERVATION = "reservation"
MOVEMENT_RELEASE = "release"
MOVEMENT_SALE = "sale"
MOVEMENT_ADJUSTMENT = "adjustment"
MOVEMENT_TYPES = (MOVEMENT_RESERVATION, MOVEMENT_RELEASE, MOVEMENT_SALE, MOVEMENT_ADJUSTMENT)

DEFAULT_RESERVATION_TTL_HOURS = 24


class StockError(DomainError):
    """Raised for invalid stock operations."""
    code = "STOCK_ERROR"


class InsufficientStock(StockError):
    """Requested quantity exceeds what is available for the entity."""
    code = "INSUFFICIENT_STOCK"

    def __init__(self, label: str, requested: int, available: int, details: dict | None = None):
        payload = {"entity": label, "requested": requested, "available": available}
        payload.update(details or {})
        super().__init__(f"insufficient stock for {label}, available: {available}", details=payload)
        self.requested = requested
        self.available = available


@dataclass(frozen=True)
class StockEntity:
    """The stocked row: the variation when given, otherwise the product."""
    product_id: int
    variation_id: int | None = None

    def to_dict(self) -> dict:
        return {"product_id": self.product_id, "variation_id": self.variation_id}


@dataclass(frozen=True)
class _Target:
    model: type
    row_id: int
    store_id: int
    allow_negative: bool
    label: str


def _resolve(entity: StockEntity) -> _Target:
    product = db.session.query(Product).filter_by(id=entity.product_id).first()
    if product is None:
        raise NotFoundError("Product not found", details=entity.to_dict())

    if entity.variation_id is None:
        return _Target(Product, product.id, product.store_id, bool(product.allow_negative_stock), product.name)

    variation = db.session.query(ProductVariation).filter_by(id=entity.variation_id).first()
    if variation is None:
        raise NotFoundError("Variation not found", details=entity.to_dict())
    if variation.product_id != product.id:
        raise StockError("Variation does not belong to product", details=entity.to_dict())

    label = f"{product.name} ({variation.label})" if variation.label else product.name
    return _Target(ProductVariation, variation.id, product.store_id, bool(product.allow_negative_stock), label)


def _counters(target: _Target) -> tuple[int, int]:
    model = target.model
    row = db.session.execute(
        select(model.stock, model.reserved_stock).where(model.id == target.row_id)
    ).one()
    return int(row.stock or 0), int(row.reserved_stock or 0)


def _movement_filter(query, entity: StockEntity, order_id: int | None):
    query = query.filter(StockMovement.product_id == entity.product_id)
    if entity.variation_id is None:
        query = query.filter(StockMovement.variation_id.is_(None))
    else:
        query = query.filter(StockMovement.variation_id == entity.variation_id)
    if order_id is not None:
        query = query.filter(StockMovement.order_id == order_id)
    return query


def _append(
    target: _Target,
    entity: StockEntity,
    *,
    movement_type: str,
    quantity: int,
    previous_stock: int,
    new_stock: int,
    order_id: int | None = None,
    expires_at: datetime | None = None,
    note: str | None = None,
) -> StockMovement:
    movement = StockMovement(
        store_id=target.store_id,
        product_id=entity.product_id,
        variation_id=entity.variation_id,
        order_id=order_id,
        movement_type=movement_type,
        quantity=quantity,
        previous_stock=previous_stock,
        new_stock=new_stock,
        expires_at=expires_at,
        note=note,
        created_at=utcnow(),
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def _require_positive(qty: int) -> None:
    if qty is None or qty < 1:
        raise StockError("Quantity must be positive", details={"quantity": qty})


# =============================================================================
# READS
# =============================================================================

def get_stock_summary(entity: StockEntity) -> dict:
    target = _resolve(entity)
    stock, reserved = _counters(target)
    return {
        **entity.to_dict(),
        "label": target.label,
        "stock": stock,
        "reserved_stock": reserved,
        "available_stock": stock - reserved,
        "allow_negative_stock": target.allow_negative,
    }


def check_availability(entity: StockEntity, requested_qty: int) -> bool:
    """True when requested_qty can be reserved now (always true with negative stock allowed)."""
    target = _resolve(entity)
    if target.allow_negative:
        return True
    stock, reserved = _counters(target)
    return stock - reserved >= requested_qty


def outstanding_reservation(entity: StockEntity, order_id: int) -> int:
    """
    Quantity the order still holds in reserve for the entity.

    reservations - releases, or zero once the sale has been committed
    (a sale consumes the whole outstanding reservation).
    """
    sold = _movement_filter(
        db.session.query(StockMovement.id), entity, order_id
    ).filter(StockMovement.movement_type == MOVEMENT_SALE).first()
    if sold is not None:
        return 0

    def _total(movement_type: str) -> int:
        q = _movement_filter(
            db.session.query(func.coalesce(func.sum(StockMovement.quantity), 0)), entity, order_id
        ).filter(StockMovement.movement_type == movement_type)
        return int(q.scalar() or 0)

    return max(0, _total(MOVEMENT_RESERVATION) - _total(MOVEMENT_RELEASE))


def order_stock_entities(order_id: int) -> list[StockEntity]:
    """Entities the order has ever reserved against, in first-reserved order."""
    rows = (
        db.session.query(StockMovement.product_id, StockMovement.variation_id)
        .filter(
            StockMovement.order_id == order_id,
            StockMovement.movement_type == MOVEMENT_RESERVATION,
        )
        .order_by(StockMovement.id.asc())
        .all()
    )
    seen: list[StockEntity] = []
    for product_id, variation_id in rows:
        entity = StockEntity(product_id, variation_id)
        if entity not in seen:
            seen.append(entity)
    return seen


def list_movements(
    *,
    store_id: int | None = None,
    product_id: int | None = None,
    variation_id: int | None = None,
    order_id: int | None = None,
    movement_type: str | None = None,
    limit: int = 200,
) -> list[StockMovement]:
    if movement_type is not None and movement_type not in MOVEMENT_TYPES:
        raise StockError(f"Invalid movement_type. Must be one of: {', '.join(MOVEMENT_TYPES)}")

    q = db.session.query(StockMovement)
    if store_id is not None:
        q = q.filter(StockMovement.store_id == store_id)
    if product_id is not None:
        q = q.filter(StockMovement.product_id == product_id)
    if variation_id is not None:
        q = q.filter(StockMovement.variation_id == variation_id)
    if order_id is not None:
        q = q.filter(StockMovement.order_id == order_id)
    if movement_type is not None:
        q = q.filter(StockMovement.movement_type == movement_type)

    return q.order_by(StockMovement.id.asc()).limit(limit).all()


# =============================================================================
# WRITES (caller owns the transaction)
# =============================================================================

def reserve_stock(
    entity: StockEntity,
    order_id: int,
    qty: int,
    *,
    ttl_hours: int = DEFAULT_RESERVATION_TTL_HOURS,
    now: datetime | None = None,
) -> StockMovement:
    """
    Hold qty units for an order.

    The UPDATE only matches when available >= qty (or negative stock is
    allowed); zero matched rows means someone else got there first.

    Raises:
        InsufficientStock: not enough available
    """
    _require_positive(qty)
    target = _resolve(entity)
    model = target.model

    stmt = update(model).where(model.id == target.row_id)
    if not target.allow_negative:
        stmt = stmt.where(model.stock - model.reserved_stock >= qty)
    stmt = stmt.values(
        reserved_stock=model.reserved_stock + qty,
        version_id=model.version_id + 1,
    ).execution_options(synchronize_session="fetch")

    result = db.session.execute(stmt)
    stock, reserved = _counters(target)
    if result.rowcount == 0:
        raise InsufficientStock(target.label, qty, stock - reserved, details=entity.to_dict())

    now = normalize_utc(now) if now else utcnow()
    return _append(
        target,
        entity,
        movement_type=MOVEMENT_RESERVATION,
        quantity=qty,
        previous_stock=stock,
        new_stock=stock,
        order_id=order_id,
        expires_at=hours_from(now, ttl_hours),
    )


def release_stock(entity: StockEntity, order_id: int | None, qty: int, *, note: str | None = None) -> StockMovement:
    """Return qty reserved units to available; reserved_stock never drops below zero."""
    _require_positive(qty)
    target = _resolve(entity)
    model = target.model

    stmt = (
        update(model)
        .where(model.id == target.row_id)
        .values(
            reserved_stock=case(
                (model.reserved_stock >= qty, model.reserved_stock - qty),
                else_=0,
            ),
            version_id=model.version_id + 1,
        )
        .execution_options(synchronize_session="fetch")
    )
    db.session.execute(stmt)
    stock, _ = _counters(target)

    return _append(
        target,
        entity,
        movement_type=MOVEMENT_RELEASE,
        quantity=qty,
        previous_stock=stock,
        new_stock=stock,
        order_id=order_id,
        note=note,
    )


def commit_sale(entity: StockEntity, order_id: int, qty: int) -> StockMovement:
    """
    Consume qty units for a delivered order.

    IDEMPOTENT: a second call for the same (order, entity) returns the
    existing sale movement and changes nothing.

    On-hand drops by qty. Reserved drops by what this order still holds for
    the entity, so another order's reservation is never consumed. Any part
    of qty that was not reserved must be available (unless negative stock
    is allowed).

    Raises:
        InsufficientStock: the unreserved part is not available
    """
    _require_positive(qty)
    existing = _movement_filter(
        db.session.query(StockMovement), entity, order_id
    ).filter(StockMovement.movement_type == MOVEMENT_SALE).first()
    if existing is not None:
        return existing

    target = _resolve(entity)
    model = target.model

    reserved_part = min(outstanding_reservation(entity, order_id), qty)
    unreserved_part = qty - reserved_part

    stmt = update(model).where(model.id == target.row_id)
    if unreserved_part > 0 and not target.allow_negative:
        stmt = stmt.where(model.stock - model.reserved_stock >= unreserved_part)
    stmt = stmt.values(
        stock=model.stock - qty,
        reserved_stock=case(
            (model.reserved_stock >= reserved_part, model.reserved_stock - reserved_part),
            else_=0,
        ),
        version_id=model.version_id + 1,
    ).execution_options(synchronize_session="fetch")

    result = db.session.execute(stmt)
    stock, reserved = _counters(target)
    if result.rowcount == 0:
        raise InsufficientStock(target.label, qty, stock - reserved + reserved_part, details=entity.to_dict())

    return _append(
        target,
        entity,
        movement_type=MOVEMENT_SALE,
        quantity=qty,
        previous_stock=stock + qty,
        new_stock=stock,
        order_id=order_id,
    )


# =============================================================================
# STANDALONE UNITS OF WORK
# =============================================================================

def adjust_stock(entity: StockEntity, quantity_delta: int, *, note: str | None = None) -> StockMovement:
    """
    Stock intake (positive) or correction (negative).

    On-hand may not drop below what is reserved unless negative stock is allowed.
    """
    if quantity_delta is None or quantity_delta == 0:
        raise StockError("quantity_delta must be non-zero")

    def _op():
        begin_immediate()
        target = _resolve(entity)
        model = target.model

        stmt = update(model).where(model.id == target.row_id)
        if quantity_delta < 0 and not target.allow_negative:
            stmt = stmt.where(model.stock + quantity_delta >= model.reserved_stock)
        stmt = stmt.values(
            stock=model.stock + quantity_delta,
            version_id=model.version_id + 1,
        ).execution_options(synchronize_session="fetch")

        result = db.session.execute(stmt)
        stock, reserved = _counters(target)
        if result.rowcount == 0:
            raise InsufficientStock(target.label, -quantity_delta, stock - reserved, details=entity.to_dict())

        movement = _append(
            target,
            entity,
            movement_type=MOVEMENT_ADJUSTMENT,
            quantity=quantity_delta,
            previous_stock=stock - quantity_delta,
            new_stock=stock,
            note=note,
        )
        db.session.commit()
        return movement

    return run_with_retry(_op)


def release_order_reservations(order: Order, *, note: str | None = None) -> list[StockMovement]:
    """Release everything the order still holds; caller owns the transaction."""
    movements = []
    for entity in order_stock_entities(order.id):
        held = outstanding_reservation(entity, order.id)
        if held > 0:
            movements.append(release_stock(entity, order.id, held, note=note))
    return movements


def expire_reservations(now: datetime | None = None) -> list[int]:
    """
    Sweep: release reservations of pending orders whose hold has expired.

    Each order is handled in its own transaction under the order guard and
    row lock. Status and expiry are re-checked after locking, so an order
    confirmed or cancelled since the candidate scan is left alone.

    Returns:
        ids of the orders whose reservations were released
    """
    now = normalize_utc(now) if now else utcnow()

    candidate_ids = [
        row.id
        for row in db.session.query(Order.id)
        .filter(
            Order.status == "pending",
            Order.stock_reserved.is_(True),
            Order.reservation_expires_at.isnot(None),
            Order.reservation_expires_at < now,
        )
        .order_by(Order.id.asc())
        .all()
    ]
    db.session.rollback()

    released: list[int] = []
    for order_id in candidate_ids:
        with order_guard(order_id):
            def _op(order_id=order_id):
                begin_immediate()
                order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
                if (
                    order is None
                    or order.status != "pending"
                    or not order.stock_reserved
                    or order.reservation_expires_at is None
                    or normalize_utc(order.reservation_expires_at) >= now
                ):
                    db.session.rollback()
                    return False

                release_order_reservations(order, note="reservation expired")
                order.stock_reserved = False
                order.reservation_expires_at = None
                db.session.commit()
                return True

            if run_with_retry(_op):
                released.append(order_id)

    if released:
        logger.info("Expired stock reservations released for %s order(s): %s", len(released), released)
    return released
