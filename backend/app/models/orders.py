from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z


class Order(db.Model):
    """
    Storefront order.

    Lifecycle is owned by order_service: status only changes through
    transition_order(). Orders are never deleted; cancelled is terminal.

    items is a JSON snapshot of the cart lines at checkout:
        [{"line_id", "product_id", "variation_id", "name", "variation_label",
          "quantity", "unit_price_cents", "line_total_cents", "catalog_mode",
          "grade_mode"}]
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_store_status_created", "store_id", "status", "created_at"),
        db.Index("ix_orders_reservation_sweep", "stock_reserved", "reservation_expires_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    customer_name = db.Column(db.String(255), nullable=False)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(64), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    order_type = db.Column(db.String(16), nullable=False, default="retail")

    items = db.Column(db.JSON, nullable=False, default=list)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    stock_reserved = db.Column(db.Boolean, nullable=False, default=False)
    reservation_expires_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    store = db.relationship("Store", backref=db.backref("orders", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} status={self.status!r} store_id={self.store_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "customer_phone": self.customer_phone,
            "status": self.status,
            "order_type": self.order_type,
            "items": self.items or [],
            "total_amount_cents": self.total_amount_cents,
            "stock_reserved": self.stock_reserved,
            "reservation_expires_at": to_utc_z(self.reservation_expires_at),
            "notes": self.notes,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class OrderPayment(db.Model):
    """
    Latest known state of one gateway payment for an order.

    status is the gateway status mapped by payment_service.map_gateway_status:
    pending | confirmed | failed | refunded. gateway_status keeps the raw string.
    """
    __tablename__ = "order_payments"
    __table_args__ = (
        db.UniqueConstraint("order_id", "gateway_payment_id", name="uq_order_payments_order_gateway"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    gateway_payment_id = db.Column(db.String(128), nullable=False)
    gateway_status = db.Column(db.String(64), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    amount_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_method = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    order = db.relationship("Order", backref=db.backref("payments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "gateway_payment_id": self.gateway_payment_id,
            "gateway_status": self.gateway_status,
            "status": self.status,
            "amount_cents": self.amount_cents,
            "payment_method": self.payment_method,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class OrderEvent(db.Model):
    """
    Outbox row for an order status transition.

    Written in the same DB transaction as the transition; delivered afterwards
    by event_service. Delivery bookkeeping (delivered_at, attempts, last_error)
    is the only thing that changes after insert.
    """
    __tablename__ = "order_events"
    __table_args__ = (
        db.Index("ix_order_events_pending", "delivered_at", "delivery_attempts"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    old_status = db.Column(db.String(16), nullable=True)
    new_status = db.Column(db.String(16), nullable=False)
    payload = db.Column(db.JSON, nullable=False)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivery_attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.String(255), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "store_id": self.store_id,
            "old_status": self.old_status,
            "new_status": self.new_status,
            "payload": self.payload,
            "occurred_at": to_utc_z(self.occurred_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "delivery_attempts": self.delivery_attempts,
            "last_error": self.last_error,
        }
