# Overview: Service-layer operations for order payments; gateway verification and payment status projection.

"""
Order Payment Status

WHY: The storefront does not take payments itself. A gateway reports
payments per order; this module records what the gateway said and projects
a single payment status for the order. The projection is a lookup over the
recorded payments and never changes Order.status.

GATEWAY STATUS -> PAYMENT STATUS:
- approved, authorized                     -> confirmed
- pending, in_process, in_mediation        -> pending
- rejected, cancelled                      -> failed
- refunded, charged_back                   -> refunded
- anything else                            -> pending

ORDER PAYMENT STATUS (project_payment_status):
- order cancelled                          -> cancelled
- confirmed total == 0                     -> pending
- confirmed total <  order total           -> partial
- confirmed total == order total           -> paid
- confirmed total >  order total           -> overpaid
"""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Callable, Iterable

import httpx
from flask import current_app

from ..errors import DomainError, NotFoundError
from ..extensions import db
from ..models import Order, OrderPayment
from .concurrency import lock_for_update, run_with_retry

logger = logging.getLogger(__name__)


class PaymentError(DomainError):
    """Raised for payment verification errors."""
    code = "PAYMENT_ERROR"


# =============================================================================
# STATUS CONSTANTS
# =============================================================================

PAYMENT_PENDING = "pending"
PAYMENT_CONFIRMED = "confirmed"
PAYMENT_FAILED = "failed"
PAYMENT_REFUNDED = "refunded"

ORDER_PAYMENT_PENDING = "pending"
ORDER_PAYMENT_PARTIAL = "partial"
ORDER_PAYMENT_PAID = "paid"
ORDER_PAYMENT_OVERPAID = "overpaid"
ORDER_PAYMENT_CANCELLED = "cancelled"

_GATEWAY_STATUS_MAP = {
    "approved": PAYMENT_CONFIRMED,
    "authorized": PAYMENT_CONFIRMED,
    "pending": PAYMENT_PENDING,
    "in_process": PAYMENT_PENDING,
    "in_mediation": PAYMENT_PENDING,
    "rejected": PAYMENT_FAILED,
    "cancelled": PAYMENT_FAILED,
    "refunded": PAYMENT_REFUNDED,
    "charged_back": PAYMENT_REFUNDED,
}

Verifier = Callable[[str, int], dict]


def map_gateway_status(gateway_status: str | None) -> str:
    if not gateway_status:
        return PAYMENT_PENDING
    return _GATEWAY_STATUS_MAP.get(gateway_status.strip().lower(), PAYMENT_PENDING)


def _field(payment: Any, key: str):
    if isinstance(payment, dict):
        return payment.get(key)
    return getattr(payment, key, None)


def confirmed_total_cents(payments: Iterable[Any]) -> int:
    return sum(
        int(_field(p, "amount_cents") or 0)
        for p in payments
        if _field(p, "status") == PAYMENT_CONFIRMED
    )


def project_payment_status(order_status: str, total_amount_cents: int, payments: Iterable[Any]) -> str:
    """Single payment status for an order. Accepts OrderPayment rows or dicts."""
    if order_status == "cancelled":
        return ORDER_PAYMENT_CANCELLED

    paid = confirmed_total_cents(payments)
    if paid <= 0:
        return ORDER_PAYMENT_PENDING
    if paid > total_amount_cents:
        return ORDER_PAYMENT_OVERPAID
    if paid == total_amount_cents:
        return ORDER_PAYMENT_PAID
    return ORDER_PAYMENT_PARTIAL


def amount_to_cents(amount: Any) -> int:
    """Gateway amounts are decimal currency units; half-up to the cent."""
    if amount is None:
        return 0
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError) as exc:
        raise PaymentError("Invalid transaction_amount from gateway", details={"amount": str(amount)}) from exc
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


# =============================================================================
# GATEWAY COLLABORATOR
# =============================================================================

class HttpPaymentVerifier:
    """
    Looks a payment up on the gateway:
        GET {base_url}/v1/payments/{payment_id}
    and returns the gateway JSON ({"status", "transaction_amount", ...}).
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_config(cls) -> "HttpPaymentVerifier":
        base_url = current_app.config.get("PAYMENT_GATEWAY_URL")
        if not base_url:
            raise PaymentError("Payment gateway is not configured")
        return cls(base_url, current_app.config.get("PAYMENT_GATEWAY_TOKEN"))

    def __call__(self, payment_id: str, order_id: int) -> dict:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.get(f"{self.base_url}/v1/payments/{payment_id}", headers=headers)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "Gateway lookup for payment %s (order %s) failed: %s",
                payment_id, order_id, exc.response.status_code,
            )
            if exc.response.status_code == 404:
                raise NotFoundError("Payment not found on gateway", details={"payment_id": payment_id}) from exc
            raise PaymentError(
                "Payment gateway error",
                details={"payment_id": payment_id, "status_code": exc.response.status_code},
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("Gateway lookup for payment %s (order %s) failed: %s", payment_id, order_id, exc)
            raise PaymentError("Payment gateway unavailable", details={"payment_id": payment_id}) from exc


# =============================================================================
# PERSISTENCE
# =============================================================================

def record_payment_verification(order_id: int, gateway_payment_id: str, gateway_response: dict) -> OrderPayment:
    """
    Store the gateway's view of one payment (insert or update by gateway id).

    Raises:
        NotFoundError: order does not exist
        PaymentError: malformed gateway response
    """
    if not gateway_payment_id:
        raise PaymentError("payment_id is required")
    if not isinstance(gateway_response, dict):
        raise PaymentError("Gateway response must be an object")

    gateway_status = str(gateway_response.get("status") or "pending")
    amount_cents = amount_to_cents(gateway_response.get("transaction_amount"))
    method = gateway_response.get("payment_method_id") or gateway_response.get("payment_method")

    def _op():
        order = db.session.query(Order).filter_by(id=order_id).first()
        if order is None:
            raise NotFoundError("Order not found", details={"order_id": order_id})

        payment = lock_for_update(
            db.session.query(OrderPayment).filter_by(order_id=order_id, gateway_payment_id=str(gateway_payment_id))
        ).first()
        if payment is None:
            payment = OrderPayment(order_id=order_id, gateway_payment_id=str(gateway_payment_id))
            db.session.add(payment)

        payment.gateway_status = gateway_status
        payment.status = map_gateway_status(gateway_status)
        payment.amount_cents = amount_cents
        payment.payment_method = method
        db.session.commit()
        return payment

    payment = run_with_retry(_op)
    logger.info(
        "Payment %s for order %s recorded as %s (%s)",
        gateway_payment_id, order_id, payment.status, gateway_status,
    )
    return payment


def get_order_payment_status(order_id: int) -> dict:
    order = db.session.query(Order).filter_by(id=order_id).first()
    if order is None:
        raise NotFoundError("Order not found", details={"order_id": order_id})

    payments = (
        db.session.query(OrderPayment)
        .filter_by(order_id=order_id)
        .order_by(OrderPayment.id.asc())
        .all()
    )
    paid = confirmed_total_cents(payments)
    return {
        "order_id": order.id,
        "order_status": order.status,
        "payment_status": project_payment_status(order.status, order.total_amount_cents, payments),
        "total_amount_cents": order.total_amount_cents,
        "paid_cents": paid,
        "balance_cents": order.total_amount_cents - paid,
        "payments": [p.to_dict() for p in payments],
    }


def verify_order_payment(order_id: int, payment_id: str, verifier: Verifier | None = None) -> dict:
    """Ask the gateway about a payment, record the answer and return the order's payment status."""
    if db.session.query(Order.id).filter_by(id=order_id).first() is None:
        raise NotFoundError("Order not found", details={"order_id": order_id})

    verifier = verifier or HttpPaymentVerifier.from_config()
    gateway_response = verifier(str(payment_id), order_id)
    payment = record_payment_verification(order_id, str(payment_id), gateway_response)

    result = get_order_payment_status(order_id)
    result["payment"] = payment.to_dict()
    return result
