# Overview: Flask API routes for order payments; parses input and returns JSON responses.

# backend/app/routes/payments.py
from flask import Blueprint, current_app, jsonify, request

from ..errors import DomainError
from ..services import payment_service
from ..validation import require_text


payments_bp = Blueprint("payments", __name__, url_prefix="/api/orders")


@payments_bp.post("/<int:order_id>/payments/verify")
def verify_payment_route(order_id: int):
    """
    Verify a gateway payment for an order and record it.

    Body: {"payment_id": str}
    """
    try:
        data = request.get_json(silent=True) or {}
        payment_id = require_text(data, "payment_id", max_length=128)
        result = payment_service.verify_order_payment(order_id, payment_id)
        return jsonify(result), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to verify payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/<int:order_id>/payment-status")
def payment_status_route(order_id: int):
    try:
        return jsonify(payment_service.get_order_payment_status(order_id)), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load payment status")
        return jsonify({"error": "Internal server error"}), 500
