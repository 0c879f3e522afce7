# Overview: Flask API routes for orders; parses input and returns JSON responses.

# backend/app/routes/orders.py
from flask import Blueprint, current_app, jsonify, request

from ..errors import DomainError
from ..services import cart_service, order_service
from ..services.event_service import list_order_events
from ..validation import ValidationError, optional_int, require_choice, require_int, require_text
from .cart import parse_line_request


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.post("")
def create_order_route():
    """
    Checkout.

    Lines are re-priced server-side from the selections; client prices are ignored.

    Body: {store_id, customer_name, customer_email?, customer_phone?, notes?,
           status? (pending|confirmed), items: [selection, ...]}
    """
    try:
        data = request.get_json(silent=True) or {}
        store_id = require_int(data, "store_id", minimum=1)
        customer_name = require_text(data, "customer_name")
        status = require_choice(data, "status", order_service.CHECKOUT_STATUSES, default="pending")

        raw_items = data.get("items")
        if not isinstance(raw_items, list) or not raw_items:
            raise ValidationError("items must be a non-empty list")

        selections = [parse_line_request(item if isinstance(item, dict) else {}) for item in raw_items]
        cart_quantity = sum(s["quantity"] for s in selections)
        lines = [
            cart_service.build_line_for_store(store_id, cart_quantity=cart_quantity, **selection)
            for selection in selections
        ]

        order = order_service.create_order(
            store_id,
            lines,
            customer_name=customer_name,
            customer_email=data.get("customer_email"),
            customer_phone=data.get("customer_phone"),
            status=status,
            notes=data.get("notes"),
        )
        return jsonify({"order": order.to_dict()}), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
def list_orders_route():
    try:
        store_id = require_int(request.args, "store_id", minimum=1)
        limit = optional_int(request.args, "limit", minimum=1) or 100
        orders = order_service.list_orders(store_id, status=request.args.get("status"), limit=min(limit, 500))
        return jsonify({"items": [o.to_dict() for o in orders], "count": len(orders)}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id)
        return jsonify({
            "order": order.to_dict(),
            "events": [e.to_dict() for e in list_order_events(order_id)],
        }), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/status")
def transition_order_route(order_id: int):
    """
    Move an order to a new status.

    Body: {"status": "confirmed" | "preparing" | "shipping" | "delivered" | "cancelled"}
    """
    try:
        data = request.get_json(silent=True) or {}
        new_status = require_choice(data, "status", order_service.ORDER_STATUSES)
        order = order_service.transition_order(order_id, new_status)
        return jsonify({"order": order.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to transition order")
        return jsonify({"error": "Internal server error"}), 500
