# Overview: Flask API routes for cart lines; parses input and returns JSON responses.

# backend/app/routes/cart.py
from flask import Blueprint, current_app, jsonify, request

from ..errors import DomainError
from ..services import cart_service
from ..services.pricing_service import CATALOG_MODES, CATALOG_RETAIL, GRADE_FULL, GRADE_MODES, next_tier_hint
from ..validation import optional_int, parse_custom_selection, require_choice, require_int


cart_bp = Blueprint("cart", __name__, url_prefix="/api/cart")


def parse_line_request(data: dict) -> dict:
    """Shared by cart and checkout: a selection as build_line_for_store arguments."""
    return {
        "product_id": require_int(data, "product_id", minimum=1),
        "variation_id": optional_int(data, "variation_id", minimum=1),
        "catalog_mode": require_choice(data, "catalog_mode", CATALOG_MODES, default=CATALOG_RETAIL),
        "quantity": require_int(data, "quantity", minimum=1),
        "grade_mode": require_choice(data, "grade_mode", GRADE_MODES, default=GRADE_FULL),
        "custom_selection": parse_custom_selection(data.get("custom_selection")),
    }


@cart_bp.post("/lines")
def build_line_route():
    """
    Price a selection into a cart line.

    Body: {store_id, product_id, variation_id?, catalog_mode, quantity,
           grade_mode?, custom_selection?, cart_quantity?}
    """
    try:
        data = request.get_json(silent=True) or {}
        store_id = require_int(data, "store_id", minimum=1)
        selection = parse_line_request(data)
        cart_quantity = optional_int(data, "cart_quantity", minimum=1)

        line = cart_service.build_line_for_store(store_id, cart_quantity=cart_quantity, **selection)

        hint = None
        if line.grade_mode is None:
            _, _, tiers = cart_service.load_pricing_inputs(store_id, line.product_id, line.variation_id)
            hint = next_tier_hint(tiers, cart_quantity or line.quantity, line.unit_price_cents)

        return jsonify({"line": line.to_dict(), "next_tier": hint}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to build cart line")
        return jsonify({"error": "Internal server error"}), 500
