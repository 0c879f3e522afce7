# Overview: Flask API routes for catalog operations; parses input and returns JSON responses.

# backend/app/routes/products.py
from flask import Blueprint, current_app, jsonify, request

from ..errors import DomainError
from ..services import products_service
from ..services.stock_ledger_service import StockEntity, adjust_stock, get_stock_summary
from ..validation import ValidationError, optional_int, require_int


products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
def list_products_route():
    try:
        store_id = require_int(request.args, "store_id", minimum=1)
        include_inactive = request.args.get("include_inactive", "false").lower() == "true"
        products = products_service.list_products(store_id, include_inactive=include_inactive)
        return jsonify({"items": [p.to_dict() for p in products], "count": len(products)}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list products")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.post("")
def create_product_route():
    try:
        data = request.get_json(silent=True) or {}
        store_id = require_int(data, "store_id", minimum=1)
        payload = {k: v for k, v in data.items() if k != "store_id"}
        product = products_service.create_product(store_id, payload)
        return jsonify({"product": product.to_dict()}), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>")
def get_product_route(product_id: int):
    try:
        return jsonify({"product": products_service.get_product_detail(product_id)}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.patch("/<int:product_id>")
def update_product_route(product_id: int):
    try:
        data = request.get_json(silent=True) or {}
        product = products_service.update_product(product_id, data)
        return jsonify({"product": product.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.post("/<int:product_id>/variations")
def create_variation_route(product_id: int):
    try:
        data = request.get_json(silent=True) or {}
        variation = products_service.create_variation(product_id, data)
        return jsonify({"variation": variation.to_dict()}), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create variation")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.put("/<int:product_id>/price-tiers")
def replace_price_tiers_route(product_id: int):
    try:
        data = request.get_json(silent=True) or {}
        tiers = products_service.replace_price_tiers(product_id, data.get("tiers"))
        return jsonify({"price_tiers": [t.to_dict() for t in tiers]}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to replace price tiers")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.post("/<int:product_id>/stock")
def adjust_stock_route(product_id: int):
    """
    Stock intake or correction.

    Body: {"quantity_delta": int (non-zero), "variation_id": int?, "note": str?}
    """
    try:
        data = request.get_json(silent=True) or {}
        delta = require_int(data, "quantity_delta")
        if delta == 0:
            raise ValidationError("quantity_delta must be non-zero")
        entity = StockEntity(product_id, optional_int(data, "variation_id", minimum=1))
        movement = adjust_stock(entity, delta, note=data.get("note"))
        return jsonify({
            "movement": movement.to_dict(),
            "stock": get_stock_summary(entity),
        }), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500
