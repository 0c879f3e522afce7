# Overview: Flask API routes for the stock ledger; parses input and returns JSON responses.

# backend/app/routes/stock.py
from flask import Blueprint, current_app, jsonify, request

from ..errors import DomainError
from ..services import stock_ledger_service
from ..time_utils import parse_iso_datetime
from ..validation import ValidationError, optional_int


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


@stock_bp.get("/movements")
def list_movements_route():
    try:
        limit = optional_int(request.args, "limit", minimum=1) or 200
        movements = stock_ledger_service.list_movements(
            store_id=optional_int(request.args, "store_id"),
            product_id=optional_int(request.args, "product_id"),
            variation_id=optional_int(request.args, "variation_id"),
            order_id=optional_int(request.args, "order_id"),
            movement_type=request.args.get("movement_type"),
            limit=min(limit, 1000),
        )
        return jsonify({"items": [m.to_dict() for m in movements], "count": len(movements)}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list stock movements")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.post("/expire-reservations")
def expire_reservations_route():
    """
    Run the reservation expiry sweep.

    Body (optional): {"now": ISO-8601}; defaults to server time.
    """
    try:
        data = request.get_json(silent=True) or {}
        try:
            now = parse_iso_datetime(data.get("now"))
        except ValueError:
            raise ValidationError("now must be an ISO-8601 datetime")
        released = stock_ledger_service.expire_reservations(now=now)
        return jsonify({"released_order_ids": released, "count": len(released)}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to expire reservations")
        return jsonify({"error": "Internal server error"}), 500
