# Overview: Flask API routes for checkout and the sale ledger.

# backend/stockpos/routes/sales.py
"""Checkout and sale read-back routes."""

from flask import Blueprint, current_app, g, jsonify, request

from ..services import checkout_service
from ..services.checkout_service import (
    CheckoutError,
    InsufficientStockError,
    InvalidLineError,
    StoreUnavailableError,
)
from ..decorators import require_auth
from ..time_utils import date_range
from ..validation import coerce_int


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")

RETRY_AFTER_SECONDS = 1


def _checkout_error_response(exc: CheckoutError):
    if isinstance(exc, StoreUnavailableError):
        response = jsonify(exc.to_dict())
        response.status_code = 503
        response.headers["Retry-After"] = str(RETRY_AFTER_SECONDS)
        return response
    if isinstance(exc, InsufficientStockError):
        return jsonify(exc.to_dict()), 409
    return jsonify(exc.to_dict()), 400


@sales_bp.post("/")
@require_auth
def record_sale_route():
    """
    Check out a cart.

    Body: {"lines": [{"product_id": 1, "quantity": 2}, ...]}

    Any authenticated user may check out. The sale is attributed to the
    caller's identity, never to a user id in the body.
    """
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return _checkout_error_response(InvalidLineError("request body must be a JSON object"))

    try:
        sale = checkout_service.record_sale(g.identity.user_id, data.get("lines"))
    except CheckoutError as e:
        return _checkout_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record sale")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"sale_id": sale.id, "sale": sale.to_dict()}), 201


@sales_bp.get("/")
@require_auth
def list_sales_route():
    """
    List sales, newest first.

    Staff see their own sales. Admins see everyone's, or one user's via ?user_id=.
    Query params: start, end (YYYY-MM-DD, local days, both inclusive), limit, offset.
    """
    if g.identity.is_admin:
        user_id = request.args.get("user_id") or None
    else:
        user_id = g.identity.user_id

    start = request.args.get("start")
    end = request.args.get("end")

    try:
        rng = None
        if start or end:
            rng = date_range(
                start,
                end,
                current_app.config["STORE_TIMEZONE"],
                default_days=current_app.config["REPORT_DEFAULT_DAYS"],
            )
        limit = coerce_int(request.args.get("limit", "50"), "limit")
        offset = coerce_int(request.args.get("offset", "0"), "offset")
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    sales = checkout_service.list_sales(user_id=user_id, rng=rng, limit=limit, offset=offset)
    return jsonify({
        "items": [s.to_dict(include_lines=False) for s in sales],
        "count": len(sales),
    }), 200


@sales_bp.get("/<int:sale_id>")
@require_auth
def get_sale_route(sale_id: int):
    """Get a sale with its lines. Staff may only read their own sales."""
    sale = checkout_service.get_sale(sale_id)
    if not sale:
        return jsonify({"error": "Sale not found"}), 404

    if not g.identity.is_admin and sale.user_id != g.identity.user_id:
        return jsonify({"error": "Sale not found"}), 404

    return jsonify({"sale": sale.to_dict()}), 200
