# Overview: Flask API routes for the catalog; parses input and returns JSON responses.

# backend/stockpos/routes/products.py
"""
Catalog routes.

SECURITY: All routes require an identity.
- Listing and reading products: any role
- Creating, editing, stock overwrites and deletion: admin only
"""
from flask import Blueprint, current_app, request

from ..models import Product, Stock
from ..services import catalog_service
from ..services.catalog_service import CatalogError, ProductNotFoundError
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    enforce_quantity,
    ValidationError,
)
from ..decorators import require_auth, require_role
from ..identity import ROLE_ADMIN

PRODUCT_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={"name", "price_cents", "min_stock", "initial_stock"},
    required_on_create={"name", "price_cents"},
)

PRODUCT_EDIT_POLICY = ModelValidationPolicy(
    writable_fields={"name", "price_cents", "min_stock"},
)

STOCK_POLICY = ModelValidationPolicy(
    writable_fields={"quantity"},
    required_on_create={"quantity"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes"}


@products_bp.get("/")
@require_auth
def list_products_route():
    """
    List catalog products with current stock and status.

    Query params:
    - search: str (optional) - case-insensitive name filter
    - include_inactive: bool (optional) - include deactivated products
    """
    products = catalog_service.list_products(
        search=request.args.get("search"),
        include_inactive=_truthy(request.args.get("include_inactive")),
    )
    return {"items": [p.to_dict() for p in products], "count": len(products)}, 200


@products_bp.post("/")
@require_auth
@require_role(ROLE_ADMIN)
def create_product_route():
    """
    Create a product together with its stock row.

    Body: name, price_cents, min_stock (default DEFAULT_MIN_STOCK), initial_stock (default 0)
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_CREATE_POLICY, partial=False)
        enforce_rules_product(patch)
        initial_stock = enforce_quantity(patch.pop("initial_stock", 0), "initial_stock")
        product = catalog_service.create_product(
            name=patch["name"],
            price_cents=patch["price_cents"],
            min_stock=patch.get("min_stock", current_app.config["DEFAULT_MIN_STOCK"]),
            initial_stock=initial_stock,
        )
    except ValidationError as e:
        return {"error": str(e)}, 400

    return {"product": product.to_dict()}, 201


@products_bp.get("/<int:product_id>")
@require_auth
def get_product_route(product_id: int):
    try:
        product = catalog_service.get_product(product_id)
    except ProductNotFoundError:
        return {"error": "Product not found"}, 404
    return {"product": product.to_dict()}, 200


@products_bp.patch("/<int:product_id>")
@require_auth
@require_role(ROLE_ADMIN)
def edit_product_route(product_id: int):
    """
    Edit catalog facts: price_cents, min_stock, name. Stock is not writable here.
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_EDIT_POLICY, partial=True)
        enforce_rules_product(patch)
        product = catalog_service.edit_product(product_id, **patch)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except ProductNotFoundError:
        return {"error": "Product not found"}, 404
    except CatalogError as e:
        return {"error": str(e)}, 409

    return {"product": product.to_dict()}, 200


@products_bp.put("/<int:product_id>/stock")
@require_auth
@require_role(ROLE_ADMIN)
def adjust_stock_route(product_id: int):
    """
    Overwrite the stock quantity (manual count / replenishment).

    Body: {"quantity": <non-negative int>}
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Stock, payload=payload, policy=STOCK_POLICY, partial=False)
        stock = catalog_service.adjust_stock(product_id, patch["quantity"])
    except ValidationError as e:
        return {"error": str(e)}, 400
    except ProductNotFoundError:
        return {"error": "Product not found"}, 404
    except CatalogError as e:
        return {"error": str(e)}, 409
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return {"error": "Internal server error"}, 500

    return {"stock": stock.to_dict()}, 200


@products_bp.delete("/<int:product_id>")
@require_auth
@require_role(ROLE_ADMIN)
def delete_product_route(product_id: int):
    """
    Delete a product; products with sale history are deactivated instead.
    """
    try:
        outcome = catalog_service.delete_product(product_id)
    except ProductNotFoundError:
        return {"error": "Product not found"}, 404
    except Exception:
        current_app.logger.exception("Failed to delete product")
        return {"error": "Internal server error"}, 500

    return {"ok": True, "result": outcome}, 200
