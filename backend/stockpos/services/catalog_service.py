# backend/stockpos/services/catalog_service.py
"""
Catalog administration: products and their stock rows.

Plain request/response operations; no interactive flows. Only
adjust_stock (and product creation / deletion) touch Stock, and they
serialize against checkouts through the same write lock the checkout
engine takes.

Stock invariants:
- Every product has exactly one Stock row, created with it.
- adjust_stock is an unconditional overwrite to a non-negative value.
- A product referenced by sale history is deactivated, never deleted.
"""
from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import Product, SaleLine, Stock
from ..notifications import (
    REASON_ADJUSTMENT,
    REASON_PRODUCT_CREATED,
    REASON_PRODUCT_DELETED,
    notify_stock_changed,
)
from ..validation import ValidationError, enforce_quantity, enforce_rules_product
from stockpos.time_utils import utcnow
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry

PRODUCT_MUTABLE_FIELDS = {"name", "price_cents", "min_stock"}

DELETED = "deleted"
DEACTIVATED = "deactivated"


class CatalogError(Exception):
    """Raised when a catalog operation cannot be applied."""


class ProductNotFoundError(CatalogError):
    def __init__(self, product_id: int):
        super().__init__(f"Product {product_id} not found")
        self.product_id = product_id


def _get_product(product_id: int, *, lock: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise ProductNotFoundError(product_id)
    return product


def get_product(product_id: int) -> Product:
    return _get_product(product_id)


def list_products(*, search: str | None = None, include_inactive: bool = False) -> list[Product]:
    """
    Catalog listing joined with stock, most recently changed stock first.
    """
    query = db.session.query(Product).outerjoin(Stock, Stock.product_id == Product.id)
    if not include_inactive:
        query = query.filter(Product.is_active.is_(True))
    if search:
        pattern = f"%{search.strip().lower()}%"
        query = query.filter(func.lower(Product.name).like(pattern))
    return query.order_by(
        Stock.updated_at.desc(),
        Product.id.desc(),
    ).all()


def create_product(
    *,
    name: str,
    price_cents: int,
    min_stock: int = 5,
    initial_stock: int = 0,
) -> Product:
    """Create a product and its stock row in one transaction."""
    patch = {"name": name, "price_cents": price_cents, "min_stock": min_stock}
    enforce_rules_product(patch)
    initial_stock = enforce_quantity(initial_stock, "initial_stock")

    now = utcnow()
    product = Product(
        name=name.strip(),
        price_cents=price_cents,
        min_stock=enforce_quantity(min_stock, "min_stock"),
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    product.stock = Stock(quantity=initial_stock, updated_at=now)

    db.session.add(product)
    db.session.commit()

    notify_stock_changed([product.id], reason=REASON_PRODUCT_CREATED)
    return product


def edit_product(
    product_id: int,
    *,
    price_cents: int | None = None,
    min_stock: int | None = None,
    name: str | None = None,
) -> Product:
    """
    Change catalog facts (price, threshold, name). Never touches stock.
    """
    patch = {
        k: v
        for k, v in (("price_cents", price_cents), ("min_stock", min_stock), ("name", name))
        if v is not None
    }
    if not patch:
        raise ValidationError("Nothing to update: provide price_cents, min_stock or name")
    enforce_rules_product(patch)

    def _op():
        product = _get_product(product_id)
        if not product.is_active:
            raise CatalogError(f"Product {product_id} is inactive")
        for k, v in patch.items():
            if k not in PRODUCT_MUTABLE_FIELDS:
                continue
            setattr(product, k, v.strip() if isinstance(v, str) else v)
        db.session.commit()
        return product

    return run_with_retry(_op)


def adjust_stock(product_id: int, new_quantity: int) -> Stock:
    """
    Overwrite a product's stock (manual count / replenishment).

    Takes the same write lock as checkout so an overwrite is ordered
    strictly before or after any concurrent sale.
    """
    new_quantity = enforce_quantity(new_quantity, "quantity")

    def _op():
        try:
            begin_write_transaction()
            product = _get_product(product_id)
            if not product.is_active:
                raise CatalogError(f"Product {product_id} is inactive")

            stock = (
                lock_for_update(db.session.query(Stock).filter_by(product_id=product_id))
                .populate_existing()
                .first()
            )
            if stock is None:
                stock = Stock(product_id=product_id, quantity=new_quantity, updated_at=utcnow())
                db.session.add(stock)
            else:
                stock.quantity = new_quantity
                stock.updated_at = utcnow()

            db.session.commit()
            return stock
        except CatalogError:
            db.session.rollback()
            raise

    stock = run_with_retry(_op)
    notify_stock_changed([product_id], reason=REASON_ADJUSTMENT)
    return stock


def delete_product(product_id: int) -> str:
    """
    Remove a product from the catalog.

    Hard delete (with its stock row) when no sale references it; otherwise
    deactivate so the ledger keeps a valid reference. Returns DELETED or
    DEACTIVATED.
    """
    def _op():
        try:
            begin_write_transaction()
            product = _get_product(product_id, lock=True)
        except CatalogError:
            db.session.rollback()
            raise

        # Checkout locks Stock rows, so the reference check below runs after
        # any in-flight sale of this product has committed.
        lock_for_update(db.session.query(Stock).filter_by(product_id=product_id)).first()

        referenced = db.session.query(
            db.session.query(SaleLine.id).filter(SaleLine.product_id == product_id).exists()
        ).scalar()

        if referenced:
            product.is_active = False
            outcome = DEACTIVATED
        else:
            db.session.delete(product)
            outcome = DELETED

        db.session.commit()
        return outcome

    outcome = run_with_retry(_op)
    notify_stock_changed([product_id], reason=REASON_PRODUCT_DELETED)
    return outcome

