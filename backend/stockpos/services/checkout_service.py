"""
Checkout engine: commits a cart as one atomic sale.

Invariants (authoritative):
- A Sale exists iff every one of its stock decrements was applied, in the
  same DB transaction. Any failure leaves stock and the ledger untouched.
- Stock never goes negative, under any interleaving of concurrent checkouts:
  the unit of work takes the write lock first (BEGIN IMMEDIATE on SQLite,
  SELECT ... FOR UPDATE elsewhere, rows locked in product id order), checks
  every line, and decrements with a conditional UPDATE (quantity >= qty).
  A conditional UPDATE that matches no row is a lost race and the whole
  unit is retried.
- Unit prices are read from the catalog at commit time and frozen on the
  sale lines. sale.total_cents == sum(line.line_total_cents).
- Input from the cart is never trusted: quantities and product ids are
  re-validated here against live data.
"""

from __future__ import annotations

from typing import Iterable, Mapping

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import DBAPIError, TimeoutError as PoolTimeoutError

from ..extensions import db
from ..models import Product, Sale, SaleLine, Stock
from ..notifications import REASON_SALE, notify_stock_changed
from ..validation import ValidationError, coerce_int
from stockpos.time_utils import DateRange, utcnow
from .concurrency import (
    RETRYABLE_ERRORS,
    ConcurrencyConflict,
    begin_write_transaction,
    lock_for_update,
    run_with_retry,
)


class CheckoutError(Exception):
    """Raised for checkout failures. No stock or sale was written."""
    code = "CHECKOUT_FAILED"
    retryable = False

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": str(self), "code": self.code, "details": self.details}


class EmptyCartError(CheckoutError):
    code = "EMPTY_CART"

    def __init__(self, message: str = "Cart is empty"):
        super().__init__(message)


class InvalidLineError(CheckoutError):
    code = "INVALID_LINE"


class InvalidQuantityError(InvalidLineError):
    code = "INVALID_QUANTITY"


class UnknownProductError(CheckoutError):
    code = "UNKNOWN_PRODUCT"

    def __init__(self, product_id: int):
        super().__init__(f"Product {product_id} not found", details={"product_id": product_id})
        self.product_id = product_id


class InsufficientStockError(CheckoutError):
    """
    At least one line asks for more than is in stock.

    product_id / requested / available describe the first short line in
    cart order; details["items"] lists every short line.
    """
    code = "INSUFFICIENT_STOCK"

    def __init__(self, items: list[dict]):
        first = items[0]
        self.product_id = first["product_id"]
        self.requested = first["requested_quantity"]
        self.available = first["available"]
        super().__init__(
            f"Insufficient stock for product {self.product_id}: "
            f"requested {self.requested}, available {self.available}",
            details={
                "product_id": self.product_id,
                "requested_quantity": self.requested,
                "available": self.available,
                "items": items,
            },
        )


class StoreUnavailableError(CheckoutError):
    """Transient store failure; the caller may retry with the same cart."""
    code = "STORE_UNAVAILABLE"
    retryable = True


def normalize_lines(lines: Iterable | None) -> list[tuple[int, int]]:
    """
    Validate checkout lines before touching the store.

    Accepts (product_id, quantity) pairs or mappings with product_id and
    quantity (alias qty). Repeated products are merged, first-seen order kept.
    """
    if lines is None:
        raise EmptyCartError()
    if isinstance(lines, (str, bytes, Mapping)):
        raise InvalidLineError("lines must be a list")

    lines = list(lines)
    if not lines:
        raise EmptyCartError()

    totals: dict[int, int] = {}
    for index, raw in enumerate(lines, start=1):
        if isinstance(raw, Mapping):
            product_id = raw.get("product_id")
            quantity = raw.get("quantity", raw.get("qty"))
        else:
            try:
                product_id, quantity = raw
            except (TypeError, ValueError):
                raise InvalidLineError(
                    f"line {index} must be a (product_id, quantity) pair",
                    details={"line": index},
                )

        if product_id is None:
            raise InvalidLineError(f"line {index}: product_id required", details={"line": index})
        try:
            product_id = coerce_int(product_id, "product_id")
        except ValidationError as exc:
            raise InvalidLineError(f"line {index}: {exc}", details={"line": index})

        if quantity is None:
            raise InvalidQuantityError(f"line {index}: quantity required", details={"line": index})
        try:
            quantity = coerce_int(quantity, "quantity")
        except ValidationError as exc:
            raise InvalidQuantityError(f"line {index}: {exc}", details={"line": index})
        if quantity < 1:
            raise InvalidQuantityError(
                f"line {index}: quantity must be a positive integer",
                details={"line": index, "product_id": product_id, "quantity": quantity},
            )

        totals[product_id] = totals.get(product_id, 0) + quantity

    return list(totals.items())


def _record_sale_locked(user_id: str, requested: list[tuple[int, int]]) -> Sale:
    begin_write_transaction()

    quantities = dict(requested)
    product_ids = sorted(quantities)

    products = {
        p.id: p
        for p in db.session.query(Product)
        .filter(Product.id.in_(product_ids))
        .populate_existing()
        .all()
    }
    for product_id, _ in requested:
        product = products.get(product_id)
        if product is None or not product.is_active:
            raise UnknownProductError(product_id)

    stocks = {
        s.product_id: s
        for s in lock_for_update(
            db.session.query(Stock)
            .filter(Stock.product_id.in_(product_ids))
            .order_by(Stock.product_id.asc())
        )
        .populate_existing()
        .all()
    }

    short = []
    for product_id, qty in requested:
        stock = stocks.get(product_id)
        if stock is None:
            current_app.logger.warning("Product %s has no stock row; treating as 0 on hand", product_id)
        available = stock.quantity if stock is not None else 0
        if qty > available:
            short.append({
                "product_id": product_id,
                "name": products[product_id].name,
                "requested_quantity": qty,
                "available": available,
            })
    if short:
        raise InsufficientStockError(short)

    now = utcnow()
    for product_id in product_ids:
        qty = quantities[product_id]
        result = db.session.execute(
            update(Stock)
            .where(Stock.product_id == product_id, Stock.quantity >= qty)
            .values(
                quantity=Stock.quantity - qty,
                updated_at=now,
                version_id=Stock.version_id + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrencyConflict(f"stock for product {product_id} changed during checkout")
        db.session.expire(stocks[product_id])

    sale = Sale(user_id=user_id, created_at=now, total_cents=0)
    total = 0
    for product_id, qty in requested:
        unit_price = products[product_id].price_cents
        line_total = unit_price * qty
        sale.lines.append(SaleLine(
            product_id=product_id,
            quantity=qty,
            unit_price_cents=unit_price,
            line_total_cents=line_total,
        ))
        total += line_total
    sale.total_cents = total

    db.session.add(sale)
    db.session.flush()
    return sale


def record_sale(user_id, lines) -> Sale:
    """
    Commit a checkout: decrement stock for every line and append the sale.

    All-or-nothing. Raises EmptyCartError / InvalidLineError before any store
    access; UnknownProductError or InsufficientStockError with no effects;
    StoreUnavailableError when the store fails or retries are exhausted.
    """
    user_id = str(user_id).strip() if user_id is not None else ""
    if not user_id:
        raise CheckoutError("user_id required")

    requested = normalize_lines(lines)

    def _op():
        try:
            sale = _record_sale_locked(user_id, requested)
            db.session.commit()
            return sale
        except CheckoutError:
            db.session.rollback()
            raise

    try:
        sale = run_with_retry(_op)
    except RETRYABLE_ERRORS as exc:
        raise StoreUnavailableError(
            "Store unavailable; the sale was not recorded. Retry the checkout.",
            details={"reason": exc.__class__.__name__},
        ) from exc
    except (DBAPIError, PoolTimeoutError) as exc:
        db.session.rollback()
        current_app.logger.exception("Checkout failed on the store")
        raise StoreUnavailableError(
            "Store unavailable; the sale was not recorded. Retry the checkout.",
            details={"reason": exc.__class__.__name__},
        ) from exc

    current_app.logger.info(
        "Sale %s recorded for user %s: %d line(s), total_cents=%d",
        sale.id, user_id, len(requested), sale.total_cents,
    )
    notify_stock_changed(
        [product_id for product_id, _ in requested],
        reason=REASON_SALE,
        sale_id=sale.id,
    )
    return sale


def checkout_cart(user_id, cart) -> Sale:
    """
    Record a sale from a Cart. The cart is cleared only on success, so a
    failed checkout can be retried (or adjusted) without re-entering items.
    """
    if cart.is_empty:
        raise EmptyCartError()
    sale = record_sale(user_id, cart.checkout_lines())
    cart.clear()
    return sale


def get_sale(sale_id: int) -> Sale | None:
    return db.session.get(Sale, sale_id)


def list_sales(
    *,
    user_id: str | None = None,
    rng: DateRange | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Sale]:
    """Sales newest first, optionally for one user and/or a date range."""
    query = db.session.query(Sale)
    if user_id is not None:
        query = query.filter(Sale.user_id == user_id)
    if rng is not None:
        query = query.filter(Sale.created_at >= rng.start, Sale.created_at < rng.end)
    limit = max(1, min(int(limit), 500))
    return (
        query.order_by(Sale.created_at.desc(), Sale.id.desc())
        .offset(max(int(offset), 0))
        .limit(limit)
        .all()
    )
