# Overview: Read-only aggregates over the sale ledger and current stock.

from __future__ import annotations

from datetime import datetime
from typing import Callable

from flask import current_app
from sqlalchemy import func, literal
from sqlalchemy.exc import SQLAlchemyError

from stockpos.extensions import db
from stockpos.models import Product, Sale, SaleLine, Stock, STATUS_LOW, STATUS_OUT
from stockpos.time_utils import DateRange, local_midnight_utc, local_today, utcnow

UNKNOWN_PRODUCT_NAME = "Unknown product"

MAX_LIMIT = 500


class ReportError(Exception):
    """Raised when report parameters are invalid."""


def _check_limit(limit: int) -> int:
    if isinstance(limit, bool) or not isinstance(limit, int):
        raise ReportError("limit must be an integer")
    if limit < 1 or limit > MAX_LIMIT:
        raise ReportError(f"limit must be between 1 and {MAX_LIMIT}")
    return limit


def _avg_half_up(total: int, count: int) -> int:
    if count <= 0:
        return 0
    # nearest-cent rounding (half-up)
    return (total + (count // 2)) // count


def _in_range(column, rng: DateRange):
    return (column >= rng.start) & (column < rng.end)


def summary(rng: DateRange) -> dict:
    """
    Period totals. Average order value is revenue / orders rounded
    half-up to the cent, and 0 when there are no orders.
    """
    orders, revenue = db.session.query(
        func.count(Sale.id),
        func.coalesce(func.sum(Sale.total_cents), 0),
    ).filter(_in_range(Sale.created_at, rng)).one()

    items_sold = db.session.query(
        func.coalesce(func.sum(SaleLine.quantity), 0)
    ).join(Sale, SaleLine.sale_id == Sale.id).filter(
        _in_range(Sale.created_at, rng)
    ).scalar()

    orders = int(orders or 0)
    revenue = int(revenue or 0)
    return {
        **rng.to_dict(),
        "orders": orders,
        "items_sold": int(items_sold or 0),
        "revenue_cents": revenue,
        "avg_order_cents": _avg_half_up(revenue, orders),
    }


def _movement_subquery(rng: DateRange):
    return db.session.query(
        SaleLine.product_id.label("product_id"),
        func.sum(SaleLine.quantity).label("qty"),
        func.sum(SaleLine.line_total_cents).label("revenue_cents"),
    ).join(Sale, SaleLine.sale_id == Sale.id).filter(
        _in_range(Sale.created_at, rng)
    ).group_by(SaleLine.product_id).subquery()


def _mover_row(product_id, name, qty, revenue) -> dict:
    return {
        "product_id": product_id,
        "name": name,
        "qty": int(qty or 0),
        "revenue_cents": int(revenue or 0),
    }


def top_movers(rng: DateRange, limit: int = 10) -> list[dict]:
    """
    Products that sold in range, by quantity desc, then revenue desc,
    name asc, id asc.

    Products that no longer exist still rank (named UNKNOWN_PRODUCT_NAME)
    so the totals reconcile with summary(); they are logged as anomalies.
    """
    limit = _check_limit(limit)
    moved = _movement_subquery(rng)
    name_col = func.coalesce(Product.name, literal(UNKNOWN_PRODUCT_NAME))

    rows = db.session.query(
        moved.c.product_id,
        name_col.label("name"),
        moved.c.qty,
        moved.c.revenue_cents,
        Product.id.label("catalog_id"),
    ).outerjoin(Product, Product.id == moved.c.product_id).order_by(
        moved.c.qty.desc(),
        moved.c.revenue_cents.desc(),
        name_col.asc(),
        moved.c.product_id.asc(),
    ).limit(limit).all()

    missing = [row.product_id for row in rows if row.catalog_id is None]
    if missing:
        current_app.logger.warning("Sale lines reference missing products: %s", missing)

    return [_mover_row(r.product_id, r.name, r.qty, r.revenue_cents) for r in rows]


def bottom_movers(rng: DateRange, limit: int = 10) -> list[dict]:
    """
    Active catalog products by quantity asc, then revenue asc, name asc,
    id asc. Driven from the catalog so products with no sales in range
    appear with qty=0 and revenue 0.
    """
    limit = _check_limit(limit)
    moved = _movement_subquery(rng)
    qty = func.coalesce(moved.c.qty, 0)
    revenue = func.coalesce(moved.c.revenue_cents, 0)

    rows = db.session.query(
        Product.id,
        Product.name,
        qty.label("qty"),
        revenue.label("revenue_cents"),
    ).outerjoin(moved, moved.c.product_id == Product.id).filter(
        Product.is_active.is_(True)
    ).order_by(
        qty.asc(),
        revenue.asc(),
        Product.name.asc(),
        Product.id.asc(),
    ).limit(limit).all()

    return [_mover_row(r.id, r.name, r.qty, r.revenue_cents) for r in rows]


def low_stock() -> list[dict]:
    """
    Active products at or under their minimum threshold: OUT when nothing
    is left, LOW otherwise. Ordered by quantity asc, name asc, id asc.
    Always reflects current stock; no date range.
    """
    rows = db.session.query(
        Product.id,
        Product.name,
        Stock.quantity,
        Product.min_stock,
    ).join(Stock, Stock.product_id == Product.id).filter(
        Product.is_active.is_(True),
        Stock.quantity <= Product.min_stock,
    ).order_by(
        Stock.quantity.asc(),
        Product.name.asc(),
        Product.id.asc(),
    ).all()

    return [
        {
            "product_id": r.id,
            "name": r.name,
            "stock": int(r.quantity),
            "min_stock": int(r.min_stock),
            "status": STATUS_OUT if r.quantity <= 0 else STATUS_LOW,
        }
        for r in rows
    ]


def _section(name: str, fn: Callable):
    """
    Run one report section in isolation: a store error becomes an error
    entry for that section instead of failing the whole response.
    """
    try:
        return fn()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Report section %s failed", name)
        return {"error": f"{name} unavailable"}


def overview(rng: DateRange, limit: int = 10) -> dict:
    """Summary, fast movers, slow movers and low stock, each independent."""
    limit = _check_limit(limit)
    return {
        **rng.to_dict(),
        "summary": _section("summary", lambda: summary(rng)),
        "top_movers": _section("top_movers", lambda: top_movers(rng, limit)),
        "bottom_movers": _section("bottom_movers", lambda: bottom_movers(rng, limit)),
        "low_stock": _section("low_stock", low_stock),
    }


def _user_sales_since(user_id: str, start: datetime) -> dict:
    count, total = db.session.query(
        func.count(Sale.id),
        func.coalesce(func.sum(Sale.total_cents), 0),
    ).filter(Sale.user_id == user_id, Sale.created_at >= start).one()
    return {"orders": int(count or 0), "total_cents": int(total or 0)}


def dashboard(user_id: str, tz_name: str | None = "UTC", now: datetime | None = None) -> dict:
    """
    Landing-page figures: catalog size, low-stock alerts, and the caller's
    own sales today and this month (local calendar).
    """
    now = now or utcnow()
    today = local_today(tz_name, now)
    start_today = local_midnight_utc(today, tz_name)
    start_month = local_midnight_utc(today.replace(day=1), tz_name)

    def _low_stock_section():
        rows = low_stock()
        return {"count": len(rows), "items": rows}

    return {
        "user_id": user_id,
        "product_count": _section(
            "product_count",
            lambda: int(
                db.session.query(func.count(Product.id))
                .filter(Product.is_active.is_(True))
                .scalar() or 0
            ),
        ),
        "low_stock": _section("low_stock", _low_stock_section),
        "today": _section("today", lambda: _user_sales_since(user_id, start_today)),
        "month": _section("month", lambda: _user_sales_since(user_id, start_month)),
    }

