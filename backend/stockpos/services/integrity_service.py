# Overview: Detects violated ledger/stock invariants for operator attention.
"""
Integrity scan (read-only).

Anomalies are reported and logged, never corrected: each one means an
invariant was broken outside the engine (manual SQL, a restore, a store
without foreign keys) and a person has to decide what the truth is.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Product, Sale, SaleLine, Stock

NEGATIVE_STOCK = "negative_stock"
MISSING_STOCK_ROW = "missing_stock_row"
ORPHAN_SALE_LINE = "sale_line_missing_product"
TOTAL_MISMATCH = "sale_total_mismatch"
LINE_TOTAL_MISMATCH = "sale_line_total_mismatch"
EMPTY_SALE = "sale_without_lines"


def _negative_stock() -> list[dict]:
    rows = db.session.query(Stock.product_id, Stock.quantity).filter(Stock.quantity < 0).all()
    return [
        {"kind": NEGATIVE_STOCK, "product_id": r.product_id, "quantity": r.quantity}
        for r in rows
    ]


def _missing_stock_rows() -> list[dict]:
    rows = db.session.query(Product.id).outerjoin(
        Stock, Stock.product_id == Product.id
    ).filter(Stock.product_id.is_(None)).all()
    return [{"kind": MISSING_STOCK_ROW, "product_id": r.id} for r in rows]


def _orphan_sale_lines() -> list[dict]:
    rows = db.session.query(SaleLine.id, SaleLine.sale_id, SaleLine.product_id).outerjoin(
        Product, Product.id == SaleLine.product_id
    ).filter(Product.id.is_(None)).all()
    return [
        {
            "kind": ORPHAN_SALE_LINE,
            "sale_id": r.sale_id,
            "sale_line_id": r.id,
            "product_id": r.product_id,
        }
        for r in rows
    ]


def _line_total_mismatches() -> list[dict]:
    rows = db.session.query(SaleLine).filter(
        SaleLine.line_total_cents != SaleLine.quantity * SaleLine.unit_price_cents
    ).all()
    return [
        {
            "kind": LINE_TOTAL_MISMATCH,
            "sale_id": line.sale_id,
            "sale_line_id": line.id,
            "line_total_cents": line.line_total_cents,
            "expected_cents": line.quantity * line.unit_price_cents,
        }
        for line in rows
    ]


def _sale_total_mismatches() -> list[dict]:
    line_sums = db.session.query(
        SaleLine.sale_id.label("sale_id"),
        func.sum(SaleLine.line_total_cents).label("lines_total"),
    ).group_by(SaleLine.sale_id).subquery()

    rows = db.session.query(
        Sale.id,
        Sale.total_cents,
        line_sums.c.lines_total,
    ).outerjoin(line_sums, line_sums.c.sale_id == Sale.id).filter(
        (line_sums.c.lines_total.is_(None)) | (line_sums.c.lines_total != Sale.total_cents)
    ).order_by(Sale.id.asc()).all()

    anomalies = []
    for r in rows:
        if r.lines_total is None:
            anomalies.append({"kind": EMPTY_SALE, "sale_id": r.id, "total_cents": r.total_cents})
        else:
            anomalies.append({
                "kind": TOTAL_MISMATCH,
                "sale_id": r.id,
                "total_cents": r.total_cents,
                "lines_total_cents": int(r.lines_total),
            })
    return anomalies


CHECKS = (
    _negative_stock,
    _missing_stock_rows,
    _orphan_sale_lines,
    _line_total_mismatches,
    _sale_total_mismatches,
)


def scan() -> dict:
    anomalies: list[dict] = []
    for check in CHECKS:
        anomalies.extend(check())

    for anomaly in anomalies:
        current_app.logger.warning("Integrity anomaly: %s", anomaly)

    return {"ok": not anomalies, "count": len(anomalies), "anomalies": anomalies}
