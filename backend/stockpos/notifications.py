# Overview: "stock changed" notification point for cache invalidation.
"""
Stock change notifications.

Emitted after a stock mutation has been committed (checkout decrement or
admin overwrite). Delivery is fire-and-forget: a failing receiver is
logged and never undoes or fails the mutation that triggered it.

Receivers connect the usual blinker way:

    from stockpos.notifications import stock_changed

    @stock_changed.connect
    def on_stock_changed(app, product_ids, reason, sale_id=None):
        ...
"""

from __future__ import annotations

from typing import Iterable

from blinker import Namespace
from flask import current_app

_signals = Namespace()

stock_changed = _signals.signal("stock-changed")

REASON_SALE = "sale"
REASON_ADJUSTMENT = "adjustment"
REASON_PRODUCT_CREATED = "product.created"
REASON_PRODUCT_DELETED = "product.deleted"


def notify_stock_changed(
    product_ids: Iterable[int],
    *,
    reason: str,
    sale_id: int | None = None,
) -> None:
    if not stock_changed.receivers:
        return

    app = current_app._get_current_object()
    try:
        stock_changed.send(
            app,
            product_ids=sorted(set(product_ids)),
            reason=reason,
            sale_id=sale_id,
        )
    except Exception:
        app.logger.exception("stock_changed receiver failed (reason=%s)", reason)
