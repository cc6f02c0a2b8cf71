import pytest

from stockpos.extensions import db
from stockpos.models import Stock
from stockpos.notifications import stock_changed
from stockpos.services import checkout_service


def test_failing_receiver_does_not_undo_checkout(db_session, product_p):
    def broken(sender, **kwargs):
        raise RuntimeError("cache unreachable")

    stock_changed.connect(broken)
    try:
        sale = checkout_service.record_sale("staff-1", [(product_p.id, 1)])
    finally:
        stock_changed.disconnect(broken)

    assert sale.id is not None
    assert db.session.get(Stock, product_p.id, populate_existing=True).quantity == 4


def test_no_notification_when_checkout_fails(db_session, product_p, stock_events):
    with pytest.raises(checkout_service.InsufficientStockError):
        checkout_service.record_sale("staff-1", [(product_p.id, 50)])

    assert stock_events == []


def test_sender_is_the_app(app, db_session, product_p):
    senders = []

    def receiver(sender, **kwargs):
        senders.append(sender)

    stock_changed.connect(receiver)
    try:
        checkout_service.record_sale("staff-1", [(product_p.id, 1)])
    finally:
        stock_changed.disconnect(receiver)

    assert senders == [app]
