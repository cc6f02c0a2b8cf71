"""
Checkout engine tests.

Verifies:
- A successful checkout decrements stock and appends exactly one sale
- Any failure leaves stock and the ledger untouched
- Prices are frozen on sale lines at commit time
- Input validation happens before any store access
"""

import pytest
from sqlalchemy.exc import OperationalError

from stockpos.cart import Cart, ProductSnapshot
from stockpos.extensions import db
from stockpos.models import Sale, SaleLine, Stock
from stockpos.notifications import REASON_SALE
from stockpos.services import checkout_service
from stockpos.services.checkout_service import (
    CheckoutError,
    EmptyCartError,
    InsufficientStockError,
    InvalidLineError,
    InvalidQuantityError,
    StoreUnavailableError,
    UnknownProductError,
    normalize_lines,
)


def stock_of(product_id):
    return db.session.get(Stock, product_id, populate_existing=True).quantity


def sale_count():
    return db.session.query(Sale).count()


class TestRecordSale:
    def test_checkout_decrements_stock_and_records_sale(self, db_session, product_p):
        sale = checkout_service.record_sale("staff-1", [(product_p.id, 3)])

        assert stock_of(product_p.id) == 2
        assert sale.user_id == "staff-1"
        assert len(sale.lines) == 1
        line = sale.lines[0]
        assert line.product_id == product_p.id
        assert line.quantity == 3
        assert line.unit_price_cents == 1000
        assert line.line_total_cents == 3000
        assert sale.total_cents == 3000

    def test_total_equals_sum_of_lines(self, db_session, product_p, product_q):
        sale = checkout_service.record_sale(
            "staff-1",
            [{"product_id": product_p.id, "quantity": 2}, {"product_id": product_q.id, "qty": 3}],
        )

        assert sale.total_cents == 2 * 1000 + 3 * 250
        assert sale.total_cents == sum(l.line_total_cents for l in sale.lines)
        assert stock_of(product_p.id) == 3
        assert stock_of(product_q.id) == 2

    def test_checkout_of_entire_stock_reaches_zero(self, db_session, product_p):
        checkout_service.record_sale("staff-1", [(product_p.id, 5)])
        assert stock_of(product_p.id) == 0

    def test_duplicate_lines_are_merged(self, db_session, product_p):
        sale = checkout_service.record_sale("staff-1", [(product_p.id, 1), (product_p.id, 2)])

        assert len(sale.lines) == 1
        assert sale.lines[0].quantity == 3
        assert stock_of(product_p.id) == 2

    def test_price_is_read_at_commit_time(self, db_session, product_p):
        cart = Cart()
        cart.add_item(ProductSnapshot.from_dict(product_p.to_dict()), 1)

        product_p.price_cents = 1500
        db_session.commit()

        sale = checkout_service.checkout_cart("staff-1", cart)
        assert sale.lines[0].unit_price_cents == 1500
        assert sale.total_cents == 1500

    def test_later_price_change_does_not_alter_recorded_sale(self, db_session, product_p):
        sale = checkout_service.record_sale("staff-1", [(product_p.id, 1)])
        sale_id = sale.id

        product_p.price_cents = 9999
        db_session.commit()

        reloaded = checkout_service.get_sale(sale_id)
        assert reloaded.total_cents == 1000
        assert reloaded.lines[0].unit_price_cents == 1000

    def test_notifies_stock_change_after_commit(self, db_session, product_p, product_q, stock_events):
        sale = checkout_service.record_sale("staff-1", [(product_q.id, 1), (product_p.id, 1)])

        assert stock_events == [{
            "product_ids": sorted([product_p.id, product_q.id]),
            "reason": REASON_SALE,
            "sale_id": sale.id,
        }]


class TestFailuresHaveNoEffect:
    def test_insufficient_stock_on_one_line_fails_whole_checkout(self, db_session, product_factory):
        p = product_factory("P", price_cents=1000, stock=3)
        q = product_factory("Q", price_cents=500, stock=5)

        with pytest.raises(InsufficientStockError) as excinfo:
            checkout_service.record_sale("staff-1", [(p.id, 10), (q.id, 1)])

        err = excinfo.value
        assert err.product_id == p.id
        assert err.requested == 10
        assert err.available == 3
        assert err.details["items"][0]["product_id"] == p.id
        assert stock_of(p.id) == 3
        assert stock_of(q.id) == 5
        assert sale_count() == 0
        assert db_session.query(SaleLine).count() == 0

    def test_every_short_line_is_reported(self, db_session, product_factory):
        p = product_factory("P", stock=1)
        q = product_factory("Q", stock=1)

        with pytest.raises(InsufficientStockError) as excinfo:
            checkout_service.record_sale("staff-1", [(q.id, 2), (p.id, 2)])

        items = excinfo.value.details["items"]
        assert [i["product_id"] for i in items] == [q.id, p.id]
        # first short line in cart order
        assert excinfo.value.product_id == q.id

    def test_unknown_product(self, db_session, product_p):
        with pytest.raises(UnknownProductError) as excinfo:
            checkout_service.record_sale("staff-1", [(product_p.id, 1), (987654, 1)])

        assert excinfo.value.product_id == 987654
        assert stock_of(product_p.id) == 5
        assert sale_count() == 0

    def test_inactive_product_cannot_be_sold(self, db_session, product_factory):
        p = product_factory("Retired", stock=5, is_active=False)

        with pytest.raises(UnknownProductError):
            checkout_service.record_sale("staff-1", [(p.id, 1)])
        assert stock_of(p.id) == 5

    def test_store_failure_is_reported_as_unavailable(self, db_session, product_p, monkeypatch):
        def failing_lock(user_id, requested):
            raise OperationalError("BEGIN IMMEDIATE", {}, Exception("database is locked"))

        monkeypatch.setattr(checkout_service, "_record_sale_locked", failing_lock)

        with pytest.raises(StoreUnavailableError) as excinfo:
            checkout_service.record_sale("staff-1", [(product_p.id, 1)])

        assert excinfo.value.retryable is True
        assert excinfo.value.code == "STORE_UNAVAILABLE"
        assert stock_of(product_p.id) == 5
        assert sale_count() == 0

    def test_transient_failure_is_retried(self, db_session, product_p, monkeypatch):
        real = checkout_service._record_sale_locked
        calls = []

        def flaky(user_id, requested):
            calls.append(1)
            if len(calls) == 1:
                raise OperationalError("BEGIN IMMEDIATE", {}, Exception("database is locked"))
            return real(user_id, requested)

        monkeypatch.setattr(checkout_service, "_record_sale_locked", flaky)

        sale = checkout_service.record_sale("staff-1", [(product_p.id, 2)])
        assert len(calls) == 2
        assert sale.total_cents == 2000
        assert stock_of(product_p.id) == 3

    def test_missing_user_is_rejected(self, db_session, product_p):
        with pytest.raises(CheckoutError):
            checkout_service.record_sale("  ", [(product_p.id, 1)])
        assert sale_count() == 0


class TestNormalizeLines:
    @pytest.mark.parametrize("lines", [None, []])
    def test_empty_cart(self, lines):
        with pytest.raises(EmptyCartError):
            normalize_lines(lines)

    @pytest.mark.parametrize("qty", [0, -2, "1.5", 2.5, "1e3", True])
    def test_invalid_quantity(self, qty):
        with pytest.raises(InvalidQuantityError):
            normalize_lines([(1, qty)])

    def test_missing_quantity(self):
        with pytest.raises(InvalidQuantityError):
            normalize_lines([{"product_id": 1}])

    @pytest.mark.parametrize("lines", ["abc", {"product_id": 1, "quantity": 1}, [5], [(1, 2, 3)]])
    def test_malformed_lines(self, lines):
        with pytest.raises(InvalidLineError):
            normalize_lines(lines)

    def test_string_digits_are_accepted(self):
        assert normalize_lines([{"product_id": "3", "quantity": "2"}]) == [(3, 2)]

    def test_merges_keeping_first_seen_order(self):
        assert normalize_lines([(2, 1), (1, 1), (2, 4)]) == [(2, 5), (1, 1)]


class TestCheckoutCart:
    def test_success_clears_cart(self, db_session, product_p):
        cart = Cart()
        cart.add_item(ProductSnapshot.from_dict(product_p.to_dict()), 2)

        sale = checkout_service.checkout_cart("staff-1", cart)

        assert cart.is_empty
        assert sale.total_cents == 2000

    def test_failure_keeps_cart(self, db_session, product_p):
        cart = Cart()
        cart.add_item(ProductSnapshot.from_dict(product_p.to_dict()), 5)

        # another terminal sells some of the stock first
        checkout_service.record_sale("staff-2", [(product_p.id, 3)])

        with pytest.raises(InsufficientStockError):
            checkout_service.checkout_cart("staff-1", cart)

        assert cart.checkout_lines() == [(product_p.id, 5)]

    def test_empty_cart_is_rejected(self, db_session):
        with pytest.raises(EmptyCartError):
            checkout_service.checkout_cart("staff-1", Cart())


class TestListSales:
    def test_newest_first_and_filtered_by_user(self, db_session, product_p):
        first = checkout_service.record_sale("staff-1", [(product_p.id, 1)]).id
        checkout_service.record_sale("staff-2", [(product_p.id, 1)])
        second = checkout_service.record_sale("staff-1", [(product_p.id, 1)]).id

        sales = checkout_service.list_sales(user_id="staff-1")
        assert [s.id for s in sales] == [second, first]
        assert len(checkout_service.list_sales()) == 3
