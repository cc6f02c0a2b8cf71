"""
Reporting tests: period summary, movers, low stock, overview and dashboard.

Sales are inserted directly with fixed timestamps so range boundaries can
be checked exactly.
"""

from datetime import datetime

import pytest
from sqlalchemy.exc import SQLAlchemyError

from stockpos.models import Sale, SaleLine, Stock, STATUS_LOW, STATUS_OUT
from stockpos.services import reporting_service
from stockpos.services.reporting_service import ReportError, UNKNOWN_PRODUCT_NAME
from stockpos.time_utils import date_range


MARCH = date_range("2026-03-01", "2026-03-31", "UTC")


def make_sale(session, created_at, lines, *, user_id="staff-1"):
    """lines: [(product_id, qty, unit_price_cents)]"""
    sale = Sale(user_id=user_id, created_at=created_at, total_cents=0)
    total = 0
    for product_id, qty, unit_price in lines:
        sale.lines.append(SaleLine(
            product_id=product_id,
            quantity=qty,
            unit_price_cents=unit_price,
            line_total_cents=qty * unit_price,
        ))
        total += qty * unit_price
    sale.total_cents = total
    session.add(sale)
    session.commit()
    return sale


class TestSummary:
    def test_two_sales_average(self, db_session, product_p):
        make_sale(db_session, datetime(2026, 3, 5, 10), [(product_p.id, 10, 1000)])
        make_sale(db_session, datetime(2026, 3, 6, 10), [(product_p.id, 5, 1000)])

        report = reporting_service.summary(MARCH)

        assert report["orders"] == 2
        assert report["revenue_cents"] == 15000
        assert report["avg_order_cents"] == 7500
        assert report["items_sold"] == 15
        assert report["start"] == "2026-03-01T00:00:00Z"
        assert report["end"] == "2026-04-01T00:00:00Z"

    def test_empty_range_has_zero_average(self, db_session):
        report = reporting_service.summary(MARCH)
        assert report["orders"] == 0
        assert report["revenue_cents"] == 0
        assert report["avg_order_cents"] == 0
        assert report["items_sold"] == 0

    def test_average_rounds_half_up(self, db_session, product_p):
        make_sale(db_session, datetime(2026, 3, 5), [(product_p.id, 1, 100)])
        make_sale(db_session, datetime(2026, 3, 5), [(product_p.id, 1, 101)])

        assert reporting_service.summary(MARCH)["avg_order_cents"] == 101

    def test_range_is_half_open_with_inclusive_end_day(self, db_session, product_p):
        make_sale(db_session, datetime(2026, 2, 28, 23, 59, 59), [(product_p.id, 1, 100)])
        make_sale(db_session, datetime(2026, 3, 1, 0, 0, 0), [(product_p.id, 1, 200)])
        make_sale(db_session, datetime(2026, 3, 31, 23, 59, 59), [(product_p.id, 1, 400)])
        make_sale(db_session, datetime(2026, 4, 1, 0, 0, 0), [(product_p.id, 1, 800)])

        report = reporting_service.summary(MARCH)
        assert report["orders"] == 2
        assert report["revenue_cents"] == 600

    def test_local_calendar_days(self, db_session, product_p):
        # 22:00 on March 1st in New York is 03:00 UTC on March 2nd
        make_sale(db_session, datetime(2026, 3, 2, 3, 0), [(product_p.id, 1, 500)])
        # 01:00 on March 2nd in New York
        make_sale(db_session, datetime(2026, 3, 2, 6, 0), [(product_p.id, 1, 700)])

        rng = date_range("2026-03-01", "2026-03-01", "America/New_York")
        report = reporting_service.summary(rng)

        assert report["orders"] == 1
        assert report["revenue_cents"] == 500

    def test_reads_are_idempotent(self, db_session, product_p):
        make_sale(db_session, datetime(2026, 3, 5), [(product_p.id, 2, 1000)])

        first = reporting_service.summary(MARCH)
        second = reporting_service.summary(MARCH)

        assert first == second
        assert db_session.get(Stock, product_p.id).quantity == 5


@pytest.fixture
def movers(db_session, product_factory):
    apple = product_factory("Apple", price_cents=200)
    banana = product_factory("Banana", price_cents=200)
    cherry = product_factory("Cherry", price_cents=100)
    date_ = product_factory("Date", price_cents=100)
    elder = product_factory("Elder", price_cents=100)
    retired = product_factory("Retired", price_cents=100, is_active=False)

    make_sale(db_session, datetime(2026, 3, 3), [(banana.id, 5, 200), (cherry.id, 5, 100)])
    make_sale(db_session, datetime(2026, 3, 4), [(apple.id, 5, 200), (date_.id, 7, 100)])
    # outside the range; must not count
    make_sale(db_session, datetime(2026, 4, 2), [(elder.id, 50, 100)])

    return {
        "apple": apple.id,
        "banana": banana.id,
        "cherry": cherry.id,
        "date": date_.id,
        "elder": elder.id,
        "retired": retired.id,
    }


class TestMovers:
    def test_top_movers_order(self, movers):
        rows = reporting_service.top_movers(MARCH, limit=10)

        assert [r["name"] for r in rows] == ["Date", "Apple", "Banana", "Cherry"]
        assert rows[0] == {"product_id": movers["date"], "name": "Date", "qty": 7, "revenue_cents": 700}

    def test_top_movers_limit(self, movers):
        rows = reporting_service.top_movers(MARCH, limit=2)
        assert [r["name"] for r in rows] == ["Date", "Apple"]

    def test_bottom_movers_include_products_without_sales(self, movers):
        rows = reporting_service.bottom_movers(MARCH, limit=10)

        assert [r["name"] for r in rows] == ["Elder", "Cherry", "Apple", "Banana", "Date"]
        assert rows[0] == {"product_id": movers["elder"], "name": "Elder", "qty": 0, "revenue_cents": 0}

    def test_bottom_movers_exclude_inactive_products(self, movers):
        rows = reporting_service.bottom_movers(MARCH, limit=10)
        assert movers["retired"] not in [r["product_id"] for r in rows]

    @pytest.mark.parametrize("limit", [0, -1, 501, "5"])
    def test_invalid_limit(self, db_session, limit):
        with pytest.raises(ReportError):
            reporting_service.top_movers(MARCH, limit=limit)

    def test_sale_line_for_missing_product_still_ranks(self, db_session):
        make_sale(db_session, datetime(2026, 3, 3), [(424242, 3, 100)])

        rows = reporting_service.top_movers(MARCH)
        assert rows == [{"product_id": 424242, "name": UNKNOWN_PRODUCT_NAME, "qty": 3, "revenue_cents": 300}]


class TestLowStock:
    def test_out_and_low(self, db_session, product_factory):
        p = product_factory("P", stock=0, min_stock=5)
        q = product_factory("Q", stock=4, min_stock=5)
        product_factory("R", stock=10, min_stock=5)
        product_factory("Inactive", stock=0, min_stock=5, is_active=False)

        rows = reporting_service.low_stock()

        assert rows == [
            {"product_id": p.id, "name": "P", "stock": 0, "min_stock": 5, "status": STATUS_OUT},
            {"product_id": q.id, "name": "Q", "stock": 4, "min_stock": 5, "status": STATUS_LOW},
        ]

    def test_at_threshold_is_low(self, db_session, product_factory):
        product_factory("Edge", stock=5, min_stock=5)
        rows = reporting_service.low_stock()
        assert [r["status"] for r in rows] == [STATUS_LOW]

    def test_ties_break_on_name(self, db_session, product_factory):
        product_factory("Zeta", stock=1, min_stock=5)
        product_factory("Alpha", stock=1, min_stock=5)
        assert [r["name"] for r in reporting_service.low_stock()] == ["Alpha", "Zeta"]


class TestOverview:
    def test_sections(self, movers):
        report = reporting_service.overview(MARCH, limit=3)

        assert report["summary"]["orders"] == 2
        assert len(report["top_movers"]) == 3
        assert len(report["bottom_movers"]) == 3
        assert report["low_stock"] == []

    def test_failing_section_does_not_fail_others(self, movers, monkeypatch):
        def broken(rng, limit=10):
            raise SQLAlchemyError("boom")

        monkeypatch.setattr(reporting_service, "top_movers", broken)

        report = reporting_service.overview(MARCH, limit=3)

        assert report["top_movers"] == {"error": "top_movers unavailable"}
        assert report["summary"]["orders"] == 2
        assert len(report["bottom_movers"]) == 3


class TestDashboard:
    def test_own_sales_today_and_month(self, db_session, product_factory):
        product_p = product_factory("Counter item", stock=50, min_stock=5)
        product_factory("Low", stock=1, min_stock=5)
        now = datetime(2026, 3, 15, 12, 0)

        make_sale(db_session, datetime(2026, 3, 15, 9, 0), [(product_p.id, 1, 1000)])
        make_sale(db_session, datetime(2026, 3, 2, 9, 0), [(product_p.id, 2, 1000)])
        make_sale(db_session, datetime(2026, 2, 27, 9, 0), [(product_p.id, 4, 1000)])
        make_sale(db_session, datetime(2026, 3, 15, 10, 0), [(product_p.id, 8, 1000)], user_id="staff-2")

        report = reporting_service.dashboard("staff-1", "UTC", now=now)

        assert report["user_id"] == "staff-1"
        assert report["product_count"] == 2
        assert report["low_stock"]["count"] == 1
        assert report["today"] == {"orders": 1, "total_cents": 1000}
        assert report["month"] == {"orders": 2, "total_cents": 3000}
