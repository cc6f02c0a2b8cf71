"""
Pytest fixtures for stockpos backend tests.

Provides test database setup, identity headers, catalog fixtures and test client.
"""

import pytest

from stockpos import create_app
from stockpos.extensions import db
from stockpos.identity import ROLE_ADMIN, ROLE_STAFF, USER_ID_HEADER, USER_ROLE_HEADER
from stockpos.models import Product, Stock
from stockpos.notifications import stock_changed


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'STORE_TIMEZONE': 'UTC',
        'CHECKOUT_RETRY_ATTEMPTS': 3,
        'CHECKOUT_RETRY_BACKOFF': 0.0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        db.session.rollback()
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()
        db.session.expunge_all()


@pytest.fixture(scope='function')
def stock_events():
    """Collect stock_changed notifications sent during a test."""
    received = []

    def receiver(sender, **kwargs):
        received.append(kwargs)

    stock_changed.connect(receiver)
    yield received
    stock_changed.disconnect(receiver)


def make_product(session, name, *, price_cents=1000, stock=10, min_stock=5, is_active=True):
    """Insert a product with its stock row and commit."""
    product = Product(
        name=name,
        price_cents=price_cents,
        min_stock=min_stock,
        is_active=is_active,
    )
    product.stock = Stock(quantity=stock)
    session.add(product)
    session.commit()
    return product


@pytest.fixture(scope='function')
def product_factory(db_session):
    """Return a callable that inserts committed products."""
    def _make(name, **kwargs):
        return make_product(db_session, name, **kwargs)
    return _make


@pytest.fixture(scope='function')
def product_p(db_session):
    """Product P: 10.00, stock 5."""
    return make_product(db_session, "Product P", price_cents=1000, stock=5)


@pytest.fixture(scope='function')
def product_q(db_session):
    """Product Q: 2.50, stock 5."""
    return make_product(db_session, "Product Q", price_cents=250, stock=5)


def identity_headers(user_id: str, role: str) -> dict:
    """Helper to create identity headers as set by the authenticating gateway."""
    return {USER_ID_HEADER: user_id, USER_ROLE_HEADER: role}


@pytest.fixture(scope='function')
def admin_headers(db_session):
    return identity_headers("admin-1", ROLE_ADMIN)


@pytest.fixture(scope='function')
def staff_headers(db_session):
    return identity_headers("staff-1", ROLE_STAFF)


@pytest.fixture(scope='function')
def other_staff_headers(db_session):
    return identity_headers("staff-2", ROLE_STAFF)
