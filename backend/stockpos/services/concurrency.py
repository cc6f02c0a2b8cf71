# Overview: Locking and retry helpers shared by every service that writes stock.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


class ConcurrencyConflict(Exception):
    """A conditional write lost against a concurrent writer; safe to retry."""


RETRYABLE_ERRORS = (OperationalError, StaleDataError, ConcurrencyConflict)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write_transaction()
    covers it there.
    """
    return query.with_for_update()


def begin_write_transaction() -> None:
    """
    Take the database write lock up front on SQLite.

    Without it two checkouts can both read the same stock before either
    writes. Must be the first statement of the unit of work.
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks, timeouts), StaleDataError
    (optimistic locking conflicts) and ConcurrencyConflict (lost conditional
    update). Anything else propagates on the first failure.
    """
    if attempts is None:
        attempts = current_app.config.get("CHECKOUT_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("CHECKOUT_RETRY_BACKOFF", 0.1)
    attempts = max(int(attempts), 1)

    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                current_app.logger.warning(
                    "Giving up after %d attempts: %s", attempts, exc.__class__.__name__
                )
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
