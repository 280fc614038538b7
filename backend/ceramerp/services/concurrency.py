# Overview: Transaction boundary and row-locking helpers shared by every settlement operation.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from .errors import LockTimeout


_LOCK_ERROR_MARKERS = (
    "database is locked",
    "database table is locked",
    "lock timeout",
    "lock_not_available",
    "could not obtain lock",
    "deadlock",
)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the write transaction is
    opened with BEGIN IMMEDIATE instead (see begin_write_transaction), which
    serializes writers on the whole database.
    """
    return query.with_for_update()


def _in_dbapi_transaction() -> bool:
    raw = db.session.connection().connection.dbapi_connection
    return bool(getattr(raw, "in_transaction", False))


def begin_write_transaction() -> None:
    """
    Take the write lock up front so check-then-increment sequences are atomic.

    - SQLite: BEGIN IMMEDIATE (only when the driver has not already opened a
      transaction, e.g. in a nested call).
    - PostgreSQL: bound lock waits with SET LOCAL lock_timeout.
    """
    dialect = db.engine.dialect.name
    if dialect == "sqlite":
        if not _in_dbapi_transaction():
            db.session.execute(text("BEGIN IMMEDIATE"))
    elif dialect == "postgresql":
        timeout_ms = int(float(current_app.config.get("LOCK_TIMEOUT_SECONDS", 5)) * 1000)
        db.session.execute(text(f"SET LOCAL lock_timeout = '{timeout_ms}ms'"))


def is_lock_error(exc: OperationalError) -> bool:
    message = str(getattr(exc, "orig", exc)).lower()
    return any(marker in message for marker in _LOCK_ERROR_MARKERS)


def run_in_transaction(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute func() as one atomic unit of work and commit it.

    - Any exception rolls back everything func() wrote.
    - Lock waits that exceed the configured timeout surface as LockTimeout.
    - StaleDataError (optimistic version_id conflicts on balances/products)
      is retried from scratch with exponential backoff.
    - Business errors (SettlementError, ValueError) are never retried.
    """
    for attempt in range(attempts):
        try:
            begin_write_transaction()
            result = func()
            db.session.commit()
            return result
        except StaleDataError:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
        except OperationalError as exc:
            db.session.rollback()
            if is_lock_error(exc):
                raise LockTimeout(
                    "Timed out waiting for a row lock; retry the operation",
                    {"reason": str(getattr(exc, "orig", exc))},
                ) from exc
            raise
        except Exception:
            db.session.rollback()
            raise
