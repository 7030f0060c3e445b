# Overview: Service-layer helpers for row locking and atomic units of work.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import BusyError, ConflictError
from ..extensions import db


# SQLSTATEs for serialization failure, deadlock, and lock_timeout
CONTENTION_SQLSTATES = {"40001", "40P01", "55P03"}


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_locked_unit() takes the
    database write lock up front instead.
    """
    return query.with_for_update()


def is_lock_contention(exc: Exception) -> bool:
    """True when a driver error means "somebody else holds the lock"."""
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if sqlstate in CONTENTION_SQLSTATES:
        return True
    message = str(orig or exc).lower()
    return any(marker in message for marker in ("locked", "busy", "deadlock", "lock timeout"))


def begin_locked_unit() -> None:
    """
    Open the unit of work with a bounded lock wait.

    PostgreSQL: lock_timeout applies to every FOR UPDATE in this transaction.
    SQLite: BEGIN IMMEDIATE serializes writers; the wait is bounded by the
    driver busy timeout configured in create_app().
    """
    dialect = db.session.get_bind().dialect.name
    if dialect == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))
    elif dialect == "postgresql":
        timeout_ms = int(current_app.config.get("LOCK_TIMEOUT_MS", 5000))
        db.session.execute(text(f"SET LOCAL lock_timeout = {timeout_ms}"))


def run_in_unit_of_work(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Run func() inside one locked, atomic unit of work and commit.

    - Any exception rolls the whole unit back; nothing partial is committed.
    - Lock contention (OperationalError) and optimistic version conflicts
      (StaleDataError) are retried with exponential backoff, then surface
      as BusyError.
    - IntegrityError from the uniqueness guards surfaces as ConflictError.
    """
    if attempts is None:
        attempts = int(current_app.config.get("RETRY_ATTEMPTS", 3))
    if backoff_base is None:
        backoff_base = float(current_app.config.get("RETRY_BACKOFF_BASE", 0.1))
    attempts = max(attempts, 1)

    for attempt in range(attempts):
        try:
            begin_locked_unit()
            result = func()
            db.session.commit()
            return result
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if isinstance(exc, OperationalError) and not is_lock_contention(exc):
                raise
            if attempt >= attempts - 1:
                raise BusyError() from exc
            time.sleep(backoff_base * (2 ** attempt))
        except IntegrityError as exc:
            db.session.rollback()
            raise ConflictError() from exc
        except Exception:
            db.session.rollback()
            raise
