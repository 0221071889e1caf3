# Overview: Row locking and retry helpers shared by the cart, checkout and lifecycle services.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


class StorageUnavailableError(Exception):
    """
    Raised when storage keeps failing after the retry budget.

    Retryable from the caller's side; the session has been rolled back so no
    partial write is visible.
    """
    retryable = True

    def __init__(self, message: str = "Storage temporarily unavailable, please try again"):
        super().__init__(message)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Order rows also carry version_id, so a lost race surfaces as StaleDataError.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a unit of work with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). `func` must re-read everything it
    decides on, so a retry sees the row as the winner left it.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise StorageUnavailableError() from exc
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
