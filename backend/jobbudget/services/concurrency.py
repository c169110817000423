# Overview: Transaction and retry helpers shared by every mutating service operation.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import PersistenceFailure


logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(session, func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Domain errors raised by `func` are
    never retried.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError):
            session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))


def run_in_transaction(session, func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run `func` and commit its writes as one unit.

    - Any exception rolls the whole unit back before propagating.
    - Concurrency failures are retried (see run_with_retry).
    - Store failures that survive the retries surface as PersistenceFailure.
    """
    def _op():
        try:
            result = func()
            session.commit()
            return result
        except Exception:
            session.rollback()
            raise

    try:
        return run_with_retry(session, _op, attempts=attempts, backoff_base=backoff_base)
    except SQLAlchemyError as exc:
        logger.exception("Transaction failed after %d attempt(s)", attempts)
        raise PersistenceFailure(f"Persistence failure: {exc.__class__.__name__}") from exc
