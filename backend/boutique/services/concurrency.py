# Overview: Unit-of-work helpers: row locking, bounded retry, and error translation.

from __future__ import annotations

import time

from flask import current_app, has_app_context
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..validation import ConcurrencyConflict, StorageError


RETRYABLE_ERRORS = (ConcurrencyConflict, OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    The versioned conditional UPDATE in stock_service catches lost updates
    either way.
    """
    return query.with_for_update()


def _retry_settings(attempts: int | None, backoff_base: float | None) -> tuple[int, float]:
    if has_app_context():
        if attempts is None:
            attempts = current_app.config.get("STOCK_RETRY_ATTEMPTS", 3)
        if backoff_base is None:
            backoff_base = current_app.config.get("STOCK_RETRY_BACKOFF", 0.05)
    return max(1, attempts or 3), backoff_base if backoff_base is not None else 0.05


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute one unit of work, retrying the whole thing on concurrency failures.

    - ConcurrencyConflict / OperationalError / StaleDataError: rollback, back
      off, replay. When attempts are exhausted a ConcurrencyConflict escapes.
    - Any other SQLAlchemyError: rollback, raise StorageError.
    - Domain errors (ValidationError, NotFoundError, ...): rollback, re-raise.

    func must be replayable: it re-reads everything it needs from the session.
    """
    attempts, backoff_base = _retry_settings(attempts, backoff_base)

    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                if isinstance(exc, ConcurrencyConflict):
                    raise
                raise ConcurrencyConflict(
                    f"gave up after {attempts} attempts: {exc.__class__.__name__}"
                ) from exc
            if has_app_context():
                current_app.logger.warning(
                    "Concurrent stock update detected (attempt %s/%s): %s",
                    attempt + 1,
                    attempts,
                    exc,
                )
            time.sleep(backoff_base * (2 ** attempt))
        except IntegrityError as exc:
            db.session.rollback()
            raise StorageError(f"integrity violation: {exc.orig}") from exc
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StorageError(f"database error: {exc.__class__.__name__}") from exc
        except Exception:
            db.session.rollback()
            raise

    raise ConcurrencyConflict(f"gave up after {attempts} attempts")
