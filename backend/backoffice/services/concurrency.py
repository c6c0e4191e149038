# Overview: Transaction, locking and retry helpers shared by every lifecycle service.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import BackofficeError, ConflictError, DbError
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    The version_id columns on the locked models still catch lost updates there.
    populate_existing() makes the locked read overwrite anything the session
    loaded earlier in the same transaction.
    """
    return query.with_for_update().populate_existing()


def run_with_retry(
    func,
    *,
    attempts: int | None = None,
    backoff_base: float = 0.1,
    operation: str | None = None,
    entity_id: str | None = None,
):
    """
    Execute one unit of work (which commits itself) with retry on
    concurrency-related failures.

    - Any exception rolls the session back, so no partial state survives.
    - OperationalError (deadlocks, lock timeouts) and StaleDataError
      (optimistic version check) are retried with exponential backoff.
      The retried call re-reads current state, so a writer that lost a race
      usually fails the transition check with a ValidationError instead.
    - A StaleDataError that survives every attempt becomes ConflictError.
    - Any other SQLAlchemyError becomes DbError carrying operation context.
    - Domain errors (BackofficeError) propagate untouched.
    """
    if attempts is None:
        attempts = int(current_app.config.get("TRANSACTION_RETRY_ATTEMPTS", 3))
    attempts = max(1, attempts)
    op_name = operation or getattr(func, "__qualname__", "operation")
    context = {"operation": op_name, "entity_id": entity_id}

    for attempt in range(attempts):
        try:
            return func()
        except BackofficeError:
            db.session.rollback()
            raise
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                if isinstance(exc, StaleDataError):
                    raise ConflictError(
                        f"{op_name}: record state changed, retry",
                        code="STATE_CHANGED",
                        context=context,
                    ) from exc
                raise DbError(f"{op_name} failed: {exc}", context=context) from exc
            current_app.logger.info(
                "Retrying %s for %s after %s (attempt %d/%d)",
                op_name, entity_id, type(exc).__name__, attempt + 1, attempts,
            )
            time.sleep(backoff_base * (2 ** attempt))
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise DbError(f"{op_name} failed: {exc}", context=context) from exc
        except Exception:
            db.session.rollback()
            raise


def commit_with_retry(*, attempts: int | None = None, backoff_base: float = 0.1):
    """Commit current session with retry handling."""
    def _op():
        db.session.commit()
    return run_with_retry(_op, attempts=attempts, backoff_base=backoff_base, operation="commit")
