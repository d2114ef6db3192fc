"""Transaction scope, snapshot reads and conflict retry for ledger operations.

Every money-moving operation runs inside transaction_scope(): all of its
writes commit together or none of them do. Storage failures are translated
into the domain error taxonomy on the way out.
"""

import logging
import random
import time
from contextlib import contextmanager
from typing import Callable, Iterator, TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from chama.errors import ChamaError, ConcurrencyConflictError, StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_lock_error(error: OperationalError) -> bool:
    """True if the driver reported lock contention rather than a real failure."""
    message = str(error.orig).lower() if error.orig is not None else str(error).lower()
    return "database is locked" in message or "deadlock" in message or "lock wait" in message


def is_unique_violation(error: IntegrityError) -> bool:
    """True if the integrity failure came from a UNIQUE constraint."""
    message = str(error.orig).lower()
    return "unique" in message or "duplicate" in message


def translate_storage_error(error: SQLAlchemyError) -> ChamaError:
    """Map a SQLAlchemy exception to the domain error taxonomy.

    Lost optimistic-lock races, duplicate accumulation keys and lock
    contention are retryable conflicts; anything else is a storage failure.
    """
    if isinstance(error, StaleDataError):
        return ConcurrencyConflictError("Concurrent update detected, retry the operation")
    if isinstance(error, IntegrityError) and is_unique_violation(error):
        return ConcurrencyConflictError(f"Conflicting concurrent insert: {error.orig}")
    if isinstance(error, OperationalError) and is_lock_error(error):
        return ConcurrencyConflictError(f"Database lock contention: {error.orig}")
    return StorageError(f"Storage failure: {error}")


def checked_flush(db: Session) -> None:
    """Flush pending writes, raising domain errors instead of SQLAlchemy ones."""
    try:
        db.flush()
    except SQLAlchemyError as e:
        raise translate_storage_error(e) from e


@contextmanager
def transaction_scope(db: Session) -> Iterator[Session]:
    """Commit on success, roll back everything on any failure.

    Domain errors propagate unchanged; SQLAlchemy errors are re-raised as
    ConcurrencyConflictError or StorageError after the rollback.
    """
    try:
        yield db
        db.commit()
    except ChamaError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        translated = translate_storage_error(e)
        logger.warning("Transaction rolled back: %s", translated.message)
        raise translated from e
    except Exception:
        db.rollback()
        raise


@contextmanager
def consistent_snapshot(db: Session) -> Iterator[Session]:
    """Run a group of reads against one point-in-time view of the database.

    Server databases get a REPEATABLE READ transaction. pysqlite does not open
    a transaction for plain SELECTs, so an explicit BEGIN is issued to hold one
    read transaction across all queries. The snapshot is always rolled back;
    it never writes.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "sqlite":
        connection = db.connection()
        raw = connection.connection.dbapi_connection
        if not raw.in_transaction:
            connection.exec_driver_sql("BEGIN")
    else:
        db.connection(execution_options={"isolation_level": "REPEATABLE READ"})
    try:
        yield db
    finally:
        db.rollback()


def run_with_retry(
    operation: Callable[[], T],
    *,
    attempts: int,
    backoff_ms: int = 0,
    label: str = "operation",
) -> T:
    """Run ``operation`` again from scratch while it loses concurrency races.

    Only ConcurrencyConflictError is retried: the operation rolled back before
    raising it, so nothing partial was committed. The last conflict is
    re-raised once ``attempts`` are used up.

    Args:
        operation: Zero-argument callable performing one full transaction
        attempts: Maximum number of tries (>= 1)
        backoff_ms: Base sleep between tries; grows linearly with jitter
        label: Name used in log messages
    """
    attempt = 1
    while True:
        try:
            return operation()
        except ConcurrencyConflictError as e:
            if attempt >= attempts:
                logger.error("%s failed after %d attempts: %s", label, attempts, e.message)
                raise
            delay = backoff_ms * attempt * (0.5 + random.random()) / 1000.0
            logger.info(
                "%s hit a concurrency conflict (attempt %d/%d), retrying in %.3fs",
                label,
                attempt,
                attempts,
                delay,
            )
            if delay:
                time.sleep(delay)
            attempt += 1


__all__ = [
    "is_lock_error",
    "is_unique_violation",
    "translate_storage_error",
    "checked_flush",
    "transaction_scope",
    "consistent_snapshot",
    "run_with_retry",
]
