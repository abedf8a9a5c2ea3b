"""
Database Helper Utilities for Concurrency Control

Provides:
- Database dialect detection (PostgreSQL vs SQLite)
- Row locking helpers
- Read-modify-write transactions with optimistic-concurrency retry
"""

import logging
import random
import time
from typing import Callable, Optional, TypeVar, Type

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..config import settings
from .errors import Unavailable

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Errors raised when a concurrent writer won the race. The whole
# read-modify-write is replayed against fresh state.
CONTENTION_ERRORS = (StaleDataError, IntegrityError, OperationalError)


def is_postgres(db: Session) -> bool:
    """Check if the database is PostgreSQL"""
    try:
        dialect = db.bind.dialect.name
        return dialect == 'postgresql'
    except Exception:
        return False


def acquire_row_lock(
    db: Session,
    model: Type[T],
    filter_condition,
    nowait: bool = False,
    skip_locked: bool = False
) -> Optional[T]:
    """
    Acquire a row-level lock on a database record.

    Args:
        db: Database session
        model: SQLAlchemy model class
        filter_condition: Filter to find the row
        nowait: If True, raise error immediately if lock unavailable (PostgreSQL only)
        skip_locked: If True, skip locked rows (PostgreSQL only)

    Returns:
        The locked model instance, or None if not found

    Example:
        unit = acquire_row_lock(db, Unit, Unit.id == unit_id)
    """
    query = db.query(model).filter(filter_condition)

    # Only apply locking on PostgreSQL; SQLite relies on the version counters
    if is_postgres(db):
        if skip_locked:
            query = query.with_for_update(skip_locked=True)
        elif nowait:
            query = query.with_for_update(nowait=True)
        else:
            query = query.with_for_update()

    return query.first()


def get_pending_with_skip_locked(
    db: Session,
    model: Type[T],
    filter_condition,
    order_by=None,
    limit: int = 50
) -> list:
    """
    Get pending records with skip_locked to prevent worker race conditions.

    Useful for background sweeps processing queues.

    Args:
        db: Database session
        model: SQLAlchemy model class
        filter_condition: Filter for pending records
        order_by: Optional ordering
        limit: Maximum records to fetch

    Returns:
        List of locked model instances (other workers will skip these)
    """
    query = db.query(model).filter(filter_condition)

    if order_by is not None:
        query = query.order_by(order_by)

    # Only apply skip_locked on PostgreSQL
    if is_postgres(db):
        query = query.with_for_update(skip_locked=True)

    return query.limit(limit).all()


def run_in_transaction(
    db: Session,
    work: Callable[[Session], T],
    max_attempts: Optional[int] = None,
    base_delay: float = 0.05,
    max_delay: float = 1.0,
    label: str = "transaction"
) -> T:
    """
    Run `work(db)` and commit it as one atomic read-modify-write.

    `work` must re-read every row it mutates: on contention the session is
    rolled back and `work` runs again from scratch. Any other exception
    rolls back and propagates unchanged.

    Raises:
        Unavailable: contention persisted for every attempt
    """
    attempts = max_attempts or settings.transaction_max_attempts
    last_error = None

    for attempt in range(1, attempts + 1):
        try:
            result = work(db)
            db.commit()
            return result
        except CONTENTION_ERRORS as e:
            db.rollback()
            last_error = e
            if attempt >= attempts:
                break
            # Exponential backoff with jitter
            delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
            delay = delay * (0.5 + random.random() / 2)
            logger.info(f"{label}: contention on attempt {attempt}/{attempts}, retrying in {delay:.3f}s ({type(e).__name__})")
            time.sleep(delay)
        except Exception:
            db.rollback()
            raise

    logger.warning(f"{label}: gave up after {attempts} attempts: {last_error}")
    raise Unavailable(f"{label} could not be committed due to concurrent updates") from last_error
