# matrix_comp/utils/transactions.py
"""
Unit-of-work helper: commit on success, rollback on error,
bounded retry with exponential backoff on write conflicts.
"""
from typing import Awaitable, Callable, Optional, TypeVar
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.exc import IntegrityError, OperationalError
import asyncio
import logging

import config
from matrix_comp.errors import Conflict

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Driver messages that mean "another writer won, try again"
TRANSIENT_MARKERS = (
    "could not serialize",
    "deadlock detected",
    "database is locked",
    "lock timeout",
)

# SQLite, PostgreSQL
UNIQUE_MARKERS = (
    "unique constraint failed",
    "duplicate key value violates unique constraint",
)


def isWriteConflict(error: Exception) -> bool:
    """Check if an exception is a retryable concurrent-write conflict."""
    if isinstance(error, StaleDataError):
        return True
    if isinstance(error, IntegrityError):
        # Uniqueness races only
        message = str(error.orig if error.orig is not None else error).lower()
        return any(marker in message for marker in UNIQUE_MARKERS)
    if isinstance(error, OperationalError):
        message = str(error.orig if error.orig is not None else error).lower()
        return any(marker in message for marker in TRANSIENT_MARKERS)
    return False


def backoffDelay(attempt: int, base: float, maximum: float) -> float:
    """Delay before retry number `attempt` (1-based): base * 2^(attempt-1), capped."""
    return min(maximum, base * (2 ** (attempt - 1)))


async def runInTransaction(
        session: Session,
        work: Callable[[], Awaitable[T]],
        operation: str,
        maxRetries: Optional[int] = None,
        backoffBase: Optional[float] = None,
        backoffMax: Optional[float] = None
) -> T:
    """
    Run `work` as one atomic unit on `session`.
    `work` is re-invoked from scratch on each retry, so it must re-read
    everything it depends on.
    """
    maxRetries = maxRetries if maxRetries is not None else config.TRANSACTION_MAX_RETRIES
    backoffBase = backoffBase if backoffBase is not None else config.TRANSACTION_BACKOFF_BASE
    backoffMax = backoffMax if backoffMax is not None else config.TRANSACTION_BACKOFF_MAX

    attempt = 0
    while True:
        attempt += 1
        try:
            result = await work()
            session.commit()
            return result
        except asyncio.CancelledError:
            session.rollback()
            logger.info(f"{operation} cancelled by caller, transaction rolled back")
            raise
        except Exception as e:
            session.rollback()

            if not isWriteConflict(e):
                raise

            if attempt >= maxRetries:
                logger.error(f"{operation} gave up after {attempt} attempts: {type(e).__name__}")
                raise Conflict(operation, attempt) from e

            delay = backoffDelay(attempt, backoffBase, backoffMax)
            logger.warning(
                f"Write conflict in {operation} (attempt {attempt}/{maxRetries}), "
                f"retrying in {delay:.3f}s"
            )
            await asyncio.sleep(delay)
