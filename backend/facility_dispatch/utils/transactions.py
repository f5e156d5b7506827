"""
Database Transaction Utilities

Explicit transaction boundaries for dispatch operations that touch
several tables (incident + schedule + counters), and translation of
store outages into StoreUnavailableError.

When to use transaction():
- One alert submission, one sweep item, one schedule status change
- Anything that must commit or roll back as a unit

When NOT to use:
- Read-only queries
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import exc as sa_exc
from sqlalchemy.ext.asyncio import AsyncSession

from facility_dispatch.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

# Connection loss, statement timeouts and pool exhaustion
STORE_FAILURES = (
    sa_exc.OperationalError,
    sa_exc.InterfaceError,
    sa_exc.TimeoutError,
    TimeoutError,
    ConnectionError,
)


@asynccontextmanager
async def transaction(db: AsyncSession) -> AsyncGenerator[AsyncSession, None]:
    """
    Commit on success, roll back on any error.

    If a transaction is already active (the caller opened it), this
    just yields and leaves commit/rollback to the caller.

    Usage:
        async with transaction(db):
            db.add(incident)
            await db.flush()
            db.add(schedule)
    """
    if db.in_transaction():
        logger.debug("Transaction already active, using existing transaction")
        yield db
        return

    try:
        yield db
        await db.commit()
        logger.debug("Transaction committed successfully")
    except Exception as e:
        await db.rollback()
        logger.error(f"Transaction rolled back due to error: {e}", exc_info=True)
        raise


@asynccontextmanager
async def store_guard(operation: str) -> AsyncGenerator[None, None]:
    """
    Re-raise store outages as StoreUnavailableError.

    Keeps "the database is down" distinct from every business outcome so
    callers can retry the whole request.
    """
    try:
        yield
    except STORE_FAILURES as e:
        logger.error(f"Store unavailable during {operation}: {e}", exc_info=True)
        raise StoreUnavailableError(f"Store unavailable during {operation}") from e
