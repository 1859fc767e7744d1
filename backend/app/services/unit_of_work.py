"""Atomic execution of ledger mutations.

Every mutation runs as ``await run_atomic(factory, operation)`` where
``operation`` is an ``async (session) -> result`` callable.  Each attempt
gets a fresh session and a single transaction: it commits when the
operation returns and rolls back when it raises, so a composite
transformation either lands completely or not at all.

Transient storage errors are retried with exponential backoff:
  - connection invalidated (server restart, dropped socket)
  - serialization failure  (SQLSTATE 40001)
  - deadlock detected      (SQLSTATE 40P01)
  - SQLite "database is locked"

Business errors (KopiTraceException) are never retried.
"""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_SQLSTATES = {"40001", "40P01"}


def is_transient(exc: DBAPIError) -> bool:
    if exc.connection_invalidated:
        return True
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in RETRYABLE_SQLSTATES:
        return True
    return "database is locked" in str(orig).lower()


async def run_atomic(
    session_factory: async_sessionmaker[AsyncSession],
    operation: Callable[[AsyncSession], Awaitable[T]],
    name: str = "ledger_write",
    max_attempts: int | None = None,
    base_delay: float | None = None,
) -> T:
    """Run ``operation`` in its own transaction, retrying transient faults."""
    attempts = max_attempts or settings.ledger_max_attempts
    delay = settings.ledger_retry_base_delay if base_delay is None else base_delay

    attempt = 1
    while True:
        try:
            async with session_factory() as session:
                async with session.begin():
                    return await operation(session)
        except DBAPIError as exc:
            if not is_transient(exc) or attempt >= attempts:
                raise
            wait = delay * (2 ** (attempt - 1))
            logger.warning(
                f"Transient storage error in {name} "
                f"(attempt {attempt}/{attempts}), retrying in {wait:.2f}s: {exc.orig}",
                extra={"operation": name, "attempt": attempt},
            )
            await asyncio.sleep(wait)
            attempt += 1
