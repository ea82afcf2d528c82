"""
Retrying transaction runner shared by the inventory engine and the record
services.

A unit of work is an async callable that receives an ``AsyncSession`` with a
transaction already open. It either returns a value (committed), raises
``TransactionAborted`` to roll back with a business error, or raises
``WriteConflict`` when a compare-and-swap update matched nothing. Conflicts
and transient storage errors are retried with a fresh session; every attempt
re-reads state from scratch.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional, TypeVar
from uuid import UUID

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bloodline.config import Settings
from bloodline.database import Database
from bloodline.errors import (
    ConcurrentModification,
    LedgerError,
    StorageUnavailable,
    Timeout,
)
from bloodline.utils.logging_config import LogContext, get_logger
from bloodline.utils.result import Err, Ok, Result

logger = get_logger(__name__)

T = TypeVar("T")
Work = Callable[[AsyncSession], Awaitable[T]]

# PostgreSQL serialization_failure and deadlock_detected
RETRYABLE_SQLSTATES = frozenset({"40001", "40P01"})
SQLITE_LOCK_MESSAGES = ("database is locked", "database table is locked")

UNIQUE_VIOLATION_SQLSTATE = "23505"
# Unique keys two writers can both try to insert: the stock line per
# (bank, blood group) and the unit serial of a collected donation
RACE_PRONE_KEYS = (
    "uq_inventory_bank_blood_group",
    "blood_inventory.blood_bank_id",
    "unit_serial_number",
)


class TransactionAborted(Exception):
    """Raised inside a unit of work to roll back and return ``error``."""

    def __init__(self, error: LedgerError):
        super().__init__(error.message)
        self.error = error


class WriteConflict(Exception):
    """A conditional update found the row changed since it was read."""

    def __init__(self, entity_type: str, entity_id: Any):
        super().__init__(f"{entity_type} {entity_id} changed during the transaction")
        self.entity_type = entity_type
        self.entity_id = entity_id


def abort_on_err(result: Result) -> None:
    """Turn an ``Err`` from a validation helper into a rollback."""
    if not result.ok:
        raise TransactionAborted(result.error)


def _sqlstate(orig: Any) -> Optional[str]:
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def storage_unavailable(operation: str, exc: DBAPIError) -> StorageUnavailable:
    """Log a non-retryable storage failure and describe it as an error value."""
    reason = str(exc.orig if exc.orig is not None else exc)
    logger.error(f"{operation} failed on storage error: {reason}", exc_info=True)
    return StorageUnavailable(reason=reason)


def is_insert_race(exc: IntegrityError) -> bool:
    """True when a concurrent writer inserted the same stock line or unit serial."""
    orig = getattr(exc, "orig", None)
    message = str(orig if orig is not None else exc).lower()
    unique = (
        _sqlstate(orig) == UNIQUE_VIOLATION_SQLSTATE
        or "unique constraint failed" in message
        or "duplicate key value" in message
    )
    return unique and any(key in message for key in RACE_PRONE_KEYS)


def is_transient(exc: DBAPIError) -> bool:
    """True for lock and serialization errors that a fresh attempt can clear."""
    orig = getattr(exc, "orig", None)
    sqlstate = _sqlstate(orig)
    if sqlstate in RETRYABLE_SQLSTATES:
        return True
    message = str(orig if orig is not None else exc).lower()
    return any(fragment in message for fragment in SQLITE_LOCK_MESSAGES)


class TransactionRunner:
    def __init__(
        self,
        database: Database,
        *,
        max_retries: int = 3,
        timeout_seconds: float = 5.0,
    ):
        self.database = database
        self.max_retries = max_retries
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(cls, database: Database, settings: Settings) -> "TransactionRunner":
        return cls(
            database,
            max_retries=settings.TRANSACTION_MAX_RETRIES,
            timeout_seconds=settings.TRANSACTION_TIMEOUT_SECONDS,
        )

    async def run(
        self,
        operation: str,
        work: Work,
        *,
        entity_type: str,
        entity_id: Optional[UUID] = None,
    ) -> Result[Any, LedgerError]:
        """Run ``work`` atomically, bounded by the configured timeout."""
        with LogContext(op=operation):
            try:
                return await asyncio.wait_for(
                    self._run_with_retries(operation, work, entity_type, entity_id),
                    timeout=self.timeout_seconds,
                )
            except asyncio.TimeoutError:
                # wait_for cancelled the attempt; leaving the session context
                # rolled the open transaction back
                logger.warning(
                    f"{operation} timed out after {self.timeout_seconds} seconds",
                    extra={"extra_fields": {"entity_id": str(entity_id)}},
                )
                return Err(Timeout(operation=operation, seconds=self.timeout_seconds))

    async def _run_with_retries(
        self,
        operation: str,
        work: Work,
        entity_type: str,
        entity_id: Optional[UUID],
    ) -> Result[Any, LedgerError]:
        for attempt in range(1, self.max_retries + 1):
            try:
                async with self.database.session() as session:
                    async with session.begin():
                        value = await work(session)
                return Ok(value)

            except TransactionAborted as e:
                logger.info(
                    f"{operation} aborted: {e.error.code}",
                    extra={"extra_fields": {"error": e.error.details()}},
                )
                return Err(e.error)

            except WriteConflict as e:
                reason = str(e)

            except IntegrityError as e:
                # Only a lost insert race is worth a fresh attempt
                if not is_insert_race(e):
                    return Err(storage_unavailable(operation, e))
                reason = str(e.orig)

            except DBAPIError as e:
                if not is_transient(e):
                    return Err(storage_unavailable(operation, e))
                reason = str(e.orig)

            logger.warning(
                f"{operation} conflict on attempt {attempt}/{self.max_retries}: {reason}",
                extra={"extra_fields": {"entity_id": str(entity_id), "attempt": attempt}},
            )

        return Err(
            ConcurrentModification(
                entity_type=entity_type,
                entity_id=entity_id,
                attempts=self.max_retries,
            )
        )
