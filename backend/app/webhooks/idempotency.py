"""Webhook event idempotency — exactly-once bookkeeping for provider retries.

Stripe (and the banking aggregator) redeliver an event until they get a 2xx,
for up to three days. Each event id that finished processing is recorded in
``processed_webhook_events``; a redelivery finds the record and is
acknowledged without re-running business logic.

Contract:
- The UNIQUE constraint on event_id is the only source of truth. There is no
  in-process locking: two racing deliveries may both see "not processed",
  so handlers must themselves be safe to run twice (upserts, not appends).
- Reads fail open. If the store is down or slow, has_been_processed()
  answers False and logs a warning; webhooks keep flowing at the cost of a
  possible duplicate run.
- Writes are best effort. mark_processed() never raises; a duplicate-key
  insert means a racing delivery already recorded the event.
- Records are kept for 7 days (2x Stripe's retry window) and removed by
  purge_expired().
"""

import asyncio
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, Protocol

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import DuplicateEventError
from app.db.models.processed_webhook_event import ProcessedWebhookEvent

logger = structlog.get_logger(__name__)

# PostgreSQL SQLSTATE for unique_violation
UNIQUE_VIOLATION = "23505"

DEFAULT_RETENTION_DAYS = 7


class LookupOutcome(Enum):
    PROCESSED = "processed"
    NOT_PROCESSED = "not_processed"
    STORAGE_ERROR = "storage_error"


class MarkOutcome(Enum):
    RECORDED = "recorded"
    ALREADY_RECORDED = "already_recorded"
    STORAGE_ERROR = "storage_error"


class ProcessedEventStore(Protocol):
    """Storage boundary for processed event records."""

    async def exists(self, event_id: str) -> bool: ...

    async def insert(self, event_id: str, event_type: str, metadata: dict[str, Any] | None) -> None:
        """Insert a record. Raises DuplicateEventError if event_id is already stored."""
        ...

    async def delete_processed_before(self, cutoff: datetime) -> int: ...


def _sqlstate(exc: IntegrityError) -> str | None:
    """SQLSTATE from the DBAPI error or, for asyncpg, the driver error it wraps."""
    for err in (exc.orig, getattr(exc.orig, "__cause__", None)):
        code = getattr(err, "sqlstate", None) or getattr(err, "pgcode", None)
        if code:
            return code
    return None


def _is_unique_violation(exc: IntegrityError) -> bool:
    """True when an IntegrityError comes from a duplicate key.

    Without a SQLSTATE, the driver's message must name a unique/duplicate
    violation; NOT NULL and other constraint failures stay errors.
    """
    code = _sqlstate(exc)
    if code is not None:
        return code == UNIQUE_VIOLATION
    message = str(exc.orig).lower()
    return "unique" in message or "duplicate" in message


class SqlProcessedEventStore:
    """ProcessedEventStore backed by the processed_webhook_events table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def exists(self, event_id: str) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ProcessedWebhookEvent.id).where(ProcessedWebhookEvent.event_id == event_id)
            )
            return result.scalar_one_or_none() is not None

    async def insert(self, event_id: str, event_type: str, metadata: dict[str, Any] | None) -> None:
        async with self.session_factory() as session:
            session.add(
                ProcessedWebhookEvent(
                    event_id=event_id,
                    event_type=event_type,
                    event_metadata=metadata,
                )
            )
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                if _is_unique_violation(exc):
                    raise DuplicateEventError(event_id) from exc
                raise

    async def delete_processed_before(self, cutoff: datetime) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                delete(ProcessedWebhookEvent).where(ProcessedWebhookEvent.processed_at < cutoff)
            )
            await session.commit()
            return result.rowcount or 0


class EventIdempotencyTracker:
    """Answers "has this event been handled?" and records handled events.

    Args:
        store: Storage boundary (SqlProcessedEventStore in production)
        timeout: Seconds to wait on each store call; a timeout counts as a
            storage failure. None waits indefinitely.
    """

    def __init__(self, store: ProcessedEventStore, timeout: float | None = None):
        self.store = store
        self.timeout = timeout

    async def lookup(self, event_id: str) -> LookupOutcome:
        """Look the event up without applying any policy. Never raises."""
        try:
            found = await asyncio.wait_for(self.store.exists(event_id), timeout=self.timeout)
        except Exception as exc:
            logger.error(
                "webhook_idempotency_lookup_failed",
                event_id=event_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return LookupOutcome.STORAGE_ERROR
        return LookupOutcome.PROCESSED if found else LookupOutcome.NOT_PROCESSED

    def _fail_open(self, event_id: str, outcome: LookupOutcome) -> bool:
        """The fail-open decision point: an unreadable store means "not processed"."""
        if outcome is LookupOutcome.STORAGE_ERROR:
            logger.warning("webhook_idempotency_fail_open", event_id=event_id)
            return False
        return outcome is LookupOutcome.PROCESSED

    async def has_been_processed(self, event_id: str) -> bool:
        outcome = await self.lookup(event_id)
        return self._fail_open(event_id, outcome)

    async def record(
        self,
        event_id: str,
        event_type: str,
        metadata: dict[str, Any] | None = None,
    ) -> MarkOutcome:
        """Insert the processed record and report what happened. Never raises."""
        try:
            await asyncio.wait_for(
                self.store.insert(event_id, event_type, metadata),
                timeout=self.timeout,
            )
        except DuplicateEventError:
            logger.info("webhook_event_already_marked", event_id=event_id, event_type=event_type)
            return MarkOutcome.ALREADY_RECORDED
        except Exception as exc:
            logger.error(
                "webhook_event_mark_failed",
                event_id=event_id,
                event_type=event_type,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return MarkOutcome.STORAGE_ERROR

        logger.debug("webhook_event_marked", event_id=event_id, event_type=event_type)
        return MarkOutcome.RECORDED

    async def mark_processed(
        self,
        event_id: str,
        event_type: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Record the event as handled. Call only after business logic succeeded."""
        await self.record(event_id, event_type, metadata)

    async def purge_expired(
        self,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        now: datetime | None = None,
    ) -> int:
        """Delete records older than the retention window.

        Returns:
            Number of deleted records (0 when the store is unavailable)
        """
        now = now or datetime.now(UTC)
        cutoff = now - timedelta(days=retention_days)
        try:
            deleted = await asyncio.wait_for(
                self.store.delete_processed_before(cutoff),
                timeout=self.timeout,
            )
        except Exception as exc:
            logger.error(
                "webhook_event_purge_failed",
                cutoff=cutoff.isoformat(),
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return 0

        logger.info("webhook_events_purged", deleted=deleted, cutoff=cutoff.isoformat())
        return deleted
