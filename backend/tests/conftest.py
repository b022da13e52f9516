"""Shared test fixtures for all test groups."""

import asyncio
from datetime import UTC, datetime

import pytest

from app.core.exceptions import DuplicateEventError
from app.webhooks.idempotency import EventIdempotencyTracker


class InMemoryEventStore:
    """ProcessedEventStore double with the same uniqueness semantics as the table."""

    def __init__(self):
        self.records: dict[str, dict] = {}

    async def exists(self, event_id: str) -> bool:
        return event_id in self.records

    async def insert(self, event_id: str, event_type: str, metadata: dict | None) -> None:
        if event_id in self.records:
            raise DuplicateEventError(event_id)
        self.records[event_id] = {
            "event_type": event_type,
            "metadata": metadata,
            "processed_at": datetime.now(UTC),
        }

    async def delete_processed_before(self, cutoff: datetime) -> int:
        expired = [k for k, v in self.records.items() if v["processed_at"] < cutoff]
        for event_id in expired:
            del self.records[event_id]
        return len(expired)


class UnavailableEventStore:
    """Store whose every call fails like an unreachable database."""

    async def exists(self, event_id: str) -> bool:
        raise ConnectionError("database unreachable")

    async def insert(self, event_id: str, event_type: str, metadata: dict | None) -> None:
        raise ConnectionError("database unreachable")

    async def delete_processed_before(self, cutoff: datetime) -> int:
        raise ConnectionError("database unreachable")


class HangingEventStore:
    """Store that never answers within a test timeout."""

    async def exists(self, event_id: str) -> bool:
        await asyncio.sleep(10)
        return True

    async def insert(self, event_id: str, event_type: str, metadata: dict | None) -> None:
        await asyncio.sleep(10)

    async def delete_processed_before(self, cutoff: datetime) -> int:
        await asyncio.sleep(10)
        return 0


@pytest.fixture
def event_store():
    return InMemoryEventStore()


@pytest.fixture
def tracker(event_store):
    """Tracker over a fresh in-memory store."""
    return EventIdempotencyTracker(event_store)


@pytest.fixture
def unavailable_tracker():
    """Tracker whose store is down."""
    return EventIdempotencyTracker(UnavailableEventStore())


@pytest.fixture
def hanging_tracker():
    """Tracker whose store times out after 50 ms."""
    return EventIdempotencyTracker(HangingEventStore(), timeout=0.05)
