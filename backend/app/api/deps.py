"""Shared FastAPI dependencies."""

import hmac
from functools import lru_cache

from fastapi import HTTPException, Request

from app.aggregator.client import AggregatorClient
from app.aggregator.token_manager import AggregatorTokenManager
from app.core.config import get_settings
from app.db.base import get_session_factory
from app.sync.bank_sync import BankSyncService
from app.sync.planner import AccountSyncState, load_account_sync_states
from app.webhooks.idempotency import EventIdempotencyTracker, SqlProcessedEventStore


def get_event_tracker() -> EventIdempotencyTracker:
    """Idempotency tracker over the processed_webhook_events table."""
    settings = get_settings()
    return EventIdempotencyTracker(
        SqlProcessedEventStore(get_session_factory()),
        timeout=settings.idempotency_store_timeout_seconds,
    )


async def get_account_states() -> list[AccountSyncState]:
    return await load_account_sync_states(get_session_factory())


@lru_cache
def get_token_manager() -> AggregatorTokenManager:
    """Process-wide token manager so its per-user locks cover every request."""
    settings = get_settings()
    return AggregatorTokenManager.from_settings(AggregatorClient(settings), settings)


def get_bank_sync_service() -> BankSyncService:
    """Per-user bank sync wired to the shared token manager."""
    return BankSyncService(get_session_factory(), AggregatorClient(get_settings()), get_token_manager())


def require_cron_secret(request: Request) -> None:
    """Allow only callers presenting ``Authorization: Bearer <CRON_SECRET>``.

    Fails closed with 503 when no secret is configured.
    """
    settings = get_settings()
    if not settings.cron_secret:
        raise HTTPException(status_code=503, detail="Cron endpoint is not configured")

    supplied = request.headers.get("authorization", "")
    expected = f"Bearer {settings.cron_secret}"
    if not hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=401, detail="Unauthorized")
