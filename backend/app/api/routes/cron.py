"""Cron endpoints — scheduled bank sync and webhook ledger retention.

All are called by the external job runner with the CRON_SECRET bearer token.
"""

from datetime import UTC, datetime

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.api.deps import get_account_states, get_bank_sync_service, get_event_tracker, require_cron_secret
from app.core.config import get_settings
from app.sync.bank_sync import BankSyncService
from app.sync.planner import AccountSyncState, plan_scheduled_sync, run_sync_plan
from app.sync.policy import SyncConfig
from app.webhooks.idempotency import EventIdempotencyTracker

logger = structlog.get_logger(__name__)

router = APIRouter(dependencies=[Depends(require_cron_secret)])


class SyncPlanResponse(BaseModel):
    batches: list[list[str]]
    users_due: int
    skipped: int
    batch_size: int
    rate_limit_per_minute: int
    batch_delay_seconds: float
    generated_at: str  # ISO 8601


class PurgeResponse(BaseModel):
    deleted: int
    retention_days: int


class SyncRunResponse(BaseModel):
    users_processed: int
    errors: list[str]
    skipped: int
    batches: int


@router.get("/cron/sync-banks", response_model=SyncPlanResponse)
async def plan_bank_sync(accounts: list[AccountSyncState] = Depends(get_account_states)):
    """Return the users due for a scheduled sync, batched for the job runner."""
    now = datetime.now(UTC)
    config = SyncConfig.from_settings(get_settings())
    plan = plan_scheduled_sync(accounts, config, now)

    logger.info("scheduled_sync_planned", users_due=len(plan.user_ids), skipped=plan.skipped)

    return SyncPlanResponse(
        batches=plan.batches,
        users_due=len(plan.user_ids),
        skipped=plan.skipped,
        batch_size=plan.batch_size,
        rate_limit_per_minute=plan.rate_limit_per_minute,
        batch_delay_seconds=plan.batch_delay_seconds,
        generated_at=now.isoformat(),
    )


@router.post("/cron/sync-banks", response_model=SyncRunResponse)
async def run_bank_sync(
    accounts: list[AccountSyncState] = Depends(get_account_states),
    sync_service: BankSyncService = Depends(get_bank_sync_service),
):
    """Sync every stale user now, batch by batch under the rate limit."""
    config = SyncConfig.from_settings(get_settings())
    plan = plan_scheduled_sync(accounts, config)

    logger.info("scheduled_sync_started", users_due=len(plan.user_ids), skipped=plan.skipped)
    report = await run_sync_plan(plan, sync_service.sync_user)

    return SyncRunResponse(
        users_processed=report.users_processed,
        errors=report.errors,
        skipped=plan.skipped,
        batches=len(plan.batches),
    )


@router.post("/cron/purge-webhook-events", response_model=PurgeResponse)
async def purge_webhook_events(tracker: EventIdempotencyTracker = Depends(get_event_tracker)):
    """Delete processed webhook records older than the retention window."""
    retention_days = get_settings().webhook_event_retention_days
    deleted = await tracker.purge_expired(retention_days)
    return PurgeResponse(deleted=deleted, retention_days=retention_days)
