"""Scheduled bank sync planning.

The scheduler (an external job runner) calls the cron endpoint, which builds
a SyncPlan from the current account sync states. The runner then feeds the
plan to run_sync_plan() with its own per-user sync coroutine.
"""

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.models.bank_account import BankAccount
from app.sync.policy import (
    DEFAULT_SYNC_CONFIG,
    SyncConfig,
    batch_delay_seconds,
    needs_scheduled_sync,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class AccountSyncState:
    user_id: str
    last_synced_at: datetime | None


@dataclass
class SyncPlan:
    """Users due for a scheduled sync, chunked into rate-limited batches."""

    batches: list[list[str]]
    skipped: int
    batch_size: int
    rate_limit_per_minute: int
    batch_delay_seconds: float

    @property
    def user_ids(self) -> list[str]:
        return [user_id for batch in self.batches for user_id in batch]


@dataclass
class SyncRunReport:
    users_processed: int = 0
    errors: list[str] = field(default_factory=list)


def plan_scheduled_sync(
    accounts: Iterable[AccountSyncState],
    config: SyncConfig = DEFAULT_SYNC_CONFIG,
    now: datetime | None = None,
) -> SyncPlan:
    """Group accounts by user and keep the users whose data is stale.

    Args:
        accounts: Sync state of every active linked account
        config: Sync thresholds
        now: Current time (for deterministic testing)

    Returns:
        SyncPlan with users in first-seen order
    """
    by_user: dict[str, list[AccountSyncState]] = {}
    for account in accounts:
        by_user.setdefault(account.user_id, []).append(account)

    due = [user_id for user_id, owned in by_user.items() if needs_scheduled_sync(owned, config, now)]
    size = config.cron_batch_size

    return SyncPlan(
        batches=[due[i : i + size] for i in range(0, len(due), size)],
        skipped=len(by_user) - len(due),
        batch_size=size,
        rate_limit_per_minute=config.cron_rate_limit_per_minute,
        batch_delay_seconds=batch_delay_seconds(config),
    )


async def run_sync_plan(
    plan: SyncPlan,
    sync_user: Callable[[str], Awaitable[object]],
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
) -> SyncRunReport:
    """Sync each batch concurrently, pausing between batches.

    A failing user is recorded in the report and does not stop the run.
    """
    report = SyncRunReport()

    for index, batch in enumerate(plan.batches):
        results = await asyncio.gather(*(sync_user(user_id) for user_id in batch), return_exceptions=True)

        for user_id, result in zip(batch, results):
            if isinstance(result, BaseException):
                logger.error(
                    "scheduled_sync_user_failed",
                    user_id=user_id,
                    error=str(result),
                    error_type=type(result).__name__,
                )
                report.errors.append(f"User {user_id}: Sync failed")
            else:
                report.users_processed += 1

        if index < len(plan.batches) - 1:
            await sleep(plan.batch_delay_seconds)

    logger.info(
        "scheduled_sync_completed",
        users_processed=report.users_processed,
        errors=len(report.errors),
        skipped=plan.skipped,
    )
    return report


async def load_account_sync_states(
    session_factory: async_sessionmaker[AsyncSession],
) -> list[AccountSyncState]:
    """Read every linked account's sync timestamp."""
    async with session_factory() as session:
        result = await session.execute(select(BankAccount.user_id, BankAccount.last_synced_at))
        return [AccountSyncState(user_id=row.user_id, last_synced_at=row.last_synced_at) for row in result]
