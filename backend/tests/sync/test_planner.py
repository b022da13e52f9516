"""Tests for scheduled bank sync planning and batch execution."""

from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.sync.planner import (
    AccountSyncState,
    SyncPlan,
    load_account_sync_states,
    plan_scheduled_sync,
    run_sync_plan,
)
from app.sync.policy import SyncConfig

pytestmark = pytest.mark.unit

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)
STALE = NOW - timedelta(hours=13)
FRESH = NOW - timedelta(hours=1)


def _plan(batches: list[list[str]], delay: float = 6.0) -> SyncPlan:
    return SyncPlan(batches=batches, skipped=0, batch_size=5, rate_limit_per_minute=10, batch_delay_seconds=delay)


class TestPlanScheduledSync:
    def test_keeps_only_stale_users(self):
        accounts = [
            AccountSyncState("user_stale", STALE),
            AccountSyncState("user_fresh", FRESH),
            AccountSyncState("user_never", None),
        ]

        plan = plan_scheduled_sync(accounts, now=NOW)

        assert plan.user_ids == ["user_stale", "user_never"]
        assert plan.skipped == 1

    def test_user_with_one_stale_account_is_due(self):
        accounts = [AccountSyncState("user_a", FRESH), AccountSyncState("user_a", STALE)]

        plan = plan_scheduled_sync(accounts, now=NOW)

        assert plan.batches == [["user_a"]]

    def test_batches_by_configured_size(self):
        accounts = [AccountSyncState(f"user_{i}", None) for i in range(12)]

        plan = plan_scheduled_sync(accounts, SyncConfig(cron_batch_size=5), now=NOW)

        assert [len(b) for b in plan.batches] == [5, 5, 2]
        assert plan.batches[0][0] == "user_0"
        assert plan.batch_size == 5

    def test_exposes_rate_limit(self):
        plan = plan_scheduled_sync([], SyncConfig(cron_rate_limit_per_minute=20), now=NOW)

        assert plan.batches == []
        assert plan.rate_limit_per_minute == 20
        assert plan.batch_delay_seconds == 3.0


class TestRunSyncPlan:
    async def test_sleeps_between_batches_only(self):
        sync_user = AsyncMock()
        sleep = AsyncMock()

        report = await run_sync_plan(_plan([["a", "b"], ["c"], ["d"]]), sync_user, sleep=sleep)

        assert report.users_processed == 4
        assert report.errors == []
        assert sleep.await_count == 2
        sleep.assert_awaited_with(6.0)

    async def test_failed_user_does_not_stop_run(self):
        async def sync_user(user_id):
            if user_id == "b":
                raise RuntimeError("aggregator 502")

        report = await run_sync_plan(_plan([["a", "b"], ["c"]]), sync_user, sleep=AsyncMock())

        assert report.users_processed == 2
        assert report.errors == ["User b: Sync failed"]

    async def test_empty_plan(self):
        sleep = AsyncMock()

        report = await run_sync_plan(_plan([]), AsyncMock(), sleep=sleep)

        assert report.users_processed == 0
        sleep.assert_not_awaited()


class TestLoadAccountSyncStates:
    async def test_maps_rows(self):
        session = AsyncMock()
        session.execute.return_value = [
            SimpleNamespace(user_id="user_a", last_synced_at=STALE),
            SimpleNamespace(user_id="user_b", last_synced_at=None),
        ]

        @asynccontextmanager
        async def _session():
            yield session

        states = await load_account_sync_states(MagicMock(side_effect=lambda: _session()))

        assert states == [AccountSyncState("user_a", STALE), AccountSyncState("user_b", None)]
