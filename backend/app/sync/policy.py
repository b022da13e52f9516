"""Smart sync policy: when to refresh bank data pulled from the aggregator.

Pure functions with no I/O. Every function that looks at the clock takes an
optional ``now`` for deterministic testing.

Interactive thresholds (dashboard open):
- synced less than 15 min ago   -> no refresh
- synced 15-60 min ago          -> balances only
- synced 60+ min ago, or never  -> full incremental sync

The scheduled job uses its own, longer threshold (12 h) and throttles work
with a fixed batch size and per-minute rate limit.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any

Timestamp = datetime | str | None


class SyncAction(StrEnum):
    NONE = "none"
    BALANCE_ONLY = "balance-only"
    FULL = "full"


@dataclass(frozen=True)
class SyncConfig:
    """Sync thresholds. Override any field; decision logic reads only this."""

    fresh_threshold: timedelta = timedelta(minutes=15)
    balance_only_threshold: timedelta = timedelta(minutes=60)

    # Scheduled job
    cron_interval: timedelta = timedelta(hours=24)
    cron_skip_if_synced: timedelta = timedelta(hours=12)
    cron_rate_limit_per_minute: int = 10
    cron_batch_size: int = 5

    # Transaction fetch windows
    default_transaction_days: int = 90  # first sync
    incremental_transaction_days: int = 7

    @classmethod
    def from_settings(cls, settings) -> "SyncConfig":
        return cls(
            fresh_threshold=timedelta(minutes=settings.sync_fresh_threshold_minutes),
            balance_only_threshold=timedelta(minutes=settings.sync_balance_only_threshold_minutes),
            cron_interval=timedelta(hours=settings.cron_interval_hours),
            cron_skip_if_synced=timedelta(hours=settings.cron_skip_if_synced_hours),
            cron_rate_limit_per_minute=settings.cron_rate_limit_per_minute,
            cron_batch_size=settings.cron_batch_size,
            default_transaction_days=settings.default_transaction_days,
            incremental_transaction_days=settings.incremental_transaction_days,
        )


DEFAULT_SYNC_CONFIG = SyncConfig()


def parse_timestamp(value: Timestamp) -> datetime | None:
    """Normalize a timestamp to an aware UTC datetime.

    Accepts datetimes (naive ones are taken as UTC), ISO-8601 strings
    (including a trailing "Z") and None. A string that is not ISO-8601
    yields None, so it reads as never synced.
    """
    if value is None or value == "":
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _utc_now(now: datetime | None) -> datetime:
    return parse_timestamp(now) if now is not None else datetime.now(UTC)


def _last_synced_at(source: Any) -> Timestamp:
    if isinstance(source, Mapping):
        return source.get("last_synced_at")
    return getattr(source, "last_synced_at", None)


def decide_sync(
    last_synced_at: Timestamp,
    config: SyncConfig = DEFAULT_SYNC_CONFIG,
    now: datetime | None = None,
) -> SyncAction:
    """Pick the refresh action for data last synced at ``last_synced_at``.

    Lower bounds are inclusive: an age of exactly 15 min is BALANCE_ONLY and
    exactly 60 min is FULL.
    """
    synced_at = parse_timestamp(last_synced_at)
    if synced_at is None:
        return SyncAction.FULL

    now = _utc_now(now)
    age = now - synced_at

    if age < config.fresh_threshold:
        return SyncAction.NONE
    if age < config.balance_only_threshold:
        return SyncAction.BALANCE_ONLY
    return SyncAction.FULL


def oldest_sync_time(sources: Iterable[Any] | None) -> datetime | None:
    """Return the oldest non-null ``last_synced_at`` across ``sources``.

    Sources are mappings or objects with a ``last_synced_at`` key/attribute.
    Decisions for multi-account users are driven by the stalest account.
    """
    times = [parse_timestamp(_last_synced_at(s)) for s in sources or ()]
    times = [t for t in times if t is not None]
    return min(times) if times else None


def format_recency(value: Timestamp, now: datetime | None = None) -> str:
    """Human label for how long ago ``value`` was ("Just now", "5m ago", ...).

    Each bucket truncates: 119 minutes is "1h ago".
    """
    synced_at = parse_timestamp(value)
    if synced_at is None:
        return "Never"

    now = _utc_now(now)
    elapsed = now - synced_at
    minutes = int(elapsed // timedelta(minutes=1))
    hours = int(elapsed // timedelta(hours=1))
    days = int(elapsed // timedelta(days=1))

    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{minutes}m ago"
    if hours < 24:
        return f"{hours}h ago"
    return f"{days}d ago"


def needs_scheduled_sync(
    sources: Iterable[Any],
    config: SyncConfig = DEFAULT_SYNC_CONFIG,
    now: datetime | None = None,
) -> bool:
    """Whether the scheduled job should re-sync a user owning ``sources``.

    A user with no accounts is skipped; a never-synced account always
    qualifies; otherwise the oldest sync must be older than
    ``cron_skip_if_synced``.
    """
    sources = list(sources)
    if not sources:
        return False
    if any(parse_timestamp(_last_synced_at(s)) is None for s in sources):
        return True

    now = _utc_now(now)
    return oldest_sync_time(sources) < now - config.cron_skip_if_synced


def batch_delay_seconds(config: SyncConfig = DEFAULT_SYNC_CONFIG) -> float:
    """Pause between scheduled batches that keeps the job under its rate limit."""
    return 60 / config.cron_rate_limit_per_minute


def transaction_fetch_start(
    last_synced_at: Timestamp,
    config: SyncConfig = DEFAULT_SYNC_CONFIG,
    now: datetime | None = None,
    first_sync: bool = False,
) -> datetime:
    """Start of the transaction window to request from the aggregator.

    First sync pulls ``default_transaction_days`` of history. Later syncs
    resume from the last sync, or look back ``incremental_transaction_days``
    when no sync time is recorded.
    """
    now = _utc_now(now)
    if first_sync:
        return now - timedelta(days=config.default_transaction_days)

    synced_at = parse_timestamp(last_synced_at)
    if synced_at is not None:
        return synced_at
    return now - timedelta(days=config.incremental_transaction_days)
