"""Proactive access-token refresh for the Open Banking aggregator.

Tokens are checked before each aggregator call and refreshed when they
expire within a buffer window (default 5 minutes), so calls never hit a 401.
A per-user asyncio.Lock serializes refreshes; a request that waited on the
lock while another request refreshed reuses that refresh's token.

The caller owns persistence: when ``should_update`` is True it must store
the new token and expiry on the bank connection.
"""

import asyncio
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Protocol

import structlog

from app.core.exceptions import TokenRefreshError
from app.sync.policy import parse_timestamp

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class IssuedToken:
    access_token: str
    expires_in: int  # seconds


class TokenSource(Protocol):
    """Issues aggregator access tokens for a user."""

    async def get_access_token(self, user_id: str) -> IssuedToken: ...


@dataclass(frozen=True)
class TokenRefreshResult:
    access_token: str
    should_update: bool
    expires_at: datetime


class AggregatorTokenManager:
    """Hands out valid aggregator tokens, refreshing them ahead of expiry.

    One instance is shared per process so its locks cover every request.
    """

    def __init__(
        self,
        source: TokenSource,
        buffer_minutes: int = 5,
        refresh_dedupe_seconds: float = 10.0,
    ):
        self.source = source
        self.buffer = timedelta(minutes=buffer_minutes)
        self.refresh_dedupe_seconds = refresh_dedupe_seconds
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_holders: dict[str, int] = {}
        self._recent: dict[str, tuple[float, TokenRefreshResult]] = {}

    @classmethod
    def from_settings(cls, source: TokenSource, settings) -> "AggregatorTokenManager":
        return cls(source, buffer_minutes=settings.token_refresh_buffer_minutes)

    @asynccontextmanager
    async def _user_lock(self, user_id: str) -> AsyncIterator[None]:
        """Hold the user's refresh lock; the lock is dropped once nobody holds or awaits it."""
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        self._lock_holders[user_id] = self._lock_holders.get(user_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_holders[user_id] -= 1
            if self._lock_holders[user_id] == 0:
                del self._lock_holders[user_id]
                del self._locks[user_id]

    def _prune_recent(self, monotonic_now: float) -> None:
        expired = [
            user_id
            for user_id, (refreshed_at, _) in self._recent.items()
            if monotonic_now - refreshed_at >= self.refresh_dedupe_seconds
        ]
        for user_id in expired:
            del self._recent[user_id]

    async def get_valid_token(
        self,
        user_id: str,
        access_token: str,
        token_expires_at: datetime | str | None,
        now: datetime | None = None,
    ) -> TokenRefreshResult:
        """Return a token that stays valid for at least the buffer window.

        Args:
            user_id: Owner of the bank connection
            access_token: Token currently stored on the connection
            token_expires_at: Its expiry (datetime or ISO-8601 string); a
                missing or unreadable expiry forces a refresh
            now: Current time (for deterministic testing)

        Raises:
            TokenRefreshError: the aggregator did not issue a new token
        """
        now = parse_timestamp(now) if now is not None else datetime.now(UTC)
        expires_at = parse_timestamp(token_expires_at)

        if expires_at is not None and expires_at > now + self.buffer:
            return TokenRefreshResult(access_token=access_token, should_update=False, expires_at=expires_at)

        async with self._user_lock(user_id):
            self._prune_recent(time.monotonic())
            recent = self._recent.get(user_id)
            if recent is not None:
                # A concurrent request just refreshed; it persists the new token
                _, refreshed = recent
                logger.debug("aggregator_token_refresh_skipped", user_id=user_id)
                return TokenRefreshResult(
                    access_token=refreshed.access_token,
                    should_update=False,
                    expires_at=refreshed.expires_at,
                )

            try:
                issued = await self.source.get_access_token(user_id)
            except Exception as exc:
                logger.error(
                    "aggregator_token_refresh_failed",
                    user_id=user_id,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                raise TokenRefreshError(user_id) from exc

            result = TokenRefreshResult(
                access_token=issued.access_token,
                should_update=True,
                expires_at=now + timedelta(seconds=issued.expires_in),
            )
            self._recent[user_id] = (time.monotonic(), result)
            logger.info("aggregator_token_refreshed", user_id=user_id, expires_in=issued.expires_in)
            return result
