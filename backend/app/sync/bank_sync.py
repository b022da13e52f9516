"""Per-user bank sync: the coroutine run_sync_plan() drives for each user.

For each of the user's bank connections the aggregator token is validated
(and refreshed ahead of expiry) before any account call, the refreshed token
is written back to the connection, and every account's balance is refreshed
and stamped with last_synced_at.
"""

from datetime import UTC, datetime

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.aggregator.client import AggregatorClient
from app.aggregator.token_manager import AggregatorTokenManager
from app.db.models.bank_account import BankAccount
from app.db.models.bank_connection import BankConnection

logger = structlog.get_logger(__name__)


class BankSyncService:
    """Refreshes a user's linked accounts through the aggregator."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        client: AggregatorClient,
        token_manager: AggregatorTokenManager,
    ):
        self.session_factory = session_factory
        self.client = client
        self.token_manager = token_manager

    async def sync_user(self, user_id: str) -> int:
        """Sync every account of ``user_id``.

        A failing account is logged and skipped. A token that cannot be
        refreshed fails the whole user (TokenRefreshError propagates).

        Returns:
            Number of accounts whose balance was updated
        """
        updated = 0

        async with self.session_factory() as session:
            connections = (
                (await session.execute(select(BankConnection).where(BankConnection.user_id == user_id)))
                .scalars()
                .all()
            )

            for connection in connections:
                token = await self.token_manager.get_valid_token(
                    user_id, connection.access_token, connection.token_expires_at
                )
                if token.should_update:
                    connection.access_token = token.access_token
                    connection.token_expires_at = token.expires_at
                    # Persist right away so concurrent requests read the new token
                    await session.commit()

                accounts = (
                    (await session.execute(select(BankAccount).where(BankAccount.connection_id == connection.id)))
                    .scalars()
                    .all()
                )
                for account in accounts:
                    try:
                        balance = await self.client.get_current_balance(token.access_token, account.account_id)
                    except Exception as exc:
                        logger.error(
                            "bank_account_sync_failed",
                            user_id=user_id,
                            account_id=account.account_id,
                            error=str(exc),
                            error_type=type(exc).__name__,
                        )
                        continue

                    if balance is not None:
                        account.balance = balance
                        account.last_synced_at = datetime.now(UTC)
                        updated += 1

            await session.commit()

        logger.info("bank_user_synced", user_id=user_id, connections=len(connections), accounts_updated=updated)
        return updated
