"""Open Banking aggregator API client.

Covers the two calls the sync path needs:
- Client-credentials access tokens scoped to one customer
- Balance refresh for a linked account

The aggregator's wider API (intents, consents, transactions) is driven
elsewhere.
"""

import httpx
import structlog

from app.aggregator.token_manager import IssuedToken
from app.core.config import Settings, get_settings
from app.core.exceptions import AggregatorAPIError

logger = structlog.get_logger(__name__)


class AggregatorClient:
    """Client for the aggregator's token and account-information endpoints.

    Implements TokenSource, so it can back an AggregatorTokenManager.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings or get_settings()
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self._transport,
            timeout=self.settings.aggregator_timeout_seconds,
        )

    async def get_access_token(self, user_id: str) -> IssuedToken:
        """Issue an access token for ``user_id`` (sent as X-TG-CustomerUserId)."""
        async with self._client() as client:
            response = await client.post(
                self.settings.aggregator_token_url,
                json={
                    "clientId": self.settings.aggregator_client_id,
                    "clientSecret": self.settings.aggregator_client_secret,
                    "grantType": "client_credentials",
                },
                headers={"X-TG-CustomerUserId": user_id},
            )

        if response.status_code != 200:
            raise AggregatorAPIError("token", response.status_code, response.text)

        data = response.json()
        return IssuedToken(access_token=data["accessToken"], expires_in=int(data["expiresIn"]))

    async def get_current_balance(self, access_token: str, account_id: str) -> float | None:
        """Refresh and return the account's current balance.

        Picks the "Current" balance, falling back to the first one reported.
        Returns None when the bank reports no balances.
        """
        url = f"{self.settings.aggregator_api_url}/accountInformation/v2/accounts/{account_id}/balances/refresh"
        async with self._client() as client:
            response = await client.get(url, headers={"Authorization": f"Bearer {access_token}"})

        if response.status_code != 200:
            raise AggregatorAPIError("balance", response.status_code, response.text)

        balances = response.json().get("balances") or []
        if not balances:
            logger.info("aggregator_balance_empty", account_id=account_id)
            return None

        current = next((b for b in balances if b.get("type") == "Current"), balances[0])
        return current["amount"]["value"]
