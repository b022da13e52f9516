"""Tests for the aggregator HTTP client (token issue and balance refresh)."""

import json

import httpx
import pytest

from app.aggregator.client import AggregatorClient
from app.aggregator.token_manager import AggregatorTokenManager
from app.core.config import Settings
from app.core.exceptions import AggregatorAPIError, TokenRefreshError

pytestmark = pytest.mark.unit


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        aggregator_client_id="client_abc",
        aggregator_client_secret="secret_xyz",
        aggregator_token_url="https://auth.example.test/token",
        aggregator_api_url="https://api.example.test",
    )


def _client(settings, handler) -> AggregatorClient:
    return AggregatorClient(settings, transport=httpx.MockTransport(handler))


class TestGetAccessToken:
    async def test_posts_client_credentials_for_customer(self, settings):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["customer"] = request.headers["X-TG-CustomerUserId"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"accessToken": "tok_1", "tokenType": "Bearer", "expiresIn": 3600})

        token = await _client(settings, handler).get_access_token("user_42")

        assert token.access_token == "tok_1"
        assert token.expires_in == 3600
        assert seen["url"] == "https://auth.example.test/token"
        assert seen["customer"] == "user_42"
        assert seen["body"] == {
            "clientId": "client_abc",
            "clientSecret": "secret_xyz",
            "grantType": "client_credentials",
        }

    async def test_error_status_raises(self, settings):
        client = _client(settings, lambda request: httpx.Response(401, text="bad client"))

        with pytest.raises(AggregatorAPIError) as exc_info:
            await client.get_access_token("user_42")

        assert exc_info.value.status_code == 401

    async def test_backs_token_manager(self, settings):
        client = _client(settings, lambda request: httpx.Response(503, text="down"))
        manager = AggregatorTokenManager(client)

        with pytest.raises(TokenRefreshError) as exc_info:
            await manager.get_valid_token("user_42", "tok_old", None)

        assert isinstance(exc_info.value.__cause__, AggregatorAPIError)


class TestGetCurrentBalance:
    async def test_prefers_current_balance(self, settings):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["auth"] = request.headers["Authorization"]
            return httpx.Response(
                200,
                json={
                    "balances": [
                        {"accountId": "acc_1", "type": "Available", "amount": {"value": 90.0, "currency": "BHD"}},
                        {"accountId": "acc_1", "type": "Current", "amount": {"value": 120.5, "currency": "BHD"}},
                    ]
                },
            )

        balance = await _client(settings, handler).get_current_balance("tok_1", "acc_1")

        assert balance == 120.5
        assert seen["path"] == "/accountInformation/v2/accounts/acc_1/balances/refresh"
        assert seen["auth"] == "Bearer tok_1"

    async def test_falls_back_to_first_balance(self, settings):
        body = {"balances": [{"type": "Available", "amount": {"value": 7.25, "currency": "BHD"}}]}
        client = _client(settings, lambda request: httpx.Response(200, json=body))

        assert await client.get_current_balance("tok_1", "acc_1") == 7.25

    async def test_no_balances(self, settings):
        client = _client(settings, lambda request: httpx.Response(200, json={"balances": []}))

        assert await client.get_current_balance("tok_1", "acc_1") is None

    async def test_error_status_raises(self, settings):
        client = _client(settings, lambda request: httpx.Response(500, text="upstream"))

        with pytest.raises(AggregatorAPIError):
            await client.get_current_balance("tok_1", "acc_1")
