"""API-specific test fixtures.

The app is assembled without the production lifespan, so no database is
needed: the idempotency tracker, account loader and bank sync service are
dependency overrides.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient

from app.api import deps
from app.api.routes import api_router, cron, webhooks
from app.core.config import Settings
from app.main import generic_exception_handler, http_exception_handler

STRIPE_WEBHOOK_SECRET = "whsec_test_dummy"
AGGREGATOR_WEBHOOK_SECRET = "agg_test_secret"
CRON_SECRET = "cron_test_secret"


@pytest.fixture
def test_settings(monkeypatch) -> Settings:
    """Settings with every secret configured, patched into the modules that read them."""
    settings = Settings(
        _env_file=None,
        debug=True,
        stripe_webhook_secret=STRIPE_WEBHOOK_SECRET,
        aggregator_webhook_secret=AGGREGATOR_WEBHOOK_SECRET,
        cron_secret=CRON_SECRET,
    )
    for module in (deps, webhooks, cron):
        monkeypatch.setattr(module, "get_settings", lambda: settings)
    return settings


@pytest.fixture
def account_states() -> list:
    """Account sync states served by the overridden loader; tests append to it."""
    return []


@pytest.fixture
def bank_sync_service() -> MagicMock:
    """Stand-in for BankSyncService; sync_user succeeds unless a test says otherwise."""
    service = MagicMock()
    service.sync_user = AsyncMock(return_value=1)
    return service


@pytest.fixture
def api_app(test_settings, tracker, account_states, bank_sync_service) -> FastAPI:
    app = FastAPI(title=test_settings.app_name)
    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(Exception)(generic_exception_handler)
    app.include_router(api_router, prefix="/api")

    async def _account_states():
        return account_states

    app.dependency_overrides[deps.get_event_tracker] = lambda: tracker
    app.dependency_overrides[deps.get_account_states] = _account_states
    app.dependency_overrides[deps.get_bank_sync_service] = lambda: bank_sync_service
    yield app
    app.dependency_overrides.clear()
    webhooks.stripe_handlers.clear()
    webhooks.aggregator_handlers.clear()


@pytest.fixture
def api_client(api_app) -> TestClient:
    return TestClient(api_app, raise_server_exceptions=False)
