"""Re-export all models so Base.metadata sees them."""

from app.db.models.bank_account import BankAccount
from app.db.models.bank_connection import BankConnection
from app.db.models.processed_webhook_event import ProcessedWebhookEvent

__all__ = [
    "BankAccount",
    "BankConnection",
    "ProcessedWebhookEvent",
]
