"""BankAccount model — the slice of linked bank accounts the sync path reads and stamps."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base


class BankAccount(Base):
    """A bank account linked through the Open Banking aggregator.

    last_synced_at is written by the sync path after a successful balance
    fetch; NULL means the account was never synced.
    """

    __tablename__ = "bank_accounts"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String(255), nullable=False, index=True)
    connection_id = Column(UUID(as_uuid=True), ForeignKey("bank_connections.id"), nullable=True, index=True)
    account_id = Column(String(255), nullable=False)  # aggregator-side id
    balance = Column(Numeric(14, 2), nullable=True)
    last_synced_at = Column(DateTime(timezone=True), nullable=True)
