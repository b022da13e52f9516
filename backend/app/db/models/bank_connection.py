"""BankConnection model — a user's consented link to one bank via the aggregator."""

import uuid

from sqlalchemy import Column, DateTime, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base


class BankConnection(Base):
    """Holds the aggregator access token used to read the connection's accounts.

    The token is refreshed ahead of expiry by AggregatorTokenManager and
    written back here by the sync path.
    """

    __tablename__ = "bank_connections"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String(255), nullable=False, index=True)
    bank_name = Column(String(255), nullable=False, default="")
    access_token = Column(Text, nullable=False)
    token_expires_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
