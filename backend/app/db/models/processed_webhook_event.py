"""ProcessedWebhookEvent model — idempotency ledger for inbound webhooks."""

import uuid

from sqlalchemy import Column, DateTime, String, func
from sqlalchemy.dialects.postgresql import JSONB, UUID

from app.db.base import Base


class ProcessedWebhookEvent(Base):
    """One row per external event id that finished processing.

    The UNIQUE constraint on event_id is what guarantees at most one record
    per event when retried deliveries race each other. Rows are never
    updated; the retention purge deletes them once processed_at falls
    outside the retention window.
    """

    __tablename__ = "processed_webhook_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_id = Column(String(255), nullable=False, unique=True)
    event_type = Column(String(255), nullable=False)
    # "metadata" is reserved on declarative classes; diagnostics only
    event_metadata = Column("metadata", JSONB, nullable=True)
    processed_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        index=True,
    )
