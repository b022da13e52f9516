"""Check-run-mark protocol shared by all webhook endpoints.

The route verifies the signature first; only a verified event reaches
process_webhook_event(). A handler failure propagates to the route (which
answers 5xx) and leaves the event unmarked so the provider retries it.
"""

from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any

import structlog

from app.webhooks.idempotency import EventIdempotencyTracker

logger = structlog.get_logger(__name__)

WebhookHandler = Callable[[], Awaitable[Any]]


class WebhookOutcome(StrEnum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"


async def process_webhook_event(
    tracker: EventIdempotencyTracker,
    event_id: str,
    event_type: str,
    handler: WebhookHandler,
    metadata: dict[str, Any] | None = None,
) -> WebhookOutcome:
    """Run ``handler`` once per event id.

    Args:
        tracker: Idempotency tracker for this request
        event_id: Provider-assigned event id
        event_type: Provider event name, stored for diagnostics
        handler: Zero-argument coroutine function with the business logic
        metadata: Optional diagnostics stored with the processed record

    Returns:
        DUPLICATE if the event was already handled, PROCESSED otherwise
    """
    if await tracker.has_been_processed(event_id):
        logger.info("webhook_duplicate_event_ignored", event_id=event_id, event_type=event_type)
        return WebhookOutcome.DUPLICATE

    await handler()

    await tracker.mark_processed(event_id, event_type, metadata)
    return WebhookOutcome.PROCESSED


class WebhookHandlerRegistry:
    """Maps provider event types to coroutine handlers taking the event payload."""

    def __init__(self, provider: str):
        self.provider = provider
        self._handlers: dict[str, Callable[[Any], Awaitable[Any]]] = {}

    def register(self, event_type: str):
        """Decorator registering a handler for ``event_type``."""

        def decorator(func: Callable[[Any], Awaitable[Any]]):
            self._handlers[event_type] = func
            return func

        return decorator

    def get(self, event_type: str) -> Callable[[Any], Awaitable[Any]] | None:
        return self._handlers.get(event_type)

    def clear(self) -> None:
        self._handlers.clear()
