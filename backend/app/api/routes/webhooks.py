"""Inbound webhooks — Stripe billing events and banking aggregator events.

Every endpoint follows the same order:
1. Verify the signature over the raw body. Reject without processing or marking.
2. Acknowledge already-processed event ids without re-running handlers.
3. Run the handler for the event type.
4. Mark the event processed only after the handler succeeded. A failure
   answers 500 so the provider retries.
"""

from typing import Any

import stripe
import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, ValidationError

from app.api.deps import get_event_tracker
from app.core.config import get_settings
from app.webhooks.idempotency import EventIdempotencyTracker
from app.webhooks.processor import (
    WebhookHandlerRegistry,
    WebhookOutcome,
    process_webhook_event,
)
from app.webhooks.signature import verify_signature

logger = structlog.get_logger(__name__)

router = APIRouter()

stripe_handlers = WebhookHandlerRegistry("stripe")
aggregator_handlers = WebhookHandlerRegistry("aggregator")

register_stripe_handler = stripe_handlers.register
register_aggregator_handler = aggregator_handlers.register


# ── Schemas ─────────────────────────────────────────────────────────


class AggregatorEvent(BaseModel):
    id: str
    type: str
    data: dict[str, Any] = {}


class WebhookAck(BaseModel):
    received: bool = True
    duplicate: bool = False


# ── Helpers ─────────────────────────────────────────────────────────


def _configure_stripe() -> None:
    """Configure the stripe module with the secret key for handlers that call the API."""
    stripe.api_key = get_settings().stripe_secret_key


async def _dispatch(
    registry: WebhookHandlerRegistry,
    tracker: EventIdempotencyTracker,
    event_id: str,
    event_type: str,
    payload: Any,
    metadata: dict[str, Any] | None,
) -> WebhookAck:
    handler = registry.get(event_type)
    if handler is None:
        # Still marked processed so redeliveries are not logged again
        logger.info("webhook_event_unhandled", provider=registry.provider, event_type=event_type)

    async def run() -> None:
        if handler is not None:
            await handler(payload)

    try:
        outcome = await process_webhook_event(tracker, event_id, event_type, run, metadata)
    except Exception:
        logger.error(
            "webhook_handler_failed",
            provider=registry.provider,
            event_id=event_id,
            event_type=event_type,
            exc_info=True,
        )
        raise HTTPException(status_code=500, detail="Webhook handler failed")

    return WebhookAck(duplicate=outcome is WebhookOutcome.DUPLICATE)


# ── Endpoints ───────────────────────────────────────────────────────


@router.post("/webhooks/stripe", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    tracker: EventIdempotencyTracker = Depends(get_event_tracker),
):
    """Handle Stripe events; the SDK verifies the Stripe-Signature header."""
    settings = get_settings()
    if not settings.stripe_webhook_secret:
        logger.error("stripe_webhook_secret_missing")
        raise HTTPException(status_code=503, detail="Stripe webhook endpoint is not configured")

    _configure_stripe()
    body = await request.body()
    sig_header = request.headers.get("stripe-signature")
    if not sig_header:
        raise HTTPException(status_code=400, detail="Missing stripe-signature header")

    try:
        event = stripe.Webhook.construct_event(body, sig_header, settings.stripe_webhook_secret)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload")
    except stripe.SignatureVerificationError:
        logger.warning("stripe_webhook_signature_invalid")
        raise HTTPException(status_code=400, detail="Invalid signature")

    event_id = event["id"]
    event_type = event["type"]
    data = event["data"]["object"]
    logger.info("stripe_webhook_received", event_id=event_id, event_type=event_type)

    metadata = {"customer": data["customer"]} if "customer" in data else None
    return await _dispatch(stripe_handlers, tracker, event_id, event_type, data, metadata)


@router.post("/webhooks/aggregator", response_model=WebhookAck)
async def aggregator_webhook(
    request: Request,
    tracker: EventIdempotencyTracker = Depends(get_event_tracker),
):
    """Handle banking aggregator events signed with a hex HMAC in X-Signature."""
    settings = get_settings()
    if not settings.aggregator_webhook_secret:
        logger.error("aggregator_webhook_secret_missing")
        raise HTTPException(status_code=503, detail="Aggregator webhook endpoint is not configured")

    body = await request.body()
    result = verify_signature(
        body,
        request.headers.get("x-signature", ""),
        settings.aggregator_webhook_secret,
        settings.aggregator_webhook_algorithm,
    )
    if not result.verified:
        # The reason stays in our logs; the sender only learns it was rejected
        logger.warning("aggregator_webhook_rejected", reason=result.error)
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        event = AggregatorEvent.model_validate_json(body)
    except ValidationError:
        raise HTTPException(status_code=400, detail="Invalid payload")

    logger.info("aggregator_webhook_received", event_id=event.id, event_type=event.type)
    return await _dispatch(aggregator_handlers, tracker, event.id, event.type, event.data, None)
