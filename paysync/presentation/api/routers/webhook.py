"""Stripe webhook receiver."""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from ....core.dependencies import get_webhook_processor
from ....services.webhook_service import WebhookProcessor

router = APIRouter(prefix="/api/stripe", tags=["stripe-webhook"])


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    processor: WebhookProcessor = Depends(get_webhook_processor),
) -> Dict[str, Any]:
    """Verify and apply a Stripe event; errors map to 400 or 5xx so Stripe retries."""
    body = await request.body()
    signature = request.headers.get("stripe-signature")
    result = await run_in_threadpool(processor.handle_event, body, signature)
    return {"received": True, "type": result.event_type, "handled": result.handled}
