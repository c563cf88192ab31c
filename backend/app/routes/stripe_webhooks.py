"""
Stripe Webhook Endpoint

Verifies the Stripe signature on the raw request body and hands the event to
the WebhookEventProcessor.

Status codes:
- 400: missing/invalid signature, or a structurally malformed event
  (permanent rejection, Stripe should not keep retrying it)
- 500: every handler attempt failed; Stripe redelivers later
- 200: processed, duplicate or ignored
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
import stripe

from ..core.config import settings
from ..core.exceptions import MalformedEventException, WebhookProcessingException
from ..database import get_db
from ..schemas.payment_schemas import WebhookResponse
from ..services.webhook_processor import WebhookEventProcessor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["stripe-webhooks"])


def get_webhook_processor(db: Session = Depends(get_db)) -> WebhookEventProcessor:
    return WebhookEventProcessor(db)


def verify_stripe_event(payload: bytes, signature: str) -> Any:
    """Return the verified event or raise HTTP 400."""
    secret = settings.stripe_webhook_secret.get_secret_value()
    if not secret:
        logger.error("Stripe webhook secret is not configured")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Webhook secret not configured"
        )
    try:
        return stripe.Webhook.construct_event(payload, signature, secret)
    except ValueError:
        logger.warning("Invalid Stripe webhook payload")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload")
    except stripe.SignatureVerificationError:
        logger.warning("Invalid Stripe webhook signature")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook signature"
        )


@router.post("/stripe", response_model=WebhookResponse)
async def handle_stripe_webhook(
    request: Request,
    processor: WebhookEventProcessor = Depends(get_webhook_processor),
) -> WebhookResponse:
    """
    Handle one Stripe webhook delivery.

    Raises:
        HTTPException: 400 for signature or payload problems, 500 when
            processing failed and should be redelivered
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    if not signature:
        logger.warning("Missing Stripe signature header")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Missing stripe-signature header"
        )

    event = verify_stripe_event(payload, signature)

    try:
        result = await run_in_threadpool(processor.process_event, event)
    except MalformedEventException as e:
        logger.warning(f"Rejecting malformed Stripe event: {e.message}")
        raise e.to_http_exception()
    except WebhookProcessingException as e:
        raise e.to_http_exception()

    logger.info(f"Stripe webhook {result.event_id} ({result.event_type}): {result.status.value}")
    return WebhookResponse(
        status=result.status.value,
        event_type=result.event_type,
        event_id=result.event_id,
    )
