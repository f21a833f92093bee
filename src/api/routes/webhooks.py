"""Webhook API routes for payment provider events."""

import logging

from fastapi import APIRouter, HTTPException, Request, status

from src.api.middleware.error_handler import SignatureError
from src.schemas.checkout import WebhookAck
from src.services.webhook_service import WebhookService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhook", tags=["webhooks"])


@router.post(
    "/provider",
    response_model=WebhookAck,
    status_code=status.HTTP_200_OK,
    summary="Handle Stripe webhooks",
    description="Receives Stripe checkout events. Requires a valid signature over the raw body.",
)
@router.post("/stripe", response_model=WebhookAck, include_in_schema=False)
async def provider_webhook(request: Request) -> WebhookAck:
    """Handle payment provider webhook events.

    The body is read raw and verified before anything else; no ledger
    access happens for an unverified event.

    Handles:
    - checkout.session.completed (paid or no_payment_required): marks the order Paid
    - checkout.session.async_payment_succeeded: marks the order Paid
    Everything else is acknowledged and ignored.

    Args:
        request: FastAPI request object for reading raw body and headers.

    Returns:
        WebhookAck: ``{"received": true}``.

    Raises:
        HTTPException: 400 if the signature is missing or invalid.
    """
    # Get raw body for signature verification
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    service = WebhookService()

    try:
        event = service.verify(payload, sig_header)
    except SignatureError as e:
        logger.error("Rejected webhook: %s", e.message)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message) from e

    outcome = await service.handle_event(event)
    logger.info("Processed webhook event %s: %s", event.get("type", ""), outcome.value)

    return WebhookAck(received=True)
