"""Checkout API routes for Stripe payment sessions."""

import logging
from typing import Any

import pydantic
from fastapi import APIRouter, Body, status
from fastapi.responses import JSONResponse

from src.api.middleware.error_handler import UpstreamError, ValidationError
from src.schemas.checkout import CreatePaymentSessionRequest, PaymentSessionResponse
from src.services.checkout_service import CheckoutService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["checkout"])


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _describe(e: pydantic.ValidationError) -> str:
    first = e.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"Invalid {location}: {first.get('msg')}" if location else str(first.get("msg"))


@router.post(
    "/create-payment-session",
    response_model=PaymentSessionResponse,
    responses={
        400: {"description": "Invalid cart or customer data"},
        502: {"description": "Payment provider or ledger unavailable"},
    },
    summary="Create payment session",
    description="Prices the cart, creates a Stripe Checkout Session and records the order.",
)
async def create_payment_session(payload: Any = Body(default=None)) -> PaymentSessionResponse | JSONResponse:
    """Create a payment session for a cart.

    Errors are returned as ``{"error": "<message>"}`` so the storefront can
    show them directly.

    Args:
        payload: Raw JSON body ``{cart, customerData, shippingMethod?}``.

    Returns:
        PaymentSessionResponse: Hosted payment page URL.
    """
    if not isinstance(payload, dict):
        return _error("Request body must be a JSON object", status.HTTP_400_BAD_REQUEST)
    if not payload.get("customerData"):
        return _error("Missing customer data", status.HTTP_400_BAD_REQUEST)

    try:
        request = CreatePaymentSessionRequest.model_validate(payload)
    except pydantic.ValidationError as e:
        return _error(_describe(e), status.HTTP_400_BAD_REQUEST)

    service = CheckoutService()
    try:
        session = await service.create_payment_session(request)
    except ValidationError as e:
        logger.warning("Rejected checkout: %s", e.message)
        return _error(e.message, e.status_code)
    except UpstreamError as e:
        logger.error("Checkout failed: %s", e.message)
        return _error("Payment session could not be created. Please try again.", e.status_code)

    return PaymentSessionResponse(payment_url=session.redirect_url)
