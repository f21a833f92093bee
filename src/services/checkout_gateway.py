"""Stripe Checkout adapter.

All methods are blocking; async callers run them through ``run_blocking``.
Stripe failures surface as ``UpstreamError`` and signature failures as
``SignatureError``.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

import stripe

from src.api.middleware.error_handler import SignatureError, UpstreamError
from src.core.config import get_settings
from src.core.stripe import get_stripe

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckoutSession:
    """A created hosted checkout session."""

    session_id: str
    redirect_url: str


@dataclass(frozen=True)
class GatewayLineItem:
    """A purchased line as reported by the payment provider."""

    description: str
    amount_total: int
    quantity: int
    metadata: dict[str, str] = field(default_factory=dict)


class CheckoutGateway:
    """Wraps Stripe session creation, webhook verification and line item lookup."""

    def __init__(self) -> None:
        """Initialize gateway with the configured Stripe module."""
        self.stripe = get_stripe()
        self.settings = get_settings()

    def create_session(
        self,
        line_items: list[dict[str, Any]],
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
        customer_email: str | None = None,
    ) -> CheckoutSession:
        """Create a one-off payment Checkout Session.

        Raises:
            UpstreamError: If Stripe is not configured or the call fails.
        """
        if not self.settings.stripe_secret_key:
            raise UpstreamError("Payment provider is not configured")

        params: dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": line_items,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
        }
        if customer_email:
            params["customer_email"] = customer_email

        try:
            session = self.stripe.checkout.Session.create(**params)
        except stripe.StripeError as e:
            logger.error("Stripe error creating checkout session: %s", str(e))
            raise UpstreamError("Could not create payment session") from e

        return CheckoutSession(session_id=session.id, redirect_url=session.url)

    def verify_webhook_signature(self, payload: bytes, sig_header: str | None) -> dict[str, Any]:
        """Verify Stripe webhook signature and return the event as a dict.

        Args:
            payload: Raw webhook payload bytes, exactly as received.
            sig_header: Stripe-Signature header value.

        Returns:
            dict: Verified Stripe event.

        Raises:
            SignatureError: If the header is missing, the signature is invalid
                or no webhook secret is configured.
        """
        if not sig_header:
            raise SignatureError("Missing Stripe-Signature header")
        if not self.settings.stripe_webhook_secret:
            logger.error("Webhook received but STRIPE_WEBHOOK_SECRET is not configured")
            raise SignatureError("Webhook secret is not configured")

        try:
            event = self.stripe.Webhook.construct_event(
                payload, sig_header, self.settings.stripe_webhook_secret
            )
        except stripe.SignatureVerificationError as e:
            logger.warning("Invalid webhook signature: %s", str(e))
            raise SignatureError("Invalid signature") from e
        except ValueError as e:
            logger.warning("Invalid webhook payload: %s", str(e))
            raise SignatureError("Invalid payload") from e

        return event.to_dict()

    def list_line_items(self, session_id: str) -> list[GatewayLineItem]:
        """List the purchased lines of a session.

        Raises:
            UpstreamError: If the call fails.
        """
        try:
            result = self.stripe.checkout.Session.list_line_items(
                session_id, limit=100, expand=["data.price.product"]
            )
        except stripe.StripeError as e:
            logger.error("Stripe error listing line items for %s: %s", session_id, str(e))
            raise UpstreamError("Could not list session line items") from e

        items = []
        for entry in result.to_dict().get("data", []):
            product = (entry.get("price") or {}).get("product")
            metadata = product.get("metadata") if isinstance(product, dict) else None
            items.append(
                GatewayLineItem(
                    description=entry.get("description") or "",
                    amount_total=int(entry.get("amount_total") or 0),
                    quantity=int(entry.get("quantity") or 1),
                    metadata={k: str(v) for k, v in dict(metadata or {}).items()},
                )
            )
        return items

    def expire_session(self, session_id: str) -> None:
        """Expire an open session so it can no longer be paid.

        Raises:
            UpstreamError: If the call fails.
        """
        try:
            self.stripe.checkout.Session.expire(session_id)
        except stripe.StripeError as e:
            logger.error("Stripe error expiring session %s: %s", session_id, str(e))
            raise UpstreamError("Could not expire payment session") from e
        logger.info("Expired payment session %s", session_id)
