"""Stripe client configuration and singleton."""

import logging

import stripe

from src.core.config import get_settings

logger = logging.getLogger(__name__)

# Stripe retries idempotently on connection errors and 409/429/5xx responses.
MAX_NETWORK_RETRIES = 2


def configure_stripe() -> None:
    """Configure Stripe SDK with API key, timeout and retries from settings.

    This should be called once at application startup.
    If Stripe keys are not configured, Stripe operations will fail with clear errors.
    """
    settings = get_settings()
    if settings.stripe_secret_key:
        stripe.api_key = settings.stripe_secret_key
    else:
        logger.warning("Stripe secret key not configured. Payment sessions cannot be created.")

    stripe.max_network_retries = MAX_NETWORK_RETRIES
    stripe.default_http_client = stripe.RequestsClient(timeout=settings.stripe_timeout_seconds)

    if not settings.stripe_webhook_secret:
        logger.warning("Stripe webhook secret not configured. All webhooks will be rejected.")


def get_stripe() -> stripe:
    """Get the configured Stripe module.

    Returns:
        stripe: The Stripe module with API key configured.

    Note:
        Stripe SDK uses module-level configuration, so this returns
        the stripe module itself. Ensure configure_stripe() has been
        called before using Stripe API calls.
    """
    return stripe
