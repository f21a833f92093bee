"""Payment webhook handling and order status reconciliation.

The provider delivers events at least once and in any order. An order is
flipped ``AwaitingPayment -> Paid`` at most once: the status check and the
write happen under a per-session lock, and a row that is already Paid is
left alone. Fulfillment is queued, never run inline.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from src.core.ledger import Ledger, get_ledger, run_blocking
from src.core.locks import KeyedLock
from src.models.order import FulfillmentStatus, OrderStatus
from src.services.checkout_gateway import CheckoutGateway
from src.services.fulfillment_service import FulfillmentQueue, get_fulfillment_queue

logger = logging.getLogger(__name__)

COMPLETED_EVENT_TYPES = frozenset(
    {
        "checkout.session.completed",
        "checkout.session.async_payment_succeeded",
    }
)
PAID_PAYMENT_STATUSES = frozenset({"paid", "no_payment_required"})

_session_locks = KeyedLock()


def _now() -> datetime:
    return datetime.now(timezone.utc)


class WebhookOutcome(str, Enum):
    """What handling an event did."""

    IGNORED = "ignored"
    ORDER_NOT_FOUND = "order_not_found"
    ALREADY_PAID = "already_paid"
    MARKED_PAID = "marked_paid"


def is_payment_completed(event: dict[str, Any]) -> bool:
    """Check whether an event confirms payment for a checkout session.

    A completed session with a delayed payment method reports
    ``payment_status="unpaid"``; it is confirmed later by
    ``checkout.session.async_payment_succeeded``.
    """
    event_type = event.get("type")
    if event_type not in COMPLETED_EVENT_TYPES:
        return False
    if event_type == "checkout.session.async_payment_succeeded":
        return True
    session = event.get("data", {}).get("object", {})
    return session.get("payment_status", "paid") in PAID_PAYMENT_STATUSES


class WebhookService:
    """Verifies provider events and records payment completion."""

    def __init__(
        self,
        gateway: CheckoutGateway | None = None,
        ledger: Ledger | None = None,
        queue: FulfillmentQueue | None = None,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self.gateway = gateway or CheckoutGateway()
        self.ledger = ledger or get_ledger()
        self.queue = queue or get_fulfillment_queue()
        self._clock = clock

    def _col(self, field_name: str) -> str:
        return self.ledger.orders_schema.label(field_name)

    def verify(self, payload: bytes, sig_header: str | None) -> dict[str, Any]:
        """Verify an inbound event. Touches nothing but the gateway.

        Raises:
            SignatureError: If the event is not authentic.
        """
        return self.gateway.verify_webhook_signature(payload, sig_header)

    async def handle_event(self, event: dict[str, Any]) -> WebhookOutcome:
        """Apply a verified event to the ledger.

        Args:
            event: Verified provider event.

        Returns:
            WebhookOutcome: What was done.

        Raises:
            UpstreamError: If the ledger lookup or status write fails; the
                provider should redeliver.
        """
        event_type = event.get("type", "")
        if not is_payment_completed(event):
            logger.info("Ignoring webhook event %s (%s)", event.get("id"), event_type)
            return WebhookOutcome.IGNORED

        session_id = event["data"]["object"]["id"]
        status_col = self._col("status")

        async with _session_locks.hold(session_id):
            row = await run_blocking(self.ledger.orders.find_row, self._col("session_id"), session_id)
            if row is None:
                logger.warning("Payment completed for unknown session %s; acknowledging", session_id)
                return WebhookOutcome.ORDER_NOT_FOUND

            if row.get(status_col) == OrderStatus.PAID.value:
                logger.info("Session %s already paid; duplicate %s ignored", session_id, event_type)
                return WebhookOutcome.ALREADY_PAID

            row.set(status_col, OrderStatus.PAID.value)
            row.set(self._col("paid_at"), self._clock().isoformat())
            row.set(self._col("fulfillment_status"), FulfillmentStatus.PENDING.value)
            await run_blocking(row.save, settle=True)

        logger.info(
            "Order %s marked paid (invoice %s)",
            session_id,
            row.get(self._col("invoice_number")),
        )
        self.queue.submit(session_id)
        return WebhookOutcome.MARKED_PAID
