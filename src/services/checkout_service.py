"""Payment session creation and order recording."""

import logging
from typing import Any

from src.api.middleware.error_handler import UpstreamError
from src.core.catalog import get_catalog
from src.core.config import get_settings
from src.core.ledger import Ledger, get_ledger, run_blocking
from src.models.catalog import ProductCatalog
from src.models.order import PLACEHOLDER, OrderItem, ShippingMethod
from src.schemas.checkout import CreatePaymentSessionRequest
from src.services.checkout_gateway import CheckoutGateway, CheckoutSession
from src.services.invoice_number_service import InvoiceNumberAllocator, get_invoice_allocator
from src.services.order_builder import build_customer, build_order_record, order_to_row, price_cart
from src.services.pricing_service import compute_shipping, resolve_shipping_method

logger = logging.getLogger(__name__)

HOME_DELIVERY_NAME = "Home Delivery"
# Stripe limits metadata values to 500 characters.
METADATA_VALUE_LIMIT = 500


def _metadata_value(value: str) -> str:
    return value[:METADATA_VALUE_LIMIT]


class CheckoutService:
    """Service for payment session creation."""

    def __init__(
        self,
        gateway: CheckoutGateway | None = None,
        ledger: Ledger | None = None,
        catalog: ProductCatalog | None = None,
        allocator: InvoiceNumberAllocator | None = None,
    ) -> None:
        """Initialize checkout service with clients."""
        self.settings = get_settings()
        self.gateway = gateway or CheckoutGateway()
        self.ledger = ledger or get_ledger()
        self.catalog = catalog or get_catalog()
        self.allocator = allocator or get_invoice_allocator()

    def _line_items(
        self, items: tuple[OrderItem, ...], shipping_cents: int, delivery_address: str
    ) -> list[dict[str, Any]]:
        currency = self.settings.currency
        line_items: list[dict[str, Any]] = []
        for item in items:
            product_metadata = {"productId": str(item.product_id)}
            if item.size:
                product_metadata["size"] = item.size
            line_items.append(
                {
                    "price_data": {
                        "currency": currency,
                        "product_data": {
                            "name": f"{item.name} ({item.size})" if item.size else item.name,
                            "metadata": product_metadata,
                        },
                        "unit_amount": item.unit_price_cents,
                    },
                    "quantity": item.quantity,
                }
            )
        if shipping_cents:
            line_items.append(
                {
                    "price_data": {
                        "currency": currency,
                        "product_data": {
                            "name": HOME_DELIVERY_NAME,
                            "description": f"Delivery to: {delivery_address}",
                        },
                        "unit_amount": shipping_cents,
                    },
                    "quantity": 1,
                }
            )
        return line_items

    def _redirect_urls(self, shipping_method: ShippingMethod) -> tuple[str, str]:
        base = self.settings.frontend_url.rstrip("/")
        page = "success2.html" if shipping_method == ShippingMethod.DIGITAL else "success.html"
        return f"{base}/{page}?session_id={{CHECKOUT_SESSION_ID}}", f"{base}/cancel.html"

    async def create_payment_session(self, request: CreatePaymentSessionRequest) -> CheckoutSession:
        """Create a payment session and record the order as AwaitingPayment.

        The session is created first because its id keys the order row. If
        the row cannot be written the session is expired, so no payment can
        arrive for an order the ledger does not know.

        Args:
            request: Validated request body.

        Returns:
            CheckoutSession: Session id and hosted payment page URL.

        Raises:
            ValidationError: If the cart is empty or references unknown products.
            UpstreamError: If the provider or the ledger is unavailable.
        """
        items = price_cart(request.cart, self.catalog)
        shipping_method = resolve_shipping_method(items, request.shipping_method, self.catalog)
        shipping_cents = compute_shipping(
            items, shipping_method, self.catalog, self.settings.home_delivery_cost_cents
        )
        customer = build_customer(request.customer_data, shipping_method)
        success_url, cancel_url = self._redirect_urls(shipping_method)

        metadata = {
            "customerName": _metadata_value(customer.name),
            "customerEmail": _metadata_value(customer.email),
            "customerPhone": _metadata_value(customer.phone),
            "shippingMethod": shipping_method.value,
            "deliveryAddress": _metadata_value(customer.delivery_address),
            "deliveryNote": _metadata_value(customer.delivery_note or PLACEHOLDER),
            "productIds": ",".join(str(item.product_id) for item in items),
        }

        session = await run_blocking(
            self.gateway.create_session,
            self._line_items(items, shipping_cents, customer.delivery_address),
            success_url,
            cancel_url,
            metadata,
            customer.email,
            timeout=self.settings.stripe_timeout_seconds * 3,
        )
        logger.info("Payment session %s created for %d items", session.session_id, len(items))

        def build_row(invoice_number: str) -> dict[str, str]:
            order = build_order_record(
                request.cart,
                request.customer_data,
                session.session_id,
                invoice_number,
                catalog=self.catalog,
                shipping_method=shipping_method,
                home_delivery_cents=self.settings.home_delivery_cost_cents,
                currency=self.settings.currency,
            )
            return order_to_row(order, self.ledger.orders_schema)

        try:
            await self.allocator.allocate_and_append(session.session_id, build_row)
        except UpstreamError:
            logger.error("Could not record order for session %s; expiring it", session.session_id)
            try:
                await run_blocking(
                    self.gateway.expire_session,
                    session.session_id,
                    timeout=self.settings.stripe_timeout_seconds * 3,
                )
            except UpstreamError as e:
                logger.error("Session %s left open after failed order write: %s", session.session_id, e.message)
            raise

        return session
