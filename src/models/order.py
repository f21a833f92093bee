"""Order record type definitions."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class OrderStatus(str, Enum):
    """Order lifecycle states. Transitions only AWAITING_PAYMENT -> PAID."""

    AWAITING_PAYMENT = "AwaitingPayment"
    PAID = "Paid"


class ShippingMethod(str, Enum):
    """Delivery method declared at checkout."""

    DIGITAL = "digital"
    HOME = "home"


class FulfillmentStatus(str, Enum):
    """Outcome of the post-payment effects for an order."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


PLACEHOLDER = "N/A"


@dataclass(frozen=True)
class CustomerInfo:
    """Customer details captured when the payment session is created."""

    name: str
    email: str
    phone: str = PLACEHOLDER
    address: str = PLACEHOLDER
    city: str = PLACEHOLDER
    zip: str = PLACEHOLDER
    country: str = PLACEHOLDER
    delivery_address: str = PLACEHOLDER
    delivery_note: str = ""


@dataclass(frozen=True)
class OrderItem:
    """A cart line frozen at purchase time. Prices are in minor units."""

    product_id: int
    name: str
    unit_price_cents: int
    quantity: int
    size: str | None = None

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity


@dataclass(frozen=True)
class OrderRecord:
    """One checkout session's order state as kept in the Orders tab."""

    session_id: str
    customer: CustomerInfo
    items: tuple[OrderItem, ...]
    shipping_method: ShippingMethod
    shipping_cost_cents: int
    product_total_cents: int
    grand_total_cents: int
    invoice_number: str
    currency: str = "usd"
    status: OrderStatus = OrderStatus.AWAITING_PAYMENT
    created_at: datetime | None = None
    paid_at: datetime | None = None
    fulfillment_status: str = ""
    digital_product_ids: frozenset[int] = field(default_factory=frozenset)

    @property
    def is_digital_only(self) -> bool:
        return all(item.product_id in self.digital_product_ids for item in self.items)

    @property
    def has_digital_items(self) -> bool:
        return any(item.product_id in self.digital_product_ids for item in self.items)
