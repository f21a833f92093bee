"""Checkout Pydantic schemas for API request/response models."""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.models.order import ShippingMethod


class CartItem(BaseModel):
    """A cart line as sent by the storefront.

    Only the product id, quantity and size are trusted; names and prices
    the client sends along are ignored and re-read from the catalog.
    """

    model_config = ConfigDict(extra="ignore")

    id: int = Field(description="Catalog product id")
    quantity: int = Field(default=1, description="Number of units")
    size: str | None = Field(default=None, description="Selected size for apparel")


class CustomerData(BaseModel):
    """Customer details collected by the checkout form."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    full_name: str = Field(min_length=1, description="Customer full name")
    email: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", description="Customer email address")
    phone: str | None = Field(default=None, description="Phone number")
    address: str | None = Field(default=None, description="Billing street address")
    city: str | None = Field(default=None, description="Billing city")
    zip: str | None = Field(default=None, description="Billing postal code")
    country: str | None = Field(default=None, description="Billing country")
    delivery_address: str | None = Field(default=None, description="Delivery street address, if different")
    delivery_city: str | None = Field(default=None, description="Delivery city")
    delivery_zip: str | None = Field(default=None, description="Delivery postal code")
    delivery_country: str | None = Field(default=None, description="Delivery country")
    delivery_note: str | None = Field(default=None, description="Note for the courier")


class CreatePaymentSessionRequest(BaseModel):
    """Schema for POST /create-payment-session."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    cart: list[CartItem] = Field(description="Cart lines")
    customer_data: CustomerData = Field(description="Customer details")
    shipping_method: ShippingMethod | None = Field(
        default=None, description="Requested delivery method; inferred from the cart when omitted"
    )


class PaymentSessionResponse(BaseModel):
    """Schema for a created payment session."""

    payment_url: str = Field(description="Hosted checkout page to redirect the customer to")


class WebhookAck(BaseModel):
    """Acknowledgement returned to the payment provider."""

    received: bool = True
