"""Order record building and ledger row mapping.

Pure transformations between checkout input, ``OrderRecord`` and the
Orders tab row shape. Every optional customer field gets an explicit
placeholder so no cell is left semantically undefined.
"""

import json
from collections.abc import Sequence
from datetime import datetime, timezone

from src.api.middleware.error_handler import ValidationError
from src.core.ledger import LedgerRow
from src.core.ledger_schema import LedgerSchema
from src.models.catalog import ProductCatalog
from src.models.order import (
    PLACEHOLDER,
    CustomerInfo,
    OrderItem,
    OrderRecord,
    OrderStatus,
    ShippingMethod,
)
from src.schemas.checkout import CartItem, CustomerData
from src.services.pricing_service import compute_shipping, compute_totals, format_money

SHIPPING_METHOD_LABELS = {
    ShippingMethod.DIGITAL: "Digital Download",
    ShippingMethod.HOME: "Home Delivery",
}

DIGITAL_DELIVERY_LABEL = "Email Delivery"


def _text(value: str | None, fallback: str = PLACEHOLDER) -> str:
    if value is None:
        return fallback
    value = value.strip()
    return value or fallback


def price_cart(cart: Sequence[CartItem], catalog: ProductCatalog) -> tuple[OrderItem, ...]:
    """Resolve cart lines against the catalog.

    Names and unit prices always come from the catalog, never from the
    client.

    Raises:
        ValidationError: If the cart is empty, a quantity is below one or a
            product id is unknown.
    """
    if not cart:
        raise ValidationError("Cart is empty")

    items = []
    for line in cart:
        product = catalog.get(line.id)
        if product is None:
            raise ValidationError(f"Product not found: {line.id}")
        if line.quantity < 1:
            raise ValidationError(f"Invalid quantity for product {line.id}: {line.quantity}")
        items.append(
            OrderItem(
                product_id=product.id,
                name=product.name,
                unit_price_cents=product.price_cents,
                quantity=line.quantity,
                size=_text(line.size, "") or None,
            )
        )
    return tuple(items)


def build_customer(data: CustomerData, shipping_method: ShippingMethod) -> CustomerInfo:
    """Build customer details with placeholders for missing fields."""
    if shipping_method == ShippingMethod.DIGITAL:
        delivery = DIGITAL_DELIVERY_LABEL
    elif data.delivery_address:
        delivery = ", ".join(
            part
            for part in (
                _text(data.delivery_zip, ""),
                _text(data.delivery_city, ""),
                _text(data.delivery_address, ""),
                _text(data.delivery_country, ""),
            )
            if part
        )
    else:
        delivery = ", ".join(
            part
            for part in (_text(data.zip, ""), _text(data.city, ""), _text(data.address, ""), _text(data.country, ""))
            if part
        ) or PLACEHOLDER

    return CustomerInfo(
        name=_text(data.full_name),
        email=data.email.strip(),
        phone=_text(data.phone),
        address=_text(data.address),
        city=_text(data.city),
        zip=_text(data.zip),
        country=_text(data.country),
        delivery_address=delivery,
        delivery_note=_text(data.delivery_note, ""),
    )


def build_order_record(
    cart: Sequence[CartItem],
    customer_data: CustomerData,
    session_id: str,
    invoice_number: str,
    *,
    catalog: ProductCatalog,
    shipping_method: ShippingMethod,
    home_delivery_cents: int,
    currency: str = "usd",
    created_at: datetime | None = None,
) -> OrderRecord:
    """Build the order record for a newly created payment session.

    Args:
        cart: Cart lines from the client.
        customer_data: Customer details from the client.
        session_id: Payment session id assigned by the gateway.
        invoice_number: Allocated invoice number.
        catalog: Product catalog.
        shipping_method: Resolved shipping method.
        home_delivery_cents: Flat home delivery fee.
        currency: ISO currency code.
        created_at: Creation time; defaults to now.

    Returns:
        OrderRecord: Record in AwaitingPayment state.

    Raises:
        ValidationError: If the cart is empty or references unknown products.
    """
    items = price_cart(cart, catalog)
    shipping = compute_shipping(items, shipping_method, catalog, home_delivery_cents)
    totals = compute_totals(items, shipping)

    return OrderRecord(
        session_id=session_id,
        customer=build_customer(customer_data, shipping_method),
        items=items,
        shipping_method=shipping_method,
        shipping_cost_cents=totals.shipping_cost_cents,
        product_total_cents=totals.product_total_cents,
        grand_total_cents=totals.grand_total_cents,
        invoice_number=invoice_number,
        currency=currency,
        status=OrderStatus.AWAITING_PAYMENT,
        created_at=created_at or datetime.now(timezone.utc),
        digital_product_ids=catalog.digital_ids,
    )


def order_type_label(order: OrderRecord) -> str:
    if order.is_digital_only:
        return "Digital"
    if order.has_digital_items:
        return "Mixed"
    return "Physical Product"


def items_to_json(items: Sequence[OrderItem]) -> str:
    return json.dumps(
        [
            {
                "product_id": item.product_id,
                "name": item.name,
                "unit_price_cents": item.unit_price_cents,
                "quantity": item.quantity,
                "size": item.size,
            }
            for item in items
        ],
        ensure_ascii=False,
    )


def items_from_json(raw: str) -> tuple[OrderItem, ...]:
    """Parse the Items JSON column.

    Raises:
        ValueError: If the column is empty or malformed.
    """
    if not raw:
        raise ValueError("Items JSON is empty")
    try:
        return tuple(
            OrderItem(
                product_id=int(entry["product_id"]),
                name=str(entry["name"]),
                unit_price_cents=int(entry["unit_price_cents"]),
                quantity=int(entry["quantity"]),
                size=entry.get("size") or None,
            )
            for entry in json.loads(raw)
        )
    except (TypeError, KeyError, AttributeError, json.JSONDecodeError) as e:
        raise ValueError(f"Malformed Items JSON: {e}") from e


def order_to_row(order: OrderRecord, schema: LedgerSchema) -> dict[str, str]:
    """Map an order record to Orders tab cells keyed by column label.

    Display columns hold formatted strings; the cents and Items JSON columns
    carry the canonical values that are read back.
    """
    c = order.customer
    sizes = ", ".join(f"{item.name}: {item.size}" for item in order.items if item.size)
    products = ", ".join(f"{item.name} (x{item.quantity})" for item in order.items)

    fields = {
        "created_at": order.created_at.isoformat() if order.created_at else "",
        "customer_name": c.name,
        "email": c.email,
        "phone": c.phone,
        "address": c.address,
        "city": c.city,
        "zip": c.zip,
        "country": c.country,
        "products": products,
        "sizes": sizes or PLACEHOLDER,
        "product_total": format_money(order.product_total_cents, order.currency),
        "order_type": order_type_label(order),
        "shipping_method": SHIPPING_METHOD_LABELS[order.shipping_method],
        "delivery_address": c.delivery_address,
        "shipping_cost": format_money(order.shipping_cost_cents, order.currency),
        "grand_total": format_money(order.grand_total_cents, order.currency),
        "session_id": order.session_id,
        "status": order.status.value,
        "delivery_note": c.delivery_note or PLACEHOLDER,
        "invoice_number": order.invoice_number,
        "items_json": items_to_json(order.items),
        "product_total_cents": str(order.product_total_cents),
        "shipping_cost_cents": str(order.shipping_cost_cents),
        "grand_total_cents": str(order.grand_total_cents),
        "currency": order.currency,
        "paid_at": order.paid_at.isoformat() if order.paid_at else "",
        "fulfillment_status": order.fulfillment_status,
    }
    return {schema.label(name): value for name, value in fields.items()}


def parse_timestamp(raw: str) -> datetime | None:
    """Parse an ISO timestamp cell. Naive values are taken as UTC."""
    if not raw:
        return None
    try:
        value = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def order_from_row(
    row: LedgerRow,
    schema: LedgerSchema,
    catalog: ProductCatalog,
    items: tuple[OrderItem, ...] | None = None,
) -> OrderRecord:
    """Rebuild an order record from an Orders tab row.

    Args:
        row: Orders tab row.
        schema: Orders tab schema.
        catalog: Product catalog.
        items: Line items recovered elsewhere, for rows whose Items JSON is
            unusable. Totals are then recomputed from them.

    Raises:
        ValueError: If the canonical columns are missing or malformed.
    """

    def cell(name: str) -> str:
        return row.get(schema.label(name))

    if items is None:
        items = items_from_json(cell("items_json"))
        try:
            shipping_cents = int(cell("shipping_cost_cents"))
            product_cents = int(cell("product_total_cents"))
            grand_cents = int(cell("grand_total_cents"))
        except ValueError as e:
            raise ValueError(f"Malformed amount columns in row {row.row_number}") from e
    else:
        shipping_raw_cents = cell("shipping_cost_cents")
        shipping_cents = int(shipping_raw_cents) if shipping_raw_cents.isdigit() else 0
        totals = compute_totals(items, shipping_cents)
        product_cents = totals.product_total_cents
        grand_cents = totals.grand_total_cents

    status_raw = cell("status")
    try:
        status = OrderStatus(status_raw)
    except ValueError:
        status = OrderStatus.AWAITING_PAYMENT

    shipping_raw = cell("shipping_method")
    shipping_method = next(
        (method for method, label in SHIPPING_METHOD_LABELS.items() if label == shipping_raw),
        ShippingMethod.DIGITAL if shipping_cents == 0 else ShippingMethod.HOME,
    )

    return OrderRecord(
        session_id=cell("session_id"),
        customer=CustomerInfo(
            name=cell("customer_name"),
            email=cell("email"),
            phone=cell("phone") or PLACEHOLDER,
            address=cell("address") or PLACEHOLDER,
            city=cell("city") or PLACEHOLDER,
            zip=cell("zip") or PLACEHOLDER,
            country=cell("country") or PLACEHOLDER,
            delivery_address=cell("delivery_address") or PLACEHOLDER,
            delivery_note="" if cell("delivery_note") == PLACEHOLDER else cell("delivery_note"),
        ),
        items=items,
        shipping_method=shipping_method,
        shipping_cost_cents=shipping_cents,
        product_total_cents=product_cents,
        grand_total_cents=grand_cents,
        invoice_number=cell("invoice_number"),
        currency=cell("currency") or "usd",
        status=status,
        created_at=parse_timestamp(cell("created_at")),
        paid_at=parse_timestamp(cell("paid_at")),
        fulfillment_status=cell("fulfillment_status"),
        digital_product_ids=catalog.digital_ids,
    )
