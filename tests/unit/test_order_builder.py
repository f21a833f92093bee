"""Unit tests for order record building and ledger row mapping."""

from datetime import datetime, timezone

import pytest

from src.api.middleware.error_handler import ValidationError
from src.core.ledger import Ledger
from src.models.catalog import ProductCatalog
from src.models.order import PLACEHOLDER, OrderStatus, ShippingMethod
from src.schemas.checkout import CartItem, CustomerData
from src.services.order_builder import (
    build_customer,
    build_order_record,
    items_from_json,
    order_from_row,
    order_to_row,
    order_type_label,
    parse_timestamp,
    price_cart,
)

CREATED = datetime(2025, 3, 14, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def customer() -> CustomerData:
    return CustomerData.model_validate(
        {
            "fullName": "Ada Lovelace",
            "email": "ada@example.com",
            "address": "12 Analytical St",
            "city": "London",
            "zip": "N1 9GU",
            "country": "UK",
        }
    )


def build(cart: list[CartItem], customer: CustomerData, catalog: ProductCatalog, method: ShippingMethod):
    return build_order_record(
        cart,
        customer,
        "cs_test_1",
        "SNK-2025-001",
        catalog=catalog,
        shipping_method=method,
        home_delivery_cents=1500,
        created_at=CREATED,
    )


class TestPriceCart:
    """Tests for price_cart."""

    def test_prices_come_from_catalog(self, catalog: ProductCatalog) -> None:
        items = price_cart([CartItem(id=2, quantity=2)], catalog)

        assert items[0].unit_price_cents == 1299
        assert items[0].line_total_cents == 2598
        assert items[0].name == "Notes From a Stranger (Ebook)"

    def test_client_price_is_ignored(self, catalog: ProductCatalog) -> None:
        line = CartItem.model_validate({"id": 1, "quantity": 1, "price": 0.01, "name": "Free shirt"})
        items = price_cart([line], catalog)

        assert items[0].unit_price_cents == 2999

    def test_empty_cart_rejected(self, catalog: ProductCatalog) -> None:
        with pytest.raises(ValidationError, match="Cart is empty"):
            price_cart([], catalog)

    def test_unknown_product_rejected(self, catalog: ProductCatalog) -> None:
        with pytest.raises(ValidationError, match="Product not found: 999"):
            price_cart([CartItem(id=999)], catalog)

    def test_zero_quantity_rejected(self, catalog: ProductCatalog) -> None:
        with pytest.raises(ValidationError):
            price_cart([CartItem(id=1, quantity=0)], catalog)


class TestBuildCustomer:
    """Tests for build_customer."""

    def test_digital_order_uses_email_delivery(self, customer: CustomerData) -> None:
        info = build_customer(customer, ShippingMethod.DIGITAL)
        assert info.delivery_address == "Email Delivery"

    def test_home_order_falls_back_to_billing_address(self, customer: CustomerData) -> None:
        info = build_customer(customer, ShippingMethod.HOME)
        assert info.delivery_address == "N1 9GU, London, 12 Analytical St, UK"

    def test_missing_fields_get_placeholder(self) -> None:
        data = CustomerData(full_name="Bob", email="bob@example.com")
        info = build_customer(data, ShippingMethod.HOME)

        assert info.phone == PLACEHOLDER
        assert info.city == PLACEHOLDER
        assert info.delivery_address == PLACEHOLDER


class TestBuildOrderRecord:
    """Tests for build_order_record."""

    def test_home_delivery_totals(self, customer: CustomerData, catalog: ProductCatalog) -> None:
        order = build([CartItem(id=1, quantity=2)], customer, catalog, ShippingMethod.HOME)

        assert order.product_total_cents == 5998
        assert order.shipping_cost_cents == 1500
        assert order.grand_total_cents == 7498
        assert order.status == OrderStatus.AWAITING_PAYMENT

    def test_digital_order_has_no_shipping(self, customer: CustomerData, catalog: ProductCatalog) -> None:
        order = build([CartItem(id=2)], customer, catalog, ShippingMethod.DIGITAL)

        assert order.shipping_cost_cents == 0
        assert order.is_digital_only
        assert order_type_label(order) == "Digital"

    def test_mixed_order_label(self, customer: CustomerData, catalog: ProductCatalog) -> None:
        order = build([CartItem(id=1), CartItem(id=2)], customer, catalog, ShippingMethod.HOME)
        assert order_type_label(order) == "Mixed"


class TestRowMapping:
    """Tests for order_to_row and order_from_row."""

    def test_row_carries_display_and_canonical_values(
        self, customer: CustomerData, catalog: ProductCatalog, fresh_ledger: Ledger
    ) -> None:
        order = build([CartItem(id=1, quantity=2, size="M")], customer, catalog, ShippingMethod.HOME)
        row = order_to_row(order, fresh_ledger.orders_schema)

        assert row["Order ID"] == "cs_test_1"
        assert row["Status"] == "AwaitingPayment"
        assert row["Total"] == "$74.98"
        assert row["Total Cents"] == "7498"
        assert row["Shipping Method"] == "Home Delivery"
        assert row["Product Sizes"] == "Senkisem T-Shirt: M"
        assert row["Delivery Note"] == PLACEHOLDER

    def test_row_reads_back(self, customer: CustomerData, catalog: ProductCatalog, fresh_ledger: Ledger) -> None:
        order = build([CartItem(id=2)], customer, catalog, ShippingMethod.DIGITAL)
        fresh_ledger.orders.append_row(order_to_row(order, fresh_ledger.orders_schema))
        row = fresh_ledger.orders.get_all_rows()[0]

        restored = order_from_row(row, fresh_ledger.orders_schema, catalog)

        assert restored.items == order.items
        assert restored.grand_total_cents == order.grand_total_cents
        assert restored.shipping_method == ShippingMethod.DIGITAL
        assert restored.created_at == CREATED
        assert restored.customer.delivery_note == ""

    def test_column_overrides_change_labels(self, customer: CustomerData, catalog: ProductCatalog) -> None:
        from src.core.ledger import create_memory_ledger

        ledger = create_memory_ledger(order_overrides={"invoice_number": "Számla"})
        order = build([CartItem(id=2)], customer, catalog, ShippingMethod.DIGITAL)
        row = order_to_row(order, ledger.orders_schema)

        assert row["Számla"] == "SNK-2025-001"
        assert "Invoice Number" not in row


class TestParsing:
    """Tests for cell parsing helpers."""

    def test_malformed_items_json(self) -> None:
        with pytest.raises(ValueError):
            items_from_json("[{\"product_id\": 1}]")

    def test_empty_items_json(self) -> None:
        with pytest.raises(ValueError):
            items_from_json("")

    def test_parse_timestamp_zulu(self) -> None:
        assert parse_timestamp("2025-03-14T09:30:00Z") == CREATED

    def test_parse_timestamp_naive_is_utc(self) -> None:
        assert parse_timestamp("2025-03-14T09:30:00") == CREATED

    def test_parse_timestamp_invalid(self) -> None:
        assert parse_timestamp("yesterday") is None
