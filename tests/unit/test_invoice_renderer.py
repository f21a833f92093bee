"""Unit tests for invoice PDF rendering."""

from datetime import datetime, timezone

import pytest

from src.core.ledger import Ledger
from src.models.catalog import ProductCatalog
from src.models.order import CustomerInfo, OrderItem, OrderRecord, ShippingMethod
from src.schemas.checkout import CartItem, CustomerData
from src.services.invoice_renderer import InvoiceRenderer, SellerInfo, render_invoice_pdf
from src.services.order_builder import build_order_record, order_from_row, order_to_row
from src.services.pricing_service import format_money

ISSUED = datetime(2025, 4, 2, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def seller() -> SellerInfo:
    return SellerInfo(
        brand_name="Senkisem",
        brand_tagline="Not a Brand; Message.",
        name="SENKISEM EV",
        registration="60502292",
        address="Ozd, Bolyki Tamas utca 15.",
        tax_number="91113654-1-25",
        email="orders@senkisem.com",
    )


@pytest.fixture
def home_order() -> OrderRecord:
    return OrderRecord(
        session_id="cs_test_invoice",
        customer=CustomerInfo(
            name="Ada Lovelace",
            email="ada@example.com",
            address="12 Analytical St",
            city="London",
            zip="N1 9GU",
            country="UK",
            delivery_address="N1 9GU, London, 12 Analytical St, UK",
        ),
        items=(OrderItem(product_id=1, name="Senkisem T-Shirt", unit_price_cents=2500, quantity=2, size="M"),),
        shipping_method=ShippingMethod.HOME,
        shipping_cost_cents=1500,
        product_total_cents=5000,
        grand_total_cents=6500,
        invoice_number="SNK-2025-042",
    )


class TestRenderInvoicePdf:
    """Tests for render_invoice_pdf."""

    def test_returns_pdf_bytes(self, home_order: OrderRecord, seller: SellerInfo) -> None:
        pdf = render_invoice_pdf(home_order, "SNK-2025-042", ISSUED, seller)

        assert pdf.startswith(b"%PDF")
        assert pdf.rstrip().endswith(b"%%EOF")

    def test_contains_grand_total(self, home_order: OrderRecord, seller: SellerInfo) -> None:
        pdf = render_invoice_pdf(home_order, "SNK-2025-042", ISSUED, seller)

        assert b"65.00" in pdf
        assert b"15.00" in pdf
        assert b"SNK-2025-042" in pdf

    def test_contains_tax_exemption_note(self, home_order: OrderRecord, seller: SellerInfo) -> None:
        pdf = render_invoice_pdf(home_order, "SNK-2025-042", ISSUED, seller)

        assert b"AAM" in pdf
        assert b"2025-04-02" in pdf

    def test_renderer_uses_order_invoice_number(self, home_order: OrderRecord, seller: SellerInfo) -> None:
        pdf = InvoiceRenderer(seller).render(home_order, ISSUED)

        assert b"SNK-2025-042" in pdf

    def test_shipping_printed_once(self, home_order: OrderRecord, seller: SellerInfo) -> None:
        pdf = render_invoice_pdf(home_order, "SNK-2025-042", ISSUED, seller)

        assert pdf.count(b"Shipping") == 1
        assert b"Home Delivery" not in pdf
        assert b"50.00" in pdf


class TestInvoiceMatchesLedger:
    """The invoice total, the stored ledger total and the cart sum agree."""

    def test_home_order_totals_agree(
        self, catalog: ProductCatalog, fresh_ledger: Ledger, seller: SellerInfo
    ) -> None:
        cart = [CartItem(id=1, quantity=2, size="M"), CartItem(id=2, quantity=1)]
        customer = CustomerData.model_validate(
            {
                "fullName": "Ada Lovelace",
                "email": "ada@example.com",
                "address": "12 Analytical St",
                "city": "London",
                "zip": "N1 9GU",
                "country": "UK",
            }
        )
        order = build_order_record(
            cart,
            customer,
            "cs_test_roundtrip",
            "SNK-2025-007",
            catalog=catalog,
            shipping_method=ShippingMethod.HOME,
            home_delivery_cents=1500,
        )
        schema = fresh_ledger.orders_schema
        fresh_ledger.orders.append_row(order_to_row(order, schema))
        stored = fresh_ledger.orders.get_all_rows()[0]
        restored = order_from_row(stored, schema, catalog)

        expected = sum(catalog.get(line.id).price_cents * line.quantity for line in cart) + 1500
        assert int(stored.get(schema.label("grand_total_cents"))) == expected
        assert restored.grand_total_cents == expected
        assert sum(item.line_total_cents for item in restored.items) + restored.shipping_cost_cents == expected

        pdf = render_invoice_pdf(restored, restored.invoice_number, ISSUED, seller)
        assert format_money(expected, restored.currency).encode() in pdf
        assert format_money(restored.product_total_cents, restored.currency).encode() in pdf
