"""Unit tests for order confirmation emails."""

from unittest.mock import MagicMock, patch

import pytest

from src.models.catalog import ProductCatalog
from src.models.order import CustomerInfo, OrderItem, OrderRecord, ShippingMethod
from src.services.email_service import (
    EmailAttachment,
    EmailMessage,
    EmailService,
    EmailTemplate,
    choose_template,
    render_order_email,
)


def make_order(catalog: ProductCatalog, *product_ids: int, shipping: int = 0) -> OrderRecord:
    items = tuple(
        OrderItem(product_id=pid, name=catalog.get(pid).name, unit_price_cents=catalog.get(pid).price_cents, quantity=1)
        for pid in product_ids
    )
    total = sum(i.line_total_cents for i in items)
    return OrderRecord(
        session_id="cs_test_mail",
        customer=CustomerInfo(name="Ada <Lovelace>", email="ada@example.com", delivery_address="London"),
        items=items,
        shipping_method=ShippingMethod.HOME if shipping else ShippingMethod.DIGITAL,
        shipping_cost_cents=shipping,
        product_total_cents=total,
        grand_total_cents=total + shipping,
        invoice_number="SNK-2025-007",
        digital_product_ids=catalog.digital_ids,
    )


class TestChooseTemplate:
    """Tests for choose_template."""

    def test_physical(self, catalog: ProductCatalog) -> None:
        assert choose_template(make_order(catalog, 1, shipping=1500), catalog) == EmailTemplate.PHYSICAL

    def test_mixed_cart_is_physical(self, catalog: ProductCatalog) -> None:
        assert choose_template(make_order(catalog, 1, 2, shipping=1500), catalog) == EmailTemplate.PHYSICAL

    def test_single_ebook(self, catalog: ProductCatalog) -> None:
        assert choose_template(make_order(catalog, 2), catalog) == EmailTemplate.DIGITAL

    def test_bundle(self, catalog: ProductCatalog) -> None:
        assert choose_template(make_order(catalog, 300), catalog) == EmailTemplate.BUNDLE

    def test_two_ebooks_use_bundle_layout(self, catalog: ProductCatalog) -> None:
        assert choose_template(make_order(catalog, 2, 4), catalog) == EmailTemplate.BUNDLE


class TestRenderOrderEmail:
    """Tests for render_order_email."""

    def test_digital_email_lists_links(self, catalog: ProductCatalog) -> None:
        links = {2: "https://api.example.test/download/tok-2"}
        subject, html_body, text_body = render_order_email(
            make_order(catalog, 2), EmailTemplate.DIGITAL, links, catalog, "Senkisem", "help@example.com", 7
        )

        assert "SNK-2025-007" in subject
        assert "https://api.example.test/download/tok-2" in html_body
        assert "https://api.example.test/download/tok-2" in text_body
        assert "expires in 7 days" in text_body

    def test_customer_values_are_escaped(self, catalog: ProductCatalog) -> None:
        _subject, html_body, _text = render_order_email(
            make_order(catalog, 1, shipping=1500), EmailTemplate.PHYSICAL, {}, catalog, "Senkisem", "h@x.io", 7
        )

        assert "Ada &lt;Lovelace&gt;" in html_body
        assert "<Lovelace>" not in html_body
        assert "$15.00" in html_body


class TestEmailService:
    """Tests for EmailService.send."""

    @pytest.mark.asyncio
    async def test_send_passes_attachment_and_idempotency_key(self, mock_resend: MagicMock) -> None:
        service = EmailService()
        message = EmailMessage(
            to=["ada@example.com"],
            subject="Hello",
            html="<p>Hi</p>",
            attachments=[EmailAttachment("invoice_SNK-2025-007.pdf", b"%PDF")],
            idempotency_key="order-confirmation/cs_1",
        )

        result = await service.send(message)

        assert result == {"success": True, "email_id": "email_123"}
        params, options = mock_resend.call_args.args
        assert params["to"] == ["ada@example.com"]
        assert params["attachments"] == [{"filename": "invoice_SNK-2025-007.pdf", "content": list(b"%PDF")}]
        assert options == {"idempotency_key": "order-confirmation/cs_1"}

    @pytest.mark.asyncio
    async def test_send_reports_provider_failure(self) -> None:
        with patch("src.services.email_service.resend.Emails.send", side_effect=RuntimeError("503")):
            result = await EmailService().send(EmailMessage(to=["a@b.co"], subject="s", html="h"))

        assert result["success"] is False
        assert "503" in result["error"]

    @pytest.mark.asyncio
    async def test_send_without_api_key(self, monkeypatch: pytest.MonkeyPatch, mock_resend: MagicMock) -> None:
        from src.core.config import get_settings

        monkeypatch.setenv("RESEND_API_KEY", "")
        get_settings.cache_clear()

        result = await EmailService().send(EmailMessage(to=["a@b.co"], subject="s", html="h"))

        assert result["success"] is False
        mock_resend.assert_not_called()

    @pytest.mark.asyncio
    async def test_order_confirmation_attaches_invoice(self, catalog: ProductCatalog, mock_resend: MagicMock) -> None:
        order = make_order(catalog, 2)

        result = await EmailService().send_order_confirmation(
            order, b"%PDF-1.4", {2: "https://api.example.test/download/t"}, catalog
        )

        assert result["success"] is True
        params, options = mock_resend.call_args.args
        assert params["attachments"][0]["filename"] == "invoice_SNK-2025-007.pdf"
        assert options["idempotency_key"] == "order-confirmation/cs_test_mail"
