"""Email service using Resend for order confirmation emails."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from html import escape
from typing import Any

import resend

from src.core.config import get_settings
from src.core.ledger import run_blocking
from src.models.catalog import ProductCatalog
from src.models.order import OrderRecord
from src.services.pricing_service import format_money

logger = logging.getLogger(__name__)


class EmailTemplate(str, Enum):
    """Order confirmation variants."""

    PHYSICAL = "physical"
    DIGITAL = "digital"
    BUNDLE = "bundle"


@dataclass(frozen=True)
class EmailAttachment:
    filename: str
    content: bytes


@dataclass(frozen=True)
class EmailMessage:
    """A fully rendered email ready to send."""

    to: list[str]
    subject: str
    html: str
    text: str | None = None
    attachments: list[EmailAttachment] = field(default_factory=list)
    idempotency_key: str | None = None


def choose_template(order: OrderRecord, catalog: ProductCatalog) -> EmailTemplate:
    """Pick the confirmation variant for an order.

    Any physical item means a shipping confirmation. Digital orders that
    deliver more than one file use the bundle variant.
    """
    if not order.is_digital_only:
        return EmailTemplate.PHYSICAL
    delivered = {pid for item in order.items for pid in catalog.delivered_product_ids(item.product_id)}
    if len(delivered) > 1:
        return EmailTemplate.BUNDLE
    return EmailTemplate.DIGITAL


SUBJECTS = {
    EmailTemplate.PHYSICAL: "Your {brand} order is confirmed - invoice {invoice}",
    EmailTemplate.DIGITAL: "Your {brand} ebook is ready to download - invoice {invoice}",
    EmailTemplate.BUNDLE: "Your {brand} ebook bundle is ready to download - invoice {invoice}",
}

BUTTON_STYLE = (
    "background: #111827; color: white; padding: 12px 28px; text-decoration: none; "
    "border-radius: 6px; font-weight: 600; display: inline-block;"
)


def _items_html(order: OrderRecord) -> str:
    rows = []
    for item in order.items:
        name = escape(item.name)
        if item.size:
            name += f" <span style=\"color: #6b7280;\">({escape(item.size)})</span>"
        rows.append(
            f"""<tr>
                <td style="padding: 6px 0;">{name} &times; {item.quantity}</td>
                <td style="padding: 6px 0; text-align: right;">{format_money(item.line_total_cents, order.currency)}</td>
            </tr>"""
        )
    if order.shipping_cost_cents:
        rows.append(
            f"""<tr>
                <td style="padding: 6px 0;">Home Delivery</td>
                <td style="padding: 6px 0; text-align: right;">{format_money(order.shipping_cost_cents, order.currency)}</td>
            </tr>"""
        )
    rows.append(
        f"""<tr>
            <td style="padding: 10px 0; border-top: 1px solid #e5e7eb; font-weight: 600;">Total</td>
            <td style="padding: 10px 0; border-top: 1px solid #e5e7eb; text-align: right; font-weight: 600;">{format_money(order.grand_total_cents, order.currency)}</td>
        </tr>"""
    )
    return "\n".join(rows)


def _downloads_html(order: OrderRecord, download_links: dict[int, str], catalog: ProductCatalog) -> str:
    blocks = []
    for product_id, url in download_links.items():
        product = catalog.get(product_id)
        title = escape(product.name if product else f"Product {product_id}")
        blocks.append(
            f"""<div style="margin: 16px 0; text-align: center;">
                <p style="margin: 0 0 8px 0; font-weight: 600;">{title}</p>
                <a href="{escape(url)}" style="{BUTTON_STYLE}">Download</a>
            </div>"""
        )
    return "\n".join(blocks)


def render_order_email(
    order: OrderRecord,
    template: EmailTemplate,
    download_links: dict[int, str],
    catalog: ProductCatalog,
    brand: str,
    support_email: str,
    expiry_days: int,
) -> tuple[str, str, str]:
    """Render subject, HTML and plain text for an order confirmation.

    Args:
        order: Paid order.
        template: Variant to render.
        download_links: Product id -> download URL for digital items.
        catalog: Product catalog for product names.
        brand: Brand name for the header and subject.
        support_email: Reply address shown in the footer.
        expiry_days: Download link validity shown to the customer.

    Returns:
        tuple[str, str, str]: Subject, HTML body and text body.
    """
    subject = SUBJECTS[template].format(brand=brand, invoice=order.invoice_number)
    name = escape(order.customer.name)

    if template == EmailTemplate.PHYSICAL:
        intro = (
            "Thank you for your order. We are preparing your package and will ship it to "
            f"<strong>{escape(order.customer.delivery_address)}</strong>."
        )
    elif template == EmailTemplate.BUNDLE:
        intro = "Thank you for your purchase. Your bundle includes the ebooks below, each with its own download link."
    else:
        intro = "Thank you for your purchase. Your ebook is ready to download."

    downloads = ""
    if download_links:
        downloads = f"""
        {_downloads_html(order, download_links, catalog)}
        <p style="font-size: 12px; color: #9ca3af; text-align: center;">
            Each link works once and expires in {expiry_days} days.
        </p>"""

    html_content = f"""
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{escape(subject)}</title>
</head>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, 'Helvetica Neue', Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
    <div style="background: #111827; padding: 30px; border-radius: 10px 10px 0 0; text-align: center;">
        <h1 style="color: white; margin: 0; font-size: 24px;">{escape(brand)}</h1>
    </div>

    <div style="background: #f9fafb; padding: 30px; border: 1px solid #e5e7eb; border-top: none; border-radius: 0 0 10px 10px;">
        <p style="font-size: 16px;">Hi {name},</p>
        <p style="font-size: 14px;">{intro}</p>
        {downloads}

        <table style="width: 100%; font-size: 14px; border-collapse: collapse; margin: 20px 0;">
            {_items_html(order)}
        </table>

        <p style="font-size: 13px; color: #6b7280;">
            Invoice <strong>{escape(order.invoice_number)}</strong> is attached to this email.
        </p>

        <hr style="border: none; border-top: 1px solid #e5e7eb; margin: 25px 0;">

        <p style="font-size: 12px; color: #9ca3af; text-align: center; margin: 0;">
            Questions? Reply to this email or write to
            <a href="mailto:{escape(support_email)}" style="color: #111827;">{escape(support_email)}</a>.
        </p>
    </div>
</body>
</html>
"""

    text_lines = [f"Hi {order.customer.name},", ""]
    if template == EmailTemplate.PHYSICAL:
        text_lines.append(f"Thank you for your order. We will ship it to {order.customer.delivery_address}.")
    else:
        text_lines.append("Thank you for your purchase. Your downloads:")
        for product_id, url in download_links.items():
            product = catalog.get(product_id)
            text_lines.append(f"- {product.name if product else product_id}: {url}")
        text_lines.append(f"Each link works once and expires in {expiry_days} days.")
    text_lines.extend(
        [
            "",
            f"Total: {format_money(order.grand_total_cents, order.currency)}",
            f"Invoice {order.invoice_number} is attached.",
            "",
            f"Questions? Write to {support_email}.",
        ]
    )
    return subject, html_content, "\n".join(text_lines)


class EmailService:
    """Service for sending transactional emails via Resend."""

    def __init__(self) -> None:
        """Initialize email service with Resend API key."""
        self.settings = get_settings()
        resend.api_key = self.settings.resend_api_key
        self.from_email = self.settings.email_from_address

    async def send(self, message: EmailMessage) -> dict[str, Any]:
        """Send a rendered email.

        Args:
            message: Email to send.

        Returns:
            dict: ``{"success": True, "email_id": ...}`` or
            ``{"success": False, "error": ...}``.
        """
        if not self.settings.resend_api_key:
            logger.warning("Resend API key not configured; email to %s not sent", message.to)
            return {"success": False, "error": "Email is not configured"}

        params: dict[str, Any] = {
            "from": self.from_email,
            "to": message.to,
            "reply_to": self.settings.support_email,
            "subject": message.subject,
            "html": message.html,
        }
        if message.text:
            params["text"] = message.text
        if message.attachments:
            params["attachments"] = [
                {"filename": a.filename, "content": list(a.content)} for a in message.attachments
            ]
        options = {"idempotency_key": message.idempotency_key} if message.idempotency_key else None

        try:
            response = await run_blocking(
                resend.Emails.send, params, options, timeout=self.settings.email_timeout_seconds
            )
            logger.info("Email sent to %s, id: %s", message.to, response.get("id"))
            return {"success": True, "email_id": response.get("id")}

        except Exception as e:
            logger.error("Failed to send email to %s: %s", message.to, str(e))
            return {"success": False, "error": str(e)}

    async def send_order_confirmation(
        self,
        order: OrderRecord,
        invoice_pdf: bytes | None,
        download_links: dict[int, str],
        catalog: ProductCatalog,
    ) -> dict[str, Any]:
        """Send the confirmation email for a paid order.

        Args:
            order: Paid order.
            invoice_pdf: Rendered invoice; omitted from the email when None.
            download_links: Product id -> download URL for digital items.
            catalog: Product catalog.

        Returns:
            dict: Result of ``send``.
        """
        template = choose_template(order, catalog)
        subject, html_content, text_content = render_order_email(
            order,
            template,
            download_links,
            catalog,
            brand=self.settings.brand_name,
            support_email=self.settings.support_email,
            expiry_days=self.settings.download_link_expiry_days,
        )
        attachments = []
        if invoice_pdf is not None:
            attachments.append(EmailAttachment(f"invoice_{order.invoice_number}.pdf", invoice_pdf))

        return await self.send(
            EmailMessage(
                to=[order.customer.email],
                subject=subject,
                html=html_content,
                text=text_content,
                attachments=attachments,
                idempotency_key=f"order-confirmation/{order.session_id}",
            )
        )
