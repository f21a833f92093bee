"""PDF invoice rendering with reportlab platypus.

Rendering is a pure function of the order snapshot, invoice number, issue
date and seller details; it performs no I/O.
"""

from dataclasses import dataclass
from datetime import datetime
from io import BytesIO
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from src.core.config import Settings, get_settings
from src.models.order import PLACEHOLDER, OrderRecord
from src.services.pricing_service import format_money

# Sellers under the subjective tax exemption charge no VAT.
VAT_CODE = "AAM"
TAX_EXEMPT_NOTE = "Tax exempt: subjective tax exemption (AAM). No VAT is charged."

BORDER = colors.HexColor("#D0D5DD")
HEADER_BG = colors.HexColor("#F2F4F7")


@dataclass(frozen=True)
class SellerInfo:
    """Seller block printed on every invoice."""

    brand_name: str
    brand_tagline: str
    name: str
    registration: str
    address: str
    tax_number: str
    email: str

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "SellerInfo":
        settings = settings or get_settings()
        return cls(
            brand_name=settings.brand_name,
            brand_tagline=settings.brand_tagline,
            name=settings.seller_name,
            registration=settings.seller_registration,
            address=settings.seller_address,
            tax_number=settings.seller_tax_number,
            email=settings.support_email,
        )


def _styles() -> dict[str, ParagraphStyle]:
    base = getSampleStyleSheet()
    return {
        "title": ParagraphStyle("InvoiceTitle", parent=base["Title"], fontSize=20, spaceAfter=2 * mm),
        "brand": ParagraphStyle("InvoiceBrand", parent=base["Normal"], fontSize=10, textColor=colors.grey),
        "label": ParagraphStyle("InvoiceLabel", parent=base["Normal"], fontName="Helvetica-Bold", fontSize=9),
        "body": ParagraphStyle("InvoiceBody", parent=base["Normal"], fontSize=9, leading=12),
        "note": ParagraphStyle("InvoiceNote", parent=base["Normal"], fontSize=8, textColor=colors.grey),
    }


def _party_box(title: str, lines: list[str], styles: dict[str, ParagraphStyle]) -> list[Paragraph]:
    cells = [Paragraph(escape(title), styles["label"])]
    cells.extend(Paragraph(escape(line), styles["body"]) for line in lines if line and line != PLACEHOLDER)
    return cells


def _buyer_lines(order: OrderRecord) -> list[str]:
    c = order.customer
    city_line = " ".join(part for part in (c.zip, c.city) if part != PLACEHOLDER)
    return [c.name, c.email, c.address, city_line, c.country, c.phone]


def render_invoice_pdf(
    order: OrderRecord,
    invoice_number: str,
    issued_at: datetime,
    seller: SellerInfo,
) -> bytes:
    """Render an invoice for an order.

    Args:
        order: Order snapshot to invoice.
        invoice_number: Invoice number printed in the header.
        issued_at: Issue and fulfillment date.
        seller: Seller details.

    Returns:
        bytes: PDF document.
    """
    styles = _styles()
    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        leftMargin=18 * mm,
        rightMargin=18 * mm,
        topMargin=18 * mm,
        bottomMargin=18 * mm,
        title=f"Invoice {invoice_number}",
        author=seller.name,
        # Uncompressed content streams keep amounts searchable in the output.
        pageCompression=0,
    )

    story = [
        Paragraph(escape(seller.brand_name), styles["title"]),
        Paragraph(escape(seller.brand_tagline), styles["brand"]),
        Spacer(1, 6 * mm),
        Paragraph(f"INVOICE {escape(invoice_number)}", styles["label"]),
        Paragraph(f"Issue date: {issued_at.strftime('%Y-%m-%d')}", styles["body"]),
        Paragraph(f"Fulfillment date: {issued_at.strftime('%Y-%m-%d')}", styles["body"]),
        Paragraph(f"Order: {escape(order.session_id)}", styles["body"]),
        Spacer(1, 6 * mm),
    ]

    seller_lines = [
        seller.name,
        seller.address,
        f"Registration no.: {seller.registration}",
        f"Tax no.: {seller.tax_number}",
        seller.email,
    ]
    parties = Table(
        [[_party_box("Seller", seller_lines, styles), _party_box("Buyer", _buyer_lines(order), styles)]],
        colWidths=[87 * mm, 87 * mm],
    )
    parties.setStyle(
        TableStyle(
            [
                ("BOX", (0, 0), (0, 0), 0.75, BORDER),
                ("BOX", (1, 0), (1, 0), 0.75, BORDER),
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
                ("LEFTPADDING", (0, 0), (-1, -1), 8),
                ("TOPPADDING", (0, 0), (-1, -1), 6),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
            ]
        )
    )
    story.extend([parties, Spacer(1, 8 * mm)])

    currency = order.currency
    rows: list[list[str]] = [["Item", "Qty", "Unit price", "VAT", "Amount"]]
    for item in order.items:
        name = f"{item.name} ({item.size})" if item.size else item.name
        rows.append(
            [
                name,
                str(item.quantity),
                format_money(item.unit_price_cents, currency),
                VAT_CODE,
                format_money(item.line_total_cents, currency),
            ]
        )
    # Item amounts add up to the subtotal; shipping appears only once, below it.
    rows.append(["Subtotal", "", "", "", format_money(order.product_total_cents, currency)])
    rows.append(["Shipping", "", "", "", format_money(order.shipping_cost_cents, currency)])
    rows.append(["Total", "", "", "", format_money(order.grand_total_cents, currency)])

    lines = Table(rows, colWidths=[80 * mm, 14 * mm, 30 * mm, 16 * mm, 34 * mm], hAlign="LEFT")
    lines.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), HEADER_BG),
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("FONTNAME", (0, 1), (-1, -1), "Helvetica"),
                ("FONTNAME", (0, -1), (-1, -1), "Helvetica-Bold"),
                ("FONTSIZE", (0, 0), (-1, -1), 9),
                ("ALIGN", (1, 0), (-1, -1), "RIGHT"),
                ("LINEBELOW", (0, 0), (-1, 0), 0.75, BORDER),
                ("LINEABOVE", (0, -3), (-1, -3), 0.75, BORDER),
                ("TOPPADDING", (0, 0), (-1, -1), 4),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
            ]
        )
    )
    story.extend([lines, Spacer(1, 8 * mm), Paragraph(TAX_EXEMPT_NOTE, styles["note"])])

    doc.build(story)
    return buffer.getvalue()


class InvoiceRenderer:
    """Renders invoices with the configured seller details."""

    def __init__(self, seller: SellerInfo | None = None) -> None:
        self.seller = seller or SellerInfo.from_settings()

    def render(self, order: OrderRecord, issued_at: datetime) -> bytes:
        return render_invoice_pdf(order, order.invoice_number, issued_at, self.seller)
