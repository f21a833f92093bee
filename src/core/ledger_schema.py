"""Column layout of the ledger tabs.

Services address ledger cells by stable internal field names. Each tab has
a mapping table that translates those names to the column labels a given
spreadsheet deployment uses, so display labels are never used as keys in
code.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType


@dataclass(frozen=True)
class LedgerSchema:
    """Ordered mapping of internal field name -> column label for one tab."""

    tab: str
    columns: Mapping[str, str]

    def label(self, field: str) -> str:
        """Return the column label for an internal field name.

        Raises:
            KeyError: If the field is not part of this tab.
        """
        return self.columns[field]

    @property
    def headers(self) -> list[str]:
        """Column labels in sheet order, used when creating the tab."""
        return list(self.columns.values())

    def with_overrides(self, overrides: Mapping[str, str]) -> "LedgerSchema":
        """Return a copy with some column labels replaced.

        Unknown field names are ignored so one override table can cover
        several tabs.
        """
        merged = dict(self.columns)
        for field, label in overrides.items():
            if field in merged:
                merged[field] = label
        return LedgerSchema(tab=self.tab, columns=MappingProxyType(merged))


ORDER_COLUMNS: Mapping[str, str] = MappingProxyType(
    {
        "created_at": "Date",
        "customer_name": "Name",
        "email": "Email",
        "phone": "Phone",
        "address": "Billing Address",
        "city": "City",
        "zip": "ZIP Code",
        "country": "Country",
        "products": "Products",
        "sizes": "Product Sizes",
        "product_total": "Amount",
        "order_type": "Type",
        "shipping_method": "Shipping Method",
        "delivery_address": "Delivery Address",
        "shipping_cost": "Shipping Cost",
        "grand_total": "Total",
        "session_id": "Order ID",
        "status": "Status",
        "delivery_note": "Delivery Note",
        "invoice_number": "Invoice Number",
        # Canonical numeric and structured values; arithmetic reads these only.
        "items_json": "Items JSON",
        "product_total_cents": "Amount Cents",
        "shipping_cost_cents": "Shipping Cost Cents",
        "grand_total_cents": "Total Cents",
        "currency": "Currency",
        "paid_at": "Paid At",
        "fulfillment_status": "Fulfillment",
    }
)

DOWNLOAD_LINK_COLUMNS: Mapping[str, str] = MappingProxyType(
    {
        "token": "Token",
        "email": "Email",
        "product_id": "Product_IDs",
        "created": "Created",
        "used": "Used",
        "expiry": "Expiry",
        "ip_address": "IP_Address",
        "download_date": "Download_Date",
        "invoice_number": "Invoice_Number",
    }
)


def orders_schema(tab: str, overrides: Mapping[str, str] | None = None) -> LedgerSchema:
    """Build the Orders tab schema, applying deployment label overrides."""
    schema = LedgerSchema(tab=tab, columns=ORDER_COLUMNS)
    return schema.with_overrides(overrides) if overrides else schema


def download_links_schema(tab: str, overrides: Mapping[str, str] | None = None) -> LedgerSchema:
    """Build the Download_Links tab schema, applying deployment label overrides."""
    schema = LedgerSchema(tab=tab, columns=DOWNLOAD_LINK_COLUMNS)
    return schema.with_overrides(overrides) if overrides else schema
