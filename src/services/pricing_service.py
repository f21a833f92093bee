"""Shipping and total calculation.

All amounts are integers in the currency's minor unit. Formatting to a
display string happens only at the edges (ledger row, invoice, email) and
formatted values are never parsed back for arithmetic.
"""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from src.models.catalog import ProductCatalog
from src.models.order import OrderItem, ShippingMethod

logger = logging.getLogger(__name__)

CURRENCY_SYMBOLS = {
    "usd": "$",
    "eur": "€",
    "gbp": "£",
}


@dataclass(frozen=True)
class OrderTotals:
    """Derived order amounts in minor units."""

    product_total_cents: int
    shipping_cost_cents: int
    grand_total_cents: int


def is_digital_only(product_ids: Iterable[int], catalog: ProductCatalog) -> bool:
    """Check whether every product in the cart is delivered digitally."""
    ids = list(product_ids)
    return bool(ids) and all(catalog.is_digital(pid) for pid in ids)


def resolve_shipping_method(
    items: Sequence[OrderItem],
    requested: ShippingMethod | None,
    catalog: ProductCatalog,
) -> ShippingMethod:
    """Pick the shipping method to record for a cart.

    Digital-only carts always ship digitally. Carts with physical goods are
    delivered home; a "digital" request for them cannot be honored.
    """
    if is_digital_only((item.product_id for item in items), catalog):
        return ShippingMethod.DIGITAL
    if requested == ShippingMethod.DIGITAL:
        logger.warning("Digital shipping requested for a cart with physical goods; using home delivery")
    return ShippingMethod.HOME


def compute_shipping(
    items: Sequence[OrderItem],
    shipping_method: ShippingMethod | None,
    catalog: ProductCatalog,
    home_delivery_cents: int,
) -> int:
    """Compute the shipping cost for a cart in minor units.

    Args:
        items: Priced cart lines.
        shipping_method: Declared shipping method.
        catalog: Product catalog used to classify digital products.
        home_delivery_cents: Flat home delivery fee.

    Returns:
        int: Zero for digital-only carts or digital shipping, else the flat fee.
    """
    if is_digital_only((item.product_id for item in items), catalog):
        return 0
    if shipping_method == ShippingMethod.DIGITAL:
        return 0
    return home_delivery_cents


def compute_totals(items: Sequence[OrderItem], shipping_cost_cents: int) -> OrderTotals:
    """Sum line totals and add shipping."""
    product_total = sum(item.line_total_cents for item in items)
    return OrderTotals(
        product_total_cents=product_total,
        shipping_cost_cents=shipping_cost_cents,
        grand_total_cents=product_total + shipping_cost_cents,
    )


def format_money(cents: int, currency: str = "usd") -> str:
    """Format minor units for display, e.g. 1299 -> '$12.99'."""
    sign = "-" if cents < 0 else ""
    major, minor = divmod(abs(cents), 100)
    amount = f"{major:,}.{minor:02d}"
    symbol = CURRENCY_SYMBOLS.get(currency.lower())
    if symbol:
        return f"{sign}{symbol}{amount}"
    return f"{sign}{amount} {currency.upper()}"
