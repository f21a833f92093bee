"""Unit tests for shipping and total calculation."""

from src.models.catalog import ProductCatalog
from src.models.order import OrderItem, ShippingMethod
from src.services.pricing_service import (
    compute_shipping,
    compute_totals,
    format_money,
    is_digital_only,
    resolve_shipping_method,
)

HOME_FEE = 1500


def item(product_id: int, price: int, quantity: int = 1) -> OrderItem:
    return OrderItem(product_id=product_id, name=f"Product {product_id}", unit_price_cents=price, quantity=quantity)


class TestIsDigitalOnly:
    """Tests for cart classification."""

    def test_ebook_only_cart(self, catalog: ProductCatalog) -> None:
        assert is_digital_only([2, 4], catalog) is True

    def test_bundle_counts_as_digital(self, catalog: ProductCatalog) -> None:
        assert is_digital_only([300], catalog) is True

    def test_mixed_cart(self, catalog: ProductCatalog) -> None:
        assert is_digital_only([1, 2], catalog) is False

    def test_empty_cart_is_not_digital(self, catalog: ProductCatalog) -> None:
        assert is_digital_only([], catalog) is False


class TestComputeShipping:
    """Tests for compute_shipping."""

    def test_digital_only_cart_ships_free(self, catalog: ProductCatalog) -> None:
        """A single ebook costs nothing to deliver."""
        items = [item(2, 1000)]
        shipping = compute_shipping(items, ShippingMethod.DIGITAL, catalog, HOME_FEE)
        totals = compute_totals(items, shipping)

        assert shipping == 0
        assert totals.grand_total_cents == 1000

    def test_digital_only_cart_ignores_home_request(self, catalog: ProductCatalog) -> None:
        assert compute_shipping([item(2, 1299)], ShippingMethod.HOME, catalog, HOME_FEE) == 0

    def test_home_delivery_adds_flat_fee(self, catalog: ProductCatalog) -> None:
        """Two shirts at 25.00 delivered home total 65.00."""
        items = [item(1, 2500, quantity=2)]
        shipping = compute_shipping(items, ShippingMethod.HOME, catalog, HOME_FEE)
        totals = compute_totals(items, shipping)

        assert shipping == 1500
        assert totals.product_total_cents == 5000
        assert totals.grand_total_cents == 6500

    def test_mixed_cart_pays_fee(self, catalog: ProductCatalog) -> None:
        items = [item(1, 2999), item(2, 1299)]
        assert compute_shipping(items, ShippingMethod.HOME, catalog, HOME_FEE) == HOME_FEE

    def test_declared_digital_method_is_free(self, catalog: ProductCatalog) -> None:
        assert compute_shipping([item(1, 2999)], ShippingMethod.DIGITAL, catalog, HOME_FEE) == 0


class TestResolveShippingMethod:
    """Tests for resolve_shipping_method."""

    def test_digital_cart_resolves_digital(self, catalog: ProductCatalog) -> None:
        assert resolve_shipping_method([item(2, 1299)], None, catalog) == ShippingMethod.DIGITAL

    def test_physical_cart_defaults_home(self, catalog: ProductCatalog) -> None:
        assert resolve_shipping_method([item(3, 5999)], None, catalog) == ShippingMethod.HOME

    def test_physical_cart_overrides_digital_request(self, catalog: ProductCatalog) -> None:
        method = resolve_shipping_method([item(1, 2999)], ShippingMethod.DIGITAL, catalog)
        assert method == ShippingMethod.HOME


class TestFormatting:
    """Tests for display formatting of minor units."""

    def test_format_money_usd(self) -> None:
        assert format_money(1299, "usd") == "$12.99"

    def test_format_money_thousands(self) -> None:
        assert format_money(123456, "eur") == "€1,234.56"

    def test_format_money_unknown_currency(self) -> None:
        assert format_money(500, "huf") == "5.00 HUF"
