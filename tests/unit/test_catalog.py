"""Unit tests for catalog loading."""

import json
from pathlib import Path

import pytest

from src.core.catalog import CatalogError, load_catalog, parse_catalog
from src.models.catalog import ProductCatalog


class TestParseCatalog:
    """Tests for parse_catalog."""

    def test_major_unit_prices_converted_exactly(self) -> None:
        catalog = parse_catalog([{"id": 1, "name": "Shirt", "price": "19.99"}, {"id": 2, "name": "Cap", "price": 0.29}])

        assert catalog.get(1).price_cents == 1999
        assert catalog.get(2).price_cents == 29

    def test_price_cents_taken_as_is(self) -> None:
        catalog = parse_catalog({"products": [{"id": 5, "name": "Mug", "price_cents": 850}]})
        assert catalog.get(5).price_cents == 850

    def test_bundle_is_digital_and_expands(self) -> None:
        catalog = parse_catalog(
            [
                {"id": 2, "name": "Ebook A", "price": "1", "digital": True},
                {"id": 4, "name": "Ebook B", "price": "1", "digital": True},
                {"id": 9, "name": "Bundle", "price": "1.5", "bundle": [2, 4]},
            ]
        )

        assert catalog.is_digital(9)
        assert catalog.delivered_product_ids(9) == (2, 4)
        assert catalog.delivered_product_ids(2) == (2,)

    def test_bundle_with_unknown_component(self) -> None:
        with pytest.raises(CatalogError):
            parse_catalog([{"id": 9, "name": "Bundle", "price": "1", "bundle": [42]}])

    def test_missing_price(self) -> None:
        with pytest.raises(CatalogError):
            parse_catalog([{"id": 1, "name": "Shirt"}])

    def test_not_a_list(self) -> None:
        with pytest.raises(CatalogError):
            parse_catalog({"products": "nope"})


class TestLoadCatalog:
    """Tests for load_catalog."""

    def test_shipped_catalog(self, catalog: ProductCatalog) -> None:
        assert catalog.digital_ids == frozenset({2, 4, 300})
        assert catalog.delivered_product_ids(1) == ()

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(CatalogError):
            load_catalog(tmp_path / "missing.json")

    def test_reads_file(self, tmp_path: Path) -> None:
        path = tmp_path / "products.json"
        path.write_text(json.dumps([{"id": 1, "name": "Shirt", "price": "10"}]), encoding="utf-8")

        assert len(load_catalog(path)) == 1
