"""Product catalog loading."""

import json
import logging
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any

from src.core.config import get_settings
from src.models.catalog import Product, ProductCatalog

logger = logging.getLogger(__name__)


class CatalogError(Exception):
    """Raised when the catalog file is missing or malformed."""


def _price_cents(raw: dict[str, Any]) -> int:
    if "price_cents" in raw:
        return int(raw["price_cents"])
    try:
        # Major-unit prices are read as Decimal from their string form to
        # avoid binary float rounding.
        return int((Decimal(str(raw["price"])) * 100).to_integral_value())
    except (KeyError, InvalidOperation) as e:
        raise CatalogError(f"Product {raw.get('id')} has no valid price") from e


def parse_catalog(data: Any) -> ProductCatalog:
    """Build a ProductCatalog from decoded catalog JSON.

    Accepts either ``{"products": [...]}`` or a bare list of products.
    """
    entries = data.get("products", []) if isinstance(data, dict) else data
    if not isinstance(entries, list):
        raise CatalogError("Catalog must be a list of products")

    products: dict[int, Product] = {}
    for raw in entries:
        try:
            product_id = int(raw["id"])
            name = str(raw["name"])
        except (KeyError, TypeError, ValueError) as e:
            raise CatalogError(f"Invalid catalog entry: {raw!r}") from e

        components = tuple(int(c) for c in raw.get("bundle", []))
        products[product_id] = Product(
            id=product_id,
            name=name,
            price_cents=_price_cents(raw),
            is_digital=bool(raw.get("digital", False)) or bool(components),
            bundle_components=components,
            download_file=raw.get("file"),
            download_filename=raw.get("download_name"),
        )

    for product in products.values():
        missing = [c for c in product.bundle_components if c not in products]
        if missing:
            raise CatalogError(f"Bundle {product.id} references unknown products {missing}")

    return ProductCatalog(products=MappingProxyType(products))


def load_catalog(path: Path) -> ProductCatalog:
    """Load the product catalog from a JSON file."""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise CatalogError(f"Could not read catalog {path}: {e}") from e

    catalog = parse_catalog(data)
    logger.info("%d products loaded from %s", len(catalog), path)
    return catalog


@lru_cache
def get_catalog() -> ProductCatalog:
    """Get the cached catalog configured in settings."""
    return load_catalog(get_settings().catalog_path)
