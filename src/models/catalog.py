"""Product catalog type definitions."""

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Product:
    """A sellable product.

    Digital products are delivered by download link. A bundle is a digital
    product whose purchase delivers each of its component products.
    """

    id: int
    name: str
    price_cents: int
    is_digital: bool = False
    bundle_components: tuple[int, ...] = ()
    download_file: str | None = None
    download_filename: str | None = None

    @property
    def is_bundle(self) -> bool:
        return bool(self.bundle_components)


@dataclass(frozen=True)
class ProductCatalog:
    """Immutable product lookup passed explicitly to pricing and order building."""

    products: Mapping[int, Product] = field(default_factory=dict)

    def get(self, product_id: int) -> Product | None:
        return self.products.get(product_id)

    def is_digital(self, product_id: int) -> bool:
        product = self.products.get(product_id)
        return bool(product and product.is_digital)

    @property
    def digital_ids(self) -> frozenset[int]:
        return frozenset(p.id for p in self.products.values() if p.is_digital)

    def delivered_product_ids(self, product_id: int) -> tuple[int, ...]:
        """Products that need a download link when product_id is bought.

        Bundles expand to their components; plain digital products map to
        themselves; physical products deliver nothing.
        """
        product = self.products.get(product_id)
        if product is None or not product.is_digital:
            return ()
        if product.is_bundle:
            return product.bundle_components
        return (product.id,)

    def __iter__(self) -> Iterator[Product]:
        return iter(self.products.values())

    def __len__(self) -> int:
        return len(self.products)
