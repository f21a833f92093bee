"""Domain model type definitions."""

from src.models.catalog import Product, ProductCatalog
from src.models.download_token import DownloadToken, TokenRejection, TokenValidation
from src.models.order import (
    CustomerInfo,
    FulfillmentStatus,
    OrderItem,
    OrderRecord,
    OrderStatus,
    ShippingMethod,
)

__all__ = [
    "CustomerInfo",
    "DownloadToken",
    "FulfillmentStatus",
    "OrderItem",
    "OrderRecord",
    "OrderStatus",
    "Product",
    "ProductCatalog",
    "ShippingMethod",
    "TokenRejection",
    "TokenValidation",
]
