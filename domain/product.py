"""
Domain: Product catalog entries as seen by the commerce pipeline.

Products are created and updated by catalog management; the pipeline only
reads them. Pricing logic assumes bulk_price <= partner_price <= market_price
but does not enforce it.

Any price column may be missing (None). The pricing engine treats a missing
selected price as 0 and flags the line as not purchasable.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional

from .money import CURRENCY


class ProductCategory(str, Enum):
    CLEANING = "cleaning"
    PEST_CONTROL = "pest-control"
    TOOLS = "tools"
    PAINT = "paint"
    PLUMBING = "plumbing"
    ELECTRICAL = "electrical"


@dataclass(frozen=True, slots=True)
class ProductPricing:
    market_price: Optional[Decimal]
    partner_price: Optional[Decimal]
    bulk_price: Optional[Decimal] = None
    currency: str = CURRENCY


@dataclass(frozen=True, slots=True)
class ProductInventory:
    stock: int
    location: str = ""
    supplier: str = ""

    def __post_init__(self) -> None:
        if self.stock < 0:
            raise ValueError("stock must be >= 0")


@dataclass(frozen=True, slots=True)
class Product:
    """Read-only product snapshot with pricing tiers and inventory."""

    product_id: str
    name: str
    category: ProductCategory
    pricing: ProductPricing
    inventory: ProductInventory
    is_active: bool = True

    def is_in_stock(self) -> bool:
        return self.inventory.stock > 0
