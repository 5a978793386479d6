"""
Domain: Cart items and the derived Cart aggregate.

Contract:
- A CartItem is unique per (user_id, product_id); its document id is derived
  from that pair, so duplicates cannot exist.
- Quantity is a positive integer. It is checked against stock only at
  validation time, not when the item is added.
- The Cart itself is never persisted: it is recomputed from CartItems and live
  Product data on every read.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from .product import Product
from .time import require_utc_timestamp


def cart_item_id(user_id: str, product_id: str) -> str:
    return f"{user_id}:{product_id}"


def require_positive_quantity(quantity: object) -> int:
    """Return the quantity if it is a positive int, else raise ValueError."""

    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValueError(f"Quantity must be a positive integer, got {quantity!r}")
    return quantity


@dataclass(frozen=True, slots=True)
class CartItem:
    user_id: str
    product_id: str
    quantity: int
    added_at: datetime
    updated_at: Optional[datetime] = None
    version: int = 0  # store version, used to guard checkout deletes

    def __post_init__(self) -> None:
        require_positive_quantity(self.quantity)
        require_utc_timestamp("added_at", self.added_at)
        if self.updated_at is not None:
            require_utc_timestamp("updated_at", self.updated_at)

    @property
    def item_id(self) -> str:
        return cart_item_id(self.user_id, self.product_id)

    def with_quantity(self, quantity: int) -> "CartItem":
        return replace(self, quantity=quantity)


@dataclass(frozen=True, slots=True)
class CartLine:
    """A cart item priced against the live product (None if the product is gone)."""

    item: CartItem
    product: Optional[Product]
    unit_price: Decimal
    line_total: Decimal
    is_purchasable: bool


@dataclass(frozen=True, slots=True)
class Cart:
    """
    Derived cart aggregate.

    total_items and total_price only count purchasable lines. Lines whose
    product is missing, inactive or unpriced are kept (until the buyer removes
    them) and described in warnings.
    """

    user_id: str
    lines: List[CartLine]
    total_items: int
    total_price: Decimal
    last_updated: datetime
    warnings: List[str]

    @property
    def items(self) -> List[CartItem]:
        return [line.item for line in self.lines]

    @property
    def is_empty(self) -> bool:
        return not self.lines


@dataclass(frozen=True, slots=True)
class CartValidation:
    """
    Result of the pre-checkout gate.

    updated_items holds every item that can still be bought, with quantities
    clamped to available stock where needed.
    """

    is_valid: bool
    errors: List[str]
    updated_items: List[CartItem]
