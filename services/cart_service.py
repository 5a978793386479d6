"""
Cart service.

Handles:
- Adding, updating and removing cart items (one row per user/product)
- Recomputing the cart aggregate against live product data on every read
- The pre-checkout gate (validate_cart), which is authoritative for checkout

clear_cart is reserved for the order orchestrator; checkout itself uses
clear_writes() so the deletions commit atomically with the order.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import List, Optional

from domain.buyer import BuyerTier
from domain.cart import Cart, CartItem, CartLine, CartValidation, require_positive_quantity
from domain.errors import InvalidQuantity, ItemNotFound, NotFoundError, StoreConflict
from domain.money import ZERO
from domain.time import Clock, utc_now
from repositories import document_store as ds
from repositories.cart_repository import CartRepository
from repositories.document_store import DocumentStore
from repositories.product_repository import ProductRepository
from services.pricing_service import PricedLine, price_line, totals

logger = logging.getLogger(__name__)


class CartService:
    def __init__(
        self,
        store: DocumentStore,
        products: ProductRepository,
        carts: CartRepository,
        clock: Clock = utc_now,
        max_retries: int = 5,
    ) -> None:
        self._store = store
        self._products = products
        self._carts = carts
        self._clock = clock
        self._max_retries = max_retries

    async def add_to_cart(self, user_id: str, product_id: str, quantity: int = 1) -> CartItem:
        """
        Add a product to the cart, incrementing the existing line if present.

        Stock is not checked here; validate_cart does that before checkout.

        Raises:
            InvalidQuantity: quantity is not a positive integer
            NotFoundError: the product does not exist
            StoreConflict: concurrent edits kept winning (retryable)
        """
        try:
            require_positive_quantity(quantity)
        except ValueError:
            raise InvalidQuantity(quantity) from None

        if await self._products.get_product(product_id) is None:
            raise NotFoundError("Product", product_id)

        for attempt in range(1, self._max_retries + 1):
            now = self._clock()
            existing = await self._carts.get_item(user_id, product_id)
            if existing is not None:
                new_quantity = existing.quantity + quantity
                write = self._carts.quantity_write(existing, new_quantity, now)
                item = replace(existing, quantity=new_quantity, updated_at=now, version=existing.version + 1)
            else:
                item = CartItem(user_id=user_id, product_id=product_id, quantity=quantity, added_at=now, version=1)
                write = self._carts.add_write(item)

            try:
                await self._store.commit([write])
                return item
            except StoreConflict:
                logger.warning(
                    "Cart add conflict for user %s product %s (attempt %d)", user_id, product_id, attempt
                )

        raise StoreConflict(f"Could not add {product_id} to cart after {self._max_retries} attempts")

    async def get_cart(self, user_id: str, buyer_tier: BuyerTier = BuyerTier.MARKET) -> Cart:
        """
        Build the cart aggregate from the user's items and current product data.

        Lines whose product is gone, inactive or unpriced stay in the cart but
        are excluded from totals and reported in Cart.warnings.
        """
        items = await self._carts.list_items(user_id)
        products = await self._products.get_products(item.product_id for item in items)

        lines: List[CartLine] = []
        purchasable: List[PricedLine] = []
        warnings: List[str] = []
        for item in items:
            product = products.get(item.product_id)
            if product is None:
                warnings.append(f"Product {item.product_id} no longer exists")
                lines.append(CartLine(item, None, ZERO, ZERO, False))
                continue
            if not product.is_active:
                warnings.append(f"{product.name} is no longer available")
                lines.append(CartLine(item, product, ZERO, ZERO, False))
                continue

            priced = price_line(product, item.quantity, buyer_tier)
            if priced.is_priced:
                purchasable.append(priced)
            else:
                warnings.append(f"{product.name} has no price available")
            lines.append(CartLine(item, product, priced.unit_price, priced.line_total, priced.is_priced))

        summary = totals(purchasable)
        stamps = [item.updated_at or item.added_at for item in items]

        if warnings:
            logger.info("Cart for user %s has %d warning(s)", user_id, len(warnings))

        return Cart(
            user_id=user_id,
            lines=lines,
            total_items=summary.total_items,
            total_price=summary.total_price,
            last_updated=max(stamps) if stamps else self._clock(),
            warnings=warnings,
        )

    async def get_cart_item_count(self, user_id: str) -> int:
        return (await self.get_cart(user_id)).total_items

    async def update_quantity(self, user_id: str, product_id: str, quantity: int) -> Optional[CartItem]:
        """
        Set the quantity of a cart line. A quantity of 0 removes the line.

        Returns:
            The updated CartItem, or None if the line was removed

        Raises:
            InvalidQuantity: negative or non-integer quantity
            ItemNotFound: the product is not in the user's cart
        """
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
            raise InvalidQuantity(quantity)

        item = await self._carts.get_item(user_id, product_id)
        if item is None:
            raise ItemNotFound(user_id, product_id)

        if quantity == 0:
            await self._store.commit([self._carts.delete_write(item)])
            return None

        now = self._clock()
        await self._store.commit([self._carts.quantity_write(item, quantity, now)])
        return replace(item, quantity=quantity, updated_at=now, version=item.version + 1)

    async def remove_from_cart(self, user_id: str, product_id: str) -> None:
        item = await self._carts.get_item(user_id, product_id)
        if item is None:
            raise ItemNotFound(user_id, product_id)
        await self._store.commit([self._carts.delete_write(item, guarded=False)])

    async def clear_cart(self, user_id: str) -> int:
        """Delete every cart line for the user. Returns the number of lines removed."""

        items = await self._carts.list_items(user_id)
        await self._store.commit([self._carts.delete_write(item, guarded=False) for item in items])
        return len(items)

    def clear_writes(self, items: List[CartItem]) -> List[ds.Write]:
        """Version-guarded deletions of exactly the given lines, for a checkout batch."""

        return [self._carts.delete_write(item) for item in items]

    async def validate_cart(self, user_id: str, buyer_tier: BuyerTier = BuyerTier.MARKET) -> CartValidation:
        """
        Re-check every cart line against current stock and pricing.

        Returns:
            CartValidation(is_valid, errors, updated_items) where updated_items
            holds the still-purchasable lines, quantities clamped to stock.
            Clamping is reported, not persisted.
        """
        items = await self._carts.list_items(user_id)
        if not items:
            return CartValidation(is_valid=False, errors=["Cart is empty"], updated_items=[])

        products = await self._products.get_products(item.product_id for item in items)
        errors: List[str] = []
        updated: List[CartItem] = []

        for item in items:
            product = products.get(item.product_id)
            if product is None:
                errors.append(f"Product {item.product_id} no longer exists")
                continue
            if not product.is_active:
                errors.append(f"{product.name} is no longer available")
                continue
            if not product.is_in_stock():
                errors.append(f"{product.name} is out of stock")
                continue
            if not price_line(product, item.quantity, buyer_tier).is_priced:
                errors.append(f"{product.name} has no price available")
                continue
            if item.quantity > product.inventory.stock:
                errors.append(f"Only {product.inventory.stock} units of {product.name} available")
                updated.append(item.with_quantity(product.inventory.stock))
                continue
            updated.append(item)

        return CartValidation(is_valid=not errors, errors=errors, updated_items=updated)


__all__ = ["CartService"]
