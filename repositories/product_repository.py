"""
Product repository (read-only).

Products are owned by catalog management; the commerce pipeline only reads
them. Decoding fails closed: a product document with an unknown category or
malformed pricing/inventory raises MalformedDocument instead of leaking
untyped data into pricing.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any, Dict, Iterable, Mapping, Optional

from domain.errors import MalformedDocument
from domain.money import CURRENCY, to_money
from domain.product import Product, ProductCategory, ProductInventory, ProductPricing
from repositories.document_store import Document, DocumentStore

PRODUCTS: str = "products"


def _optional_price(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return to_money(value)


def document_to_product(doc: Document) -> Product:
    """Convert a products document into a Product."""

    try:
        data = doc.data
        pricing: Mapping[str, Any] = data["pricing"]
        inventory: Mapping[str, Any] = data["inventory"]
        stock = inventory["stock"]
        if isinstance(stock, bool) or not isinstance(stock, int):
            raise TypeError(f"stock must be an integer, got {stock!r}")

        return Product(
            product_id=doc.doc_id,
            name=str(data["name"]),
            category=ProductCategory(data["category"]),
            pricing=ProductPricing(
                market_price=_optional_price(pricing.get("market_price")),
                partner_price=_optional_price(pricing.get("partner_price")),
                bulk_price=_optional_price(pricing.get("bulk_price")),
                currency=str(pricing.get("currency", CURRENCY)),
            ),
            inventory=ProductInventory(
                stock=stock,
                location=str(inventory.get("location", "")),
                supplier=str(inventory.get("supplier", "")),
            ),
            is_active=bool(data.get("is_active", True)),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedDocument(PRODUCTS, doc.doc_id, str(e)) from e


class ProductRepository:
    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    async def get_product(self, product_id: str) -> Optional[Product]:
        """
        Fetch a product by id.

        Returns:
            Product or None if it does not exist
        """
        doc = await self._store.get(PRODUCTS, product_id)
        if doc is None:
            return None
        return document_to_product(doc)

    async def get_products(self, product_ids: Iterable[str]) -> Dict[str, Product]:
        """
        Fetch several products concurrently.

        Returns:
            Dictionary mapping product_id to Product (missing ids are absent)
        """
        unique_ids = list(dict.fromkeys(product_ids))
        products = await asyncio.gather(*(self.get_product(pid) for pid in unique_ids))
        return {pid: p for pid, p in zip(unique_ids, products) if p is not None}


__all__ = ["PRODUCTS", "ProductRepository", "document_to_product"]
