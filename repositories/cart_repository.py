"""
Cart item repository (persistence).

This module provides *only* persistence operations for CartItem. Business
rules (quantity validation, stock checks, pricing) live in the cart service.
Mutations are returned as Writes so callers can commit them alone or inside a
larger atomic batch (checkout commits the cart deletions with the order).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from domain.cart import CartItem, cart_item_id
from domain.errors import MalformedDocument
from domain.time import parse_utc_datetime, to_iso_utc
from repositories import document_store as ds
from repositories.document_store import Document, DocumentStore, Filter

CART_ITEMS: str = "cart_items"


def document_to_cart_item(doc: Document) -> CartItem:
    try:
        data = doc.data
        return CartItem(
            user_id=str(data["user_id"]),
            product_id=str(data["product_id"]),
            quantity=data["quantity"],
            added_at=parse_utc_datetime(data["added_at"]),
            updated_at=parse_utc_datetime(data["updated_at"]) if data.get("updated_at") else None,
            version=doc.version,
        )
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedDocument(CART_ITEMS, doc.doc_id, str(e)) from e


def _payload(item: CartItem) -> Dict[str, Any]:
    return {
        "user_id": item.user_id,
        "product_id": item.product_id,
        "quantity": item.quantity,
        "added_at": to_iso_utc(item.added_at, name="added_at"),
        "updated_at": to_iso_utc(item.updated_at, name="updated_at") if item.updated_at else None,
    }


class CartRepository:
    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    async def get_item(self, user_id: str, product_id: str) -> Optional[CartItem]:
        doc = await self._store.get(CART_ITEMS, cart_item_id(user_id, product_id))
        if doc is None:
            return None
        return document_to_cart_item(doc)

    async def list_items(self, user_id: str) -> List[CartItem]:
        """All cart items for a user, newest first."""

        docs = await self._store.query(
            CART_ITEMS,
            filters=[Filter("user_id", "==", user_id)],
            order_by="added_at",
            descending=True,
        )
        return [document_to_cart_item(doc) for doc in docs]

    def add_write(self, item: CartItem) -> ds.Write:
        # create fails if a concurrent add got there first
        return ds.create(CART_ITEMS, item.item_id, _payload(item))

    def quantity_write(self, item: CartItem, quantity: int, at: datetime) -> ds.Write:
        return ds.update(
            CART_ITEMS,
            item.item_id,
            {"quantity": quantity, "updated_at": to_iso_utc(at, name="updated_at")},
            expected_version=item.version,
        )

    def delete_write(self, item: CartItem, *, guarded: bool = True) -> ds.Write:
        return ds.delete(
            CART_ITEMS, item.item_id, expected_version=item.version if guarded else None
        )


__all__ = ["CART_ITEMS", "CartRepository", "document_to_cart_item"]
