"""
Order repository (persistence).

Stores orders as frozen snapshots: items and pricing are written once at
creation. Later writes only touch status, payment, shipping details and
updated_at, always guarded by the version the caller read.

payment.transaction_id is duplicated at the top level of the document
(`payment_transaction_id`) so webhooks can look orders up by it.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

from domain.errors import MalformedDocument
from domain.money import money_str, to_money
from domain.order import (
    DeliveryDriver,
    Order,
    OrderItem,
    OrderPayment,
    OrderPricing,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ShippingAddress,
    ShippingDetails,
)
from domain.time import parse_utc_datetime, to_iso_utc
from repositories import document_store as ds
from repositories.document_store import Document, DocumentStore, Filter

ORDERS: str = "orders"


def _item_from(data: Mapping[str, Any]) -> OrderItem:
    return OrderItem(
        product_id=str(data["product_id"]),
        name=str(data["name"]),
        quantity=int(data["quantity"]),
        unit_price=to_money(data["unit_price"]),
        total_price=to_money(data["total_price"]),
    )


def _payment_from(data: Mapping[str, Any]) -> OrderPayment:
    return OrderPayment(
        method=PaymentMethod(data["method"]),
        status=PaymentStatus(data["status"]),
        amount=to_money(data["amount"]),
        transaction_id=data.get("transaction_id"),
        paid_at=parse_utc_datetime(data["paid_at"]) if data.get("paid_at") else None,
    )


def _optional_time(value: Any) -> Optional[datetime]:
    return parse_utc_datetime(value) if value else None


def _shipping_from(data: Optional[Mapping[str, Any]]) -> ShippingDetails:
    if not data:
        return ShippingDetails()
    driver = data.get("driver")
    return ShippingDetails(
        tracking_number=data.get("tracking_number"),
        estimated_delivery=_optional_time(data.get("estimated_delivery")),
        driver=DeliveryDriver(
            driver_id=str(driver["id"]),
            name=str(driver["name"]),
            phone=str(driver.get("phone") or ""),
            assigned_at=parse_utc_datetime(driver["assigned_at"]),
        ) if driver else None,
        delivered_at=_optional_time(data.get("delivered_at")),
        delivered_by=data.get("delivered_by"),
        delivery_notes=data.get("delivery_notes"),
        signature=data.get("signature"),
    )


def document_to_order(doc: Document) -> Order:
    """Convert an orders document into an Order."""

    try:
        data = doc.data
        pricing = data["pricing"]
        address = data["shipping_address"]
        return Order(
            order_id=doc.doc_id,
            user_id=str(data["user_id"]),
            user_role=str(data["user_role"]),
            items=[_item_from(item) for item in data["items"]],
            pricing=OrderPricing(
                subtotal=to_money(pricing["subtotal"]),
                discount=to_money(pricing["discount"]),
                shipping=to_money(pricing["shipping"]),
                total=to_money(pricing["total"]),
                savings=to_money(pricing.get("savings", "0")),
                currency=str(pricing["currency"]),
            ),
            shipping_address=ShippingAddress(
                street=str(address["street"]),
                city=str(address["city"]),
                province=str(address["province"]),
                postal_code=str(address["postal_code"]),
            ),
            payment=_payment_from(data["payment"]),
            status=OrderStatus(data["status"]),
            created_at=parse_utc_datetime(data["created_at"]),
            updated_at=parse_utc_datetime(data["updated_at"]) if data.get("updated_at") else None,
            version=doc.version,
            shipping=_shipping_from(data.get("shipping")),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedDocument(ORDERS, doc.doc_id, str(e)) from e


def _payment_payload(payment: OrderPayment) -> Dict[str, Any]:
    return {
        "method": payment.method.value,
        "status": payment.status.value,
        "amount": money_str(payment.amount),
        "transaction_id": payment.transaction_id,
        "paid_at": to_iso_utc(payment.paid_at, name="paid_at") if payment.paid_at else None,
    }


def _optional_iso(value: Optional[datetime], name: str) -> Optional[str]:
    return to_iso_utc(value, name=name) if value else None


def _shipping_payload(shipping: ShippingDetails) -> Dict[str, Any]:
    driver = shipping.driver
    return {
        "tracking_number": shipping.tracking_number,
        "estimated_delivery": _optional_iso(shipping.estimated_delivery, "estimated_delivery"),
        "driver": {
            "id": driver.driver_id,
            "name": driver.name,
            "phone": driver.phone,
            "assigned_at": to_iso_utc(driver.assigned_at, name="assigned_at"),
        } if driver else None,
        "delivered_at": _optional_iso(shipping.delivered_at, "delivered_at"),
        "delivered_by": shipping.delivered_by,
        "delivery_notes": shipping.delivery_notes,
        "signature": shipping.signature,
    }


def order_payload(order: Order) -> Dict[str, Any]:
    return {
        "user_id": order.user_id,
        "user_role": order.user_role,
        "items": [
            {
                "product_id": item.product_id,
                "name": item.name,
                "quantity": item.quantity,
                "unit_price": money_str(item.unit_price),
                "total_price": money_str(item.total_price),
            }
            for item in order.items
        ],
        "pricing": {
            "subtotal": money_str(order.pricing.subtotal),
            "discount": money_str(order.pricing.discount),
            "shipping": money_str(order.pricing.shipping),
            "total": money_str(order.pricing.total),
            "savings": money_str(order.pricing.savings),
            "currency": order.pricing.currency,
        },
        "shipping_address": {
            "street": order.shipping_address.street,
            "city": order.shipping_address.city,
            "province": order.shipping_address.province,
            "postal_code": order.shipping_address.postal_code,
        },
        "payment": _payment_payload(order.payment),
        "shipping": _shipping_payload(order.shipping),
        "payment_transaction_id": order.payment.transaction_id,
        "status": order.status.value,
        "created_at": to_iso_utc(order.created_at, name="created_at"),
        "updated_at": to_iso_utc(order.updated_at, name="updated_at") if order.updated_at else None,
    }


class OrderRepository:
    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    async def get_order(self, order_id: str) -> Optional[Order]:
        doc = await self._store.get(ORDERS, order_id)
        if doc is None:
            return None
        return document_to_order(doc)

    async def list_orders(
        self,
        user_id: str,
        status: Optional[OrderStatus] = None,
        limit: Optional[int] = None,
    ) -> List[Order]:
        """Orders for a user, newest first, optionally filtered by status."""

        filters = [Filter("user_id", "==", user_id)]
        if status is not None:
            filters.append(Filter("status", "==", status.value))
        docs = await self._store.query(
            ORDERS, filters=filters, order_by="created_at", descending=True, limit=limit
        )
        return [document_to_order(doc) for doc in docs]

    async def list_by_status(
        self, statuses: Sequence[OrderStatus], limit: Optional[int] = None
    ) -> List[Order]:
        """Orders of every user in any of statuses, oldest first."""

        docs = await self._store.query(
            ORDERS,
            filters=[Filter("status", "in", [status.value for status in statuses])],
            order_by="created_at",
            limit=limit,
        )
        return [document_to_order(doc) for doc in docs]

    async def find_by_transaction_id(self, transaction_id: str) -> Optional[Order]:
        docs = await self._store.query(
            ORDERS, filters=[Filter("payment_transaction_id", "==", transaction_id)], limit=1
        )
        if not docs:
            return None
        return document_to_order(docs[0])

    def create_write(self, order: Order) -> ds.Write:
        return ds.create(ORDERS, order.order_id, order_payload(order))

    def state_write(self, order: Order, expected_version: int) -> ds.Write:
        """Persist status, payment and shipping changes of an order read at expected_version."""

        return ds.update(
            ORDERS,
            order.order_id,
            {
                "status": order.status.value,
                "payment": _payment_payload(order.payment),
                "shipping": _shipping_payload(order.shipping),
                "payment_transaction_id": order.payment.transaction_id,
                "updated_at": to_iso_utc(order.updated_at, name="updated_at") if order.updated_at else None,
            },
            expected_version=expected_version,
        )


__all__ = ["ORDERS", "OrderRepository", "document_to_order", "order_payload"]
