"""
Delivery service: fulfilment events that also move the order forward.

A tracking event implies an order status (see TRACKING_TO_ORDER_STATUS).
The order is only ever advanced along pending -> confirmed -> processing ->
shipped -> delivered, one legal step at a time; an event that implies a
status at or behind the current one only extends the timeline. An order whose
gateway payment is still pending is never advanced by a delivery event: only
the payment capture confirms it.

Driver assignment and proof of delivery are recorded in the order's shipping
details next to the timeline events.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, List, Optional

from domain.errors import InvalidStatusTransition, ValidationError
from domain.order import (
    STATUS_RANK,
    DeliveryDriver,
    DeliveryStatistics,
    Order,
    OrderStatus,
    PaymentStatus,
    can_transition,
    delivery_statistics,
)
from domain.time import Clock, utc_now
from domain.tracking import (
    STATUS_DESCRIPTIONS,
    TRACKING_TO_ORDER_STATUS,
    Coordinates,
    TrackingStatus,
)
from services.order_service import OrderService
from services.tracking_service import TrackingService

logger = logging.getLogger(__name__)

DELIVERY_DAYS: int = 4

_FORWARD_PATH = sorted(STATUS_RANK, key=STATUS_RANK.__getitem__)


def estimate_delivery_date(order_date: date | datetime, days: int = DELIVERY_DAYS) -> datetime:
    """
    Estimated delivery: order date plus calendar days, moved to the following
    Monday when that lands on a weekend. Returned as midnight UTC.

    Example:
        estimate_delivery_date(date(2024, 1, 5))  # Friday -> Tuesday 2024-01-09
        estimate_delivery_date(date(2024, 1, 6))  # Saturday -> Wednesday 2024-01-10
        estimate_delivery_date(date(2024, 1, 9))  # Tuesday -> Saturday, so Monday 2024-01-15
    """
    if isinstance(order_date, datetime):
        current = order_date.astimezone(timezone.utc).date()
    else:
        current = order_date

    estimate = current + timedelta(days=days)
    if estimate.weekday() == 5:
        estimate += timedelta(days=2)
    elif estimate.weekday() == 6:
        estimate += timedelta(days=1)
    return datetime.combine(estimate, time(0, 0), tzinfo=timezone.utc)


def describe_tracking_status(status: TrackingStatus | str) -> str:
    try:
        return STATUS_DESCRIPTIONS[TrackingStatus(status)]
    except ValueError:
        return "Status update"


def _awaiting_payment(order: Order) -> bool:
    return order.payment.status is PaymentStatus.PENDING


class DeliveryService:
    def __init__(self, tracking: TrackingService, orders: OrderService, clock: Clock = utc_now) -> None:
        self._tracking = tracking
        self._orders = orders
        self._clock = clock

    async def update_delivery_status(
        self,
        order_id: str,
        status: TrackingStatus | str,
        location: str,
        notes: Optional[str] = None,
        coordinates: Optional[Coordinates] = None,
    ) -> Order:
        """
        Record a fulfilment event and advance the order to match it.

        A delivered event also stamps the order's delivery time.

        Returns:
            The order after any status change
        """
        return await self._record_event(order_id, status, location, notes, coordinates)

    async def _record_event(
        self,
        order_id: str,
        status: TrackingStatus | str,
        location: str,
        notes: Optional[str],
        coordinates: Optional[Coordinates],
        **delivery: Any,
    ) -> Order:
        event = await self._tracking.append_tracking_event(
            order_id, status, location, notes=notes, coordinates=coordinates
        )
        target = TRACKING_TO_ORDER_STATUS[event.status]
        order = await self._orders.get_order(order_id)

        if target is OrderStatus.CANCELLED:
            if can_transition(order.status, OrderStatus.CANCELLED):
                return await self._orders.update_order_status(order_id, OrderStatus.CANCELLED)
            return order

        if order.status not in STATUS_RANK:
            logger.warning(
                "Delivery event %s on %s order %s does not change its status",
                event.status.value, order.status.value, order_id,
            )
            return order

        if _awaiting_payment(order) and STATUS_RANK[order.status] < STATUS_RANK[target]:
            logger.warning(
                "Delivery event %s on order %s ignored for status: payment still pending",
                event.status.value, order_id,
            )
            return order

        while STATUS_RANK[order.status] < STATUS_RANK[target]:
            next_status = _FORWARD_PATH[STATUS_RANK[order.status] + 1]
            order = await self._orders.update_order_status(order_id, next_status)

        if event.status is TrackingStatus.DELIVERED and order.status is OrderStatus.DELIVERED:
            if delivery or order.shipping.delivered_at is None:
                delivered_at = order.shipping.delivered_at or event.timestamp
                order = await self._orders.update_shipping(order_id, delivered_at=delivered_at, **delivery)
        return order

    async def start_fulfilment(self, order_id: str, location: str = "Supplier") -> Order:
        """Notify the supplier of a confirmed order, move it to processing and set its delivery estimate."""

        order = await self._orders.get_order(order_id)
        if order.status is not OrderStatus.CONFIRMED:
            raise InvalidStatusTransition(order.status, OrderStatus.PROCESSING)

        await self._tracking.append_tracking_event(
            order_id, TrackingStatus.SUPPLIER_NOTIFIED, location, notes="Supplier notified of order"
        )
        await self._orders.update_order_status(order_id, OrderStatus.PROCESSING)
        return await self._orders.update_shipping(
            order_id, estimated_delivery=estimate_delivery_date(self._clock())
        )

    def _require_deliverable(self, order: Order) -> None:
        if order.status not in STATUS_RANK or order.status is OrderStatus.DELIVERED or _awaiting_payment(order):
            raise InvalidStatusTransition(order.status, OrderStatus.DELIVERED)

    async def assign_delivery_driver(
        self,
        order_id: str,
        driver_id: str,
        driver_name: str,
        driver_phone: str,
        location: str = "Driver assigned for delivery",
    ) -> Order:
        """
        Hand the order to a driver: out-for-delivery event plus the driver on the order.

        Raises:
            InvalidStatusTransition: the order is unpaid, cancelled or already delivered
            ValidationError: driver id or name is blank
        """
        order = await self._orders.get_order(order_id)
        self._require_deliverable(order)
        try:
            driver = DeliveryDriver(driver_id, driver_name, driver_phone, assigned_at=self._clock())
        except ValueError as e:
            raise ValidationError(str(e)) from None

        await self._record_event(
            order_id,
            TrackingStatus.OUT_FOR_DELIVERY,
            location,
            f"Driver: {driver.name} ({driver.phone})",
            None,
        )
        order = await self._orders.update_shipping(order_id, driver=driver)
        logger.info("Order %s assigned to driver %s", order_id, driver.driver_id)
        return order

    async def update_delivery_location(self, order_id: str, coordinates: Coordinates, address: str) -> Order:
        """Live position of the driver, recorded as another out-for-delivery event."""

        return await self._record_event(
            order_id, TrackingStatus.OUT_FOR_DELIVERY, address, "Driver location updated", coordinates
        )

    async def mark_as_delivered(
        self,
        order_id: str,
        delivered_by: str,
        delivery_notes: Optional[str] = None,
        signature: Optional[str] = None,
        location: str = "Package delivered successfully",
    ) -> Order:
        """
        Proof of delivery: delivered event, order status delivered, and who
        handed it over (with optional notes and signature) on the order.

        Raises:
            InvalidStatusTransition: the order is unpaid, cancelled or already delivered
            ValidationError: delivered_by is blank
        """
        if not delivered_by.strip():
            raise ValidationError("delivered_by is required")
        order = await self._orders.get_order(order_id)
        self._require_deliverable(order)

        notes = f"Delivered by: {delivered_by}"
        if delivery_notes:
            notes += f" | Notes: {delivery_notes}"
        order = await self._record_event(
            order_id,
            TrackingStatus.DELIVERED,
            location,
            notes,
            None,
            delivered_by=delivered_by,
            delivery_notes=delivery_notes,
            signature=signature,
        )
        logger.info("Order %s delivered by %s", order_id, delivered_by)
        return order

    async def get_orders_ready_for_delivery(self, limit: Optional[int] = None) -> List[Order]:
        """Processing orders, oldest first."""
        return await self._orders.get_orders_by_status(OrderStatus.PROCESSING, limit=limit)

    async def get_orders_out_for_delivery(self, limit: Optional[int] = None) -> List[Order]:
        """Shipped orders, oldest first."""
        return await self._orders.get_orders_by_status(OrderStatus.SHIPPED, limit=limit)

    async def get_delivery_statistics(self) -> DeliveryStatistics:
        orders = await self._orders.get_orders_by_status(
            OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED
        )
        return delivery_statistics(orders)


__all__ = [
    "DELIVERY_DAYS",
    "DeliveryService",
    "describe_tracking_status",
    "estimate_delivery_date",
]
