"""
Domain: order tracking timeline.

Contract:
- The timeline is an append-only sequence of events keyed by order id.
- Each appended event's timestamp is >= the latest existing event's timestamp.
- The latest event's status is the order's current tracking phase. It is
  independent of Order.status, though the two are expected to correlate.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from .errors import OutOfOrderEvent
from .order import OrderStatus
from .time import require_utc_timestamp


class TrackingStatus(str, Enum):
    ORDER_PLACED = "order-placed"
    SUPPLIER_NOTIFIED = "supplier-notified"
    WAREHOUSE_RECEIVED = "warehouse-received"
    PACKED = "packed"
    SHIPPED = "shipped"
    OUT_FOR_DELIVERY = "out-for-delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


# Order status implied by a fulfilment event.
TRACKING_TO_ORDER_STATUS: Dict[TrackingStatus, OrderStatus] = {
    TrackingStatus.ORDER_PLACED: OrderStatus.PENDING,
    TrackingStatus.SUPPLIER_NOTIFIED: OrderStatus.CONFIRMED,
    TrackingStatus.WAREHOUSE_RECEIVED: OrderStatus.PROCESSING,
    TrackingStatus.PACKED: OrderStatus.PROCESSING,
    TrackingStatus.SHIPPED: OrderStatus.SHIPPED,
    TrackingStatus.OUT_FOR_DELIVERY: OrderStatus.SHIPPED,
    TrackingStatus.DELIVERED: OrderStatus.DELIVERED,
    TrackingStatus.CANCELLED: OrderStatus.CANCELLED,
}

STATUS_DESCRIPTIONS: Dict[TrackingStatus, str] = {
    TrackingStatus.ORDER_PLACED: "Your order has been placed and is being processed",
    TrackingStatus.SUPPLIER_NOTIFIED: "The supplier has been notified and is preparing your items",
    TrackingStatus.WAREHOUSE_RECEIVED: "Your items have been received at our warehouse",
    TrackingStatus.PACKED: "Your items have been packed and are ready for shipping",
    TrackingStatus.SHIPPED: "Your package is on its way to you",
    TrackingStatus.OUT_FOR_DELIVERY: "Your package is out for delivery and will arrive soon",
    TrackingStatus.DELIVERED: "Your package has been delivered successfully",
    TrackingStatus.CANCELLED: "Your order has been cancelled",
}


@dataclass(frozen=True, slots=True)
class Coordinates:
    lat: float
    lng: float

    def __post_init__(self) -> None:
        if not -90.0 <= self.lat <= 90.0:
            raise ValueError("lat must be within [-90, 90]")
        if not -180.0 <= self.lng <= 180.0:
            raise ValueError("lng must be within [-180, 180]")


@dataclass(frozen=True, slots=True)
class TrackingEvent:
    status: TrackingStatus
    location: str
    timestamp: datetime
    notes: Optional[str] = None
    coordinates: Optional[Coordinates] = None

    def __post_init__(self) -> None:
        require_utc_timestamp("timestamp", self.timestamp)


@dataclass(frozen=True, slots=True)
class TrackingTimeline:
    order_id: str
    events: List[TrackingEvent] = field(default_factory=list)
    version: int = 0

    @property
    def latest(self) -> Optional[TrackingEvent]:
        return self.events[-1] if self.events else None

    @property
    def current_phase(self) -> Optional[TrackingStatus]:
        latest = self.latest
        return latest.status if latest else None

    def appended(self, event: TrackingEvent) -> "TrackingTimeline":
        """Return a new timeline with the event appended, enforcing monotonic time."""

        latest = self.latest
        if latest is not None and event.timestamp < latest.timestamp:
            raise OutOfOrderEvent(
                f"Tracking event at {event.timestamp.isoformat()} is earlier than the "
                f"latest event at {latest.timestamp.isoformat()} for order {self.order_id}"
            )
        return TrackingTimeline(
            order_id=self.order_id,
            events=[*self.events, event],
            version=self.version,
        )

    def sorted_events(self) -> List[TrackingEvent]:
        # stable: equal timestamps keep append order
        return sorted(self.events, key=lambda e: e.timestamp)
