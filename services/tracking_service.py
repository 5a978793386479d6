"""
Order tracking service.

Appends fulfilment events to an order's timeline. The timeline document is
rewritten under the version that was read, so concurrent appends serialize
and the monotonic-timestamp check always runs against the real latest event.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from domain.errors import NotFoundError, StoreConflict, ValidationError
from domain.time import Clock, require_utc_timestamp, utc_now
from domain.tracking import Coordinates, TrackingEvent, TrackingStatus, TrackingTimeline
from repositories import document_store as ds
from repositories.document_store import DocumentStore
from repositories.order_repository import OrderRepository
from repositories.tracking_repository import TrackingRepository

logger = logging.getLogger(__name__)


class TrackingService:
    def __init__(
        self,
        store: DocumentStore,
        tracking: TrackingRepository,
        orders: OrderRepository,
        clock: Clock = utc_now,
        max_retries: int = 5,
    ) -> None:
        self._store = store
        self._tracking = tracking
        self._orders = orders
        self._clock = clock
        self._max_retries = max_retries

    async def _timeline_or_empty(self, order_id: str) -> TrackingTimeline:
        timeline = await self._tracking.get_timeline(order_id)
        if timeline is not None:
            return timeline
        if await self._orders.get_order(order_id) is None:
            raise NotFoundError("Order", order_id)
        return TrackingTimeline(order_id=order_id, events=[], version=0)

    async def append_tracking_event(
        self,
        order_id: str,
        status: TrackingStatus | str,
        location: str,
        notes: Optional[str] = None,
        coordinates: Optional[Coordinates] = None,
        occurred_at: Optional[datetime] = None,
    ) -> TrackingEvent:
        """
        Append one event to the order's timeline.

        The event is stamped with the current time unless occurred_at is given
        (e.g. a courier scan reported late).

        Raises:
            ValidationError: unknown status or non-UTC timestamp
            NotFoundError: the order does not exist
            OutOfOrderEvent: the timestamp is earlier than the latest event
        """
        try:
            status = TrackingStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown tracking status: {status!r}") from None
        if occurred_at is not None:
            try:
                require_utc_timestamp("occurred_at", occurred_at)
            except ValueError as e:
                raise ValidationError(str(e)) from None

        for attempt in range(1, self._max_retries + 1):
            timeline = await self._timeline_or_empty(order_id)
            event = TrackingEvent(
                status=status,
                location=location,
                timestamp=occurred_at or self._clock(),
                notes=notes,
                coordinates=coordinates,
            )
            appended = timeline.appended(event)
            write = (
                self._tracking.append_write(appended)
                if timeline.version
                else self._tracking.create_write(appended)
            )
            try:
                await self._store.commit([write])
            except StoreConflict:
                logger.warning("Tracking append conflict for order %s (attempt %d)", order_id, attempt)
                continue

            logger.info("Order %s tracking -> %s at %s", order_id, status.value, location)
            return event

        raise StoreConflict(f"Could not append tracking event to order {order_id}")

    async def get_tracking_timeline(self, order_id: str) -> TrackingTimeline:
        """Events sorted ascending by timestamp; current_phase is the latest status."""

        timeline = await self._timeline_or_empty(order_id)
        return TrackingTimeline(
            order_id=timeline.order_id,
            events=timeline.sorted_events(),
            version=timeline.version,
        )

    def initial_timeline_write(self, order_id: str, at: datetime, notes: Optional[str] = None) -> ds.Write:
        """Seed write for a new order's timeline (committed with the order)."""

        return self._tracking.create_write(
            TrackingTimeline(
                order_id=order_id,
                events=[TrackingEvent(TrackingStatus.ORDER_PLACED, "Order received", at, notes)],
            )
        )


__all__ = ["TrackingService"]
