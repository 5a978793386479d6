"""
Order tracking repository (persistence).

One document per order (order_tracking/{order_id}) holding the event list.
Appends rewrite the list under the version that was read, so two concurrent
appends cannot both succeed against the same "latest event".
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from domain.errors import MalformedDocument
from domain.time import parse_utc_datetime, to_iso_utc
from domain.tracking import Coordinates, TrackingEvent, TrackingStatus, TrackingTimeline
from repositories import document_store as ds
from repositories.document_store import Document, DocumentStore

ORDER_TRACKING: str = "order_tracking"


def _event_from(data: Mapping[str, Any]) -> TrackingEvent:
    coords = data.get("coordinates")
    return TrackingEvent(
        status=TrackingStatus(data["status"]),
        location=str(data["location"]),
        timestamp=parse_utc_datetime(data["timestamp"]),
        notes=data.get("notes"),
        coordinates=Coordinates(lat=float(coords["lat"]), lng=float(coords["lng"])) if coords else None,
    )


def _event_payload(event: TrackingEvent) -> Dict[str, Any]:
    return {
        "status": event.status.value,
        "location": event.location,
        "timestamp": to_iso_utc(event.timestamp, name="timestamp"),
        "notes": event.notes,
        "coordinates": (
            {"lat": event.coordinates.lat, "lng": event.coordinates.lng}
            if event.coordinates else None
        ),
    }


def document_to_timeline(doc: Document) -> TrackingTimeline:
    try:
        return TrackingTimeline(
            order_id=str(doc.data["order_id"]),
            events=[_event_from(e) for e in doc.data["events"]],
            version=doc.version,
        )
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedDocument(ORDER_TRACKING, doc.doc_id, str(e)) from e


class TrackingRepository:
    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    async def get_timeline(self, order_id: str) -> Optional[TrackingTimeline]:
        doc = await self._store.get(ORDER_TRACKING, order_id)
        if doc is None:
            return None
        return document_to_timeline(doc)

    def create_write(self, timeline: TrackingTimeline) -> ds.Write:
        return ds.create(
            ORDER_TRACKING,
            timeline.order_id,
            {
                "order_id": timeline.order_id,
                "events": [_event_payload(e) for e in timeline.events],
            },
        )

    def append_write(self, timeline: TrackingTimeline) -> ds.Write:
        """Rewrite the event list of a timeline read at timeline.version."""

        return ds.update(
            ORDER_TRACKING,
            timeline.order_id,
            {"events": [_event_payload(e) for e in timeline.events]},
            expected_version=timeline.version,
        )


__all__ = ["ORDER_TRACKING", "TrackingRepository", "document_to_timeline"]
