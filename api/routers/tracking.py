"""
Tracking API Endpoints.

Order tracking timeline, fulfilment updates and the delivery desk
(driver assignment, proof of delivery, queues and statistics).
"""

from fastapi import APIRouter, Depends, Query

from api.dependencies import (
    STAFF_ROLES,
    CurrentUser,
    current_user,
    get_delivery_service,
    get_order_service,
    get_tracking_service,
    require_staff,
)
from api.models import (
    DeliveryConfirmationRequest,
    DeliveryLocationRequest,
    DeliveryStatisticsResponse,
    DriverAssignmentRequest,
    OrderListResponse,
    OrderResponse,
    TrackingEventRequest,
    TrackingEventResponse,
    TrackingTimelineResponse,
)
from domain.errors import NotFoundError
from services.delivery_service import DeliveryService
from services.order_service import OrderService
from services.tracking_service import TrackingService

router = APIRouter()


@router.get("/orders/{order_id}/tracking", response_model=TrackingTimelineResponse, summary="Get Tracking")
async def get_tracking(
    order_id: str,
    user: CurrentUser = Depends(current_user),
    orders: OrderService = Depends(get_order_service),
    tracking: TrackingService = Depends(get_tracking_service),
):
    """Events in chronological order; `current_phase` is the latest event's status."""
    order = await orders.get_order(order_id)
    if order.user_id != user.user_id and user.role.lower() not in STAFF_ROLES:
        raise NotFoundError("Order", order_id)
    return TrackingTimelineResponse.from_timeline(await tracking.get_tracking_timeline(order_id))


@router.post(
    "/orders/{order_id}/tracking",
    response_model=TrackingEventResponse,
    status_code=201,
    summary="Append Tracking Event",
)
async def append_tracking_event(
    order_id: str,
    request: TrackingEventRequest,
    user: CurrentUser = Depends(require_staff),
    tracking: TrackingService = Depends(get_tracking_service),
):
    """Staff only. Only extends the timeline; the order status is left alone."""
    event = await tracking.append_tracking_event(
        order_id,
        request.status,
        request.location,
        notes=request.notes,
        coordinates=request.coordinates.to_domain() if request.coordinates else None,
    )
    return TrackingEventResponse.from_event(event)


@router.post(
    "/orders/{order_id}/delivery",
    response_model=OrderResponse,
    summary="Update Delivery Status",
    description="Record a fulfilment event and move the order status forward to match it.",
)
async def update_delivery_status(
    order_id: str,
    request: TrackingEventRequest,
    user: CurrentUser = Depends(require_staff),
    delivery: DeliveryService = Depends(get_delivery_service),
):
    """
    **Example request:**
    ```json
    {"status": "out-for-delivery", "location": "Makati", "notes": "Rider assigned"}
    ```
    """
    order = await delivery.update_delivery_status(
        order_id,
        request.status,
        request.location,
        notes=request.notes,
        coordinates=request.coordinates.to_domain() if request.coordinates else None,
    )
    return OrderResponse.from_order(order)


@router.post(
    "/orders/{order_id}/delivery/driver",
    response_model=OrderResponse,
    summary="Assign Delivery Driver",
)
async def assign_delivery_driver(
    order_id: str,
    request: DriverAssignmentRequest,
    user: CurrentUser = Depends(require_staff),
    delivery: DeliveryService = Depends(get_delivery_service),
):
    """Staff only. Records an out-for-delivery event and the driver on the order."""
    order = await delivery.assign_delivery_driver(
        order_id, request.driver_id, request.driver_name, request.driver_phone
    )
    return OrderResponse.from_order(order)


@router.post(
    "/orders/{order_id}/delivery/location",
    response_model=OrderResponse,
    summary="Update Delivery Location",
)
async def update_delivery_location(
    order_id: str,
    request: DeliveryLocationRequest,
    user: CurrentUser = Depends(require_staff),
    delivery: DeliveryService = Depends(get_delivery_service),
):
    order = await delivery.update_delivery_location(order_id, request.coordinates.to_domain(), request.address)
    return OrderResponse.from_order(order)


@router.post(
    "/orders/{order_id}/delivery/confirmation",
    response_model=OrderResponse,
    summary="Mark As Delivered",
    description="Proof of delivery: who handed the package over, optional notes and signature.",
)
async def mark_as_delivered(
    order_id: str,
    request: DeliveryConfirmationRequest,
    user: CurrentUser = Depends(require_staff),
    delivery: DeliveryService = Depends(get_delivery_service),
):
    order = await delivery.mark_as_delivered(
        order_id, request.delivered_by, delivery_notes=request.delivery_notes, signature=request.signature
    )
    return OrderResponse.from_order(order)


@router.get("/delivery/ready", response_model=OrderListResponse, summary="Orders Ready For Delivery")
async def get_orders_ready_for_delivery(
    limit: int = Query(50, ge=1, le=200),
    user: CurrentUser = Depends(require_staff),
    delivery: DeliveryService = Depends(get_delivery_service),
):
    """Staff only. Processing orders, oldest first."""
    orders = await delivery.get_orders_ready_for_delivery(limit=limit)
    return OrderListResponse(orders=[OrderResponse.from_order(o) for o in orders], total_count=len(orders))


@router.get("/delivery/out", response_model=OrderListResponse, summary="Orders Out For Delivery")
async def get_orders_out_for_delivery(
    limit: int = Query(50, ge=1, le=200),
    user: CurrentUser = Depends(require_staff),
    delivery: DeliveryService = Depends(get_delivery_service),
):
    """Staff only. Shipped orders, oldest first."""
    orders = await delivery.get_orders_out_for_delivery(limit=limit)
    return OrderListResponse(orders=[OrderResponse.from_order(o) for o in orders], total_count=len(orders))


@router.get("/delivery/statistics", response_model=DeliveryStatisticsResponse, summary="Delivery Statistics")
async def get_delivery_statistics(
    user: CurrentUser = Depends(require_staff),
    delivery: DeliveryService = Depends(get_delivery_service),
):
    return DeliveryStatisticsResponse.from_statistics(await delivery.get_delivery_statistics())
