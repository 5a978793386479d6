"""
Orders API Endpoints.

Checkout, order history and status changes.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from api.dependencies import (
    STAFF_ROLES,
    CurrentUser,
    current_user,
    get_order_service,
    require_staff,
)
from api.errors import error_response
from api.models import (
    CancelOrderRequest,
    CheckoutRequest,
    CheckoutResponse,
    ErrorResponse,
    OrderListResponse,
    OrderResponse,
    OrderStatisticsResponse,
    PaymentInstructionsResponse,
    StatusUpdateRequest,
)
from domain.errors import NotFoundError
from domain.order import Order, PaymentMethod, PaymentStatus
from services.order_service import OrderService
from services.payment_gateway import payment_instructions

router = APIRouter()


async def _owned_order(orders: OrderService, order_id: str, user: CurrentUser) -> Order:
    order = await orders.get_order(order_id)
    if order.user_id != user.user_id and user.role.lower() not in STAFF_ROLES:
        # Other users' orders are indistinguishable from missing ones.
        raise NotFoundError("Order", order_id)
    return order


@router.post(
    "/orders/checkout",
    response_model=CheckoutResponse,
    status_code=201,
    summary="Checkout",
    description="Turn the caller's cart into an order and collect payment.",
    responses={402: {"model": ErrorResponse}, 409: {"model": ErrorResponse}, 504: {"model": ErrorResponse}},
)
async def checkout(
    request: CheckoutRequest,
    user: CurrentUser = Depends(current_user),
    orders: OrderService = Depends(get_order_service),
):
    """
    Checkout the caller's cart.

    **Process:**
    1. Validates the cart against current stock and pricing
    2. Prices the lines for the caller's buyer tier
    3. Collects payment (wallet debit or gateway charge)
    4. Saves the order and clears the cart in one atomic write

    If anything fails after the payment succeeded, the payment is returned
    automatically.

    **Failure response (insufficient funds):**
    ```json
    {
      "success": false,
      "error": "Insufficient wallet balance: available 100.00, required 180.00",
      "error_code": "insufficient_funds",
      "retryable": false,
      "errors": []
    }
    ```
    """
    result = await orders.create_order(
        user.user_id,
        user.role,
        request.shipping_address.to_domain(),
        request.payment_method,
    )
    if not result.success:
        return error_response(result.error or "Checkout failed", result.error_code or "checkout_failed",
                              result.retryable, result.errors)

    order = result.order
    instructions = None
    if order.payment.status is PaymentStatus.PENDING and order.payment.method is not PaymentMethod.WALLET:
        instructions = PaymentInstructionsResponse.from_instructions(payment_instructions(order.payment.method))
    return CheckoutResponse(
        order=OrderResponse.from_order(order),
        payment_url=result.payment_url,
        payment_instructions=instructions,
    )


@router.get("/orders", response_model=OrderListResponse, summary="List Orders")
async def list_orders(
    status: Optional[str] = Query(None, description="Filter by order status"),
    limit: int = Query(20, ge=1, le=100),
    user: CurrentUser = Depends(current_user),
    orders: OrderService = Depends(get_order_service),
):
    """The caller's orders, newest first."""
    found = await orders.get_user_orders(user.user_id, status=status, limit=limit)
    return OrderListResponse(orders=[OrderResponse.from_order(o) for o in found], total_count=len(found))


@router.get("/orders/statistics", response_model=OrderStatisticsResponse, summary="Order Statistics")
async def order_statistics(
    user: CurrentUser = Depends(current_user),
    orders: OrderService = Depends(get_order_service),
):
    return OrderStatisticsResponse.from_statistics(await orders.get_order_statistics(user.user_id))


@router.get("/orders/{order_id}", response_model=OrderResponse, summary="Get Order")
async def get_order(
    order_id: str,
    user: CurrentUser = Depends(current_user),
    orders: OrderService = Depends(get_order_service),
):
    return OrderResponse.from_order(await _owned_order(orders, order_id, user))


@router.patch(
    "/orders/{order_id}/status",
    response_model=OrderResponse,
    summary="Update Order Status",
    description="Move an order along pending → confirmed → processing → shipped → delivered.",
)
async def update_order_status(
    order_id: str,
    request: StatusUpdateRequest,
    user: CurrentUser = Depends(require_staff),
    orders: OrderService = Depends(get_order_service),
):
    """
    Staff only. Illegal moves (e.g. delivered → pending) return
    `invalid_status_transition`. Cancelling a paid order refunds it.
    """
    return OrderResponse.from_order(await orders.update_order_status(order_id, request.status))


@router.post("/orders/{order_id}/cancel", response_model=OrderResponse, summary="Cancel Order")
async def cancel_order(
    order_id: str,
    request: CancelOrderRequest,
    user: CurrentUser = Depends(current_user),
    orders: OrderService = Depends(get_order_service),
):
    """Cancel an order that has not shipped yet. Paid orders are refunded."""
    await _owned_order(orders, order_id, user)
    return OrderResponse.from_order(await orders.cancel_order(order_id, request.reason))
