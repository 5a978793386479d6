"""
Payment Webhook Endpoint.

Gateways report the terminal status of a charge here. Delivery is
at-least-once; redelivered events do not change the order again.
"""

import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

from api.dependencies import get_order_service
from api.models import OrderResponse, PaymentWebhookRequest
from domain.errors import Forbidden
from services.order_service import OrderService

router = APIRouter()


def verify_webhook_token(
    request: Request,
    x_webhook_token: Optional[str] = Header(None),
) -> None:
    expected = getattr(request.app.state, "webhook_token", None)
    if expected and not secrets.compare_digest(x_webhook_token or "", expected):
        raise Forbidden("Invalid webhook token")


@router.post(
    "/payments/webhook",
    response_model=OrderResponse,
    summary="Payment Webhook",
    dependencies=[Depends(verify_webhook_token)],
)
async def payment_webhook(
    event: PaymentWebhookRequest,
    orders: OrderService = Depends(get_order_service),
):
    """
    **Example request:**
    ```json
    {"transaction_id": "gcash_1700000000000_ab12cd34", "status": "captured"}
    ```

    `captured` confirms a pending order, `denied` cancels it and `refunded`
    marks the payment refunded.
    """
    order = await orders.apply_payment_event(event.transaction_id, event.status)
    return OrderResponse.from_order(order)
