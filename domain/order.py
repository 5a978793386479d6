"""
Domain: Orders and the order status machine.

Contract:
- Items and pricing are frozen when the order is created; later product price
  changes never touch an existing order.
- Only status, payment status, shipping details (driver, delivery record) and
  the tracking timeline change afterwards.
- Status transitions:

      pending -> confirmed -> processing -> shipped -> delivered
      pending | confirmed | processing -> cancelled

  delivered and cancelled are terminal. Every other (from, to) pair, including
  staying in the same status, is an InvalidStatusTransition.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, FrozenSet, List, Mapping, Optional

from .errors import InvalidStatusTransition
from .money import CURRENCY, ZERO
from .time import require_utc_timestamp


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


ALLOWED_TRANSITIONS: Mapping[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

# Position along the fulfilment path, used to decide whether a status is "ahead".
STATUS_RANK: Dict[OrderStatus, int] = {
    OrderStatus.PENDING: 0,
    OrderStatus.CONFIRMED: 1,
    OrderStatus.PROCESSING: 2,
    OrderStatus.SHIPPED: 3,
    OrderStatus.DELIVERED: 4,
}


def can_transition(current: OrderStatus, new: OrderStatus) -> bool:
    return new in ALLOWED_TRANSITIONS[current]


def require_transition(current: OrderStatus, new: OrderStatus) -> None:
    if not can_transition(current, new):
        raise InvalidStatusTransition(current, new)


class PaymentMethod(str, Enum):
    WALLET = "wallet"
    GCASH = "gcash"
    PAYPAL = "paypal"
    BANK_TRANSFER = "bank-transfer"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


@dataclass(frozen=True, slots=True)
class ShippingAddress:
    street: str
    city: str
    province: str
    postal_code: str

    def __post_init__(self) -> None:
        for name in ("street", "city", "province", "postal_code"):
            if not str(getattr(self, name)).strip():
                raise ValueError(f"shipping address {name} is required")


@dataclass(frozen=True, slots=True)
class OrderItem:
    product_id: str
    name: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal


@dataclass(frozen=True, slots=True)
class OrderPricing:
    subtotal: Decimal
    discount: Decimal
    shipping: Decimal
    total: Decimal
    savings: Decimal = ZERO
    currency: str = CURRENCY


@dataclass(frozen=True, slots=True)
class OrderPayment:
    method: PaymentMethod
    status: PaymentStatus
    amount: Decimal
    transaction_id: Optional[str] = None
    paid_at: Optional[datetime] = None


@dataclass(frozen=True, slots=True)
class DeliveryDriver:
    driver_id: str
    name: str
    phone: str
    assigned_at: datetime

    def __post_init__(self) -> None:
        for name in ("driver_id", "name"):
            if not str(getattr(self, name)).strip():
                raise ValueError(f"driver {name} is required")
        require_utc_timestamp("assigned_at", self.assigned_at)


@dataclass(frozen=True, slots=True)
class ShippingDetails:
    """Fulfilment facts recorded on the order after checkout."""

    tracking_number: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    driver: Optional[DeliveryDriver] = None
    delivered_at: Optional[datetime] = None
    delivered_by: Optional[str] = None
    delivery_notes: Optional[str] = None
    signature: Optional[str] = None

    def __post_init__(self) -> None:
        for name in ("estimated_delivery", "delivered_at"):
            value = getattr(self, name)
            if value is not None:
                require_utc_timestamp(name, value)


@dataclass(frozen=True, slots=True)
class Order:
    order_id: str
    user_id: str
    user_role: str
    items: List[OrderItem]
    pricing: OrderPricing
    shipping_address: ShippingAddress
    payment: OrderPayment
    status: OrderStatus
    created_at: datetime
    updated_at: Optional[datetime] = None
    version: int = 0
    shipping: ShippingDetails = field(default_factory=ShippingDetails)

    def __post_init__(self) -> None:
        require_utc_timestamp("created_at", self.created_at)
        if self.updated_at is not None:
            require_utc_timestamp("updated_at", self.updated_at)

    @property
    def is_wallet_paid(self) -> bool:
        return (
            self.payment.method is PaymentMethod.WALLET
            and self.payment.status is PaymentStatus.PAID
        )

    def with_status(self, status: OrderStatus, at: datetime) -> "Order":
        require_transition(self.status, status)
        return replace(self, status=status, updated_at=at)

    def with_payment(self, payment: OrderPayment, at: datetime) -> "Order":
        return replace(self, payment=payment, updated_at=at)

    def with_shipping(self, shipping: ShippingDetails, at: datetime) -> "Order":
        return replace(self, shipping=shipping, updated_at=at)


@dataclass(frozen=True, slots=True)
class OrderStatistics:
    total_orders: int
    completed_orders: int
    pending_orders: int
    total_spent: Decimal
    average_order_value: Decimal


def order_statistics(orders: List[Order]) -> OrderStatistics:
    """Counts per lifecycle bucket; spending only counts paid orders."""

    completed = sum(1 for o in orders if o.status is OrderStatus.DELIVERED)
    in_flight = sum(
        1 for o in orders
        if o.status not in (OrderStatus.DELIVERED, OrderStatus.CANCELLED)
    )
    spent = sum(
        (o.pricing.total for o in orders if o.payment.status is PaymentStatus.PAID),
        ZERO,
    )
    average = (spent / len(orders)).quantize(Decimal("0.01")) if orders else ZERO
    return OrderStatistics(
        total_orders=len(orders),
        completed_orders=completed,
        pending_orders=in_flight,
        total_spent=spent,
        average_order_value=average,
    )


@dataclass(frozen=True, slots=True)
class DeliveryStatistics:
    total_deliveries: int
    completed_deliveries: int
    in_transit: int
    average_delivery_days: float


def delivery_statistics(orders: List[Order]) -> DeliveryStatistics:
    """
    Fulfilment counts over processing, shipped and delivered orders.

    Average delivery time is measured from order creation to the recorded
    delivery timestamp, in days rounded to one decimal. Delivered orders
    without a delivery timestamp are counted but not averaged.
    """

    in_fulfilment = [
        o for o in orders
        if o.status in (OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED)
    ]
    delivered = [o for o in in_fulfilment if o.status is OrderStatus.DELIVERED]
    durations = [
        (o.shipping.delivered_at - o.created_at).total_seconds() / 86400
        for o in delivered
        if o.shipping.delivered_at is not None
    ]
    return DeliveryStatistics(
        total_deliveries=len(in_fulfilment),
        completed_deliveries=len(delivered),
        in_transit=len(in_fulfilment) - len(delivered),
        average_delivery_days=round(sum(durations) / len(durations), 1) if durations else 0.0,
    )
