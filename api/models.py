"""
API Request and Response Models.

Pydantic models for validating API requests and serializing responses.
Money fields are Decimals and serialize as strings ("80.00").
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from domain.cart import Cart, CartItem, CartValidation
from domain.errors import ValidationError
from domain.money import CURRENCY
from domain.order import DeliveryStatistics, Order, OrderStatistics, ShippingAddress, ShippingDetails
from domain.tracking import Coordinates, TrackingEvent, TrackingTimeline
from domain.wallet import UserWallet, WalletSummary, WalletTransaction
from services.delivery_service import describe_tracking_status, estimate_delivery_date
from services.payment_gateway import PaymentInstructions


# ============================================================================
# Errors
# ============================================================================

class ErrorResponse(BaseModel):
    """Envelope returned for every failed request."""
    success: bool = False
    error: str
    error_code: str
    retryable: bool = False
    errors: List[str] = Field(default_factory=list)

    class Config:
        json_schema_extra = {
            "example": {
                "success": False,
                "error": "Insufficient wallet balance: available 100.00, required 180.00",
                "error_code": "insufficient_funds",
                "retryable": False,
                "errors": [],
            }
        }


# ============================================================================
# Cart Models
# ============================================================================

class AddToCartRequest(BaseModel):
    """Request to add a product to the cart."""
    product_id: str = Field(..., min_length=1)
    quantity: int = 1

    class Config:
        json_schema_extra = {"example": {"product_id": "prod-bleach-1l", "quantity": 2}}


class UpdateQuantityRequest(BaseModel):
    """New quantity for a cart line; 0 removes the line."""
    quantity: int


class CartItemResponse(BaseModel):
    product_id: str
    quantity: int
    added_at: datetime
    updated_at: Optional[datetime] = None

    @classmethod
    def from_item(cls, item: CartItem) -> "CartItemResponse":
        return cls(
            product_id=item.product_id,
            quantity=item.quantity,
            added_at=item.added_at,
            updated_at=item.updated_at,
        )


class CartLineResponse(BaseModel):
    product_id: str
    name: Optional[str] = None
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    is_purchasable: bool


class CartResponse(BaseModel):
    """Cart recomputed against current product data."""
    user_id: str
    items: List[CartLineResponse]
    total_items: int
    total_price: Decimal
    currency: str = CURRENCY
    last_updated: datetime
    warnings: List[str] = Field(default_factory=list)

    @classmethod
    def from_cart(cls, cart: Cart) -> "CartResponse":
        return cls(
            user_id=cart.user_id,
            items=[
                CartLineResponse(
                    product_id=line.item.product_id,
                    name=line.product.name if line.product else None,
                    quantity=line.item.quantity,
                    unit_price=line.unit_price,
                    line_total=line.line_total,
                    is_purchasable=line.is_purchasable,
                )
                for line in cart.lines
            ],
            total_items=cart.total_items,
            total_price=cart.total_price,
            last_updated=cart.last_updated,
            warnings=cart.warnings,
        )


class CartCountResponse(BaseModel):
    count: int


class CartValidationResponse(BaseModel):
    is_valid: bool
    errors: List[str]
    items: List[CartItemResponse]

    @classmethod
    def from_validation(cls, validation: CartValidation) -> "CartValidationResponse":
        return cls(
            is_valid=validation.is_valid,
            errors=validation.errors,
            items=[CartItemResponse.from_item(item) for item in validation.updated_items],
        )


# ============================================================================
# Wallet Models
# ============================================================================

class WalletTransactionResponse(BaseModel):
    transaction_id: str
    type: str  # "credit" or "debit"
    amount: Decimal
    reason: str
    created_at: datetime
    related_order_id: Optional[str] = None

    @classmethod
    def from_transaction(cls, tx: WalletTransaction) -> "WalletTransactionResponse":
        return cls(
            transaction_id=tx.transaction_id,
            type=tx.type.value,
            amount=tx.amount,
            reason=tx.reason.value,
            created_at=tx.created_at,
            related_order_id=tx.related_order_id,
        )


class WalletResponse(BaseModel):
    user_id: str
    balance: Decimal
    currency: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    transactions: List[WalletTransactionResponse]

    @classmethod
    def from_wallet(cls, wallet: UserWallet) -> "WalletResponse":
        return cls(
            user_id=wallet.user_id,
            balance=wallet.balance,
            currency=wallet.currency,
            created_at=wallet.created_at,
            updated_at=wallet.updated_at,
            transactions=[WalletTransactionResponse.from_transaction(tx) for tx in wallet.transactions],
        )


class WalletSummaryResponse(BaseModel):
    balance: Decimal
    total_earnings: Decimal
    total_spent: Decimal
    transaction_count: int
    last_transaction: Optional[WalletTransactionResponse] = None

    @classmethod
    def from_summary(cls, summary: WalletSummary) -> "WalletSummaryResponse":
        last = summary.last_transaction
        return cls(
            balance=summary.balance,
            total_earnings=summary.total_earnings,
            total_spent=summary.total_spent,
            transaction_count=summary.transaction_count,
            last_transaction=WalletTransactionResponse.from_transaction(last) if last else None,
        )


class WalletCreditRequest(BaseModel):
    """Money put into a user's wallet by an admin (top-up, earnings or adjustment)."""
    user_id: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0)
    reason: str = Field("top-up", description="top-up, earnings or adjustment")
    related_order_id: Optional[str] = None

    class Config:
        json_schema_extra = {"example": {"user_id": "user-123", "amount": "500.00", "reason": "top-up"}}


# ============================================================================
# Order Models
# ============================================================================

class ShippingAddressModel(BaseModel):
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    province: str = Field(..., min_length=1)
    postal_code: str = Field(..., min_length=1)

    @field_validator("street", "city", "province", "postal_code", mode="before")
    @classmethod
    def strip_whitespace(cls, value):
        return value.strip() if isinstance(value, str) else value

    def to_domain(self) -> ShippingAddress:
        try:
            return ShippingAddress(
                street=self.street, city=self.city, province=self.province, postal_code=self.postal_code
            )
        except ValueError as e:
            raise ValidationError(str(e)) from None


class CheckoutRequest(BaseModel):
    """Checkout the caller's cart."""
    shipping_address: ShippingAddressModel
    payment_method: str = Field(..., description="wallet, gcash, paypal or bank-transfer")

    class Config:
        json_schema_extra = {
            "example": {
                "shipping_address": {
                    "street": "123 Rizal St",
                    "city": "Makati",
                    "province": "Metro Manila",
                    "postal_code": "1200",
                },
                "payment_method": "wallet",
            }
        }


class OrderItemResponse(BaseModel):
    product_id: str
    name: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal


class OrderPricingResponse(BaseModel):
    subtotal: Decimal
    discount: Decimal
    shipping: Decimal
    total: Decimal
    savings: Decimal
    currency: str


class OrderPaymentResponse(BaseModel):
    method: str
    status: str
    amount: Decimal
    transaction_id: Optional[str] = None
    paid_at: Optional[datetime] = None


class DeliveryDriverResponse(BaseModel):
    driver_id: str
    name: str
    phone: str
    assigned_at: datetime


class ShippingDetailsResponse(BaseModel):
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    driver: Optional[DeliveryDriverResponse] = None
    delivered_at: Optional[datetime] = None
    delivered_by: Optional[str] = None
    delivery_notes: Optional[str] = None
    signature: Optional[str] = None

    @classmethod
    def from_shipping(cls, shipping: ShippingDetails) -> "ShippingDetailsResponse":
        driver = shipping.driver
        return cls(
            tracking_number=shipping.tracking_number,
            estimated_delivery=shipping.estimated_delivery,
            driver=DeliveryDriverResponse(
                driver_id=driver.driver_id,
                name=driver.name,
                phone=driver.phone,
                assigned_at=driver.assigned_at,
            ) if driver else None,
            delivered_at=shipping.delivered_at,
            delivered_by=shipping.delivered_by,
            delivery_notes=shipping.delivery_notes,
            signature=shipping.signature,
        )


class OrderResponse(BaseModel):
    order_id: str
    user_id: str
    items: List[OrderItemResponse]
    pricing: OrderPricingResponse
    shipping_address: ShippingAddressModel
    payment: OrderPaymentResponse
    status: str
    created_at: datetime
    updated_at: Optional[datetime] = None
    shipping: ShippingDetailsResponse

    @classmethod
    def from_order(cls, order: Order) -> "OrderResponse":
        return cls(
            order_id=order.order_id,
            user_id=order.user_id,
            items=[
                OrderItemResponse(
                    product_id=item.product_id,
                    name=item.name,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    total_price=item.total_price,
                )
                for item in order.items
            ],
            pricing=OrderPricingResponse(
                subtotal=order.pricing.subtotal,
                discount=order.pricing.discount,
                shipping=order.pricing.shipping,
                total=order.pricing.total,
                savings=order.pricing.savings,
                currency=order.pricing.currency,
            ),
            shipping_address=ShippingAddressModel(
                street=order.shipping_address.street,
                city=order.shipping_address.city,
                province=order.shipping_address.province,
                postal_code=order.shipping_address.postal_code,
            ),
            payment=OrderPaymentResponse(
                method=order.payment.method.value,
                status=order.payment.status.value,
                amount=order.payment.amount,
                transaction_id=order.payment.transaction_id,
                paid_at=order.payment.paid_at,
            ),
            status=order.status.value,
            created_at=order.created_at,
            updated_at=order.updated_at,
            shipping=ShippingDetailsResponse.from_shipping(order.shipping),
        )


class PaymentInstructionsResponse(BaseModel):
    instructions: str
    account_number: Optional[str] = None
    account_name: Optional[str] = None
    bank: Optional[str] = None

    @classmethod
    def from_instructions(cls, instructions: PaymentInstructions) -> "PaymentInstructionsResponse":
        return cls(
            instructions=instructions.instructions,
            account_number=instructions.account_number,
            account_name=instructions.account_name,
            bank=instructions.bank,
        )


class CheckoutResponse(BaseModel):
    success: bool = True
    order: OrderResponse
    payment_url: Optional[str] = None
    payment_instructions: Optional[PaymentInstructionsResponse] = None


class OrderListResponse(BaseModel):
    orders: List[OrderResponse]
    total_count: int


class StatusUpdateRequest(BaseModel):
    status: str


class CancelOrderRequest(BaseModel):
    reason: Optional[str] = None


class OrderStatisticsResponse(BaseModel):
    total_orders: int
    completed_orders: int
    pending_orders: int
    total_spent: Decimal
    average_order_value: Decimal

    @classmethod
    def from_statistics(cls, stats: OrderStatistics) -> "OrderStatisticsResponse":
        return cls(
            total_orders=stats.total_orders,
            completed_orders=stats.completed_orders,
            pending_orders=stats.pending_orders,
            total_spent=stats.total_spent,
            average_order_value=stats.average_order_value,
        )


# ============================================================================
# Tracking Models
# ============================================================================

class CoordinatesModel(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)

    def to_domain(self) -> Coordinates:
        return Coordinates(lat=self.lat, lng=self.lng)


class TrackingEventRequest(BaseModel):
    """A fulfilment event reported by the warehouse or courier."""
    status: str
    location: str = Field(..., min_length=1)
    notes: Optional[str] = None
    coordinates: Optional[CoordinatesModel] = None

    class Config:
        json_schema_extra = {
            "example": {
                "status": "shipped",
                "location": "Pasig Hub",
                "notes": "Handed to courier",
                "coordinates": {"lat": 14.5764, "lng": 121.0851},
            }
        }


class TrackingEventResponse(BaseModel):
    status: str
    description: str
    location: str
    timestamp: datetime
    notes: Optional[str] = None
    coordinates: Optional[CoordinatesModel] = None

    @classmethod
    def from_event(cls, event: TrackingEvent) -> "TrackingEventResponse":
        coords = event.coordinates
        return cls(
            status=event.status.value,
            description=describe_tracking_status(event.status),
            location=event.location,
            timestamp=event.timestamp,
            notes=event.notes,
            coordinates=CoordinatesModel(lat=coords.lat, lng=coords.lng) if coords else None,
        )


class TrackingTimelineResponse(BaseModel):
    order_id: str
    current_phase: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    events: List[TrackingEventResponse]

    @classmethod
    def from_timeline(cls, timeline: TrackingTimeline) -> "TrackingTimelineResponse":
        events = timeline.events
        phase = timeline.current_phase
        return cls(
            order_id=timeline.order_id,
            current_phase=phase.value if phase else None,
            estimated_delivery=estimate_delivery_date(events[0].timestamp) if events else None,
            events=[TrackingEventResponse.from_event(event) for event in events],
        )


# ============================================================================
# Delivery Models
# ============================================================================

class DriverAssignmentRequest(BaseModel):
    driver_id: str = Field(..., min_length=1)
    driver_name: str = Field(..., min_length=1)
    driver_phone: str = ""

    class Config:
        json_schema_extra = {
            "example": {"driver_id": "drv-17", "driver_name": "Juan Cruz", "driver_phone": "0917 555 0101"}
        }


class DeliveryLocationRequest(BaseModel):
    """Live driver position."""
    address: str = Field(..., min_length=1)
    coordinates: CoordinatesModel


class DeliveryConfirmationRequest(BaseModel):
    """Proof of delivery."""
    delivered_by: str = Field(..., min_length=1)
    delivery_notes: Optional[str] = None
    signature: Optional[str] = Field(None, description="Recipient signature, e.g. a base64 image")


class DeliveryStatisticsResponse(BaseModel):
    total_deliveries: int
    completed_deliveries: int
    in_transit: int
    average_delivery_days: float

    @classmethod
    def from_statistics(cls, stats: DeliveryStatistics) -> "DeliveryStatisticsResponse":
        return cls(
            total_deliveries=stats.total_deliveries,
            completed_deliveries=stats.completed_deliveries,
            in_transit=stats.in_transit,
            average_delivery_days=stats.average_delivery_days,
        )


# ============================================================================
# Payment Webhook Models
# ============================================================================

class PaymentWebhookRequest(BaseModel):
    """Terminal charge status pushed by a payment gateway."""
    transaction_id: str = Field(..., min_length=1)
    status: str = Field(..., description="captured, denied or refunded")

    class Config:
        json_schema_extra = {"example": {"transaction_id": "gcash_1700000000000_ab12cd34", "status": "captured"}}
