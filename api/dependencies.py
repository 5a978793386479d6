"""
Service wiring and request dependencies.

The application builds one CommerceServices per process (in the lifespan, or
handed in directly by tests) and keeps it on app.state. Routers get the
individual services through the FastAPI dependencies below.

Auth is an external collaborator: the gateway in front of this API verifies
the session and forwards the user id and role as headers.
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Depends, Header, Request

from domain.buyer import BuyerTier, buyer_tier_for_role
from domain.errors import Forbidden, ValidationError
from domain.time import Clock, utc_now
from repositories.cart_repository import CartRepository
from repositories.document_store import DocumentStore
from repositories.order_repository import OrderRepository
from repositories.product_repository import ProductRepository
from repositories.tracking_repository import TrackingRepository
from repositories.wallet_repository import WalletRepository
from services.cart_service import CartService
from services.checkout_lock import CheckoutLock
from services.delivery_service import DeliveryService
from services.order_service import OrderService
from services.payment_gateway import PaymentGatewayRegistry
from services.tracking_service import TrackingService
from services.wallet_service import WalletService


@dataclass(frozen=True, slots=True)
class CommerceServices:
    store: DocumentStore
    gateways: PaymentGatewayRegistry
    carts: CartService
    wallets: WalletService
    orders: OrderService
    tracking: TrackingService
    delivery: DeliveryService


def build_commerce_services(
    store: DocumentStore,
    gateways: PaymentGatewayRegistry,
    *,
    clock: Clock = utc_now,
    wallet_max_retries: int = 5,
    checkout_lock_ttl_seconds: int = 60,
    payment_timeout: float = 15.0,
) -> CommerceServices:
    """Wire repositories and services over one document store."""

    products = ProductRepository(store)
    order_repo = OrderRepository(store)

    carts = CartService(store, products, CartRepository(store), clock=clock)
    wallets = WalletService(store, WalletRepository(store), clock=clock, max_retries=wallet_max_retries)
    tracking = TrackingService(store, TrackingRepository(store), order_repo, clock=clock)
    orders = OrderService(
        store,
        order_repo,
        products,
        carts,
        wallets,
        tracking,
        gateways,
        CheckoutLock(store, ttl_seconds=checkout_lock_ttl_seconds, clock=clock),
        clock=clock,
        payment_timeout=payment_timeout,
    )
    return CommerceServices(
        store=store,
        gateways=gateways,
        carts=carts,
        wallets=wallets,
        orders=orders,
        tracking=tracking,
        delivery=DeliveryService(tracking, orders, clock=clock),
    )


@dataclass(frozen=True, slots=True)
class CurrentUser:
    user_id: str
    role: str

    @property
    def buyer_tier(self) -> BuyerTier:
        return buyer_tier_for_role(self.role)


def current_user(
    x_user_id: str = Header(..., description="Authenticated user id"),
    x_user_role: str = Header("client", description="Authenticated user role"),
) -> CurrentUser:
    if not x_user_id.strip():
        raise ValidationError("X-User-Id header must not be empty")
    return CurrentUser(user_id=x_user_id.strip(), role=x_user_role.strip() or "client")


STAFF_ROLES = frozenset({"admin", "supplier"})


def require_staff(user: CurrentUser = Depends(current_user)) -> CurrentUser:
    """Order status and fulfilment updates are for admins and suppliers."""

    if user.role.lower() not in STAFF_ROLES:
        raise Forbidden("Only admins and suppliers can update fulfilment")
    return user


def require_admin(user: CurrentUser = Depends(current_user)) -> CurrentUser:
    """Wallet credits are an admin action."""

    if user.role.lower() != "admin":
        raise Forbidden("Only admins can credit wallets")
    return user


def get_services(request: Request) -> CommerceServices:
    return request.app.state.services


def get_cart_service(services: CommerceServices = Depends(get_services)) -> CartService:
    return services.carts


def get_wallet_service(services: CommerceServices = Depends(get_services)) -> WalletService:
    return services.wallets


def get_order_service(services: CommerceServices = Depends(get_services)) -> OrderService:
    return services.orders


def get_tracking_service(services: CommerceServices = Depends(get_services)) -> TrackingService:
    return services.tracking


def get_delivery_service(services: CommerceServices = Depends(get_services)) -> DeliveryService:
    return services.delivery


__all__ = [
    "CommerceServices",
    "CurrentUser",
    "STAFF_ROLES",
    "build_commerce_services",
    "current_user",
    "get_cart_service",
    "get_delivery_service",
    "get_order_service",
    "get_services",
    "get_tracking_service",
    "get_wallet_service",
    "require_admin",
    "require_staff",
]
