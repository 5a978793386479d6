"""
Order orchestrator.

Checkout for one user runs under that user's checkout lease:

1. validate the cart (authoritative gate)
2. price the validated lines for the buyer tier
3. collect payment (wallet debit, or a gateway charge)
4. commit one batch: order + tracking timeline + cart deletions

Steps 1-3 leave persistent state untouched on failure. Once payment has
succeeded, any failure before step 4 commits is compensated (wallet credit or
gateway refund) and logged at ERROR; a failed compensation is logged at
CRITICAL for manual reconciliation. A commit that fails for any reason other
than a StoreConflict may still have been applied, so the order is re-read
first: a persisted order is returned as a success, and when the store cannot
answer the money is left where it is and the order logged at CRITICAL.

Webhooks from payment gateways are applied through apply_payment_event,
which is idempotent per (transaction id, outcome).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any, Callable, List, Optional, Tuple
from uuid import uuid4

from domain.buyer import buyer_tier_for_role
from domain.errors import (
    CartInvalid,
    CommerceError,
    InsufficientFunds,
    NotFoundError,
    PaymentFailed,
    PaymentTimeout,
    StoreConflict,
    ValidationError,
)
from domain.money import CURRENCY, ZERO
from domain.order import (
    Order,
    OrderPayment,
    OrderStatistics,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ShippingAddress,
    can_transition,
    order_statistics,
)
from domain.time import Clock, utc_now
from domain.tracking import TrackingStatus
from domain.wallet import TransactionReason
from repositories.document_store import DocumentStore
from repositories.order_repository import OrderRepository
from repositories.product_repository import ProductRepository
from services.cart_service import CartService
from services.checkout_lock import CheckoutLock
from services.payment_gateway import ChargeStatus, PaymentGatewayRegistry
from services.pricing_service import (
    DiscountPolicy,
    ShippingPolicy,
    free_shipping,
    no_discount,
    order_items,
    price_line,
    price_order,
)
from services.tracking_service import TrackingService
from services.wallet_service import WalletService

logger = logging.getLogger(__name__)


def _new_order_id() -> str:
    return f"ord_{uuid4().hex}"


@dataclass(frozen=True, slots=True)
class CheckoutResult:
    """Outcome of create_order. Failures never raise past the orchestrator."""
    success: bool
    order: Optional[Order] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    retryable: bool = False
    errors: List[str] = field(default_factory=list)
    payment_url: Optional[str] = None


class OrderService:
    def __init__(
        self,
        store: DocumentStore,
        orders: OrderRepository,
        products: ProductRepository,
        carts: CartService,
        wallets: WalletService,
        tracking: TrackingService,
        gateways: PaymentGatewayRegistry,
        checkout_lock: CheckoutLock,
        clock: Clock = utc_now,
        discount_policy: DiscountPolicy = no_discount,
        shipping_policy: ShippingPolicy = free_shipping,
        payment_timeout: float = 15.0,
        max_retries: int = 5,
        id_factory: Callable[[], str] = _new_order_id,
    ) -> None:
        self._store = store
        self._orders = orders
        self._products = products
        self._carts = carts
        self._wallets = wallets
        self._tracking = tracking
        self._gateways = gateways
        self._checkout_lock = checkout_lock
        self._clock = clock
        self._discount_policy = discount_policy
        self._shipping_policy = shipping_policy
        self._payment_timeout = payment_timeout
        self._max_retries = max_retries
        self._id_factory = id_factory

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    async def create_order(
        self,
        user_id: str,
        user_role: str,
        shipping_address: ShippingAddress,
        payment_method: PaymentMethod | str,
    ) -> CheckoutResult:
        """
        Turn the user's cart into an order.

        Args:
            user_id: Buyer
            user_role: Buyer role; decides the pricing tier
            shipping_address: Delivery address
            payment_method: wallet, gcash, paypal or bank-transfer

        Returns:
            CheckoutResult with the persisted order on success, or the error
            message/code and whether retrying may help.

        Example:
            result = await orders.create_order("u1", "client", address, "wallet")
            if not result.success:
                print(result.error_code, result.errors)
        """
        try:
            try:
                method = PaymentMethod(payment_method)
            except ValueError:
                raise ValidationError(f"Unknown payment method: {payment_method!r}") from None

            async with self._checkout_lock.hold(user_id):
                order, payment_url = await self._checkout(user_id, user_role, shipping_address, method)
        except CommerceError as e:
            logger.warning("Checkout failed for user %s: [%s] %s", user_id, e.code, e.message)
            return CheckoutResult(
                success=False,
                error=e.message,
                error_code=e.code,
                retryable=e.retryable,
                errors=list(getattr(e, "errors", [])),
            )

        logger.info(
            "Order %s created for user %s (%s, total %s, status %s)",
            order.order_id, user_id, method.value, order.pricing.total, order.status.value,
        )
        return CheckoutResult(success=True, order=order, payment_url=payment_url)

    async def _checkout(
        self,
        user_id: str,
        user_role: str,
        shipping_address: ShippingAddress,
        method: PaymentMethod,
    ) -> Tuple[Order, Optional[str]]:
        tier = buyer_tier_for_role(user_role)

        validation = await self._carts.validate_cart(user_id, tier)
        if not validation.is_valid:
            raise CartInvalid(validation.errors)

        items = validation.updated_items
        products = await self._products.get_products(item.product_id for item in items)
        missing = [item.product_id for item in items if item.product_id not in products]
        if missing:
            raise CartInvalid([f"Product {product_id} no longer exists" for product_id in missing])

        lines = [price_line(products[item.product_id], item.quantity, tier) for item in items]
        pricing = price_order(lines, self._discount_policy, self._shipping_policy)
        order_id = self._id_factory()

        payment, payment_url = await self._collect_payment(order_id, user_id, method, pricing.total)

        try:
            now = self._clock()
            order = Order(
                order_id=order_id,
                user_id=user_id,
                user_role=user_role,
                items=order_items(lines, {pid: p.name for pid, p in products.items()}),
                pricing=pricing,
                shipping_address=shipping_address,
                payment=payment,
                status=OrderStatus.CONFIRMED if payment.status is PaymentStatus.PAID else OrderStatus.PENDING,
                created_at=now,
                version=1,
            )
            writes = [
                self._orders.create_write(order),
                self._tracking.initial_timeline_write(order_id, now, notes=f"Payment via {method.value}"),
                *self._carts.clear_writes(items),
            ]
        except Exception:
            await self._compensate(order_id, user_id, payment)
            raise

        try:
            await self._store.commit(writes)
        except StoreConflict:
            # Rejected preconditions: nothing of the batch was applied.
            await self._compensate(order_id, user_id, payment)
            raise
        except Exception:
            # The batch may have been applied before the failure was reported.
            known, persisted = await self._find_persisted_order(order_id, user_id, payment)
            if not known:
                raise
            if persisted is None:
                await self._compensate(order_id, user_id, payment)
                raise
            logger.warning("Order %s was committed although the store reported a failure", order_id)
            return persisted, payment_url

        return order, payment_url

    async def _find_persisted_order(
        self, order_id: str, user_id: str, payment: OrderPayment
    ) -> Tuple[bool, Optional[Order]]:
        """
        Re-read an order after an ambiguous commit failure.

        Returns:
            (True, order or None) when the store answered, (False, None) when
            the outcome is still unknown. Money is never returned in that case.
        """
        try:
            return True, await self._orders.get_order(order_id)
        except Exception:
            logger.critical(
                "Order %s for user %s has an unknown outcome; %s %s (transaction %s) "
                "was NOT returned and needs manual reconciliation",
                order_id, user_id, payment.method.value, payment.amount, payment.transaction_id,
                exc_info=True,
            )
            return False, None

    async def _collect_payment(
        self,
        order_id: str,
        user_id: str,
        method: PaymentMethod,
        amount: Decimal,
    ) -> Tuple[OrderPayment, Optional[str]]:
        if amount <= ZERO:
            # Fully discounted; nothing to collect.
            return OrderPayment(method, PaymentStatus.PAID, amount, paid_at=self._clock()), None

        if method is PaymentMethod.WALLET:
            if not await self._wallets.has_sufficient_balance(user_id, amount):
                raise InsufficientFunds(user_id, await self._wallets.get_balance(user_id), amount)
            tx = await self._wallets.debit(
                user_id, amount, related_order_id=order_id, reason=TransactionReason.ORDER_PAYMENT
            )
            return OrderPayment(method, PaymentStatus.PAID, amount, tx.transaction_id, tx.created_at), None

        gateway = self._gateways.for_method(method)
        try:
            charge = await asyncio.wait_for(
                gateway.create_charge(amount, CURRENCY, method, {"orderId": order_id, "userId": user_id}),
                timeout=self._payment_timeout,
            )
        except asyncio.TimeoutError:
            raise PaymentTimeout(f"{method.value} payment timed out for order {order_id}") from None

        if not charge.success or not charge.transaction_id or charge.status is ChargeStatus.DENIED:
            raise PaymentFailed(charge.error or f"{method.value} payment was declined")

        captured = charge.status is ChargeStatus.CAPTURED
        return (
            OrderPayment(
                method,
                PaymentStatus.PAID if captured else PaymentStatus.PENDING,
                amount,
                charge.transaction_id,
                self._clock() if captured else None,
            ),
            charge.payment_url,
        )

    async def _compensate(self, order_id: str, user_id: str, payment: OrderPayment) -> None:
        if payment.amount <= ZERO:
            return
        logger.error(
            "Order %s for user %s failed to persist after payment (%s %s); compensating",
            order_id, user_id, payment.method.value, payment.amount,
        )
        try:
            await self._return_money(order_id, user_id, payment, "order could not be created")
        except Exception:
            logger.critical(
                "Compensation FAILED for order %s user %s: %s %s (transaction %s) needs manual refund",
                order_id, user_id, payment.method.value, payment.amount, payment.transaction_id,
                exc_info=True,
            )

    async def _return_money(self, order_id: str, user_id: str, payment: OrderPayment, reason: str) -> None:
        if payment.method is PaymentMethod.WALLET:
            await self._wallets.credit(
                user_id, payment.amount, related_order_id=order_id, reason=TransactionReason.ORDER_REFUND
            )
            return

        if not payment.transaction_id:
            return
        gateway = self._gateways.for_method(payment.method)
        try:
            result = await asyncio.wait_for(
                gateway.refund_charge(payment.transaction_id, payment.amount, reason),
                timeout=self._payment_timeout,
            )
        except asyncio.TimeoutError:
            raise PaymentTimeout(f"Refund for order {order_id} timed out") from None
        if not result.success:
            raise PaymentFailed(result.error or f"Refund for order {order_id} failed")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_order(self, order_id: str) -> Order:
        order = await self._orders.get_order(order_id)
        if order is None:
            raise NotFoundError("Order", order_id)
        return order

    async def get_user_orders(
        self, user_id: str, status: Optional[OrderStatus | str] = None, limit: int = 20
    ) -> List[Order]:
        """Orders for a user, newest first."""

        if status is not None:
            try:
                status = OrderStatus(status)
            except ValueError:
                raise ValidationError(f"Unknown order status: {status!r}") from None
        return await self._orders.list_orders(user_id, status=status, limit=limit)

    async def get_order_statistics(self, user_id: str) -> OrderStatistics:
        return order_statistics(await self._orders.list_orders(user_id))

    async def get_orders_by_status(self, *statuses: OrderStatus, limit: Optional[int] = None) -> List[Order]:
        """Orders of all users in the given statuses, oldest first."""
        return await self._orders.list_by_status(statuses, limit=limit)

    # ------------------------------------------------------------------
    # Shipping details
    # ------------------------------------------------------------------

    async def update_shipping(self, order_id: str, **changes: Any) -> Order:
        """
        Merge changes into the order's shipping details.

        Fields not named in changes keep their stored values. Retries when
        the order changes concurrently.

        Example:
            await orders.update_shipping("ord_1", tracking_number="LBC-123")
        """
        for attempt in range(1, self._max_retries + 1):
            order = await self.get_order(order_id)
            now = self._clock()
            try:
                updated = order.with_shipping(replace(order.shipping, **changes), now)
            except (TypeError, ValueError) as e:
                raise ValidationError(f"Invalid shipping details: {e}") from None

            try:
                await self._store.commit([self._orders.state_write(updated, expected_version=order.version)])
            except StoreConflict:
                logger.warning("Shipping update conflict for order %s (attempt %d)", order_id, attempt)
                continue
            logger.info("Order %s shipping updated: %s", order_id, ", ".join(sorted(changes)))
            return replace(updated, version=order.version + 1)

        raise StoreConflict(f"Could not update shipping for order {order_id}")

    # ------------------------------------------------------------------
    # Status changes
    # ------------------------------------------------------------------

    async def update_order_status(self, order_id: str, new_status: OrderStatus | str) -> Order:
        """
        Move an order along the status machine.

        Cancelling a paid order refunds it (wallet credit or gateway refund)
        after the status change commits, so a refund is issued at most once.

        Raises:
            InvalidStatusTransition: the move is not allowed from the current status
            StoreConflict: the order changed concurrently (retryable)
        """
        try:
            status = OrderStatus(new_status)
        except ValueError:
            raise ValidationError(f"Unknown order status: {new_status!r}") from None

        order = await self.get_order(order_id)
        now = self._clock()
        updated = order.with_status(status, now)

        refund = status is OrderStatus.CANCELLED and order.payment.status is PaymentStatus.PAID
        if refund:
            updated = updated.with_payment(replace(order.payment, status=PaymentStatus.REFUNDED), now)

        await self._store.commit([self._orders.state_write(updated, expected_version=order.version)])
        updated = replace(updated, version=order.version + 1)
        logger.info("Order %s status %s -> %s", order_id, order.status.value, status.value)

        if refund:
            try:
                await self._return_money(order_id, order.user_id, order.payment, "order cancelled")
            except Exception:
                logger.critical(
                    "Refund FAILED for cancelled order %s user %s: %s %s (transaction %s)",
                    order_id, order.user_id, order.payment.method.value, order.payment.amount,
                    order.payment.transaction_id, exc_info=True,
                )
                raise
            logger.info("Refunded %s to user %s for order %s", order.payment.amount, order.user_id, order_id)

        return updated

    async def cancel_order(self, order_id: str, reason: Optional[str] = None) -> Order:
        order = await self.update_order_status(order_id, OrderStatus.CANCELLED)
        await self._tracking.append_tracking_event(
            order_id, TrackingStatus.CANCELLED, "Order cancelled", notes=reason
        )
        return order

    # ------------------------------------------------------------------
    # Payment webhooks
    # ------------------------------------------------------------------

    async def apply_payment_event(self, transaction_id: str, outcome: ChargeStatus | str) -> Order:
        """
        Reconcile an order with the gateway's terminal charge status.

        captured -> payment paid, pending order confirmed
        denied   -> payment failed, pending order cancelled
        refunded -> payment refunded, order cancelled where still allowed

        Redelivered events leave the order unchanged. A capture that arrives
        after the order was cancelled is refunded straight away.
        """
        try:
            outcome = ChargeStatus(outcome)
        except ValueError:
            raise ValidationError(f"Unknown payment outcome: {outcome!r}") from None

        for attempt in range(1, self._max_retries + 1):
            order = await self._orders.find_by_transaction_id(transaction_id)
            if order is None:
                raise NotFoundError("Order for transaction", transaction_id)
            if order.payment.method is PaymentMethod.WALLET:
                # Wallet payments settle in the ledger; gateways never report on them.
                raise ValidationError(f"Transaction {transaction_id} is not a gateway payment")

            updated, refund_after = self._reconcile(order, outcome)
            if updated is None:
                logger.info(
                    "Payment event %s for order %s ignored (payment %s, order %s)",
                    outcome.value, order.order_id, order.payment.status.value, order.status.value,
                )
                return order

            try:
                await self._store.commit([self._orders.state_write(updated, expected_version=order.version)])
            except StoreConflict:
                logger.warning("Payment event conflict for order %s (attempt %d)", order.order_id, attempt)
                continue

            logger.info(
                "Payment %s for order %s: payment %s, order %s",
                outcome.value, order.order_id, updated.payment.status.value, updated.status.value,
            )
            if refund_after:
                logger.warning("Capture arrived for cancelled order %s; refunding", order.order_id)
                await self._return_money(order.order_id, order.user_id, order.payment, "order cancelled")
            return replace(updated, version=order.version + 1)

        raise StoreConflict(f"Could not apply payment event to transaction {transaction_id}")

    def _reconcile(self, order: Order, outcome: ChargeStatus) -> Tuple[Optional[Order], bool]:
        payment = order.payment
        now = self._clock()

        if outcome is ChargeStatus.CAPTURED and payment.status is PaymentStatus.PENDING:
            if order.status is OrderStatus.CANCELLED:
                refunded = replace(payment, status=PaymentStatus.REFUNDED, paid_at=now)
                return order.with_payment(refunded, now), True
            paid = order.with_payment(replace(payment, status=PaymentStatus.PAID, paid_at=now), now)
            if order.status is OrderStatus.PENDING:
                paid = paid.with_status(OrderStatus.CONFIRMED, now)
            return paid, False

        if outcome is ChargeStatus.DENIED and payment.status is PaymentStatus.PENDING:
            failed = order.with_payment(replace(payment, status=PaymentStatus.FAILED), now)
            if can_transition(order.status, OrderStatus.CANCELLED):
                failed = failed.with_status(OrderStatus.CANCELLED, now)
            return failed, False

        if outcome is ChargeStatus.REFUNDED and payment.status is PaymentStatus.PAID:
            refunded = order.with_payment(replace(payment, status=PaymentStatus.REFUNDED), now)
            if can_transition(order.status, OrderStatus.CANCELLED):
                refunded = refunded.with_status(OrderStatus.CANCELLED, now)
            return refunded, False

        return None, False


__all__ = ["CheckoutResult", "OrderService"]
