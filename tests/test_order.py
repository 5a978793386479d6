"""
Tests for `services/order_service.py`.

Covers contract rules:
- Checkout validates, prices, collects payment and then persists the order,
  its tracking timeline and the cart deletion in one batch.
- Payment failures leave the wallet and the cart untouched.
- A persistence failure after payment is compensated; a failed compensation
  is logged at CRITICAL. A commit that may have been applied is re-read
  before any money is returned.
- One checkout per user at a time.
- update_order_status follows the transition table; cancelling refunds.
- Payment webhooks are idempotent and never touch wallet payments.
- Shipping details merge field by field.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from decimal import Decimal
from itertools import product

import pytest

from api.dependencies import build_commerce_services
from domain.errors import InvalidStatusTransition, NotFoundError, StoreConflict, StoreUnavailable, ValidationError
from domain.order import (
    ALLOWED_TRANSITIONS,
    Order,
    OrderItem,
    OrderPayment,
    OrderPricing,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ShippingAddress,
)
from domain.time import to_iso_utc
from domain.tracking import TrackingStatus
from domain.wallet import TransactionReason, TransactionType
from fakes import ScriptedGateway, gateway_registry, product_doc, writes_to
from repositories.cart_repository import CART_ITEMS
from repositories.document_store import WriteOp
from repositories.order_repository import ORDERS, order_payload
from repositories.product_repository import PRODUCTS
from repositories.tracking_repository import ORDER_TRACKING
from services.checkout_lock import CHECKOUT_LOCKS
from services.payment_gateway import ChargeStatus


@pytest.fixture
def kit(store):
    store.seed(PRODUCTS, "kit", product_doc("Cleaning Kit", "70.00", "60.00"))
    store.seed(PRODUCTS, "big", product_doc("Pressure Washer", "150.00", "140.00"))
    return store


async def _fill_cart(services, user_id="u1", product_id="kit", quantity=2):
    await services.carts.add_to_cart(user_id, product_id, quantity)


def _seed_order(
    store,
    clock,
    status: OrderStatus,
    payment_status: PaymentStatus = PaymentStatus.PAID,
    method: PaymentMethod = PaymentMethod.WALLET,
    order_id: str = "ord_seed",
    transaction_id: str | None = None,
) -> Order:
    amount = Decimal("100.00")
    order = Order(
        order_id=order_id,
        user_id="u1",
        user_role="client",
        items=[OrderItem("kit", "Cleaning Kit", 1, amount, amount)],
        pricing=OrderPricing(subtotal=amount, discount=Decimal("0.00"), shipping=Decimal("0.00"), total=amount),
        shipping_address=ShippingAddress("123 Rizal St", "Makati", "Metro Manila", "1200"),
        payment=OrderPayment(method, payment_status, amount, transaction_id),
        status=status,
        created_at=clock.now,
        version=1,
    )
    store.seed(ORDERS, order_id, order_payload(order))
    return order


# ----------------------------------------------------------------------
# Checkout
# ----------------------------------------------------------------------

async def test_wallet_checkout_success(services, store, kit, address) -> None:
    await services.wallets.credit("u1", "1000.00")
    await _fill_cart(services)

    result = await services.orders.create_order("u1", "client", address, "wallet")

    assert result.success is True
    order = result.order
    assert order.pricing.total == Decimal("140.00")
    assert order.payment.method is PaymentMethod.WALLET
    assert order.payment.status is PaymentStatus.PAID
    assert order.status is OrderStatus.CONFIRMED
    assert [(i.product_id, i.quantity, i.unit_price) for i in order.items] == [("kit", 2, Decimal("70.00"))]

    assert await services.wallets.get_balance("u1") == Decimal("860.00")
    debits = [tx for tx in await services.wallets.get_transactions("u1") if tx.type is TransactionType.DEBIT]
    assert len(debits) == 1
    assert debits[0].related_order_id == order.order_id
    assert store.count(CART_ITEMS) == 0

    stored = await services.orders.get_order(order.order_id)
    assert stored.pricing.total == Decimal("140.00")
    timeline = await services.tracking.get_tracking_timeline(order.order_id)
    assert timeline.current_phase is TrackingStatus.ORDER_PLACED
    assert store.peek(CHECKOUT_LOCKS, "u1") is None


async def test_insufficient_funds_leaves_wallet_and_cart(services, store, kit, address) -> None:
    await services.wallets.credit("u1", "1000.00")
    await _fill_cart(services, product_id="big", quantity=10)

    result = await services.orders.create_order("u1", "client", address, "wallet")

    assert result.success is False
    assert result.error_code == "insufficient_funds"
    assert result.retryable is False
    assert await services.wallets.get_balance("u1") == Decimal("1000.00")
    assert len(await services.wallets.get_transactions("u1")) == 1
    assert store.count(CART_ITEMS) == 1
    assert store.count(ORDERS) == 0


async def test_partner_buyer_checks_out_at_partner_prices(services, kit, address) -> None:
    await services.wallets.credit("u1", "1000.00")
    await _fill_cart(services)

    result = await services.orders.create_order("u1", "provider", address, "wallet")

    assert result.order.pricing.total == Decimal("120.00")
    assert result.order.pricing.savings == Decimal("20.00")


async def test_invalid_cart_is_rejected_with_reasons(services, store, catalog, address) -> None:
    await services.wallets.credit("u1", "1000.00")
    await services.carts.add_to_cart("u1", "bleach", 5)

    result = await services.orders.create_order("u1", "client", address, "wallet")

    assert result.success is False
    assert result.error_code == "cart_invalid"
    assert result.errors == ["Only 3 units of Bleach 1L available"]
    assert await services.wallets.get_balance("u1") == Decimal("1000.00")


async def test_empty_cart_is_rejected(services, address) -> None:
    result = await services.orders.create_order("u1", "client", address, "wallet")

    assert result.error_code == "cart_invalid"
    assert result.errors == ["Cart is empty"]


async def test_unknown_payment_method(services, kit, address) -> None:
    await _fill_cart(services)

    result = await services.orders.create_order("u1", "client", address, "cheque")

    assert result.success is False
    assert result.error_code == "validation_error"


async def test_gateway_capture_confirms_order(services, store, gateway, kit, address) -> None:
    await _fill_cart(services)

    result = await services.orders.create_order("u1", "client", address, "gcash")

    assert result.success is True
    assert result.order.status is OrderStatus.CONFIRMED
    assert result.order.payment.status is PaymentStatus.PAID
    assert result.order.payment.transaction_id == "gcash_tx_1"
    assert gateway.charges[0]["amount"] == Decimal("140.00")
    assert gateway.charges[0]["currency"] == "PHP"
    assert gateway.charges[0]["metadata"]["orderId"] == result.order.order_id
    assert store.count(CART_ITEMS) == 0


async def test_gateway_pending_charge_leaves_order_pending(store, clock, kit, address) -> None:
    gateway = ScriptedGateway(status=ChargeStatus.PENDING, payment_url="https://pay.example/abc")
    services = build_commerce_services(store, gateway_registry(gateway), clock=clock)
    await _fill_cart(services)

    result = await services.orders.create_order("u1", "client", address, "paypal")

    assert result.order.status is OrderStatus.PENDING
    assert result.order.payment.status is PaymentStatus.PENDING
    assert result.payment_url == "https://pay.example/abc"


async def test_bank_transfer_stays_pending(services, kit, address) -> None:
    await _fill_cart(services)

    result = await services.orders.create_order("u1", "client", address, "bank-transfer")

    assert result.order.status is OrderStatus.PENDING
    assert result.order.payment.transaction_id.startswith("bank_")


async def test_declined_charge_leaves_cart_intact(store, clock, kit, address) -> None:
    gateway = ScriptedGateway(success=False, error="Card declined")
    services = build_commerce_services(store, gateway_registry(gateway), clock=clock)
    await _fill_cart(services)

    result = await services.orders.create_order("u1", "client", address, "gcash")

    assert result.success is False
    assert result.error_code == "payment_failed"
    assert result.error == "Card declined"
    assert store.count(CART_ITEMS) == 1
    assert store.count(ORDERS) == 0


async def test_slow_gateway_times_out_as_retryable(store, clock, kit, address) -> None:
    gateway = ScriptedGateway(delay=1.0)
    services = build_commerce_services(store, gateway_registry(gateway), clock=clock, payment_timeout=0.05)
    await _fill_cart(services)

    result = await services.orders.create_order("u1", "client", address, "gcash")

    assert result.success is False
    assert result.error_code == "payment_timeout"
    assert result.retryable is True
    assert store.count(CART_ITEMS) == 1


async def test_persistence_failure_after_wallet_debit_is_compensated(
    services, store, kit, address, caplog
) -> None:
    await services.wallets.credit("u1", "1000.00")
    await _fill_cart(services)
    store.fail_commit_when(writes_to(ORDERS, WriteOp.CREATE), StoreUnavailable("database unavailable"))

    with caplog.at_level(logging.ERROR, logger="services.order_service"):
        result = await services.orders.create_order("u1", "client", address, "wallet")

    assert result.success is False
    assert result.error_code == "store_unavailable"
    assert result.retryable is True
    assert await services.wallets.get_balance("u1") == Decimal("1000.00")
    reasons = [tx.reason for tx in await services.wallets.get_transactions("u1")]
    assert sorted(r.value for r in reasons) == ["order-payment", "order-refund", "top-up"]
    assert store.count(ORDERS) == 0
    assert store.count(ORDER_TRACKING) == 0
    assert store.count(CART_ITEMS) == 1
    assert any(r.levelno == logging.ERROR for r in caplog.records)
    assert not any(r.levelno == logging.CRITICAL for r in caplog.records)


async def test_failed_compensation_is_logged_critical(store, clock, kit, address, caplog) -> None:
    gateway = ScriptedGateway(refund_success=False)
    services = build_commerce_services(store, gateway_registry(gateway), clock=clock)
    await _fill_cart(services)
    store.fail_commit_when(writes_to(ORDERS, WriteOp.CREATE), StoreUnavailable("database unavailable"))

    with caplog.at_level(logging.ERROR, logger="services.order_service"):
        result = await services.orders.create_order("u1", "client", address, "gcash")

    assert result.success is False
    assert result.error_code == "store_unavailable"
    assert len(gateway.refunds) == 1
    assert any(r.levelno == logging.CRITICAL for r in caplog.records)


async def test_commit_applied_before_failure_keeps_payment(services, store, kit, address, caplog) -> None:
    await services.wallets.credit("u1", "1000.00")
    await _fill_cart(services)
    store.fail_after_commit_when(writes_to(ORDERS, WriteOp.CREATE), StoreUnavailable("response lost after commit"))

    with caplog.at_level(logging.WARNING, logger="services.order_service"):
        result = await services.orders.create_order("u1", "client", address, "wallet")

    assert result.success is True
    assert result.order.payment.status is PaymentStatus.PAID
    assert result.order.status is OrderStatus.CONFIRMED
    assert await services.wallets.get_balance("u1") == Decimal("860.00")
    reasons = sorted(tx.reason.value for tx in await services.wallets.get_transactions("u1"))
    assert reasons == ["order-payment", "top-up"]
    assert store.count(ORDERS) == 1
    assert store.count(CART_ITEMS) == 0
    assert not any(r.levelno >= logging.ERROR for r in caplog.records)


async def test_unknown_commit_outcome_keeps_payment_and_logs_critical(
    services, store, kit, address, caplog
) -> None:
    await services.wallets.credit("u1", "1000.00")
    await _fill_cart(services)
    store.fail_commit_when(writes_to(ORDERS, WriteOp.CREATE), StoreUnavailable("connection reset"))
    store.fail_reads_of(ORDERS, StoreUnavailable("connection reset"))

    with caplog.at_level(logging.ERROR, logger="services.order_service"):
        result = await services.orders.create_order("u1", "client", address, "wallet")

    assert result.success is False
    assert result.error_code == "store_unavailable"
    assert await services.wallets.get_balance("u1") == Decimal("860.00")
    reasons = sorted(tx.reason.value for tx in await services.wallets.get_transactions("u1"))
    assert reasons == ["order-payment", "top-up"]
    assert any(r.levelno == logging.CRITICAL for r in caplog.records)


async def test_rejected_commit_is_compensated(services, store, kit, address) -> None:
    await services.wallets.credit("u1", "1000.00")
    await _fill_cart(services)
    store.fail_commit_when(writes_to(ORDERS, WriteOp.CREATE), StoreConflict("orders/x already exists"))

    result = await services.orders.create_order("u1", "client", address, "wallet")

    assert result.success is False
    assert result.error_code == "store_conflict"
    assert await services.wallets.get_balance("u1") == Decimal("1000.00")


async def test_concurrent_checkouts_for_one_user_charge_once(services, store, kit, address) -> None:
    await services.wallets.credit("u1", "1000.00")
    await _fill_cart(services)

    results = await asyncio.gather(
        services.orders.create_order("u1", "client", address, "wallet"),
        services.orders.create_order("u1", "client", address, "wallet"),
    )

    assert sorted(r.success for r in results) == [False, True]
    loser = next(r for r in results if not r.success)
    assert loser.error_code == "checkout_in_progress"
    assert loser.retryable is True
    assert await services.wallets.get_balance("u1") == Decimal("860.00")
    assert store.count(ORDERS) == 1


async def test_held_lease_blocks_checkout(services, store, clock, kit, address) -> None:
    await _fill_cart(services)
    store.seed(CHECKOUT_LOCKS, "u1", {
        "user_id": "u1",
        "acquired_at": to_iso_utc(clock.now, name="acquired_at"),
        "expires_at": to_iso_utc(clock.now + timedelta(seconds=30), name="expires_at"),
    })

    result = await services.orders.create_order("u1", "client", address, "bank-transfer")

    assert result.error_code == "checkout_in_progress"


async def test_expired_lease_is_taken_over(services, store, clock, kit, address) -> None:
    await _fill_cart(services)
    store.seed(CHECKOUT_LOCKS, "u1", {
        "user_id": "u1",
        "acquired_at": to_iso_utc(clock.now - timedelta(minutes=5), name="acquired_at"),
        "expires_at": to_iso_utc(clock.now - timedelta(minutes=4), name="expires_at"),
    })

    result = await services.orders.create_order("u1", "client", address, "bank-transfer")

    assert result.success is True
    assert store.peek(CHECKOUT_LOCKS, "u1") is None


# ----------------------------------------------------------------------
# Queries
# ----------------------------------------------------------------------

async def test_user_orders_newest_first_and_filtered(services, clock, kit, address) -> None:
    await services.wallets.credit("u1", "1000.00")
    await _fill_cart(services)
    first = (await services.orders.create_order("u1", "client", address, "wallet")).order
    clock.advance(60)
    await _fill_cart(services, quantity=1)
    second = (await services.orders.create_order("u1", "client", address, "bank-transfer")).order

    orders = await services.orders.get_user_orders("u1")
    pending = await services.orders.get_user_orders("u1", status="pending")

    assert [o.order_id for o in orders] == [second.order_id, first.order_id]
    assert [o.order_id for o in pending] == [second.order_id]
    assert await services.orders.get_user_orders("u2") == []

    stats = await services.orders.get_order_statistics("u1")
    assert stats.total_orders == 2
    assert stats.pending_orders == 2
    assert stats.total_spent == Decimal("140.00")


async def test_get_missing_order(services) -> None:
    with pytest.raises(NotFoundError):
        await services.orders.get_order("ord_missing")


# ----------------------------------------------------------------------
# Status changes
# ----------------------------------------------------------------------

@pytest.mark.parametrize("current,requested", list(product(OrderStatus, OrderStatus)))
async def test_update_order_status_closure(services, store, clock, current, requested) -> None:
    _seed_order(store, clock, current, payment_status=PaymentStatus.PENDING)

    if requested in ALLOWED_TRANSITIONS[current]:
        updated = await services.orders.update_order_status("ord_seed", requested)
        assert updated.status is requested
        assert (await services.orders.get_order("ord_seed")).status is requested
    else:
        with pytest.raises(InvalidStatusTransition):
            await services.orders.update_order_status("ord_seed", requested)
        assert (await services.orders.get_order("ord_seed")).status is current


async def test_cancel_wallet_paid_order_from_processing_refunds(services, kit, address) -> None:
    await services.wallets.credit("u1", "1000.00")
    await _fill_cart(services)
    order = (await services.orders.create_order("u1", "client", address, "wallet")).order
    await services.orders.update_order_status(order.order_id, OrderStatus.PROCESSING)

    cancelled = await services.orders.cancel_order(order.order_id, reason="Changed my mind")

    assert cancelled.status is OrderStatus.CANCELLED
    assert cancelled.payment.status is PaymentStatus.REFUNDED
    assert await services.wallets.get_balance("u1") == Decimal("1000.00")
    refunds = [
        tx for tx in await services.wallets.get_transactions("u1")
        if tx.reason is TransactionReason.ORDER_REFUND
    ]
    assert len(refunds) == 1 and refunds[0].amount == Decimal("140.00")

    timeline = await services.tracking.get_tracking_timeline(order.order_id)
    assert timeline.current_phase is TrackingStatus.CANCELLED
    assert timeline.latest.notes == "Changed my mind"


async def test_cancel_delivered_order_fails(services, store, clock) -> None:
    _seed_order(store, clock, OrderStatus.DELIVERED)

    with pytest.raises(InvalidStatusTransition):
        await services.orders.update_order_status("ord_seed", OrderStatus.CANCELLED)
    assert await services.wallets.get_balance("u1") == Decimal("0.00")


async def test_second_cancel_does_not_refund_twice(services, store, clock) -> None:
    _seed_order(store, clock, OrderStatus.CONFIRMED)

    await services.orders.update_order_status("ord_seed", "cancelled")
    with pytest.raises(InvalidStatusTransition):
        await services.orders.update_order_status("ord_seed", "cancelled")

    assert await services.wallets.get_balance("u1") == Decimal("100.00")


async def test_cancel_gateway_paid_order_requests_refund(services, gateway, store, clock) -> None:
    _seed_order(store, clock, OrderStatus.CONFIRMED, method=PaymentMethod.GCASH, transaction_id="gcash_tx_9")

    cancelled = await services.orders.update_order_status("ord_seed", OrderStatus.CANCELLED)

    assert cancelled.payment.status is PaymentStatus.REFUNDED
    assert gateway.refunds == [
        {"transaction_id": "gcash_tx_9", "amount": Decimal("100.00"), "reason": "order cancelled"}
    ]


async def test_cancel_unpaid_order_does_not_refund(services, gateway, store, clock) -> None:
    _seed_order(
        store, clock, OrderStatus.PENDING,
        payment_status=PaymentStatus.PENDING, method=PaymentMethod.GCASH, transaction_id="gcash_tx_9",
    )

    cancelled = await services.orders.update_order_status("ord_seed", OrderStatus.CANCELLED)

    assert cancelled.payment.status is PaymentStatus.PENDING
    assert gateway.refunds == []


# ----------------------------------------------------------------------
# Payment webhooks
# ----------------------------------------------------------------------

def _seed_pending_gateway_order(store, clock, order_id="ord_gw", transaction_id="gcash_tx_1"):
    return _seed_order(
        store, clock, OrderStatus.PENDING,
        payment_status=PaymentStatus.PENDING,
        method=PaymentMethod.GCASH,
        order_id=order_id,
        transaction_id=transaction_id,
    )


async def test_captured_event_confirms_order_once(services, store, clock) -> None:
    _seed_pending_gateway_order(store, clock)

    first = await services.orders.apply_payment_event("gcash_tx_1", "captured")
    version_after_first = store.peek(ORDERS, "ord_gw").version
    again = await services.orders.apply_payment_event("gcash_tx_1", "captured")

    assert first.status is OrderStatus.CONFIRMED
    assert first.payment.status is PaymentStatus.PAID
    assert first.payment.paid_at == clock.now
    assert again.status is OrderStatus.CONFIRMED
    assert store.peek(ORDERS, "ord_gw").version == version_after_first


async def test_denied_event_cancels_pending_order(services, store, clock) -> None:
    _seed_pending_gateway_order(store, clock)

    order = await services.orders.apply_payment_event("gcash_tx_1", ChargeStatus.DENIED)

    assert order.status is OrderStatus.CANCELLED
    assert order.payment.status is PaymentStatus.FAILED


async def test_refunded_event_marks_payment_refunded(services, store, clock) -> None:
    _seed_order(store, clock, OrderStatus.CONFIRMED, method=PaymentMethod.GCASH, transaction_id="gcash_tx_5")

    order = await services.orders.apply_payment_event("gcash_tx_5", "refunded")

    assert order.payment.status is PaymentStatus.REFUNDED
    assert order.status is OrderStatus.CANCELLED


async def test_capture_after_cancellation_is_refunded(services, gateway, store, clock) -> None:
    _seed_pending_gateway_order(store, clock)
    await services.orders.update_order_status("ord_gw", OrderStatus.CANCELLED)

    order = await services.orders.apply_payment_event("gcash_tx_1", "captured")

    assert order.status is OrderStatus.CANCELLED
    assert order.payment.status is PaymentStatus.REFUNDED
    assert [r["transaction_id"] for r in gateway.refunds] == ["gcash_tx_1"]


async def test_unknown_transaction(services) -> None:
    with pytest.raises(NotFoundError):
        await services.orders.apply_payment_event("nope", "captured")


async def test_gateway_event_for_wallet_payment_is_rejected(services, store, kit, address) -> None:
    await services.wallets.credit("u1", "1000.00")
    await _fill_cart(services)
    order = (await services.orders.create_order("u1", "client", address, "wallet")).order

    with pytest.raises(ValidationError):
        await services.orders.apply_payment_event(order.payment.transaction_id, "refunded")

    stored = await services.orders.get_order(order.order_id)
    assert stored.payment.status is PaymentStatus.PAID
    assert stored.status is OrderStatus.CONFIRMED
    assert await services.wallets.get_balance("u1") == Decimal("860.00")

    cancelled = await services.orders.cancel_order(order.order_id)
    assert cancelled.payment.status is PaymentStatus.REFUNDED
    assert await services.wallets.get_balance("u1") == Decimal("1000.00")


# ----------------------------------------------------------------------
# Shipping details
# ----------------------------------------------------------------------

async def test_update_shipping_merges_fields(services, store, clock) -> None:
    _seed_order(store, clock, OrderStatus.PROCESSING)
    await services.orders.update_shipping("ord_seed", tracking_number="LBC-123")
    clock.advance(60)

    order = await services.orders.update_shipping("ord_seed", delivery_notes="Call on arrival")

    assert order.shipping.tracking_number == "LBC-123"
    assert order.shipping.delivery_notes == "Call on arrival"
    assert order.updated_at == clock.now
    assert order.status is OrderStatus.PROCESSING
    stored = await services.orders.get_order("ord_seed")
    assert stored.shipping == order.shipping
    assert stored.version == order.version == 3


async def test_update_shipping_rejects_unknown_field(services, store, clock) -> None:
    _seed_order(store, clock, OrderStatus.PROCESSING)

    with pytest.raises(ValidationError):
        await services.orders.update_shipping("ord_seed", courier="LBC")


async def test_update_shipping_retries_on_conflict(services, store, clock) -> None:
    _seed_order(store, clock, OrderStatus.PROCESSING)
    store.fail_commit_when(writes_to(ORDERS, WriteOp.UPDATE), StoreConflict("orders/ord_seed moved"))

    order = await services.orders.update_shipping("ord_seed", tracking_number="LBC-123")

    assert order.shipping.tracking_number == "LBC-123"
    assert store.peek(ORDERS, "ord_seed").data["shipping"]["tracking_number"] == "LBC-123"


async def test_status_change_keeps_shipping_details(services, store, clock) -> None:
    _seed_order(store, clock, OrderStatus.PROCESSING)
    await services.orders.update_shipping("ord_seed", tracking_number="LBC-123")

    order = await services.orders.update_order_status("ord_seed", OrderStatus.SHIPPED)

    assert order.shipping.tracking_number == "LBC-123"
    assert (await services.orders.get_order("ord_seed")).shipping.tracking_number == "LBC-123"
