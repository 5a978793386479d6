"""
Tests for `services/wallet_service.py`.

Covers contract rules:
- A wallet is created with a zero balance on first access.
- Every balance change writes exactly one ledger entry in the same batch.
- debit never drives the balance negative, even under concurrency.
- balance == sum(credits) - sum(debits) after any sequence of operations.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from domain.errors import InsufficientFunds, StoreConflict, ValidationError
from domain.wallet import TransactionReason, TransactionType, running_balance
from fakes import FakeClock, InMemoryDocumentStore, writes_to
from repositories.wallet_repository import WALLET_TRANSACTIONS, WALLETS, WalletRepository
from services.wallet_service import WalletService


async def test_wallet_is_created_on_first_access(services, store) -> None:
    wallet = await services.wallets.get_wallet("u1")

    assert wallet.balance == Decimal("0.00")
    assert wallet.currency == "PHP"
    assert wallet.transactions == []
    assert store.peek(WALLETS, "u1").version == 1


async def test_credit_and_debit_write_ledger_entries(services, store) -> None:
    await services.wallets.credit("u1", Decimal("1000"), reason=TransactionReason.TOP_UP)
    tx = await services.wallets.debit("u1", "140.00", related_order_id="ord_1")

    assert tx.type is TransactionType.DEBIT
    assert tx.reason is TransactionReason.ORDER_PAYMENT
    assert tx.related_order_id == "ord_1"
    assert await services.wallets.get_balance("u1") == Decimal("860.00")
    assert store.count(WALLET_TRANSACTIONS) == 2


async def test_debit_more_than_balance_fails_and_changes_nothing(services, store) -> None:
    await services.wallets.credit("u1", "100.00")

    with pytest.raises(InsufficientFunds) as exc:
        await services.wallets.debit("u1", "100.01")

    assert exc.value.retryable is False
    assert await services.wallets.get_balance("u1") == Decimal("100.00")
    assert store.count(WALLET_TRANSACTIONS) == 1


@pytest.mark.parametrize("amount", [0, "-5", "abc", None])
async def test_amount_must_be_positive_number(services, amount) -> None:
    with pytest.raises(ValidationError):
        await services.wallets.credit("u1", amount)
    with pytest.raises(ValidationError):
        await services.wallets.has_sufficient_balance("u1", amount)


async def test_has_sufficient_balance(services) -> None:
    await services.wallets.credit("u1", "50.00")

    assert await services.wallets.has_sufficient_balance("u1", "50.00") is True
    assert await services.wallets.has_sufficient_balance("u1", "50.01") is False


async def test_concurrent_debits_never_overdraw(services) -> None:
    await services.wallets.credit("u1", "100.00")

    results = await asyncio.gather(
        *(services.wallets.debit("u1", "40.00") for _ in range(3)),
        return_exceptions=True,
    )

    succeeded = [r for r in results if not isinstance(r, Exception)]
    failed = [r for r in results if isinstance(r, Exception)]
    assert len(succeeded) == 2
    assert len(failed) == 1 and isinstance(failed[0], InsufficientFunds)
    assert await services.wallets.get_balance("u1") == Decimal("20.00")


async def test_gives_up_after_max_retries(store, clock) -> None:
    wallets = WalletService(store, WalletRepository(store), clock=clock, max_retries=3)
    await wallets.get_balance("u1")
    for _ in range(3):
        store.fail_commit_when(writes_to(WALLET_TRANSACTIONS), StoreConflict("lost race"))

    with pytest.raises(StoreConflict) as exc:
        await wallets.credit("u1", "10.00")

    assert exc.value.retryable is True
    assert await wallets.get_balance("u1") == Decimal("0.00")


async def test_summary_and_transactions(services, clock) -> None:
    await services.wallets.credit("u1", "500.00", reason=TransactionReason.EARNINGS)
    clock.advance(60)
    await services.wallets.debit("u1", "120.00")
    clock.advance(60)
    last = await services.wallets.credit("u1", "20.00", reason=TransactionReason.ORDER_REFUND)

    summary = await services.wallets.get_wallet_summary("u1")
    recent = await services.wallets.get_transactions("u1", limit=2)

    assert summary.balance == Decimal("400.00")
    assert summary.total_earnings == Decimal("520.00")
    assert summary.total_spent == Decimal("120.00")
    assert summary.transaction_count == 3
    assert summary.last_transaction == last
    assert [tx.amount for tx in recent] == [Decimal("20.00"), Decimal("120.00")]


operations = st.lists(
    st.tuples(
        st.sampled_from([TransactionType.CREDIT, TransactionType.DEBIT]),
        st.decimals(min_value=Decimal("0.01"), max_value=Decimal("500"), places=2),
    ),
    max_size=20,
)


@settings(max_examples=50, deadline=None)
@given(ops=operations)
def test_balance_equals_credits_minus_debits(ops) -> None:
    async def scenario() -> None:
        store = InMemoryDocumentStore()
        wallets = WalletService(store, WalletRepository(store), clock=FakeClock())

        for tx_type, amount in ops:
            if tx_type is TransactionType.CREDIT:
                await wallets.credit("u1", amount)
                continue
            before = await wallets.get_balance("u1")
            try:
                await wallets.debit("u1", amount)
            except InsufficientFunds:
                assert amount > before
            else:
                assert amount <= before

        wallet = await wallets.get_wallet("u1")
        assert wallet.balance >= Decimal("0.00")
        assert wallet.balance == running_balance(wallet.transactions)

    asyncio.run(scenario())
