"""
Wallet ledger service.

Every balance change is one atomic batch:
- version-guarded update of wallets/{user_id}.balance
- creation of the matching wallet_transactions entry

A lost race (version conflict) re-reads the wallet and tries again, so the
InsufficientFunds check always runs against the balance that is actually
being replaced. balance == Σ credits - Σ debits holds after every commit.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Callable, List, Optional
from uuid import uuid4

from domain.errors import InsufficientFunds, StoreConflict, ValidationError
from domain.money import CURRENCY, ZERO, to_money
from domain.time import Clock, utc_now
from domain.wallet import (
    TransactionReason,
    TransactionType,
    UserWallet,
    WalletSummary,
    WalletTransaction,
    summarize,
)
from repositories.document_store import DocumentStore
from repositories.wallet_repository import WalletRepository

logger = logging.getLogger(__name__)


def _new_transaction_id() -> str:
    return f"tx_{uuid4().hex}"


def _positive_amount(amount: object) -> Decimal:
    try:
        value = to_money(amount)
    except ValueError:
        raise ValidationError(f"Amount must be a number, got {amount!r}") from None
    if value <= ZERO:
        raise ValidationError("Amount must be positive")
    return value


class WalletService:
    def __init__(
        self,
        store: DocumentStore,
        wallets: WalletRepository,
        clock: Clock = utc_now,
        max_retries: int = 5,
        id_factory: Callable[[], str] = _new_transaction_id,
    ) -> None:
        self._store = store
        self._wallets = wallets
        self._clock = clock
        self._max_retries = max_retries
        self._id_factory = id_factory

    async def _load_or_create(self, user_id: str) -> UserWallet:
        wallet = await self._wallets.get_wallet(user_id)
        if wallet is not None:
            return wallet

        now = self._clock()
        wallet = UserWallet(
            user_id=user_id, balance=ZERO, currency=CURRENCY, created_at=now, updated_at=now, version=1
        )
        try:
            await self._store.commit([self._wallets.create_wallet_write(wallet)])
        except StoreConflict:
            # Someone else created it first; theirs is the wallet.
            existing = await self._wallets.get_wallet(user_id)
            if existing is None:
                raise
            return existing

        logger.info("Created wallet for user %s", user_id)
        return wallet

    async def get_wallet(self, user_id: str) -> UserWallet:
        """
        Wallet with its full transaction list (newest first).

        Creates a zero-balance wallet on first access.
        """
        wallet = await self._load_or_create(user_id)
        transactions = await self._wallets.list_transactions(user_id)
        return UserWallet(
            user_id=wallet.user_id,
            balance=wallet.balance,
            currency=wallet.currency,
            created_at=wallet.created_at,
            updated_at=wallet.updated_at,
            transactions=transactions,
            version=wallet.version,
        )

    async def get_balance(self, user_id: str) -> Decimal:
        return (await self._load_or_create(user_id)).balance

    async def has_sufficient_balance(self, user_id: str, amount: object) -> bool:
        """Pure read comparison. Raises ValidationError unless amount > 0."""

        required = _positive_amount(amount)
        return await self.get_balance(user_id) >= required

    async def debit(
        self,
        user_id: str,
        amount: object,
        related_order_id: Optional[str] = None,
        reason: TransactionReason = TransactionReason.ORDER_PAYMENT,
    ) -> WalletTransaction:
        """
        Take money out of the wallet.

        Raises:
            ValidationError: amount is not positive
            InsufficientFunds: balance < amount at application time
            StoreConflict: kept losing races after max_retries (retryable)
        """
        return await self._apply(user_id, TransactionType.DEBIT, amount, reason, related_order_id)

    async def credit(
        self,
        user_id: str,
        amount: object,
        related_order_id: Optional[str] = None,
        reason: TransactionReason = TransactionReason.TOP_UP,
    ) -> WalletTransaction:
        """Put money into the wallet (top-ups, earnings, refunds, compensation)."""

        return await self._apply(user_id, TransactionType.CREDIT, amount, reason, related_order_id)

    async def _apply(
        self,
        user_id: str,
        tx_type: TransactionType,
        amount: object,
        reason: TransactionReason,
        related_order_id: Optional[str],
    ) -> WalletTransaction:
        value = _positive_amount(amount)
        transaction_id = self._id_factory()

        for attempt in range(1, self._max_retries + 1):
            wallet = await self._load_or_create(user_id)
            if tx_type is TransactionType.DEBIT:
                if wallet.balance < value:
                    raise InsufficientFunds(user_id, wallet.balance, value)
                new_balance = wallet.balance - value
            else:
                new_balance = wallet.balance + value

            now = self._clock()
            tx = WalletTransaction(
                transaction_id=transaction_id,
                user_id=user_id,
                type=tx_type,
                amount=value,
                reason=reason,
                created_at=now,
                related_order_id=related_order_id,
            )
            try:
                await self._store.commit([
                    self._wallets.balance_write(wallet, new_balance, now),
                    self._wallets.transaction_write(tx),
                ])
            except StoreConflict:
                logger.warning(
                    "Wallet %s %s conflict for user %s (attempt %d/%d)",
                    tx_type.value, value, user_id, attempt, self._max_retries,
                )
                continue

            logger.info(
                "Wallet %s of %s for user %s (order=%s, balance %s -> %s)",
                tx_type.value, value, user_id, related_order_id, wallet.balance, new_balance,
            )
            return tx

        raise StoreConflict(
            f"Wallet {tx_type.value} for user {user_id} lost {self._max_retries} concurrent updates"
        )

    async def get_transactions(self, user_id: str, limit: int = 50) -> List[WalletTransaction]:
        return await self._wallets.list_transactions(user_id, limit=limit)

    async def get_wallet_summary(self, user_id: str) -> WalletSummary:
        """balance, total earnings (credits), total spent (debits), transaction count."""

        return summarize(await self.get_wallet(user_id))


__all__ = ["WalletService"]
