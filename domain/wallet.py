"""
Domain: user wallets and their append-only transaction ledger.

Contract:
- WalletTransaction records are immutable and never deleted.
- UserWallet.balance equals the running sum of its transactions
  (credits minus debits) at every observation point.
- A debit never drives the balance negative.

This module is pure: it folds ledgers and builds transactions, it does not
persist anything.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Iterable, List, Optional

from .money import CURRENCY, ZERO
from .time import require_utc_timestamp


class TransactionType(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class TransactionReason(str, Enum):
    TOP_UP = "top-up"
    EARNINGS = "earnings"
    ORDER_PAYMENT = "order-payment"
    ORDER_REFUND = "order-refund"
    ADJUSTMENT = "adjustment"


@dataclass(frozen=True, slots=True)
class WalletTransaction:
    transaction_id: str
    user_id: str
    type: TransactionType
    amount: Decimal
    reason: TransactionReason
    created_at: datetime
    related_order_id: Optional[str] = None

    def __post_init__(self) -> None:
        if self.amount <= ZERO:
            raise ValueError("Transaction amount must be positive")
        require_utc_timestamp("created_at", self.created_at)

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.type is TransactionType.CREDIT else -self.amount


@dataclass(frozen=True, slots=True)
class UserWallet:
    user_id: str
    balance: Decimal
    currency: str = CURRENCY
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    transactions: List[WalletTransaction] = field(default_factory=list)
    version: int = 0

    def __post_init__(self) -> None:
        if self.balance < ZERO:
            raise ValueError("Wallet balance cannot be negative")


@dataclass(frozen=True, slots=True)
class WalletSummary:
    balance: Decimal
    total_earnings: Decimal
    total_spent: Decimal
    transaction_count: int
    last_transaction: Optional[WalletTransaction] = None


def running_balance(transactions: Iterable[WalletTransaction]) -> Decimal:
    """Σ credits - Σ debits."""

    return sum((tx.signed_amount for tx in transactions), ZERO)


def summarize(wallet: UserWallet) -> WalletSummary:
    """Fold a wallet's ledger: earnings are credits, spending is debits."""

    earnings = ZERO
    spent = ZERO
    for tx in wallet.transactions:
        if tx.type is TransactionType.CREDIT:
            earnings += tx.amount
        else:
            spent += tx.amount

    last = max(wallet.transactions, key=lambda tx: tx.created_at, default=None)
    return WalletSummary(
        balance=wallet.balance,
        total_earnings=earnings,
        total_spent=spent,
        transaction_count=len(wallet.transactions),
        last_transaction=last,
    )
