"""
Wallet repository (persistence).

Two collections:
- wallets/{user_id}: current balance, guarded by the document version
- wallet_transactions/{transaction_id}: append-only ledger entries

A balance change and its ledger entry must always be committed together in
one batch; this module only builds the writes.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from domain.errors import MalformedDocument
from domain.money import money_str, to_money
from domain.time import parse_utc_datetime, to_iso_utc
from domain.wallet import TransactionReason, TransactionType, UserWallet, WalletTransaction
from repositories import document_store as ds
from repositories.document_store import Document, DocumentStore, Filter

WALLETS: str = "wallets"
WALLET_TRANSACTIONS: str = "wallet_transactions"


def document_to_wallet(doc: Document) -> UserWallet:
    try:
        data = doc.data
        return UserWallet(
            user_id=str(data["user_id"]),
            balance=to_money(data["balance"]),
            currency=str(data["currency"]),
            created_at=parse_utc_datetime(data["created_at"]) if data.get("created_at") else None,
            updated_at=parse_utc_datetime(data["updated_at"]) if data.get("updated_at") else None,
            version=doc.version,
        )
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedDocument(WALLETS, doc.doc_id, str(e)) from e


def document_to_transaction(doc: Document) -> WalletTransaction:
    try:
        data = doc.data
        return WalletTransaction(
            transaction_id=doc.doc_id,
            user_id=str(data["user_id"]),
            type=TransactionType(data["type"]),
            amount=to_money(data["amount"]),
            reason=TransactionReason(data["reason"]),
            created_at=parse_utc_datetime(data["created_at"]),
            related_order_id=data.get("related_order_id"),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedDocument(WALLET_TRANSACTIONS, doc.doc_id, str(e)) from e


def _wallet_payload(wallet: UserWallet) -> Dict[str, Any]:
    return {
        "user_id": wallet.user_id,
        "balance": money_str(wallet.balance),
        "currency": wallet.currency,
        "created_at": to_iso_utc(wallet.created_at, name="created_at") if wallet.created_at else None,
        "updated_at": to_iso_utc(wallet.updated_at, name="updated_at") if wallet.updated_at else None,
    }


class WalletRepository:
    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    async def get_wallet(self, user_id: str) -> Optional[UserWallet]:
        """Wallet header (balance + version) without its transactions."""

        doc = await self._store.get(WALLETS, user_id)
        if doc is None:
            return None
        return document_to_wallet(doc)

    async def list_transactions(
        self, user_id: str, limit: Optional[int] = None
    ) -> List[WalletTransaction]:
        """Ledger entries for a user, newest first."""

        docs = await self._store.query(
            WALLET_TRANSACTIONS,
            filters=[Filter("user_id", "==", user_id)],
            order_by="created_at",
            descending=True,
            limit=limit,
        )
        return [document_to_transaction(doc) for doc in docs]

    def create_wallet_write(self, wallet: UserWallet) -> ds.Write:
        return ds.create(WALLETS, wallet.user_id, _wallet_payload(wallet))

    def balance_write(self, wallet: UserWallet, balance: Decimal, at: datetime) -> ds.Write:
        return ds.update(
            WALLETS,
            wallet.user_id,
            {"balance": money_str(balance), "updated_at": to_iso_utc(at, name="updated_at")},
            expected_version=wallet.version,
        )

    def transaction_write(self, tx: WalletTransaction) -> ds.Write:
        return ds.create(
            WALLET_TRANSACTIONS,
            tx.transaction_id,
            {
                "user_id": tx.user_id,
                "type": tx.type.value,
                "amount": money_str(tx.amount),
                "reason": tx.reason.value,
                "related_order_id": tx.related_order_id,
                "created_at": to_iso_utc(tx.created_at, name="created_at"),
            },
        )


__all__ = [
    "WALLETS",
    "WALLET_TRANSACTIONS",
    "WalletRepository",
    "document_to_transaction",
    "document_to_wallet",
]
