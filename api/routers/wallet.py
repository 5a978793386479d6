"""
Wallet API Endpoints.

Views of the caller's wallet, plus the admin credit endpoint for top-ups,
earnings and adjustments. Debits and refunds only happen through checkout
and order cancellation.
"""

import logging

from fastapi import APIRouter, Depends, Query

from api.dependencies import CurrentUser, current_user, get_wallet_service, require_admin
from api.models import (
    WalletCreditRequest,
    WalletResponse,
    WalletSummaryResponse,
    WalletTransactionResponse,
)
from domain.errors import ValidationError
from domain.wallet import TransactionReason
from services.wallet_service import WalletService

logger = logging.getLogger(__name__)

router = APIRouter()

CREDIT_REASONS = frozenset({TransactionReason.TOP_UP, TransactionReason.EARNINGS, TransactionReason.ADJUSTMENT})


@router.get(
    "/wallet",
    response_model=WalletResponse,
    summary="Get Wallet",
    description="Balance and full transaction history. Creates an empty wallet on first access.",
)
async def get_wallet(
    user: CurrentUser = Depends(current_user),
    wallets: WalletService = Depends(get_wallet_service),
):
    return WalletResponse.from_wallet(await wallets.get_wallet(user.user_id))


@router.get("/wallet/summary", response_model=WalletSummaryResponse, summary="Wallet Summary")
async def get_wallet_summary(
    user: CurrentUser = Depends(current_user),
    wallets: WalletService = Depends(get_wallet_service),
):
    """Balance, total earnings, total spent and transaction count."""
    return WalletSummaryResponse.from_summary(await wallets.get_wallet_summary(user.user_id))


@router.get(
    "/wallet/transactions",
    response_model=list[WalletTransactionResponse],
    summary="Wallet Transactions",
)
async def get_wallet_transactions(
    limit: int = Query(50, ge=1, le=200, description="Maximum number of transactions"),
    user: CurrentUser = Depends(current_user),
    wallets: WalletService = Depends(get_wallet_service),
):
    transactions = await wallets.get_transactions(user.user_id, limit=limit)
    return [WalletTransactionResponse.from_transaction(tx) for tx in transactions]


@router.post(
    "/wallet/credits",
    response_model=WalletTransactionResponse,
    status_code=201,
    summary="Credit Wallet",
    description="Admin only. Top-ups, earnings and manual adjustments for any user.",
)
async def credit_wallet(
    request: WalletCreditRequest,
    admin: CurrentUser = Depends(require_admin),
    wallets: WalletService = Depends(get_wallet_service),
):
    """
    **Example request:**
    ```json
    {"user_id": "user-123", "amount": "500.00", "reason": "top-up"}
    ```
    """
    try:
        reason = TransactionReason(request.reason)
    except ValueError:
        raise ValidationError(f"Unknown credit reason: {request.reason!r}") from None
    if reason not in CREDIT_REASONS:
        raise ValidationError(f"{reason.value} credits are issued by checkout and refunds only")

    tx = await wallets.credit(
        request.user_id, request.amount, related_order_id=request.related_order_id, reason=reason
    )
    logger.info("Admin %s credited %s to wallet of %s (%s)", admin.user_id, tx.amount, request.user_id, reason.value)
    return WalletTransactionResponse.from_transaction(tx)
