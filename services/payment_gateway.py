"""
Payment gateway integrations.

The pipeline only depends on this contract:

    create_charge(amount, currency, method, metadata) -> ChargeResult
    refund_charge(transaction_id, amount, reason) -> RefundResult

plus an asynchronous webhook reporting the terminal charge status
(captured / denied / refunded), handled by the order service.

Implementations:
- HttpPaymentGateway: JSON bridge to a hosted gateway (GCash, PayPal)
- ManualTransferGateway: bank transfers, verified by an admin later

Timeouts surface as PaymentTimeout (retryable); every other gateway failure
surfaces as PaymentFailed or a ChargeResult with success=False.
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Protocol

import httpx

from domain.errors import PaymentFailed, PaymentTimeout
from domain.money import money_str
from domain.order import PaymentMethod

logger = logging.getLogger(__name__)


class ChargeStatus(str, Enum):
    PENDING = "pending"
    CAPTURED = "captured"
    DENIED = "denied"
    REFUNDED = "refunded"


@dataclass(frozen=True, slots=True)
class ChargeResult:
    success: bool
    transaction_id: Optional[str] = None
    status: ChargeStatus = ChargeStatus.PENDING
    payment_url: Optional[str] = None  # where the buyer completes payment, if any
    error: Optional[str] = None


@dataclass(frozen=True, slots=True)
class RefundResult:
    success: bool
    transaction_id: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True, slots=True)
class PaymentInstructions:
    instructions: str
    account_number: Optional[str] = None
    account_name: Optional[str] = None
    bank: Optional[str] = None


class PaymentGateway(Protocol):
    async def create_charge(
        self, amount: Decimal, currency: str, method: PaymentMethod, metadata: Mapping[str, str]
    ) -> ChargeResult:
        ...

    async def refund_charge(self, transaction_id: str, amount: Decimal, reason: str) -> RefundResult:
        ...


def _reference(prefix: str) -> str:
    return f"{prefix}_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


class HttpPaymentGateway:
    """Client for a hosted gateway bridge speaking JSON over HTTPS."""

    def __init__(
        self,
        name: str,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Args:
            name: Gateway name used in logs and errors (e.g. "gcash")
            base_url: Bridge base URL; /charges and /refunds are appended
            api_key: Optional bearer token
            timeout: Per-request timeout in seconds
            client: Pre-built httpx client (tests inject a MockTransport)
        """
        self.name = name
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"), timeout=timeout, headers=headers
        )

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self._client.post(path, json=payload)
        except httpx.TimeoutException as e:
            logger.warning("%s gateway timed out on %s", self.name, path)
            raise PaymentTimeout(f"{self.name} gateway did not respond in time") from e
        except httpx.HTTPError as e:
            logger.error("%s gateway transport error on %s: %s", self.name, path, e)
            raise PaymentFailed(f"{self.name} gateway unreachable: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            raise PaymentFailed(
                f"{self.name} gateway returned an invalid response (HTTP {response.status_code})"
            )
        if response.status_code >= 500 and "success" not in body:
            raise PaymentFailed(f"{self.name} gateway error (HTTP {response.status_code})")
        return body

    async def create_charge(
        self, amount: Decimal, currency: str, method: PaymentMethod, metadata: Mapping[str, str]
    ) -> ChargeResult:
        body = await self._post(
            "/charges",
            {
                "amount": money_str(amount),
                "currency": currency,
                "method": method.value,
                "metadata": dict(metadata),
            },
        )
        if not body.get("success"):
            return ChargeResult(success=False, error=str(body.get("error") or f"{self.name} payment failed"))

        transaction_id = body.get("transactionId") or body.get("transaction_id")
        if not transaction_id:
            return ChargeResult(success=False, error=f"{self.name} gateway returned no transaction id")

        try:
            status = ChargeStatus(body.get("status", ChargeStatus.PENDING.value))
        except ValueError:
            status = ChargeStatus.PENDING
        return ChargeResult(
            success=True,
            transaction_id=str(transaction_id),
            status=status,
            payment_url=body.get("paymentUrl") or body.get("payment_url"),
        )

    async def refund_charge(self, transaction_id: str, amount: Decimal, reason: str) -> RefundResult:
        body = await self._post(
            "/refunds",
            {"transactionId": transaction_id, "amount": money_str(amount), "reason": reason},
        )
        if not body.get("success"):
            return RefundResult(success=False, error=str(body.get("error") or f"{self.name} refund failed"))
        return RefundResult(success=True, transaction_id=body.get("transactionId") or body.get("transaction_id"))

    async def aclose(self) -> None:
        await self._client.aclose()


class ManualTransferGateway:
    """
    Bank transfers: the charge is only a reference number.

    The buyer transfers the money outside the system; an admin confirms it
    later through the payment webhook, so charges always start pending.
    """

    async def create_charge(
        self, amount: Decimal, currency: str, method: PaymentMethod, metadata: Mapping[str, str]
    ) -> ChargeResult:
        return ChargeResult(success=True, transaction_id=_reference("bank"), status=ChargeStatus.PENDING)

    async def refund_charge(self, transaction_id: str, amount: Decimal, reason: str) -> RefundResult:
        # Refunds are paid out manually against this reference.
        return RefundResult(success=True, transaction_id=_reference("refund_bank"))


class PaymentGatewayRegistry:
    def __init__(self, gateways: Mapping[PaymentMethod, PaymentGateway]) -> None:
        self._gateways = dict(gateways)

    def for_method(self, method: PaymentMethod) -> PaymentGateway:
        gateway = self._gateways.get(method)
        if gateway is None:
            raise PaymentFailed(f"Unsupported payment method: {method.value}")
        return gateway

    def supports(self, method: PaymentMethod) -> bool:
        return method in self._gateways

    async def aclose(self) -> None:
        for gateway in self._gateways.values():
            close = getattr(gateway, "aclose", None)
            if close is not None:
                await close()


def build_gateway_registry(
    gcash_url: Optional[str],
    paypal_url: Optional[str],
    api_key: Optional[str] = None,
    timeout: float = 15.0,
) -> PaymentGatewayRegistry:
    """Gateways for every configured external method; bank transfer is always on."""

    gateways: Dict[PaymentMethod, PaymentGateway] = {
        PaymentMethod.BANK_TRANSFER: ManualTransferGateway(),
    }
    if gcash_url:
        gateways[PaymentMethod.GCASH] = HttpPaymentGateway("gcash", gcash_url, api_key, timeout)
    if paypal_url:
        gateways[PaymentMethod.PAYPAL] = HttpPaymentGateway("paypal", paypal_url, api_key, timeout)
    return PaymentGatewayRegistry(gateways)


def payment_instructions(method: PaymentMethod) -> PaymentInstructions:
    """Instructions shown to buyers for manual payment methods."""

    if method is PaymentMethod.GCASH:
        return PaymentInstructions(
            instructions="Send payment to our GCash account and upload proof of payment.",
            account_number="09171234567",
            account_name="LocalPro Marketplace",
            bank="GCash",
        )
    if method is PaymentMethod.BANK_TRANSFER:
        return PaymentInstructions(
            instructions="Transfer the amount to our bank account and upload proof of payment.",
            account_number="1234567890",
            account_name="LocalPro Marketplace",
            bank="BPI",
        )
    return PaymentInstructions(instructions="Please follow the payment instructions provided.")


__all__ = [
    "ChargeResult",
    "ChargeStatus",
    "HttpPaymentGateway",
    "ManualTransferGateway",
    "PaymentGateway",
    "PaymentGatewayRegistry",
    "PaymentInstructions",
    "RefundResult",
    "build_gateway_registry",
    "payment_instructions",
]
