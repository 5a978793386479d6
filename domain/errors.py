"""
Domain: error taxonomy for the commerce pipeline.

Every failure a caller can observe is a CommerceError carrying:
- code: stable machine-readable identifier (surfaced as `error_code`)
- message: human-readable explanation (surfaced as `error`)
- retryable: whether the same request may succeed if simply retried

Terminal errors (InsufficientFunds, CartInvalid, InvalidStatusTransition, ...)
require user action. Retryable errors (PaymentTimeout, StoreConflict,
StoreUnavailable, CheckoutInProgress) do not.
"""

from __future__ import annotations

from typing import List, Optional, Sequence


class CommerceError(Exception):
    """Base class for all commerce pipeline failures."""

    code: str = "commerce_error"
    retryable: bool = False

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ValidationError(CommerceError):
    """Malformed input, rejected before touching external systems."""

    code = "validation_error"


class InvalidQuantity(ValidationError):
    code = "invalid_quantity"

    def __init__(self, quantity: object) -> None:
        self.quantity = quantity
        super().__init__(f"Quantity must be a positive integer, got {quantity!r}")


class CartInvalid(CommerceError):
    """Cart failed the pre-checkout gate (stock, pricing, availability)."""

    code = "cart_invalid"

    def __init__(self, errors: Sequence[str]) -> None:
        self.errors: List[str] = list(errors)
        super().__init__("Cart validation failed: " + ", ".join(self.errors))


class InsufficientFunds(CommerceError):
    code = "insufficient_funds"

    def __init__(self, user_id: str, balance: object, amount: object) -> None:
        self.user_id = user_id
        self.balance = balance
        self.amount = amount
        super().__init__(
            f"Insufficient wallet balance: available {balance}, required {amount}"
        )


class PaymentFailed(CommerceError):
    code = "payment_failed"


class PaymentTimeout(CommerceError):
    code = "payment_timeout"
    retryable = True


class InvalidStatusTransition(CommerceError):
    code = "invalid_status_transition"

    def __init__(self, current: object, requested: object) -> None:
        self.current = current
        self.requested = requested
        super().__init__(
            f"Cannot change order status from '{_value(current)}' to '{_value(requested)}'"
        )


class OutOfOrderEvent(CommerceError):
    code = "out_of_order_event"


class ItemNotFound(CommerceError):
    code = "item_not_found"

    def __init__(self, user_id: str, product_id: str) -> None:
        self.user_id = user_id
        self.product_id = product_id
        super().__init__(f"Product {product_id} is not in the cart")


class NotFoundError(CommerceError):
    code = "not_found"

    def __init__(self, kind: str, identifier: str) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class MalformedDocument(CommerceError):
    """A stored document does not decode into the expected entity shape."""

    code = "malformed_document"

    def __init__(self, collection: str, doc_id: str, reason: str) -> None:
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"Malformed {collection} document {doc_id}: {reason}")


class StoreConflict(CommerceError):
    """A version-guarded write lost a race. Re-read and try again."""

    code = "store_conflict"
    retryable = True


class StoreUnavailable(CommerceError):
    """Transient document store failure."""

    code = "store_unavailable"
    retryable = True


class Forbidden(CommerceError):
    """The authenticated user may not act on this resource."""

    code = "forbidden"


class CheckoutInProgress(CommerceError):
    code = "checkout_in_progress"
    retryable = True

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__("Another checkout is already in progress for this account")


def _value(status: object) -> str:
    return str(getattr(status, "value", status))


def error_code_of(error: Optional[BaseException]) -> str:
    if isinstance(error, CommerceError):
        return error.code
    return "internal_error"


__all__ = [
    "CommerceError",
    "ValidationError",
    "InvalidQuantity",
    "CartInvalid",
    "InsufficientFunds",
    "PaymentFailed",
    "PaymentTimeout",
    "InvalidStatusTransition",
    "OutOfOrderEvent",
    "ItemNotFound",
    "NotFoundError",
    "MalformedDocument",
    "StoreConflict",
    "StoreUnavailable",
    "CheckoutInProgress",
    "Forbidden",
    "error_code_of",
]
