"""
Pricing service for calculating unit prices, cart totals and order pricing.

Pure functions over Product snapshots: no I/O. Pricing rule:

- quantity >= BULK_THRESHOLD and the product has a bulk price -> bulk_price
- else partner-tier buyer -> partner_price
- else -> market_price

A product with a missing or zero selected price never breaks a total: the
price counts as 0 and the line is flagged not purchasable.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Iterable, List, Optional, Sequence

from domain.buyer import BuyerTier
from domain.money import CURRENCY, ZERO, to_money
from domain.order import OrderItem, OrderPricing
from domain.product import Product

BULK_THRESHOLD: int = 10


@dataclass(frozen=True, slots=True)
class PricedLine:
    """Individual line item price calculation for a product and quantity."""
    product_id: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    market_line_total: Decimal
    is_priced: bool


@dataclass(frozen=True, slots=True)
class Totals:
    total_items: int
    total_price: Decimal


@dataclass(frozen=True, slots=True)
class Savings:
    amount: Decimal
    percentage: int


# Policies receive the subtotal and the priced lines and return an amount.
DiscountPolicy = Callable[[Decimal, Sequence[PricedLine]], Decimal]
ShippingPolicy = Callable[[Decimal, Sequence[PricedLine]], Decimal]


def no_discount(subtotal: Decimal, lines: Sequence[PricedLine]) -> Decimal:
    return ZERO


def free_shipping(subtotal: Decimal, lines: Sequence[PricedLine]) -> Decimal:
    return ZERO


def _usable(price: Optional[Decimal]) -> bool:
    return price is not None and price > ZERO


def select_price(product: Product, quantity: int, buyer_tier: BuyerTier) -> Optional[Decimal]:
    """Return the price column that applies, or None when that column is unset."""

    pricing = product.pricing
    if quantity >= BULK_THRESHOLD and _usable(pricing.bulk_price):
        return pricing.bulk_price
    if buyer_tier is BuyerTier.PARTNER:
        return pricing.partner_price
    return pricing.market_price


def unit_price(product: Product, quantity: int, buyer_tier: BuyerTier) -> Decimal:
    """
    Unit price for a product at a quantity for a buyer tier.

    Example:
        product = Product(..., pricing=ProductPricing(100, 80, 70))
        unit_price(product, 2, BuyerTier.PARTNER)   # Decimal('80.00')
        unit_price(product, 10, BuyerTier.PARTNER)  # Decimal('70.00')
    """
    price = select_price(product, quantity, buyer_tier)
    return to_money(price) if _usable(price) else ZERO


def price_line(product: Product, quantity: int, buyer_tier: BuyerTier) -> PricedLine:
    price = select_price(product, quantity, buyer_tier)
    is_priced = _usable(price)
    unit = to_money(price) if is_priced else ZERO
    market = product.pricing.market_price if _usable(product.pricing.market_price) else unit
    return PricedLine(
        product_id=product.product_id,
        quantity=quantity,
        unit_price=unit,
        line_total=to_money(unit * quantity),
        market_line_total=to_money(to_money(market) * quantity),
        is_priced=is_priced,
    )


def line_total(product: Product, quantity: int, buyer_tier: BuyerTier) -> Decimal:
    return price_line(product, quantity, buyer_tier).line_total


def totals(lines: Iterable[PricedLine]) -> Totals:
    """Σ quantity and Σ line_total over the given lines."""

    total_items = 0
    total_price = ZERO
    for line in lines:
        total_items += line.quantity
        total_price += line.line_total
    return Totals(total_items=total_items, total_price=total_price)


def calculate_savings(product: Product) -> Savings:
    """Partner savings against the market price (percentage rounded to a whole number)."""

    market = product.pricing.market_price
    partner = product.pricing.partner_price
    if not _usable(market) or partner is None:
        return Savings(amount=ZERO, percentage=0)

    amount = to_money(market - partner)
    percentage = int((amount / market * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return Savings(amount=amount, percentage=percentage)


def price_order(
    lines: Sequence[PricedLine],
    discount_policy: DiscountPolicy = no_discount,
    shipping_policy: ShippingPolicy = free_shipping,
    currency: str = CURRENCY,
) -> OrderPricing:
    """
    Pricing snapshot for an order: total = subtotal - discount + shipping.

    The discount is clamped to [0, subtotal]. savings is informational
    (market-column total minus subtotal) and does not affect the total.
    """
    subtotal = totals(lines).total_price
    discount = min(max(to_money(discount_policy(subtotal, lines)), ZERO), subtotal)
    shipping = max(to_money(shipping_policy(subtotal, lines)), ZERO)
    market_total = sum((line.market_line_total for line in lines), ZERO)

    return OrderPricing(
        subtotal=subtotal,
        discount=discount,
        shipping=shipping,
        total=subtotal - discount + shipping,
        savings=max(market_total - subtotal, ZERO),
        currency=currency,
    )


def order_items(lines: Sequence[PricedLine], names: dict[str, str]) -> List[OrderItem]:
    """Freeze priced lines into order items."""

    return [
        OrderItem(
            product_id=line.product_id,
            name=names.get(line.product_id, line.product_id),
            quantity=line.quantity,
            unit_price=line.unit_price,
            total_price=line.line_total,
        )
        for line in lines
    ]


__all__ = [
    "BULK_THRESHOLD",
    "DiscountPolicy",
    "PricedLine",
    "Savings",
    "ShippingPolicy",
    "Totals",
    "calculate_savings",
    "free_shipping",
    "line_total",
    "no_discount",
    "order_items",
    "price_line",
    "price_order",
    "select_price",
    "totals",
    "unit_price",
]
