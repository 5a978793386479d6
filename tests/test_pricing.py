"""
Tests for `services/pricing_service.py`.

Covers contract rules:
- Bulk price applies at quantity >= BULK_THRESHOLD when set, else tier price.
- Missing or zero prices count as 0 and flag the line as not purchasable.
- Order pricing: total = subtotal - discount + shipping, discount clamped.
- Unit price never increases past the bulk threshold (property).
- Cart total equals the sum of unit price x quantity (property).
"""

from __future__ import annotations

from decimal import Decimal

from hypothesis import given
from hypothesis import strategies as st

from domain.buyer import BuyerTier, buyer_tier_for_role
from domain.product import Product, ProductCategory, ProductInventory, ProductPricing
from services.pricing_service import (
    BULK_THRESHOLD,
    calculate_savings,
    line_total,
    order_items,
    price_line,
    price_order,
    totals,
    unit_price,
)


def _product(market="100.00", partner="80.00", bulk="70.00", product_id="P") -> Product:
    def dec(value):
        return None if value is None else Decimal(value)

    return Product(
        product_id=product_id,
        name=f"Product {product_id}",
        category=ProductCategory.CLEANING,
        pricing=ProductPricing(market_price=dec(market), partner_price=dec(partner), bulk_price=dec(bulk)),
        inventory=ProductInventory(stock=100),
    )


def test_partner_buyer_gets_partner_price_below_bulk_threshold() -> None:
    product = _product()
    tier = buyer_tier_for_role("provider")

    assert unit_price(product, 2, tier) == Decimal("80.00")
    assert line_total(product, 2, tier) == Decimal("160.00")


def test_bulk_price_applies_at_threshold() -> None:
    product = _product()

    assert BULK_THRESHOLD == 10
    assert unit_price(product, 10, BuyerTier.PARTNER) == Decimal("70.00")
    assert line_total(product, 10, BuyerTier.PARTNER) == Decimal("700.00")
    assert unit_price(product, 10, BuyerTier.MARKET) == Decimal("70.00")


def test_market_buyer_pays_market_price() -> None:
    product = _product()

    assert unit_price(product, 2, BuyerTier.MARKET) == Decimal("100.00")
    assert unit_price(product, 9, BuyerTier.MARKET) == Decimal("100.00")


def test_missing_bulk_price_falls_back_to_tier_price() -> None:
    product = _product(bulk=None)

    assert unit_price(product, 25, BuyerTier.PARTNER) == Decimal("80.00")
    assert unit_price(product, 25, BuyerTier.MARKET) == Decimal("100.00")


def test_missing_or_zero_price_is_zero_and_not_purchasable() -> None:
    no_partner = _product(partner=None, bulk=None)
    zero_market = _product(market="0", bulk=None)

    line = price_line(no_partner, 3, BuyerTier.PARTNER)
    assert line.unit_price == Decimal("0.00")
    assert line.line_total == Decimal("0.00")
    assert line.is_priced is False

    assert price_line(zero_market, 1, BuyerTier.MARKET).is_priced is False
    assert price_line(zero_market, 1, BuyerTier.PARTNER).is_priced is True


def test_unknown_roles_buy_at_market_tier() -> None:
    assert buyer_tier_for_role("client") is BuyerTier.MARKET
    assert buyer_tier_for_role(None) is BuyerTier.MARKET
    assert buyer_tier_for_role("Agency") is BuyerTier.PARTNER


def test_calculate_savings() -> None:
    savings = calculate_savings(_product(market="100.00", partner="80.00"))

    assert savings.amount == Decimal("20.00")
    assert savings.percentage == 20
    assert calculate_savings(_product(market=None)).percentage == 0


def test_price_order_applies_policies_and_clamps_discount() -> None:
    lines = [price_line(_product(), 2, BuyerTier.PARTNER)]

    pricing = price_order(
        lines,
        discount_policy=lambda subtotal, _: Decimal("500"),
        shipping_policy=lambda subtotal, _: Decimal("50"),
    )

    assert pricing.subtotal == Decimal("160.00")
    assert pricing.discount == Decimal("160.00")
    assert pricing.shipping == Decimal("50.00")
    assert pricing.total == Decimal("50.00")
    assert pricing.currency == "PHP"


def test_price_order_defaults_and_savings() -> None:
    lines = [price_line(_product(), 2, BuyerTier.PARTNER)]

    pricing = price_order(lines)

    assert pricing.discount == Decimal("0.00")
    assert pricing.shipping == Decimal("0.00")
    assert pricing.total == pricing.subtotal == Decimal("160.00")
    assert pricing.savings == Decimal("40.00")


def test_order_items_freeze_names_and_prices() -> None:
    lines = [price_line(_product(), 2, BuyerTier.PARTNER)]

    (item,) = order_items(lines, {"P": "Disinfectant 5L"})

    assert item.name == "Disinfectant 5L"
    assert item.unit_price == Decimal("80.00")
    assert item.total_price == Decimal("160.00")


prices = st.decimals(min_value=Decimal("0.01"), max_value=Decimal("10000"), places=2)


@given(
    market=prices,
    partner_ratio=st.decimals(min_value=Decimal("0.1"), max_value=Decimal("1"), places=2),
    bulk_ratio=st.decimals(min_value=Decimal("0.1"), max_value=Decimal("1"), places=2),
    q1=st.integers(min_value=1, max_value=500),
    q2=st.integers(min_value=BULK_THRESHOLD, max_value=1000),
    tier=st.sampled_from(list(BuyerTier)),
)
def test_unit_price_never_increases_past_bulk_threshold(market, partner_ratio, bulk_ratio, q1, q2, tier) -> None:
    partner = max((market * partner_ratio).quantize(Decimal("0.01")), Decimal("0.01"))
    bulk = max((partner * bulk_ratio).quantize(Decimal("0.01")), Decimal("0.01"))
    product = _product(market=str(market), partner=str(partner), bulk=str(bulk))
    if q1 >= q2:
        q1, q2 = q2 - 1 if q2 > 1 else 1, q2
    if q1 == q2:
        return

    assert unit_price(product, q2, tier) <= unit_price(product, q1, tier)


@given(
    items=st.lists(
        st.tuples(prices, prices, st.one_of(st.none(), prices), st.integers(min_value=1, max_value=40)),
        min_size=1,
        max_size=8,
    ),
    tier=st.sampled_from(list(BuyerTier)),
)
def test_cart_total_is_sum_of_unit_price_times_quantity(items, tier) -> None:
    lines = []
    expected = Decimal("0.00")
    for i, (market, partner, bulk, quantity) in enumerate(items):
        product = _product(
            market=str(market),
            partner=str(partner),
            bulk=None if bulk is None else str(bulk),
            product_id=f"P{i}",
        )
        lines.append(price_line(product, quantity, tier))
        expected += unit_price(product, quantity, tier) * quantity

    summary = totals(lines)

    assert summary.total_price == expected
    assert summary.total_items == sum(quantity for *_, quantity in items)
