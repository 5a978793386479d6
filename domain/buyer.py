"""
Domain: buyer tiers.

The auth collaborator supplies a role with every request. The role decides
which price column applies below the bulk threshold.
"""

from __future__ import annotations

from enum import Enum


class BuyerTier(str, Enum):
    MARKET = "market"
    PARTNER = "partner"


PARTNER_ROLES = frozenset({"provider", "partner", "agency"})


def buyer_tier_for_role(role: str | None) -> BuyerTier:
    """Partner-type roles buy at partner prices; everyone else at market prices."""

    if role and role.strip().lower() in PARTNER_ROLES:
        return BuyerTier.PARTNER
    return BuyerTier.MARKET
