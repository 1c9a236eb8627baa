"""
Wholesale pricing tiers.

A tier list is scanned in ascending ``min_qty`` order and the first tier whose
``[min_qty, max_qty]`` range contains the quantity wins. Overlapping tiers are
not merged: ``[1, 10]`` and ``[5, 15]`` resolve quantity 7 to the first one.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Sequence, Tuple

from db.models import PricingTier, TierStrategy, to_int, to_number


def _tier_from_dict(raw: Dict[str, Any]) -> Optional[PricingTier]:
    try:
        strategy = TierStrategy(raw.get("strategy"))
    except ValueError:
        return None

    # legacy shape: minQuantity + one field per strategy
    min_qty = raw.get("minQty", raw.get("minQuantity"))
    value = raw.get("value")
    if value is None:
        value = raw.get(strategy.value)

    max_qty = raw.get("maxQty")
    return PricingTier(
        min_qty=max(0, to_int(min_qty)),
        max_qty=None if max_qty in (None, 0) else to_int(max_qty),
        strategy=strategy,
        # kept non-finite so calculate_tier_base_price can treat it as no discount
        value=to_number(value, default=math.nan),
    )


def normalize_tiers(raw: Optional[Iterable[Any]]) -> Tuple[PricingTier, ...]:
    """
    Build a tier tuple sorted by min_qty.

    Accepts PricingTier instances or wire dicts. Entries with an unknown
    strategy are dropped; a missing or non-finite value prices as no discount. The sort is stable so
    list order decides between tiers with the same min_qty.
    """
    tiers = []
    for entry in raw or []:
        if isinstance(entry, PricingTier):
            tier = entry
        elif isinstance(entry, dict):
            tier = _tier_from_dict(entry)
        else:
            tier = None
        if tier is not None:
            tiers.append(tier)
    return tuple(sorted(tiers, key=lambda t: t.min_qty))


def find_tier(tiers: Sequence[PricingTier], qty: int) -> Optional[PricingTier]:
    for tier in sorted(tiers, key=lambda t: t.min_qty):
        if tier.contains(qty):
            return tier
    return None


def calculate_tier_base_price(base_price: float, tier: Optional[PricingTier]) -> float:
    """
    Base price of a unit bought inside `tier`, clamped to >= 0.

    fixedPrice ignores the base entirely. A non-finite or negative value is
    treated as no discount.
    """
    base = max(0.0, to_number(base_price))
    if tier is None:
        return base

    raw = to_number(tier.value, default=math.nan)
    if math.isnan(raw):
        return base
    value = max(0.0, raw)
    if tier.strategy is TierStrategy.FIXED_PRICE:
        return value
    if tier.strategy is TierStrategy.PERCENT_OFF:
        return max(0.0, base * (1 - min(value, 100.0) / 100))
    if tier.strategy is TierStrategy.AMOUNT_OFF:
        return max(0.0, base - value)
    return base


def find_next_tier(tiers: Sequence[PricingTier], qty: int) -> Optional[PricingTier]:
    """Closest tier that starts above `qty`."""
    upcoming = [t for t in tiers if t.min_qty > qty]
    if not upcoming:
        return None
    return min(upcoming, key=lambda t: t.min_qty)


@dataclass(frozen=True)
class TierUpgrade:
    tier: PricingTier
    qty_needed: int
    unit_price: float
    savings_per_unit: float


def next_tier_savings(
    tiers: Sequence[PricingTier], qty: int, base_price: float, current_unit_price: float
) -> Optional[TierUpgrade]:
    """How many more units unlock the next tier, and what a unit would cost there."""
    nxt = find_next_tier(tiers, qty)
    if nxt is None:
        return None
    unit_price = calculate_tier_base_price(base_price, nxt)
    return TierUpgrade(
        tier=nxt,
        qty_needed=nxt.min_qty - max(0, qty),
        unit_price=unit_price,
        savings_per_unit=max(0.0, to_number(current_unit_price) - unit_price),
    )


def format_tier_range(tier: PricingTier) -> str:
    if tier.max_qty:
        return f"{tier.min_qty}-{tier.max_qty} units"
    return f"{tier.min_qty}+ units"


def describe_tier(tier: PricingTier) -> str:
    if tier.strategy is TierStrategy.FIXED_PRICE:
        return f"Fixed price {tier.value:.2f}"
    if tier.strategy is TierStrategy.PERCENT_OFF:
        return f"{tier.value:g}% off"
    return f"{tier.value:.2f} off"
