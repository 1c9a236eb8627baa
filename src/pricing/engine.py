"""
Line pricing of record.

Composition order, each step feeding the next:

1. effective base = attribute price override of the selection, else product price
2. sale multiplier from the sale resolver, against the effective base
3. tier base price from the tier resolver, against the *pre-sale* effective base
4. unit price = tier base * sale multiplier, floored at 0
5. line total = unit price * quantity

Sales and tiers never compound against each other's discounted figure. Nothing
is rounded here; rounding happens at display time only. `price` never raises.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Sequence

from db.models import Attribute, CartItem, PricingTier, Product, to_int, to_number
from pricing.sale import SaleResult, resolve_sale
from pricing.tiers import calculate_tier_base_price, find_tier, normalize_tiers


@dataclass(frozen=True)
class LinePrice:
    unit_price: float
    total_price: float
    base_price: float  # effective base, after attribute override
    sale_discount: float  # percent, sale only
    tier_discount: float  # percent, tier only
    applied_discount: float  # percent, combined
    discount_amount: float  # (base - unit) * qty
    pricing_tier: Optional[PricingTier]
    tier_base_price: float
    sale: SaleResult
    quantity: int

    @property
    def has_discount(self) -> bool:
        return self.unit_price < self.base_price


def effective_base_price(product: Product, selected: Sequence[Attribute] = ()) -> float:
    """Product price, replaced by the first selected option that carries its own price."""
    for attr in selected or ():
        opt = product.option(attr)
        if opt is not None and opt.price is not None and to_number(opt.price) > 0:
            return to_number(opt.price)
    return max(0.0, to_number(product.price))


def _percent(part: float, whole: float) -> float:
    if whole <= 0:
        return 0.0
    return max(0.0, min(100.0, part / whole * 100))


def price_product(
    product: Product,
    quantity: int,
    selected: Sequence[Attribute] = (),
    now: Optional[datetime] = None,
) -> LinePrice:
    qty = max(0, to_int(quantity))
    base = effective_base_price(product, selected)

    sale = resolve_sale(product.sale, base, selected, quantity=qty, now=now)
    multiplier = min(1.0, max(0.0, to_number(sale.multiplier, default=1.0)))

    tier = find_tier(normalize_tiers(product.pricing_tiers), qty)
    tier_base = calculate_tier_base_price(base, tier)

    unit = max(0.0, tier_base * multiplier)
    return LinePrice(
        unit_price=unit,
        total_price=unit * qty,
        base_price=base,
        sale_discount=(1 - multiplier) * 100 if sale.has_active_sale else 0.0,
        tier_discount=_percent(base - tier_base, base) if tier else 0.0,
        applied_discount=_percent(base - unit, base),
        discount_amount=max(0.0, base - unit) * qty,
        pricing_tier=tier,
        tier_base_price=tier_base,
        sale=sale,
        quantity=qty,
    )


def price(item: CartItem, quantity: Optional[int] = None, now: Optional[datetime] = None) -> LinePrice:
    """Price a cart line, optionally at a quantity other than the stored one."""
    qty = item.qty if quantity is None else quantity
    return price_product(item.product, qty, item.selected_attributes, now=now)


@dataclass(frozen=True)
class CartTotals:
    subtotal: float
    total_discount: float
    item_count: int


def cart_totals(items: Iterable[CartItem], now: Optional[datetime] = None) -> CartTotals:
    subtotal = 0.0
    total_discount = 0.0
    count = 0
    for item in items:
        line = price(item, now=now)
        subtotal += line.total_price
        total_discount += line.discount_amount
        count += line.quantity
    return CartTotals(subtotal=subtotal, total_discount=total_discount, item_count=count)
