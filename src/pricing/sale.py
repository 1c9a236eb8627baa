"""
Sale resolution: which discount of a product sale applies to a selection.

Variant scope, most specific first:
  - exact: attribute name and value both set, must match a selected attribute
  - attribute-wide: name set, value None/"All"; matches any value of that
    attribute (or no selection at all)
  - global: name None/"All"; always applies, same as the sale's own discount

The most specific applicable candidate wins; among equally specific ones the
larger saving wins. Capped variants drop out once ``bought_count >= max_buys``
or when the requested quantity exceeds what is left.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Sequence, Tuple, Union

from db.models import Attribute, ProductSale, SaleType, SaleVariant, to_number, utcnow

Selection = Union[Attribute, Sequence[Attribute], None]

EXACT, ATTRIBUTE_WIDE, GLOBAL = 2, 1, 0


@dataclass(frozen=True)
class SaleResult:
    has_active_sale: bool
    original_price: float
    discounted_price: float
    percent_off: int  # display only, 0..100
    amount_off: float
    multiplier: float  # discounted / original, computed from the raw discount
    best_variant: Optional[SaleVariant] = None
    sold_quantity: int = 0
    available_stock: int = 0
    percent_sold: int = 0
    show_progress: bool = False
    ends_at: Optional[datetime] = None


@dataclass(frozen=True)
class _Candidate:
    specificity: int
    discounted: float
    multiplier: float
    percent_off: int
    variant: Optional[SaleVariant]


def _selection(selected: Selection) -> Tuple[Attribute, ...]:
    if selected is None:
        return ()
    if isinstance(selected, Attribute):
        return (selected,)
    return tuple(selected)


def _same(a: Optional[str], b: Optional[str]) -> bool:
    return str(a or "").strip().lower() == str(b or "").strip().lower()


def _specificity(variant: SaleVariant, selection: Tuple[Attribute, ...]) -> Optional[int]:
    if variant.is_global:
        return GLOBAL
    if variant.is_attribute_wide:
        if not selection or any(_same(a.name, variant.attribute_name) for a in selection):
            return ATTRIBUTE_WIDE
        return None
    if any(
        _same(a.name, variant.attribute_name) and _same(a.value, variant.attribute_value)
        for a in selection
    ):
        return EXACT
    return None


def _outcome(
    base: float, percent: float, amount: float, specificity: int, variant=None
) -> Optional[_Candidate]:
    percent = min(max(0.0, to_number(percent)), 100.0)
    amount = max(0.0, to_number(amount))
    if percent <= 0 and amount <= 0:
        return None

    by_percent = base * (1 - percent / 100) if percent > 0 else None
    by_amount = max(0.0, base - amount) if amount > 0 else None

    if by_percent is not None and (by_amount is None or by_percent <= by_amount):
        return _Candidate(
            specificity=specificity,
            discounted=by_percent,
            multiplier=1 - percent / 100,
            percent_off=int(round(percent)),
            variant=variant,
        )
    if base <= 0:
        return _Candidate(specificity, 0.0, 1.0, 0, variant)
    multiplier = (base - min(amount, base)) / base
    return _Candidate(
        specificity=specificity,
        discounted=by_amount,
        multiplier=multiplier,
        percent_off=min(100, max(0, int(round(amount / base * 100)))),
        variant=variant,
    )


def sale_progress(sale: Optional[ProductSale]) -> Tuple[int, int, int]:
    """(sold, available, percent_sold) summed over all variants."""
    if not sale or not sale.variants:
        return 0, 0, 0
    sold = sum(max(0, v.bought_count) for v in sale.variants)
    capacity = sum(max(0, v.max_buys) for v in sale.variants)
    available = sum(v.remaining or 0 for v in sale.variants)
    if capacity == 0:
        return sold, available, 0
    return sold, available, min(100, int(sold * 100 // capacity))


def is_sold_out(sale: Optional[ProductSale]) -> bool:
    if not sale or not sale.variants:
        return False
    capacity = sum(max(0, v.max_buys) for v in sale.variants)
    if capacity == 0:
        return False
    return sum(v.bought_count for v in sale.variants) >= capacity


def is_sale_live(sale: Optional[ProductSale], now: Optional[datetime] = None) -> bool:
    if not sale or not sale.is_active:
        return False
    return sale.in_window(now or utcnow()) and not is_sold_out(sale)


def flash_countdown(sale: Optional[ProductSale], now: Optional[datetime] = None) -> Optional[timedelta]:
    if not sale or sale.type is not SaleType.FLASH or not sale.end_date:
        return None
    return max(timedelta(0), sale.end_date - (now or utcnow()))


def resolve_sale(
    sale: Optional[ProductSale],
    base_price: float,
    selected: Selection = None,
    quantity: Optional[int] = None,
    now: Optional[datetime] = None,
) -> SaleResult:
    base = max(0.0, to_number(base_price))
    now = now or utcnow()
    sold, available, percent_sold = sale_progress(sale)
    live = is_sale_live(sale, now)

    result = SaleResult(
        has_active_sale=False,
        original_price=base,
        discounted_price=base,
        percent_off=0,
        amount_off=0.0,
        multiplier=1.0,
        sold_quantity=sold,
        available_stock=available,
        percent_sold=percent_sold,
        show_progress=live and sale.is_hot,
        ends_at=sale.end_date if sale and sale.type is SaleType.FLASH else None,
    )
    if not live:
        return result

    selection = _selection(selected)
    candidates = []
    general = _outcome(base, sale.discount, sale.amount_off, GLOBAL)
    if general:
        candidates.append(general)

    for variant in sale.variants:
        if variant.exhausted:
            continue
        remaining = variant.remaining
        if remaining is not None and quantity is not None and quantity > remaining:
            continue
        specificity = _specificity(variant, selection)
        if specificity is None:
            continue
        cand = _outcome(base, variant.discount, variant.amount_off, specificity, variant)
        if cand:
            candidates.append(cand)

    if not candidates:
        return result

    best = max(candidates, key=lambda c: (c.specificity, base - c.discounted))
    return SaleResult(
        has_active_sale=True,
        original_price=base,
        discounted_price=best.discounted,
        percent_off=best.percent_off,
        amount_off=base - best.discounted,
        multiplier=best.multiplier,
        best_variant=best.variant,
        sold_quantity=sold,
        available_stock=available,
        percent_sold=percent_sold,
        show_progress=result.show_progress,
        ends_at=result.ends_at,
    )
