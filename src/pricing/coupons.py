"""
Coupon eligibility and cart discount slots.

Rules are checked in order and the first failure is returned as data:
window/usage, minimum order, scope, stacking.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from db.models import Coupon, CouponScope, DiscountType, ThresholdPromotion, to_number, utcnow
from utils.pure import format_percent, format_price


class CouponRejection(str, Enum):
    NOT_FOUND = "notFound"
    EXPIRED = "expired"
    NOT_STARTED = "notStarted"
    USAGE_LIMIT = "usageLimit"
    BELOW_MINIMUM = "belowMinimum"
    OUT_OF_SCOPE = "outOfScope"
    NOT_STACKABLE = "notStackable"
    REJECTED = "rejected"  # remote validation said no without a typed reason


@dataclass(frozen=True)
class CouponResult:
    valid: bool
    discount: float = 0.0
    message: str = ""
    reason: Optional[CouponRejection] = None
    coupon: Optional[Coupon] = None


def _reject(reason: CouponRejection, message: str, coupon: Optional[Coupon] = None) -> CouponResult:
    return CouponResult(valid=False, discount=0.0, message=message, reason=reason, coupon=coupon)


def compute_discount(coupon: Coupon, order_total: float) -> float:
    total = max(0.0, to_number(order_total))
    value = max(0.0, to_number(coupon.discount))
    if coupon.discount_type is DiscountType.PERCENTAGE:
        discount = total * min(value, 100.0) / 100
        if coupon.max_discount_amount:
            discount = min(discount, coupon.max_discount_amount)
        return discount
    return min(value, total)


def describe_coupon(coupon: Coupon) -> str:
    if coupon.description:
        return coupon.description
    if coupon.discount_type is DiscountType.PERCENTAGE:
        text = f"{format_percent(coupon.discount)} off"
        if coupon.max_discount_amount:
            text += f", up to {format_price(coupon.max_discount_amount)}"
    else:
        text = f"{format_price(coupon.discount)} off"
    if coupon.min_order_value > 0:
        text += f" on orders from {format_price(coupon.min_order_value)}"
    return text


def in_scope(coupon: Coupon, product_ids: Iterable[str], category_ids: Iterable[str]) -> bool:
    if coupon.scope is CouponScope.PRODUCTS:
        return bool(set(coupon.product_ids) & {str(p) for p in product_ids})
    if coupon.scope is CouponScope.CATEGORIES:
        return bool(set(coupon.category_ids) & {str(c) for c in category_ids})
    return True


class CouponValidator:
    """Validates codes against a known set of coupons."""

    def __init__(self, coupons: Iterable[Coupon] = (), clock: Callable[[], datetime] = utcnow):
        self._coupons: Dict[str, Coupon] = {}
        self._clock = clock
        for coupon in coupons:
            self.add(coupon)

    def add(self, coupon: Coupon) -> None:
        self._coupons[coupon.code.upper()] = coupon

    def get(self, code: str) -> Optional[Coupon]:
        return self._coupons.get((code or "").strip().upper())

    def cart_page(self) -> List[Coupon]:
        """Coupons flagged for the cart page that can be used right now."""
        now = self._clock()
        return [
            c
            for c in self._coupons.values()
            if c.show_on_cart_page
            and c.active
            and not (c.end_date and now > c.end_date)
            and not (c.start_date and now < c.start_date)
            and (c.max_usage is None or c.used_count < c.max_usage)
        ]

    def validate(
        self,
        code: str,
        order_total: float,
        product_ids: Sequence[str] = (),
        category_ids: Sequence[str] = (),
        active: Sequence[Coupon] = (),
        replace: bool = True,
    ) -> CouponResult:
        """
        `active` are coupons already applied to the cart. With replace=True
        (manual entry and catalog application both do this) the new code takes
        the single discount slot; otherwise it must stack with every active one.
        """
        coupon = self.get(code)
        if coupon is None:
            return _reject(CouponRejection.NOT_FOUND, "Invalid coupon code")

        now = self._clock()
        if not coupon.active or (coupon.end_date and now > coupon.end_date):
            return _reject(CouponRejection.EXPIRED, "Coupon has expired", coupon)
        if coupon.start_date and now < coupon.start_date:
            return _reject(CouponRejection.NOT_STARTED, "Coupon is not active yet", coupon)
        if coupon.max_usage is not None and coupon.used_count >= coupon.max_usage:
            return _reject(CouponRejection.USAGE_LIMIT, "Coupon usage limit reached", coupon)

        total = max(0.0, to_number(order_total))
        if total < coupon.min_order_value:
            return _reject(
                CouponRejection.BELOW_MINIMUM,
                f"Minimum order must be {format_price(coupon.min_order_value)}",
                coupon,
            )

        if not in_scope(coupon, product_ids, category_ids):
            return _reject(
                CouponRejection.OUT_OF_SCOPE,
                "Coupon does not apply to any item in your cart",
                coupon,
            )

        if not replace:
            for other in active:
                if other.code == coupon.code:
                    continue
                if not (other.stackable and coupon.stackable):
                    return _reject(
                        CouponRejection.NOT_STACKABLE,
                        f"Coupon cannot be combined with {other.code}",
                        coupon,
                    )

        discount = compute_discount(coupon, total)
        return CouponResult(
            valid=True,
            discount=discount,
            message=f"Coupon {coupon.code} applied",
            coupon=coupon,
        )


def coupon_result_from_response(data: Dict[str, Any]) -> CouponResult:
    """Map a /coupons/validate body to a CouponResult."""
    payload = data.get("data") or {}
    if data.get("success") and data.get("valid") and payload:
        coupon = Coupon.from_dict(payload.get("coupon") or {})
        return CouponResult(
            valid=True,
            discount=max(0.0, to_number(payload.get("discount"))),
            message=str(data.get("message") or f"Coupon {coupon.code} applied"),
            coupon=coupon,
        )
    return _reject(CouponRejection.REJECTED, str(data.get("message") or "Coupon cannot be applied"))


@dataclass
class DiscountSlots:
    """
    One coupon slot plus an independent threshold promotion.

    Applying a coupon replaces whatever coupon held the slot and clears the
    threshold promotion; a threshold promotion applied afterwards coexists
    with the coupon.
    """

    coupon: Optional[Coupon] = None
    coupon_discount: float = 0.0
    threshold_min: float = 0.0
    threshold_discount: float = 0.0
    promotion: Optional[ThresholdPromotion] = None
    error: Optional[str] = None

    @property
    def discount_cart(self) -> float:
        return self.coupon_discount + self.threshold_discount

    @property
    def coupon_codes(self) -> List[str]:
        return [self.coupon.code] if self.coupon else []

    def apply_coupon(self, result: CouponResult) -> bool:
        if not result.valid or result.coupon is None:
            self.error = result.message or "Coupon cannot be applied"
            return False
        self.coupon = result.coupon
        self.coupon_discount = result.discount
        self._clear_threshold()
        self.error = None
        return True

    def remove_coupon(self) -> None:
        self.coupon = None
        self.coupon_discount = 0.0
        self.error = None

    def apply_threshold(self, subtotal: float, min_value: float, discount: float) -> bool:
        if to_number(subtotal) < min_value:
            self.error = f"Minimum order must be {format_price(min_value)}"
            return False
        self.threshold_min = min_value
        self.threshold_discount = max(0.0, to_number(discount))
        self.promotion = None
        self.error = None
        return True

    def apply_promotion(self, subtotal: float, promotion: ThresholdPromotion) -> bool:
        if not self.apply_threshold(subtotal, promotion.min_order_value, promotion.discount):
            return False
        self.promotion = promotion
        return True

    def _clear_threshold(self) -> None:
        self.threshold_min = 0.0
        self.threshold_discount = 0.0
        self.promotion = None

    def on_subtotal_changed(self, subtotal: float) -> None:
        """Drop discounts whose minimum is no longer met and re-size the coupon."""
        subtotal = max(0.0, to_number(subtotal))
        if self.threshold_min > 0 and subtotal < self.threshold_min:
            self._clear_threshold()
        if self.coupon is None:
            return
        if subtotal < self.coupon.min_order_value:
            self.error = f"Coupon {self.coupon.code} removed: minimum order is {format_price(self.coupon.min_order_value)}"
            self.coupon = None
            self.coupon_discount = 0.0
            return
        if self.coupon.discount > 0:
            self.coupon_discount = compute_discount(self.coupon, subtotal)

    def reset(self) -> None:
        self.coupon = None
        self.coupon_discount = 0.0
        self._clear_threshold()
        self.error = None
