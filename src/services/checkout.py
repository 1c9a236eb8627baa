"""
Checkout submission and correction handling.

    IDLE -> SUBMITTING -> SUCCESS | NEEDS_CORRECTION | BLOCKED

A correction is resolved one product issue at a time (or all at once with
accept_all). Once nothing is pending the reconciler drops back to IDLE and
waits for the user to submit again; it never resubmits by itself.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from db.models import (
    Attribute,
    CartItem,
    CheckoutBlocked,
    CheckoutCorrection,
    CheckoutOutcome,
    CheckoutSuccess,
    ShippingMethod,
    ShippingQuote,
)
from pricing.engine import price
from services.api import ApiClient
from services.corrections import CorrectionSet, format_issue_message, mutation_for
from services.shipping import ShippingCostNegotiator
from utils.errors import CheckoutStateError, TransportError
from utils.logger import get_logger
from utils.pure import format_price
from utils.state import GlobalState

_logger = get_logger(__name__)

EMPTY_CART = "Your cart is empty."
SHIPPING_REQUIRED = "Please calculate shipping before proceeding."


class CheckoutState(str, Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    SUCCESS = "success"
    NEEDS_CORRECTION = "needsCorrection"
    BLOCKED = "blocked"


def item_payload(item: CartItem) -> Dict[str, Any]:
    line = price(item)
    product = item.product
    return {
        "cartItemId": item.cart_item_id,
        "product": product.id,
        "qty": item.qty,
        "selectedAttributes": [a.to_dict() for a in item.selected_attributes],
        "unitPrice": line.unit_price,
        "totalPrice": line.total_price,
        "sale": product.sale.id if line.sale.has_active_sale and product.sale else None,
        "saleVariantIndex": item.selected_variant,
        "appliedDiscount": line.applied_discount,
        "saleDiscount": line.sale_discount,
        "tierDiscount": line.tier_discount,
        "pricingTier": line.pricing_tier.to_dict() if line.pricing_tier else None,
        "discountAmount": line.discount_amount,
        "productSnapshot": {"name": product.name or "Product", "price": product.price, "sku": product.sku},
    }


class CheckoutReconciler:
    def __init__(
        self,
        api: ApiClient,
        state: GlobalState,
        shipping: ShippingCostNegotiator,
        on_change: Optional[Callable[["CheckoutReconciler"], None]] = None,
    ):
        self._api = api
        self._state = state
        self._shipping = shipping
        self._on_change = on_change
        self.status = CheckoutState.IDLE
        self.error: Optional[str] = None
        self.notice: Optional[str] = None
        self.corrections: Optional[CorrectionSet] = None
        self.order: Optional[CheckoutSuccess] = None
        self.blocked: Optional[CheckoutBlocked] = None
        self._accept_changes = False

    def _set(self, status: CheckoutState) -> None:
        if status is not self.status:
            _logger.debug(f"checkout {self.status.value} -> {status.value}")
        self.status = status
        if self._on_change:
            self._on_change(self)

    # ---------------------------
    # Submission
    # ---------------------------

    @property
    def can_submit(self) -> bool:
        if self.status in (CheckoutState.SUBMITTING, CheckoutState.BLOCKED):
            return False
        return self.corrections is None or self.corrections.is_complete

    def current_quote(self) -> Optional[ShippingQuote]:
        s = self._state
        return self._shipping.quote_for(s.destination, s.cart.items, s.method)

    def build_payload(
        self, quote: ShippingQuote, payment_method: str = "paystack", notes: str = ""
    ) -> Dict[str, Any]:
        s = self._state
        totals = s.cart.totals()
        discount = min(s.discounts.discount_cart, totals.subtotal)
        delivery_type = s.method.delivery_type
        shipping_cost = quote.cost if delivery_type == "shipping" else 0.0
        estimated: Dict[str, Any] = {"cost": shipping_cost}
        if delivery_type == "shipping" and quote.eta_days is not None:
            estimated["days"] = quote.eta_days

        payload: Dict[str, Any] = {
            "items": [item_payload(i) for i in s.cart.items],
            "paymentMethod": payment_method,
            "couponCodes": s.discounts.coupon_codes,
            "promotion": s.discounts.promotion.to_dict() if s.discounts.promotion else None,
            "taxPrice": 0,
            "subtotal": totals.subtotal,
            "total": totals.subtotal - discount + shipping_cost,
            "totalDiscount": discount,
            "estimatedShipping": estimated,
            "deliveryType": delivery_type,
            "shippingMethod": s.method.value,
            "shippingCost": shipping_cost,
            "acceptChanges": self._accept_changes,
            "notes": notes,
        }
        if delivery_type == "shipping" and s.destination is not None:
            payload["shippingAddress"] = s.destination.to_dict()
        return payload

    async def submit(self, payment_method: str = "paystack", notes: str = "") -> Optional[CheckoutOutcome]:
        """
        Send the cart to /checkout/secure.

        Returns the parsed outcome, or None when the submission never left the
        client (empty cart, missing quote, transport failure); `error` says why.
        Raises CheckoutStateError when called while a submission is running,
        while corrections are pending, or while blocked.
        """
        if self.status is CheckoutState.SUBMITTING:
            raise CheckoutStateError("A checkout submission is already in progress")
        if self.status is CheckoutState.BLOCKED:
            raise CheckoutStateError("Checkout is blocked until the cart is refreshed")
        if self.corrections is not None and not self.corrections.is_complete:
            raise CheckoutStateError("Review the pending corrections before resubmitting")

        self.error = None
        self.notice = None
        self.corrections = None
        if self._state.cart.is_empty:
            self.error = EMPTY_CART
            self._set(CheckoutState.IDLE)
            return None
        quote = self.current_quote()
        if quote is None:
            self.error = SHIPPING_REQUIRED
            self._set(CheckoutState.IDLE)
            return None

        payload = self.build_payload(quote, payment_method, notes)
        self._set(CheckoutState.SUBMITTING)
        try:
            outcome = await self._api.submit_checkout(payload)
            self._accept_changes = False
            match outcome:
                case CheckoutSuccess():
                    await self._succeed(outcome)
                case CheckoutCorrection():
                    self._needs_correction(outcome)
                case CheckoutBlocked():
                    self.blocked = outcome
                    self.error = outcome.reason
                    self._set(CheckoutState.BLOCKED)
            return outcome
        except TransportError as e:
            _logger.warning(f"checkout failed: {e.message}")
            self.error = e.message
            return None
        finally:
            # never left in SUBMITTING, not even by an unexpected error
            if self.status is CheckoutState.SUBMITTING:
                self._set(CheckoutState.IDLE)

    async def _succeed(self, outcome: CheckoutSuccess) -> None:
        s = self._state
        reference = outcome.payment.reference if outcome.payment else ""
        await s.payments.record(reference or outcome.order_id, outcome.order_id)
        await s.cart.clear()
        s.discounts.reset()
        self._shipping.reset()
        self.order = outcome
        _logger.info(f"order {outcome.order_id} placed")
        self._set(CheckoutState.SUCCESS)

    def _needs_correction(self, outcome: CheckoutCorrection) -> None:
        self.corrections = CorrectionSet(outcome)
        errors = outcome.errors
        notes: List[str] = []
        for c in errors.coupons:
            notes.append(f"Coupon {c.code}: {c.reason}")
        if errors.shipping:
            notes.append(
                f"Shipping changed from {format_price(errors.shipping.previous_cost)} "
                f"to {format_price(errors.shipping.current_cost)}"
            )
        self.notice = "; ".join(notes) or None
        _logger.info(
            f"checkout needs correction: {len(errors.products)} item issue(s), "
            f"blocking={self.corrections.is_blocking}"
        )
        self._set(CheckoutState.NEEDS_CORRECTION)

    # ---------------------------
    # Corrections
    # ---------------------------

    def _require_corrections(self) -> CorrectionSet:
        if self.status is CheckoutState.SUBMITTING:
            raise CheckoutStateError("Cannot change the cart while a submission is in progress")
        if self.corrections is None:
            raise CheckoutStateError("There are no corrections to resolve")
        return self.corrections

    def issue_messages(self) -> List[str]:
        if self.corrections is None:
            return []
        return [format_issue_message(issue) for issue in self.corrections.issues]

    @property
    def needs_review(self) -> bool:
        """Some issue changes what is bought, so the full review has to open."""
        return self.corrections is not None and self.corrections.is_blocking

    def inline_notice(self) -> str:
        parts = self.issue_messages()
        if self.notice:
            parts.append(self.notice)
        return "; ".join(parts)

    async def resolve_issue(self, index: int, choice: Optional[Sequence[Attribute]] = None) -> bool:
        """Apply the mutation for one product issue."""
        corrections = self._require_corrections()
        if not 0 <= index < len(corrections.issues):
            raise IndexError(f"no issue at index {index}")
        if corrections.is_resolved(index):
            return True
        mutation = mutation_for(corrections.issues[index], choice)
        if not await self._state.cart.apply(mutation):
            self.error = self._state.cart.error
            return False
        corrections.mark_resolved(index, mutation)
        corrections.prune(i.cart_item_id for i in self._state.cart.items)
        if corrections.is_complete:
            self._settle()
        elif self._on_change:
            self._on_change(self)
        return True

    async def accept_all(self) -> bool:
        """Resolve every pending issue with its default mutation."""
        corrections = self._require_corrections()
        for index, _ in corrections.pending():
            if corrections.is_resolved(index):
                continue
            mutation = mutation_for(corrections.issues[index])
            if not await self._state.cart.apply(mutation):
                self.error = self._state.cart.error
                return False
            corrections.mark_resolved(index, mutation)
            corrections.prune(i.cart_item_id for i in self._state.cart.items)
        self._settle()
        return True

    def _settle(self) -> None:
        """All item issues handled: take the server's coupon and shipping verdicts."""
        corrections = self.corrections
        if corrections is None:
            return
        s = self._state
        errors = corrections.correction.errors
        summary = corrections.correction.summary

        rejected = {c.code.upper() for c in errors.coupons}
        if s.discounts.coupon and s.discounts.coupon.code.upper() in rejected:
            s.discounts.remove_coupon()

        if s.method is not ShippingMethod.PICKUP and not s.cart.is_empty:
            cost = errors.shipping.current_cost if errors.shipping else summary.shipping_cost
            self._shipping.adopt(cost, s.destination, s.cart.items, s.method)

        self.corrections = None
        self.notice = None
        self._accept_changes = True
        self._set(CheckoutState.IDLE)

    def dismiss(self) -> None:
        """Close the review without touching the cart."""
        self._require_corrections()
        self.corrections = None
        self.notice = None
        self._set(CheckoutState.IDLE)

    async def refresh(self) -> None:
        """Reload the cart from storage and drop any blocked or stale checkout state."""
        if self.status is CheckoutState.SUBMITTING:
            raise CheckoutStateError("Cannot refresh while a submission is in progress")
        await self._state.cart.load()
        self._shipping.reset()
        self.corrections = None
        self.blocked = None
        self.error = None
        self.notice = None
        self._set(CheckoutState.IDLE)
