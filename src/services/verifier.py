"""
Authoritative checkout verification.

Recomputes a submitted checkout payload with the same pricing engine and coupon
rules the client uses, against the catalog the server holds, and answers with
either a success body or a correction body in the /checkout/secure format.

The express surcharge is recomputed here from the base rate; the client's
shipping figure is only compared, never trusted.

`handle` serves the storefront endpoints from this object, so it can stand in
for the backend behind an httpx.MockTransport.
"""

from __future__ import annotations

import itertools
import json
import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple

import httpx

from db.models import (
    Attribute,
    CheckoutErrors,
    Coupon,
    CouponIssue,
    IssueType,
    ProductIssue,
    Product,
    Severity,
    ShippingIssue,
    ShippingMethod,
    SuggestedAction,
    ThresholdPromotion,
    TotalIssue,
    attributes_from,
    to_int,
    to_number,
    utcnow,
)
from pricing.coupons import CouponValidator
from pricing.engine import price_product
from pricing.sale import is_sold_out
from services.api import (
    CART_COUPONS,
    CART_PROMOTIONS,
    CHECKOUT_SECURE,
    COUPON_VALIDATE,
    FLAT_SHIPPING,
    SHIPPING_CALCULATE,
)
from utils.config import settings
from utils.logger import get_logger

_logger = get_logger(__name__)

DEMO_CATALOG = Path(__file__).parent.parent / "db" / "demo_catalog.json"


@dataclass
class _Line:
    cart_item_id: str
    product: Optional[Product]
    qty: int
    attributes: Tuple[Attribute, ...]
    unit_price: float
    claimed_sale: bool


def _parse_line(raw: Dict[str, Any], catalog: Dict[str, Product]) -> _Line:
    product_id = str(raw.get("product", ""))
    return _Line(
        cart_item_id=str(raw.get("cartItemId") or raw.get("_id") or product_id),
        product=catalog.get(product_id),
        qty=max(0, to_int(raw.get("qty"))),
        attributes=attributes_from(raw.get("selectedAttributes")),
        unit_price=to_number(raw.get("unitPrice")),
        claimed_sale=bool(raw.get("sale")),
    )


def _expiry_reason(product: Product, now: datetime) -> str:
    sale = product.sale
    if sale is None or not sale.is_active:
        return "deactivated"
    if is_sold_out(sale):
        return "maxBuysReached"
    if not sale.in_window(now):
        return "endDateReached"
    return "deactivated"


@dataclass
class CheckoutVerifier:
    catalog: Dict[str, Product]
    coupons: CouponValidator = field(default_factory=CouponValidator)
    promotions: Dict[str, ThresholdPromotion] = field(default_factory=dict)
    shipping_rate: float = 0.0
    shipping_days: Optional[int] = None
    express_surcharge: float = field(default_factory=lambda: settings.express_surcharge)
    tolerance: float = field(default_factory=lambda: settings.checkout_tolerance)
    clock: Callable[[], datetime] = utcnow
    currency: str = "NGN"
    orders: List[Dict[str, Any]] = field(default_factory=list)
    _order_ids: Iterator[int] = field(default_factory=lambda: itertools.count(1), repr=False)

    @classmethod
    def from_products(
        cls,
        products: Iterable[Product],
        coupons: Iterable[Coupon] = (),
        promotions: Iterable[ThresholdPromotion] = (),
        **kwargs,
    ):
        return cls(
            catalog={p.id: p for p in products},
            coupons=CouponValidator(coupons),
            promotions={p.id: p for p in promotions},
            **kwargs,
        )

    @classmethod
    def from_json(cls, path: Path = DEMO_CATALOG, **kwargs):
        """Load a whole store catalog from a JSON file."""
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        kwargs.setdefault("shipping_rate", to_number(data.get("shippingRate")))
        if data.get("shippingDays") is not None:
            kwargs.setdefault("shipping_days", to_int(data["shippingDays"]))
        return cls.from_products(
            (Product.from_dict(p) for p in data.get("products") or []),
            (Coupon.from_dict(c) for c in data.get("coupons") or []),
            (ThresholdPromotion.from_dict(p) for p in data.get("promotions") or []),
            **kwargs,
        )

    # ---------------------------
    # Shipping
    # ---------------------------

    def shipping_cost(self, method: ShippingMethod) -> float:
        if method is ShippingMethod.PICKUP:
            return 0.0
        if method is ShippingMethod.EXPRESS:
            return round(self.shipping_rate * self.express_surcharge, 2)
        return self.shipping_rate

    def _eta(self) -> Dict[str, Any]:
        return {} if self.shipping_days is None else {"estimatedDays": self.shipping_days}

    def _differs(self, a: float, b: float) -> bool:
        return abs(a - b) > self.tolerance

    # ---------------------------
    # Per-line checks
    # ---------------------------

    def _stock_for(self, line: _Line) -> Optional[int]:
        stocks = [line.product.stock] if line.product.stock is not None else []
        for attr in line.attributes:
            opt = line.product.option(attr)
            if opt is not None and opt.stock is not None:
                stocks.append(opt.stock)
        return min(stocks) if stocks else None

    def _alternatives(self, line: _Line, bad: Attribute) -> Tuple[Tuple[Attribute, ...], ...]:
        group = next((g for g in line.product.attributes if g.name == bad.name), None)
        if group is None:
            return ()
        return tuple(
            tuple(a if a.name != bad.name else Attribute(bad.name, opt.name) for a in line.attributes)
            for opt in group.options
            if opt.name != bad.value and not opt.is_out_of_stock
        )

    def _check_line(self, line: _Line, now: datetime) -> List[ProductIssue]:
        name = line.product.name if line.product else ""
        base = dict(
            cart_item_id=line.cart_item_id,
            product_id=line.product.id if line.product else "",
            product_name=name,
            current_qty=line.qty,
        )
        if line.product is None:
            return [
                ProductIssue(
                    issue_type=IssueType.OUT_OF_STOCK,
                    severity=Severity.CRITICAL,
                    suggested_action=SuggestedAction.REMOVE,
                    message="Product is no longer available",
                    **base,
                )
            ]

        for attr in line.attributes:
            opt = line.product.option(attr)
            if opt is None or opt.is_out_of_stock:
                alternatives = self._alternatives(line, attr)
                return [
                    ProductIssue(
                        issue_type=IssueType.ATTRIBUTE_UNAVAILABLE,
                        severity=Severity.CRITICAL,
                        suggested_action=SuggestedAction.CHANGE_ATTRIBUTE
                        if alternatives
                        else SuggestedAction.REMOVE,
                        unavailable_attributes=(attr,),
                        available_attributes=alternatives,
                        **base,
                    )
                ]

        stock = self._stock_for(line)
        if stock is not None and stock <= 0:
            return [
                ProductIssue(
                    issue_type=IssueType.OUT_OF_STOCK,
                    severity=Severity.CRITICAL,
                    suggested_action=SuggestedAction.REMOVE,
                    available_stock=0,
                    **base,
                )
            ]

        issues = []
        if stock is not None and line.qty > stock:
            issues.append(
                ProductIssue(
                    issue_type=IssueType.QUANTITY_REDUCED,
                    severity=Severity.WARNING,
                    suggested_action=SuggestedAction.REDUCE_QUANTITY,
                    available_stock=stock,
                    **base,
                )
            )

        priced = price_product(line.product, line.qty, line.attributes, now=now)
        if self._differs(line.unit_price, priced.unit_price):
            expired = line.claimed_sale and not priced.sale.has_active_sale
            issues.append(
                ProductIssue(
                    issue_type=IssueType.SALE_EXPIRED if expired else IssueType.PRICE_CHANGED,
                    severity=Severity.INFO,
                    suggested_action=SuggestedAction.ACCEPT_PRICE,
                    current_price=line.unit_price,
                    corrected_price=priced.unit_price,
                    expiry_reason=_expiry_reason(line.product, now) if expired else None,
                    **base,
                )
            )
        return issues

    # ---------------------------
    # Whole payload
    # ---------------------------

    def _corrected_lines(self, lines: List[_Line], issues: List[ProductIssue]) -> List[_Line]:
        """The cart as it would look after every default correction."""
        by_item: Dict[str, List[ProductIssue]] = {}
        for issue in issues:
            by_item.setdefault(issue.cart_item_id, []).append(issue)

        out = []
        for line in lines:
            keep = line
            for issue in by_item.get(line.cart_item_id, []):
                if issue.suggested_action is SuggestedAction.REMOVE:
                    keep = None
                    break
                if issue.issue_type is IssueType.QUANTITY_REDUCED:
                    keep = replace(keep, qty=issue.available_stock)
                elif issue.issue_type is IssueType.ATTRIBUTE_UNAVAILABLE:
                    keep = replace(keep, attributes=issue.available_attributes[0])
            if keep is not None and keep.product is not None and keep.qty > 0:
                out.append(keep)
        return out

    def _subtotal(self, lines: Iterable[_Line], now: datetime) -> float:
        return sum(price_product(l.product, l.qty, l.attributes, now=now).total_price for l in lines)

    def _coupon_discount(
        self, codes: Iterable[str], subtotal: float, lines: List[_Line], previous: float
    ) -> Tuple[float, List[CouponIssue]]:
        product_ids = [l.product.id for l in lines]
        category_ids = [l.product.category_id for l in lines if l.product.category_id]
        discount, rejected = 0.0, []
        for code in codes:
            result = self.coupons.validate(code, subtotal, product_ids, category_ids)
            if result.valid:
                discount += result.discount
            else:
                rejected.append(CouponIssue(code=code, reason=result.message, previous_discount=previous))
        return min(discount, subtotal), rejected

    def _promotion_discount(self, claimed: Any, subtotal: float) -> float:
        """Only a promotion the store runs counts, and only above its minimum."""
        if not isinstance(claimed, dict):
            return 0.0
        promotion = self.promotions.get(str(claimed.get("_id", "")))
        if promotion is None or subtotal < promotion.min_order_value:
            return 0.0
        return promotion.discount

    def verify(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Recompute `payload` and return the /checkout/secure response body.

        With acceptChanges set, the customer has agreed to server prices:
        priceChanged and saleExpired are not raised again and the claimed totals
        are not compared for lines whose price moved.
        """
        now = self.clock()
        lines = [_parse_line(raw, self.catalog) for raw in payload.get("items") or []]
        method = ShippingMethod(payload.get("shippingMethod") or "normal")
        if payload.get("deliveryType") == "pickup":
            method = ShippingMethod.PICKUP
        accept_changes = bool(payload.get("acceptChanges"))
        codes = [str(c).upper() for c in payload.get("couponCodes") or []]

        issues: List[ProductIssue] = []
        for line in lines:
            issues.extend(self._check_line(line, now))
        price_moved = any(i.suggested_action is SuggestedAction.ACCEPT_PRICE for i in issues)
        if accept_changes:
            issues = [i for i in issues if i.suggested_action is not SuggestedAction.ACCEPT_PRICE]

        corrected = self._corrected_lines(lines, issues)
        subtotal = self._subtotal(corrected, now)
        coupon_discount, coupon_issues = self._coupon_discount(
            codes, subtotal, corrected, to_number(payload.get("totalDiscount"))
        )
        promotion_discount = self._promotion_discount(payload.get("promotion"), subtotal)
        discount = min(coupon_discount + promotion_discount, subtotal)

        shipping = self.shipping_cost(method)
        claimed_shipping = to_number(payload.get("shippingCost"))
        shipping_issue = None
        if self._differs(claimed_shipping, shipping):
            shipping_issue = ShippingIssue(
                previous_cost=claimed_shipping,
                current_cost=shipping,
                reason="Shipping cost recalculated",
            )

        total = subtotal - discount + shipping
        summary = {
            "itemsRemaining": len(corrected),
            "newSubtotal": subtotal,
            "newTotal": total,
            "shippingCost": shipping,
            "deliveryType": method.delivery_type,
            "couponDiscount": coupon_discount,
            "promotionDiscount": promotion_discount,
        }

        if issues or coupon_issues or shipping_issue:
            errors = CheckoutErrors(
                products=tuple(issues), coupons=tuple(coupon_issues), shipping=shipping_issue
            )
            _logger.info(f"checkout needs correction: {len(issues)} item issue(s)")
            return {"needsUpdate": True, "errors": errors.to_dict(), "summary": summary}

        claimed_total = to_number(payload.get("total"), default=math.nan)
        claimed_subtotal = to_number(payload.get("subtotal"), default=math.nan)
        accepted = accept_changes and price_moved
        if not accepted and (
            math.isnan(claimed_total)
            or self._differs(claimed_total, total)
            or self._differs(claimed_subtotal, subtotal)
        ):
            mismatch = TotalIssue(
                expected_total=0.0 if math.isnan(claimed_total) else claimed_total,
                calculated_total=total,
                message="Order total does not match the server calculation.",
            )
            _logger.warning(f"checkout total mismatch: {mismatch.discrepancy:+.2f}")
            return {
                "needsUpdate": True,
                "errors": CheckoutErrors(total=mismatch).to_dict(),
                "summary": summary,
            }

        order_id = f"ORD-{next(self._order_ids):06d}"
        payment = None
        if payload.get("paymentMethod") != "cashOnDelivery":
            payment = {
                "paymentUrl": f"https://pay.example.test/{order_id}",
                "reference": f"REF-{order_id}",
                "transactionId": f"TX-{order_id}",
                "access_code": f"AC-{order_id}",
            }
        body = {
            "orderId": order_id,
            "payment": payment,
            "summary": {
                "total": total,
                "subtotal": subtotal,
                "couponDiscount": coupon_discount,
                "promotionDiscount": promotion_discount,
                "shippingCost": shipping,
                "itemCount": sum(l.qty for l in corrected),
                "deliveryType": method.delivery_type,
            },
        }
        self.orders.append(body)
        _logger.info(f"checkout accepted as {order_id}")
        return body

    # ---------------------------
    # Endpoint dispatch
    # ---------------------------

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        body = json.loads(request.content or b"{}") if request.method == "POST" else {}

        if path.endswith(CHECKOUT_SECURE):
            return httpx.Response(200, json=self.verify(body))
        if path.endswith(SHIPPING_CALCULATE):
            return httpx.Response(
                200,
                json={
                    "shippingCost": self.shipping_rate,
                    "deliveryType": "shipping",
                    "currency": self.currency,
                    **self._eta(),
                },
            )
        if path.endswith(FLAT_SHIPPING):
            return httpx.Response(
                200, json={"amount": self.shipping_rate, "currency": self.currency, **self._eta()}
            )
        if path.endswith(CART_COUPONS):
            return httpx.Response(
                200, json={"success": True, "data": [c.to_dict() for c in self.coupons.cart_page()]}
            )
        if path.endswith(CART_PROMOTIONS):
            return httpx.Response(
                200, json={"success": True, "data": [p.to_dict() for p in self.promotions.values()]}
            )
        if path.endswith(COUPON_VALIDATE):
            result = self.coupons.validate(
                str(body.get("code", "")),
                to_number(body.get("orderTotal")),
                body.get("productIds") or [],
                body.get("categoryIds") or [],
            )
            if not result.valid:
                return httpx.Response(400, json={"success": False, "valid": False, "message": result.message})
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "valid": True,
                    "message": result.message,
                    "data": {"discount": result.discount, "coupon": result.coupon.to_dict()},
                },
            )
        # cart and wishlist sync are accepted as-is
        return httpx.Response(200, json={"success": True})
