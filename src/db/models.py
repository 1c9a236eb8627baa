# provide dataclass models, plus mappers from/to the storefront JSON wire format

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple


def to_number(val: Any, default: float = 0.0) -> float:
    """Coerce to a finite float; anything else becomes `default`."""
    if isinstance(val, bool):
        return default
    try:
        num = float(val)
    except (TypeError, ValueError):
        return default
    return num if math.isfinite(num) else default


def to_int(val: Any, default: int = 0) -> int:
    num = to_number(val, float(default))
    return int(num)


def parse_datetime(val: Any) -> Optional[datetime]:
    """Parse ISO timestamps; naive values are taken as UTC."""
    if val is None or val == "":
        return None
    if isinstance(val, datetime):
        dt = val
    else:
        try:
            dt = datetime.fromisoformat(str(val).replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_datetime(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_wildcard(val: Any) -> bool:
    return val is None or (isinstance(val, str) and val.strip().lower() in ("", "all"))


# ---------------------------
# Enumerations
# ---------------------------


class SaleType(str, Enum):
    FLASH = "Flash"
    LIMITED = "Limited"
    NORMAL = "Normal"

    @classmethod
    def parse(cls, val: Any) -> "SaleType":
        for member in cls:
            if str(val).lower() == member.value.lower():
                return member
        return cls.NORMAL


class TierStrategy(str, Enum):
    FIXED_PRICE = "fixedPrice"
    PERCENT_OFF = "percentOff"
    AMOUNT_OFF = "amountOff"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixedAmount"

    @classmethod
    def parse(cls, val: Any) -> "DiscountType":
        if str(val).lower() in ("fixed", "fixedamount", "amount"):
            return cls.FIXED_AMOUNT
        return cls.PERCENTAGE


class CouponScope(str, Enum):
    ALL = "all"
    PRODUCTS = "products"
    CATEGORIES = "categories"

    @classmethod
    def parse(cls, val: Any) -> "CouponScope":
        val = str(val or "").lower()
        if val in ("product", "products"):
            return cls.PRODUCTS
        if val in ("category", "categories"):
            return cls.CATEGORIES
        return cls.ALL


class ShippingMethod(str, Enum):
    PICKUP = "pickup"
    NORMAL = "normal"
    EXPRESS = "express"

    @property
    def delivery_type(self) -> str:
        return "pickup" if self is ShippingMethod.PICKUP else "shipping"


class IssueType(str, Enum):
    OUT_OF_STOCK = "outOfStock"
    QUANTITY_REDUCED = "quantityReduced"
    ATTRIBUTE_UNAVAILABLE = "attributeUnavailable"
    PRICE_CHANGED = "priceChanged"
    SALE_EXPIRED = "saleExpired"


class Severity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


class SuggestedAction(str, Enum):
    REMOVE = "remove"
    REDUCE_QUANTITY = "reduceQuantity"
    CHANGE_ATTRIBUTE = "changeAttribute"
    ACCEPT_PRICE = "acceptPrice"


# ---------------------------
# Catalog
# ---------------------------


@dataclass(frozen=True)
class Attribute:
    name: str
    value: str

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "value": self.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Attribute":
        return cls(name=str(data.get("name", "")), value=str(data.get("value", "")))


def attributes_from(data: Optional[Iterable[Dict[str, Any]]]) -> Tuple[Attribute, ...]:
    return tuple(Attribute.from_dict(a) for a in (data or []))


def attributes_key(attrs: Iterable[Attribute]) -> Tuple[Tuple[str, str], ...]:
    """Order-insensitive identity of an attribute set."""
    return tuple(sorted((a.name, a.value) for a in attrs))


@dataclass(frozen=True)
class AttributeOption:
    name: str
    price: Optional[float] = None  # price override for this option, None = product price
    stock: Optional[int] = None

    @property
    def is_out_of_stock(self) -> bool:
        return self.stock is not None and self.stock <= 0


@dataclass(frozen=True)
class AttributeGroup:
    name: str
    options: Tuple[AttributeOption, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "children": [
                {"name": o.name, "price": o.price, "stock": o.stock} for o in self.options
            ],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AttributeGroup":
        options = tuple(
            AttributeOption(
                name=str(c.get("name", "")),
                price=None if c.get("price") is None else to_number(c.get("price")),
                stock=None if c.get("stock") is None else to_int(c.get("stock")),
            )
            for c in data.get("children", data.get("options", [])) or []
        )
        return cls(name=str(data.get("name", "")), options=options)


@dataclass(frozen=True)
class SaleVariant:
    attribute_name: Optional[str] = None
    attribute_value: Optional[str] = None
    discount: float = 0.0  # percent
    amount_off: float = 0.0
    max_buys: int = 0  # 0 = uncapped
    bought_count: int = 0

    @property
    def is_global(self) -> bool:
        return _is_wildcard(self.attribute_name)

    @property
    def is_attribute_wide(self) -> bool:
        return not self.is_global and _is_wildcard(self.attribute_value)

    @property
    def remaining(self) -> Optional[int]:
        if self.max_buys <= 0:
            return None
        return max(0, self.max_buys - self.bought_count)

    @property
    def exhausted(self) -> bool:
        return self.max_buys > 0 and self.bought_count >= self.max_buys

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attributeName": self.attribute_name,
            "attributeValue": self.attribute_value,
            "discount": self.discount,
            "amountOff": self.amount_off,
            "maxBuys": self.max_buys,
            "boughtCount": self.bought_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SaleVariant":
        return cls(
            attribute_name=data.get("attributeName"),
            attribute_value=data.get("attributeValue"),
            discount=to_number(data.get("discount")),
            amount_off=to_number(data.get("amountOff")),
            max_buys=to_int(data.get("maxBuys")),
            bought_count=to_int(data.get("boughtCount")),
        )


@dataclass(frozen=True)
class ProductSale:
    id: str = ""
    type: SaleType = SaleType.NORMAL
    is_active: bool = True
    is_hot: bool = False
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    discount: float = 0.0  # general percent discount
    amount_off: float = 0.0  # general amount discount
    variants: Tuple[SaleVariant, ...] = ()

    def in_window(self, now: datetime) -> bool:
        """Only Flash sales are time-bounded."""
        if self.type is not SaleType.FLASH:
            return True
        if self.start_date and now < self.start_date:
            return False
        if self.end_date and now > self.end_date:
            return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "_id": self.id,
            "type": self.type.value,
            "isActive": self.is_active,
            "isHot": self.is_hot,
            "startDate": format_datetime(self.start_date),
            "endDate": format_datetime(self.end_date),
            "discount": self.discount,
            "amountOff": self.amount_off,
            "variants": [v.to_dict() for v in self.variants],
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["ProductSale"]:
        if not data:
            return None
        return cls(
            id=str(data.get("_id", data.get("id", ""))),
            type=SaleType.parse(data.get("type", "Normal")),
            is_active=bool(data.get("isActive", True)),
            is_hot=bool(data.get("isHot", False)),
            start_date=parse_datetime(data.get("startDate")),
            end_date=parse_datetime(data.get("endDate")),
            discount=to_number(data.get("discount")),
            amount_off=to_number(data.get("amountOff")),
            variants=tuple(SaleVariant.from_dict(v) for v in data.get("variants") or []),
        )


@dataclass(frozen=True)
class PricingTier:
    min_qty: int
    max_qty: Optional[int] = None  # open-ended
    strategy: TierStrategy = TierStrategy.PERCENT_OFF
    value: float = 0.0

    def contains(self, qty: int) -> bool:
        return qty >= self.min_qty and (self.max_qty is None or qty <= self.max_qty)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "minQty": self.min_qty,
            "maxQty": self.max_qty,
            "strategy": self.strategy.value,
            "value": self.value,
        }


@dataclass(frozen=True)
class Product:
    id: str
    name: str = ""
    slug: str = ""
    sku: str = ""
    price: float = 0.0
    category_id: Optional[str] = None
    stock: Optional[int] = None
    attributes: Tuple[AttributeGroup, ...] = ()
    sale: Optional[ProductSale] = None
    pricing_tiers: Tuple[PricingTier, ...] = ()

    def option(self, attr: Attribute) -> Optional[AttributeOption]:
        for group in self.attributes:
            if group.name != attr.name:
                continue
            for opt in group.options:
                if opt.name == attr.value:
                    return opt
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "_id": self.id,
            "name": self.name,
            "slug": self.slug,
            "sku": self.sku,
            "price": self.price,
            "category": self.category_id,
            "stock": self.stock,
            "attributes": [g.to_dict() for g in self.attributes],
            "sale": self.sale.to_dict() if self.sale else None,
            "pricingTiers": [t.to_dict() for t in self.pricing_tiers],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Product":
        # local import, pricing.tiers imports this module
        from pricing.tiers import normalize_tiers

        category = data.get("category")
        if isinstance(category, dict):
            category = category.get("_id")
        return cls(
            id=str(data.get("_id", data.get("id", ""))),
            name=str(data.get("name", "")),
            slug=str(data.get("slug", "")),
            sku=str(data.get("sku", "")),
            price=to_number(data.get("price")),
            category_id=None if category is None else str(category),
            stock=None if data.get("stock") is None else to_int(data.get("stock")),
            attributes=tuple(AttributeGroup.from_dict(g) for g in data.get("attributes") or []),
            sale=ProductSale.from_dict(data.get("sale")),
            pricing_tiers=normalize_tiers(data.get("pricingTiers")),
        )


# ---------------------------
# Cart
# ---------------------------


def new_cart_item_id() -> str:
    return f"cart_{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class CartItem:
    cart_item_id: str
    product: Product
    qty: int = 1
    selected_attributes: Tuple[Attribute, ...] = ()
    selected_variant: Optional[str] = None
    added_at: datetime = field(default_factory=utcnow)

    @property
    def product_id(self) -> str:
        return self.product.id

    def is_same_line(self, product_id: str, attrs: Iterable[Attribute]) -> bool:
        return self.product.id == product_id and attributes_key(
            self.selected_attributes
        ) == attributes_key(attrs)


# ---------------------------
# Coupons
# ---------------------------


@dataclass(frozen=True)
class Coupon:
    code: str
    discount_type: DiscountType = DiscountType.PERCENTAGE
    discount: float = 0.0
    min_order_value: float = 0.0
    max_discount_amount: Optional[float] = None
    scope: CouponScope = CouponScope.ALL
    product_ids: Tuple[str, ...] = ()
    category_ids: Tuple[str, ...] = ()
    stackable: bool = False
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    active: bool = True
    max_usage: Optional[int] = None
    used_count: int = 0
    id: str = ""
    show_on_cart_page: bool = False
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "_id": self.id,
            "code": self.code,
            "description": self.description,
            "showOnCartPage": self.show_on_cart_page,
            "discountType": self.discount_type.value,
            "discount": self.discount,
            "minOrderValue": self.min_order_value,
            "maxDiscountAmount": self.max_discount_amount,
            "appliesTo": {
                "scope": self.scope.value,
                "productIds": list(self.product_ids),
                "categoryIds": list(self.category_ids),
            },
            "stackable": self.stackable,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Coupon":
        applies_to = data.get("appliesTo") or {}
        max_discount = data.get("maxDiscountAmount")
        max_usage = data.get("maxUsage")
        return cls(
            code=str(data.get("code", data.get("coupon", ""))).upper(),
            discount_type=DiscountType.parse(data.get("discountType")),
            discount=to_number(data.get("discount")),
            min_order_value=to_number(data.get("minOrderValue")),
            max_discount_amount=None if max_discount is None else to_number(max_discount),
            scope=CouponScope.parse(applies_to.get("scope")),
            product_ids=tuple(str(p) for p in applies_to.get("productIds") or []),
            category_ids=tuple(str(c) for c in applies_to.get("categoryIds") or []),
            stackable=bool(data.get("stackable", False)),
            start_date=parse_datetime(data.get("startDate")),
            end_date=parse_datetime(data.get("endDate")),
            active=bool(data.get("active", True)),
            max_usage=None if max_usage is None else to_int(max_usage),
            used_count=to_int(data.get("usedCount")),
            id=str(data.get("_id", "")),
            show_on_cart_page=bool(data.get("showOnCartPage", False)),
            description=str(data.get("description") or ""),
        )


@dataclass(frozen=True)
class ThresholdPromotion:
    """Spend at least `min_order_value`, save a flat `discount`."""

    id: str
    min_order_value: float
    discount: float
    label: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "_id": self.id,
            "minOrderValue": self.min_order_value,
            "discount": self.discount,
            "label": self.label,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ThresholdPromotion":
        return cls(
            id=str(data.get("_id", data.get("id", ""))),
            min_order_value=max(0.0, to_number(data.get("minOrderValue"))),
            discount=max(0.0, to_number(data.get("discount"))),
            label=str(data.get("label") or ""),
        )


# ---------------------------
# Shipping
# ---------------------------


@dataclass(frozen=True)
class Destination:
    country: str
    state: str
    lga: str = ""
    city: str = ""
    street: str = ""
    postal_code: str = ""
    state_code: str = ""

    @property
    def is_complete(self) -> bool:
        return all(
            v.strip() for v in (self.country, self.state, self.lga, self.street, self.postal_code)
        )

    def key(self) -> Tuple[str, ...]:
        return (self.country, self.state, self.lga, self.city, self.street, self.postal_code)

    def to_shipping_address(self) -> Dict[str, str]:
        return {"country": self.country, "state": self.state, "city": self.city or self.lga}

    def to_flat_destination(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "countryName": self.country,
            "stateName": self.state,
            "stateCode": self.state_code or self.state,
            "lgaName": self.lga,
        }
        if self.city:
            out["cityName"] = self.city
        return out

    def to_dict(self) -> Dict[str, str]:
        return {
            "country": self.country,
            "state": self.state,
            "lga": self.lga,
            "city": self.city,
            "streetAddress": self.street,
            "postalCode": self.postal_code,
        }


@dataclass(frozen=True)
class ShippingQuote:
    cost: float
    method: ShippingMethod
    source: str  # "authenticated" | "guest" | "pickup"
    currency: str = "NGN"
    destination: Optional[Destination] = None
    key: Tuple[Any, ...] = ()
    eta_days: Optional[int] = None


# ---------------------------
# Checkout corrections
# ---------------------------


@dataclass(frozen=True)
class ProductIssue:
    cart_item_id: str
    product_id: str
    issue_type: IssueType
    severity: Severity
    suggested_action: SuggestedAction
    product_name: str = ""
    message: str = ""
    current_qty: int = 0
    available_stock: int = 0
    current_price: Optional[float] = None
    corrected_price: Optional[float] = None
    unavailable_attributes: Tuple[Attribute, ...] = ()
    available_attributes: Tuple[Tuple[Attribute, ...], ...] = ()
    expiry_reason: Optional[str] = None  # endDateReached | maxBuysReached | deactivated

    @property
    def affects_availability(self) -> bool:
        return self.issue_type in (
            IssueType.OUT_OF_STOCK,
            IssueType.QUANTITY_REDUCED,
            IssueType.ATTRIBUTE_UNAVAILABLE,
        )

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "cartItemId": self.cart_item_id,
            "productId": self.product_id,
            "productName": self.product_name,
            "issueType": self.issue_type.value,
            "severity": self.severity.value,
            "suggestedAction": self.suggested_action.value,
            "message": self.message,
            "currentQty": self.current_qty,
            "availableStock": self.available_stock,
            "currentPrice": self.current_price,
            "correctedPrice": self.corrected_price,
            "unavailableAttributes": [a.to_dict() for a in self.unavailable_attributes] or None,
            "availableAttributes": [[a.to_dict() for a in combo] for combo in self.available_attributes]
            or None,
        }
        if self.expiry_reason:
            out["saleInfo"] = {"expiryReason": self.expiry_reason}
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProductIssue":
        sale_info = data.get("saleInfo") or {}
        current_price = data.get("currentPrice")
        corrected_price = data.get("correctedPrice")
        return cls(
            cart_item_id=str(data.get("cartItemId", "")),
            product_id=str(data.get("productId", "")),
            product_name=str(data.get("productName", "")),
            issue_type=IssueType(data.get("issueType")),
            severity=Severity(data.get("severity", "warning")),
            suggested_action=SuggestedAction(data.get("suggestedAction", "acceptPrice")),
            message=str(data.get("message", "")),
            current_qty=to_int(data.get("currentQty")),
            available_stock=to_int(data.get("availableStock")),
            current_price=None if current_price is None else to_number(current_price),
            corrected_price=None if corrected_price is None else to_number(corrected_price),
            unavailable_attributes=attributes_from(data.get("unavailableAttributes")),
            available_attributes=tuple(
                attributes_from(combo) for combo in data.get("availableAttributes") or []
            ),
            expiry_reason=sale_info.get("expiryReason"),
        )


@dataclass(frozen=True)
class CouponIssue:
    code: str
    reason: str
    previous_discount: float = 0.0


@dataclass(frozen=True)
class ShippingIssue:
    previous_cost: float
    current_cost: float
    reason: str = ""


@dataclass(frozen=True)
class TotalIssue:
    expected_total: float
    calculated_total: float
    message: str = ""

    @property
    def discrepancy(self) -> float:
        return self.calculated_total - self.expected_total


@dataclass(frozen=True)
class CheckoutErrors:
    products: Tuple[ProductIssue, ...] = ()
    coupons: Tuple[CouponIssue, ...] = ()
    shipping: Optional[ShippingIssue] = None
    total: Optional[TotalIssue] = None

    @property
    def has_product_issues(self) -> bool:
        return bool(self.products)

    @property
    def is_empty(self) -> bool:
        return not (self.products or self.coupons or self.shipping or self.total)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.products:
            out["products"] = [p.to_dict() for p in self.products]
        if self.coupons:
            out["coupons"] = [
                {"code": c.code, "reason": c.reason, "previousDiscount": c.previous_discount}
                for c in self.coupons
            ]
        if self.shipping:
            out["shipping"] = {
                "previousCost": self.shipping.previous_cost,
                "currentCost": self.shipping.current_cost,
                "reason": self.shipping.reason,
            }
        if self.total:
            out["total"] = {
                "expectedTotal": self.total.expected_total,
                "calculatedTotal": self.total.calculated_total,
                "discrepancy": self.total.discrepancy,
                "message": self.total.message,
            }
        return out

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "CheckoutErrors":
        data = data or {}
        shipping = data.get("shipping")
        total = data.get("total")
        return cls(
            products=tuple(ProductIssue.from_dict(p) for p in data.get("products") or []),
            coupons=tuple(
                CouponIssue(
                    code=str(c.get("code", "")),
                    reason=str(c.get("reason", "")),
                    previous_discount=to_number(c.get("previousDiscount")),
                )
                for c in data.get("coupons") or []
            ),
            shipping=ShippingIssue(
                previous_cost=to_number(shipping.get("previousCost")),
                current_cost=to_number(shipping.get("currentCost")),
                reason=str(shipping.get("reason", "")),
            )
            if shipping
            else None,
            total=TotalIssue(
                expected_total=to_number(total.get("expectedTotal")),
                calculated_total=to_number(total.get("calculatedTotal")),
                message=str(total.get("message", "")),
            )
            if total
            else None,
        )


@dataclass(frozen=True)
class CheckoutSummary:
    items_remaining: int = 0
    new_subtotal: float = 0.0
    new_total: float = 0.0
    shipping_cost: float = 0.0
    delivery_type: str = "shipping"
    coupon_discount: float = 0.0
    promotion_discount: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "itemsRemaining": self.items_remaining,
            "newSubtotal": self.new_subtotal,
            "newTotal": self.new_total,
            "shippingCost": self.shipping_cost,
            "deliveryType": self.delivery_type,
            "couponDiscount": self.coupon_discount,
            "promotionDiscount": self.promotion_discount,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "CheckoutSummary":
        data = data or {}
        return cls(
            items_remaining=to_int(data.get("itemsRemaining", data.get("itemCount"))),
            new_subtotal=to_number(data.get("newSubtotal", data.get("subtotal"))),
            new_total=to_number(data.get("newTotal", data.get("total"))),
            shipping_cost=to_number(data.get("shippingCost")),
            delivery_type=str(data.get("deliveryType", "shipping")),
            coupon_discount=to_number(data.get("couponDiscount")),
            promotion_discount=to_number(data.get("promotionDiscount")),
        )


@dataclass(frozen=True)
class PaymentDescriptor:
    payment_url: str = ""
    reference: str = ""
    transaction_id: str = ""
    access_code: str = ""

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["PaymentDescriptor"]:
        if not data:
            return None
        return cls(
            payment_url=str(data.get("paymentUrl", "")),
            reference=str(data.get("reference", "")),
            transaction_id=str(data.get("transactionId", "")),
            access_code=str(data.get("access_code", "")),
        )


# Tagged union of /checkout/secure outcomes


@dataclass(frozen=True)
class CheckoutSuccess:
    order_id: str
    payment: Optional[PaymentDescriptor]
    summary: CheckoutSummary


@dataclass(frozen=True)
class CheckoutCorrection:
    errors: CheckoutErrors
    summary: CheckoutSummary

    @property
    def is_blocking(self) -> bool:
        return any(
            p.severity is Severity.CRITICAL or p.affects_availability
            for p in self.errors.products
        )


@dataclass(frozen=True)
class CheckoutBlocked:
    reason: str
    errors: CheckoutErrors = CheckoutErrors()
    summary: CheckoutSummary = CheckoutSummary()


CheckoutOutcome = CheckoutSuccess | CheckoutCorrection | CheckoutBlocked


def parse_checkout_response(data: Dict[str, Any]) -> CheckoutOutcome:
    """Turn a /checkout/secure body into one of the three outcome types."""
    if data.get("needsUpdate"):
        errors = CheckoutErrors.from_dict(data.get("errors") or data.get("checkoutErrors"))
        summary = CheckoutSummary.from_dict(data.get("summary"))
        if errors.total and not errors.has_product_issues:
            return CheckoutBlocked(
                reason=errors.total.message or "Order total could not be verified.",
                errors=errors,
                summary=summary,
            )
        return CheckoutCorrection(errors=errors, summary=summary)
    return CheckoutSuccess(
        order_id=str(data.get("orderId", "")),
        payment=PaymentDescriptor.from_dict(data.get("payment")),
        summary=CheckoutSummary.from_dict(data.get("summary")),
    )


@dataclass(frozen=True)
class PaymentReference:
    reference: str
    order_id: str
    created_at: datetime = field(default_factory=utcnow)
