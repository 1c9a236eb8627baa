"""
Async HTTP client for the storefront backend.

Every method either returns parsed domain data or raises a TransportError
subclass; callers never see httpx exceptions.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import httpx

from db.models import (
    CartItem,
    CheckoutOutcome,
    Coupon,
    Destination,
    ThresholdPromotion,
    parse_checkout_response,
    to_number,
)
from pricing.coupons import CouponResult, coupon_result_from_response
from pricing.engine import price
from utils.config import settings
from utils.errors import AuthorizationError, InvalidResponseError, TransportError
from utils.logger import get_logger

_logger = get_logger(__name__)

CHECKOUT_SECURE = "/checkout/secure"
SHIPPING_CALCULATE = "/checkout/shipping/calculate"
FLAT_SHIPPING = "/logistics/cart-flat-shipping"
COUPON_VALIDATE = "/coupons/validate"
CART_COUPONS = "/coupons/cart"
CART_PROMOTIONS = "/promotions/cart"
CART_SYNC = "/cart/sync"
CART_ITEM = "/cart/{id}"
WISHLIST = "/wishlist"
WISHLIST_ITEM = "/wishlist/{id}"


def _unwrap(body: Dict[str, Any]) -> Dict[str, Any]:
    """Some endpoints wrap their payload in {"data": {...}}."""
    data = body.get("data")
    return data if isinstance(data, dict) else body


def _error_message(body: Any, response: httpx.Response) -> str:
    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            if body.get(key):
                return str(body[key])
    return response.reason_phrase or f"Request failed with status code {response.status_code}"


def _eta_days(data: Dict[str, Any]) -> Optional[int]:
    days = data.get("estimatedDays")
    if isinstance(days, bool) or not isinstance(days, (int, float)) or days < 0:
        return None
    return int(days)


def shipping_items(items: Iterable[CartItem]) -> List[Dict[str, Any]]:
    out = []
    for item in items:
        line = price(item)
        out.append(
            {
                "product": item.product_id,
                "qty": item.qty,
                "selectedAttributes": [a.to_dict() for a in item.selected_attributes],
                "unitPrice": line.unit_price,
                "totalPrice": line.total_price,
            }
        )
    return out


class ApiClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self.token = settings.api_token if token is None else token
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or settings.http_timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    @property
    def is_guest(self) -> bool:
        return not self.token

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        json: Any = None,
        auth: bool = True,
        accept: Sequence[int] = (200, 201),
    ) -> Dict[str, Any]:
        headers = {}
        if auth and self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            response = await self._client.request(method, path, json=json, headers=headers)
        except httpx.HTTPError as e:
            _logger.warning(f"{method} {path} failed: {e!r}")
            raise TransportError(str(e) or e.__class__.__name__, original_error=e) from e

        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = None

        if response.status_code == 401:
            raise AuthorizationError(_error_message(body, response), payload=body)
        if response.status_code not in accept:
            message = _error_message(body, response)
            _logger.warning(f"{method} {path} -> {response.status_code}: {message}")
            raise TransportError(message, status=response.status_code, payload=body)
        if not isinstance(body, dict):
            raise InvalidResponseError(
                "Malformed response from server", status=response.status_code, payload=body
            )
        _logger.debug(f"{method} {path} -> {response.status_code}")
        return body

    # ---------------------------
    # Shipping
    # ---------------------------

    async def calculate_shipping(
        self, destination: Destination, items: Sequence[CartItem]
    ) -> Tuple[float, Optional[int]]:
        """Authenticated quote: (cost, estimated delivery days when the server gives them)."""
        body = await self._request(
            "POST",
            SHIPPING_CALCULATE,
            json={
                "items": shipping_items(items),
                "shippingAddress": destination.to_shipping_address(),
                "deliveryType": "shipping",
            },
        )
        data = _unwrap(body)
        cost = data.get("shippingCost")
        if isinstance(cost, bool) or not isinstance(cost, (int, float)):
            raise InvalidResponseError("Invalid shipping response", payload=body)
        return to_number(cost), _eta_days(data)

    async def flat_shipping(
        self, destination: Destination, items: Sequence[CartItem]
    ) -> Tuple[float, Optional[int]]:
        body = await self._request(
            "POST",
            FLAT_SHIPPING,
            json={
                "items": [{"productId": i.product_id, "quantity": i.qty} for i in items],
                "destination": destination.to_flat_destination(),
            },
            auth=False,
        )
        data = _unwrap(body)
        amount = data.get("amount")
        if isinstance(amount, bool) or not isinstance(amount, (int, float)):
            raise InvalidResponseError("Invalid shipping response", payload=body)
        return to_number(amount), _eta_days(data)

    # ---------------------------
    # Coupons & checkout
    # ---------------------------

    async def validate_coupon(
        self,
        code: str,
        order_total: float,
        product_ids: Sequence[str] = (),
        category_ids: Sequence[str] = (),
    ) -> CouponResult:
        body = await self._request(
            "POST",
            COUPON_VALIDATE,
            json={
                "code": code.strip().upper(),
                "orderTotal": order_total,
                "productIds": list(product_ids),
                "categoryIds": list(category_ids),
            },
            auth=False,
            accept=(200, 400, 404),
        )
        return coupon_result_from_response(body)

    async def _list(self, path: str, key: str) -> List[Dict[str, Any]]:
        body = await self._request("GET", path, auth=False)
        rows = body.get("data", body.get(key))
        if not isinstance(rows, list):
            raise InvalidResponseError("Invalid list response", payload=body)
        return [row for row in rows if isinstance(row, dict)]

    async def cart_coupons(self) -> List[Coupon]:
        """Coupons the store advertises on the cart page."""
        return [Coupon.from_dict(row) for row in await self._list(CART_COUPONS, "coupons")]

    async def cart_promotions(self) -> List[ThresholdPromotion]:
        return [ThresholdPromotion.from_dict(row) for row in await self._list(CART_PROMOTIONS, "promotions")]

    async def submit_checkout(self, payload: Dict[str, Any]) -> CheckoutOutcome:
        # a correction comes back as 200 or 400 with the same body
        body = await self._request("POST", CHECKOUT_SECURE, json=payload, accept=(200, 201, 400))
        data = _unwrap(body) if "needsUpdate" not in body else body
        if not data:
            raise InvalidResponseError("Unable to complete checkout. Please try again.", payload=body)
        try:
            return parse_checkout_response(data)
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            _logger.warning(f"unreadable checkout response: {e!r}")
            raise InvalidResponseError(
                "The server sent a checkout response we could not read. Please try again.",
                payload=body,
                original_error=e,
            ) from e

    # ---------------------------
    # Background sync
    # ---------------------------

    async def sync_cart_item(self, item: CartItem) -> None:
        await self._request(
            "POST",
            CART_SYNC,
            json={
                "items": [
                    {
                        "cartItemId": item.cart_item_id,
                        "product": item.product_id,
                        "qty": item.qty,
                        "selectedAttributes": [a.to_dict() for a in item.selected_attributes],
                    }
                ]
            },
        )

    async def remove_cart_item(self, cart_item_id: str) -> None:
        await self._request("DELETE", CART_ITEM.format(id=cart_item_id), accept=(200, 204, 404))

    async def add_wishlist(self, product_id: str) -> None:
        await self._request("POST", WISHLIST, json={"productId": product_id})

    async def remove_wishlist(self, product_id: str) -> None:
        await self._request("DELETE", WISHLIST_ITEM.format(id=product_id), accept=(200, 204, 404))
