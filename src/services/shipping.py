"""
Shipping quote negotiation.

    IDLE -> DEBOUNCING -> FETCHING -> RESOLVED | FAILED

Each quote remembers the (destination, cart, method) key it was computed for
and is only handed out for that exact key. A fetch that completes after its
inputs changed is dropped without touching state.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Optional, Sequence, Tuple

from db.models import CartItem, Destination, ShippingMethod, ShippingQuote, attributes_key
from services.api import ApiClient
from services.scheduler import Debouncer, Ticket
from utils.config import settings
from utils.errors import AuthorizationError, TransportError
from utils.logger import get_logger

_logger = get_logger(__name__)

_KEY = "shipping"


class ShippingState(str, Enum):
    IDLE = "idle"
    DEBOUNCING = "debouncing"
    FETCHING = "fetching"
    RESOLVED = "resolved"
    FAILED = "failed"


def cart_signature(items: Sequence[CartItem]) -> Tuple[Any, ...]:
    return tuple(
        sorted(
            (i.cart_item_id, i.product_id, i.qty, attributes_key(i.selected_attributes))
            for i in items
        )
    )


def quote_key(
    destination: Optional[Destination], items: Sequence[CartItem], method: ShippingMethod
) -> Tuple[Any, ...]:
    return (destination.key() if destination else None, cart_signature(items), method.value)


def apply_surcharge(cost: float, method: ShippingMethod, surcharge: float) -> float:
    if method is ShippingMethod.EXPRESS:
        return round(cost * surcharge, 2)
    return cost


class ShippingCostNegotiator:
    def __init__(
        self,
        api: ApiClient,
        debounce: Optional[float] = None,
        surcharge: Optional[float] = None,
        on_change: Optional[Callable[["ShippingCostNegotiator"], None]] = None,
    ):
        self._api = api
        self._surcharge = settings.express_surcharge if surcharge is None else surcharge
        self._debouncer = Debouncer(
            settings.shipping_debounce if debounce is None else debounce, name="shipping"
        )
        self._on_change = on_change
        self._key: Optional[Tuple[Any, ...]] = None
        self.state = ShippingState.IDLE
        self.quote: Optional[ShippingQuote] = None
        self.error: Optional[str] = None

    def _set_state(self, state: ShippingState) -> None:
        if state is not self.state:
            _logger.debug(f"shipping {self.state.value} -> {state.value}")
        self.state = state
        if self._on_change:
            self._on_change(self)

    @property
    def is_busy(self) -> bool:
        return self.state in (ShippingState.DEBOUNCING, ShippingState.FETCHING)

    def update(
        self,
        destination: Optional[Destination],
        items: Sequence[CartItem],
        method: ShippingMethod,
    ) -> None:
        """Feed the current inputs; restarts the debounce when any of them changed."""
        key = quote_key(destination, items, method)
        # a FAILED quote for the same key is refetched only when asked again
        if key == self._key and (self.is_busy or self.state is ShippingState.RESOLVED):
            return
        self._key = key
        self.quote = None
        self.error = None

        if method is ShippingMethod.PICKUP:
            self._debouncer.invalidate(_KEY)
            self.quote = ShippingQuote(
                cost=0.0, method=method, source="pickup", destination=destination, key=key
            )
            self._set_state(ShippingState.RESOLVED)
            return

        if destination is None or not destination.is_complete or not items:
            self._debouncer.invalidate(_KEY)
            self._set_state(ShippingState.IDLE)
            return

        snapshot = tuple(items)

        async def fetch(ticket: Ticket) -> None:
            await self._fetch(ticket, destination, snapshot, method, key)

        self._set_state(ShippingState.DEBOUNCING)
        self._debouncer.schedule(_KEY, fetch)

    async def _normal_cost(
        self, destination: Destination, items: Sequence[CartItem]
    ) -> Tuple[float, Optional[int], str]:
        if self._api.is_guest:
            return (*await self._api.flat_shipping(destination, items), "guest")
        try:
            return (*await self._api.calculate_shipping(destination, items), "authenticated")
        except AuthorizationError:
            _logger.info("authenticated quote refused, using guest flat rate")
            return (*await self._api.flat_shipping(destination, items), "guest")

    async def _fetch(
        self,
        ticket: Ticket,
        destination: Destination,
        items: Sequence[CartItem],
        method: ShippingMethod,
        key: Tuple[Any, ...],
    ) -> None:
        self._set_state(ShippingState.FETCHING)
        try:
            cost, eta_days, source = await self._normal_cost(destination, items)
        except TransportError as e:
            if ticket.stale:
                return
            _logger.warning(f"shipping quote failed: {e.message}")
            self.error = e.message
            self._set_state(ShippingState.FAILED)
            return

        if ticket.stale:
            _logger.debug("discarding superseded shipping quote")
            return
        self.quote = ShippingQuote(
            cost=apply_surcharge(cost, method, self._surcharge),
            method=method,
            source=source,
            destination=destination,
            key=key,
            eta_days=eta_days,
        )
        self._set_state(ShippingState.RESOLVED)

    def quote_for(
        self,
        destination: Optional[Destination],
        items: Sequence[CartItem],
        method: ShippingMethod,
    ) -> Optional[ShippingQuote]:
        if self.quote is None or self.quote.key != quote_key(destination, items, method):
            return None
        return self.quote

    def adopt(
        self,
        cost: float,
        destination: Optional[Destination],
        items: Sequence[CartItem],
        method: ShippingMethod,
    ) -> ShippingQuote:
        """Take a server-corrected cost as the quote for these inputs."""
        self._debouncer.invalidate(_KEY)
        eta_days = self.quote.eta_days if self.quote else None
        self._key = quote_key(destination, items, method)
        self.error = None
        self.quote = ShippingQuote(
            cost=max(0.0, cost),
            method=method,
            source="server",
            destination=destination,
            key=self._key,
            eta_days=eta_days,
        )
        self._set_state(ShippingState.RESOLVED)
        return self.quote

    def reset(self) -> None:
        self._debouncer.invalidate(_KEY)
        self._key = None
        self.quote = None
        self.error = None
        self._set_state(ShippingState.IDLE)

    async def wait(self) -> None:
        await self._debouncer.drain()
