from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from functools import partial
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

import db.crud as crud
from db.models import (
    Attribute,
    CartItem,
    Destination,
    PaymentReference,
    Product,
    ShippingMethod,
    new_cart_item_id,
    to_int,
    utcnow,
)
from pricing.coupons import CouponResult, DiscountSlots
from pricing.engine import CartTotals, cart_totals
from services.api import ApiClient
from services.corrections import CartMutation, MutationKind
from services.scheduler import Debouncer, Ticket
from utils.config import settings
from utils.errors import TransportError
from utils.logger import get_logger

_logger = get_logger(__name__)

Listener = Callable[[object], None]


class _Observable:
    def __init__(self):
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)


class CartStore(_Observable):
    """
    The cart, owned here and nowhere else.

    Every mutation is applied locally first, persisted, then synced to the
    server when signed in. A failed sync puts back only the lines that
    mutation touched, as they were when it was made, and keeps the server's
    message in `error`.
    """

    def __init__(
        self,
        api: Optional[ApiClient] = None,
        quantity_debounce: Optional[float] = None,
        persist: bool = True,
    ):
        super().__init__()
        self.items: List[CartItem] = []
        self.error: Optional[str] = None
        # bumped on every change listeners see
        self.generation = 0
        self._api = api
        self._persist = persist
        self._quantities = Debouncer(
            settings.quantity_debounce if quantity_debounce is None else quantity_debounce,
            name="cart-qty",
        )
        # last persisted quantity of items with a debounced edit in flight
        self._synced_qty: Dict[str, int] = {}

    def _notify(self) -> None:
        self.generation += 1
        super()._notify()

    # ---------- reads ----------

    def get(self, cart_item_id: str) -> Optional[CartItem]:
        for item in self.items:
            if item.cart_item_id == cart_item_id:
                return item
        return None

    def totals(self) -> CartTotals:
        return cart_totals(self.items)

    @property
    def is_empty(self) -> bool:
        return not self.items

    @property
    def product_ids(self) -> List[str]:
        return list(dict.fromkeys(i.product_id for i in self.items))

    @property
    def category_ids(self) -> List[str]:
        return list(dict.fromkeys(i.product.category_id for i in self.items if i.product.category_id))

    # ---------- persistence & sync ----------

    async def load(self, now: Optional[datetime] = None) -> None:
        if self._persist:
            self.items = await crud.load_cart(now=now)
        self._notify()

    async def _save(self) -> None:
        if self._persist:
            await crud.save_cart(self.items)

    @property
    def _syncing(self) -> bool:
        return self._api is not None and not self._api.is_guest

    async def _commit(
        self, rollback: Callable[[], None], remote: Optional[Callable[[], Awaitable[None]]]
    ) -> bool:
        self.error = None
        await self._save()
        self._notify()
        if remote is None or not self._syncing:
            return True
        try:
            await remote()
        except TransportError as e:
            _logger.warning(f"cart sync failed, rolling back: {e.message}")
            # only the mutated lines go back, edits to other lines made meanwhile stay
            rollback()
            self.error = e.message
            await self._save()
            self._notify()
            return False
        return True

    def _replace(self, item: CartItem) -> None:
        self.items = [item if i.cart_item_id == item.cart_item_id else i for i in self.items]

    def _position(self, cart_item_id: str) -> int:
        for n, item in enumerate(self.items):
            if item.cart_item_id == cart_item_id:
                return n
        return len(self.items)

    def _put_back(self, original: CartItem, position: int) -> None:
        if self.get(original.cart_item_id) is not None:
            self._replace(original)
            return
        items = list(self.items)
        items.insert(min(position, len(items)), original)
        self.items = items

    def _drop(self, cart_item_id: str) -> None:
        self.items = [i for i in self.items if i.cart_item_id != cart_item_id]

    # ---------- mutations ----------

    async def add(
        self,
        product: Product,
        qty: int = 1,
        selected: Sequence[Attribute] = (),
        selected_variant: Optional[str] = None,
    ) -> CartItem:
        """Add a line; the same product with the same attribute set merges quantities."""
        qty = max(1, to_int(qty, 1))
        selected = tuple(selected)

        existing = next((i for i in self.items if i.is_same_line(product.id, selected)), None)
        if existing is not None:
            item = replace(
                existing,
                product=product,
                qty=existing.qty + qty,
                selected_variant=selected_variant or existing.selected_variant,
            )
            self._replace(item)
            rollback = partial(self._replace, existing)
        else:
            item = CartItem(
                cart_item_id=new_cart_item_id(),
                product=product,
                qty=qty,
                selected_attributes=selected,
                selected_variant=selected_variant,
            )
            self.items = [*self.items, item]
            rollback = partial(self._drop, item.cart_item_id)

        await self._commit(rollback, lambda: self._api.sync_cart_item(item))
        return item

    async def set_quantity(self, cart_item_id: str, qty: int) -> bool:
        """Set a quantity right away; below 1 removes the line."""
        qty = to_int(qty)
        if qty < 1:
            return await self.remove(cart_item_id)
        current = self.get(cart_item_id)
        if current is None:
            return False
        self._quantities.invalidate(cart_item_id)
        self._synced_qty.pop(cart_item_id, None)
        item = replace(current, qty=qty)
        self._replace(item)
        return await self._commit(
            partial(self._replace, current), lambda: self._api.sync_cart_item(item)
        )

    def request_quantity(self, cart_item_id: str, qty: int) -> None:
        """
        Debounced quantity edit for rapid +/- input.

        The displayed quantity changes immediately; persistence and sync run
        once the item has been left alone for the debounce window. Each item id
        debounces independently. A failed sync rolls back to the quantity the
        item had before the burst of edits.
        """
        current = self.get(cart_item_id)
        if current is None:
            return
        self._synced_qty.setdefault(cart_item_id, current.qty)
        self._replace(replace(current, qty=max(1, to_int(qty, 1))))
        self._notify()

        async def flush(_ticket: Ticket) -> None:
            previous = self._synced_qty.pop(cart_item_id, None)
            item = self.get(cart_item_id)
            if item is None or previous is None:
                return

            def rollback() -> None:
                if cart_item_id in self._synced_qty:
                    # a newer burst on this line is pending, it now starts from the old value
                    self._synced_qty[cart_item_id] = previous
                    return
                latest = self.get(cart_item_id)
                if latest is not None:
                    self._replace(replace(latest, qty=previous))

            await self._commit(rollback, lambda: self._api.sync_cart_item(item))

        self._quantities.schedule(cart_item_id, flush)

    async def set_attributes(self, cart_item_id: str, selected: Sequence[Attribute]) -> bool:
        current = self.get(cart_item_id)
        if current is None:
            return False
        selected = tuple(selected)
        position = self._position(cart_item_id)

        twin = next(
            (
                i
                for i in self.items
                if i.cart_item_id != cart_item_id and i.is_same_line(current.product_id, selected)
            ),
            None,
        )
        if twin is None:
            item = replace(current, selected_attributes=selected)
            self._replace(item)
            return await self._commit(
                partial(self._replace, current), lambda: self._api.sync_cart_item(item)
            )

        # switching to a combination already in the cart merges the two lines
        merged = replace(twin, qty=twin.qty + current.qty)
        self._drop(cart_item_id)
        self._replace(merged)

        def rollback() -> None:
            self._put_back(current, position)
            self._replace(twin)

        async def remote() -> None:
            await self._api.remove_cart_item(cart_item_id)
            await self._api.sync_cart_item(merged)

        return await self._commit(rollback, remote)

    async def remove(self, cart_item_id: str) -> bool:
        current = self.get(cart_item_id)
        if current is None:
            return False
        self._quantities.invalidate(cart_item_id)
        self._synced_qty.pop(cart_item_id, None)
        position = self._position(cart_item_id)
        self._drop(cart_item_id)
        return await self._commit(
            lambda: self._put_back(current, position),
            lambda: self._api.remove_cart_item(cart_item_id),
        )

    async def clear(self) -> None:
        self._quantities.cancel_all()
        self._synced_qty.clear()
        self.items = []
        self.error = None
        if self._persist:
            await crud.clear_cart()
        self._notify()

    async def apply(self, mutation: CartMutation) -> bool:
        match mutation.kind:
            case MutationKind.REMOVE:
                return await self.remove(mutation.cart_item_id)
            case MutationKind.SET_QUANTITY:
                return await self.set_quantity(mutation.cart_item_id, mutation.qty or 0)
            case MutationKind.SET_ATTRIBUTES:
                return await self.set_attributes(mutation.cart_item_id, mutation.attributes)
            case MutationKind.NONE:
                return True
        return False

    async def flush(self) -> None:
        await self._quantities.drain()


class WishlistStore(_Observable):
    """Product ids on the wishlist, with optimistic add/remove."""

    def __init__(self, api: Optional[ApiClient] = None, persist: bool = True):
        super().__init__()
        self.product_ids: List[str] = []
        self.error: Optional[str] = None
        self._api = api
        self._persist = persist

    def __contains__(self, product_id: str) -> bool:
        return product_id in self.product_ids

    async def load(self) -> None:
        if self._persist:
            self.product_ids = await crud.load_wishlist()
        self._notify()

    async def _mutate(
        self,
        product_id: str,
        adding: bool,
        remote: Callable[[], Awaitable[None]],
    ) -> bool:
        snapshot = list(self.product_ids)
        if adding:
            self.product_ids = [*self.product_ids, product_id]
        else:
            self.product_ids = [p for p in self.product_ids if p != product_id]
        self.error = None
        self._notify()

        if self._api is not None and not self._api.is_guest:
            try:
                await remote()
            except TransportError as e:
                _logger.warning(f"wishlist sync failed, rolling back: {e.message}")
                self.product_ids = snapshot
                self.error = e.message
                self._notify()
                return False

        if self._persist:
            if adding:
                await crud.add_wishlist_item(product_id)
            else:
                await crud.remove_wishlist_item(product_id)
        return True

    async def add(self, product_id: str) -> bool:
        if product_id in self.product_ids:
            return True
        return await self._mutate(product_id, True, lambda: self._api.add_wishlist(product_id))

    async def remove(self, product_id: str) -> bool:
        if product_id not in self.product_ids:
            return True
        return await self._mutate(product_id, False, lambda: self._api.remove_wishlist(product_id))

    async def toggle(self, product_id: str) -> bool:
        if product_id in self.product_ids:
            return await self.remove(product_id)
        return await self.add(product_id)


class PaymentStore(_Observable):
    """Payment references of placed orders, newest first."""

    def __init__(self, persist: bool = True):
        super().__init__()
        self.references: List[PaymentReference] = []
        self._persist = persist

    async def load(self) -> None:
        if self._persist:
            self.references = await crud.list_payment_references()
        self._notify()

    @property
    def latest(self) -> Optional[PaymentReference]:
        return self.references[0] if self.references else None

    async def record(self, reference: str, order_id: str) -> PaymentReference:
        ref = PaymentReference(reference=reference, order_id=order_id, created_at=utcnow())
        self.references = [ref, *[r for r in self.references if r.reference != reference]]
        if self._persist:
            await crud.record_payment_reference(ref)
        self._notify()
        return ref


@dataclass
class GlobalState:
    """
    Application state shared by screens.

    Fields:
      - cart / wishlist / payments: the owned client stores
      - discounts: the coupon slot and threshold promotion
      - method / destination: what the shipping quote is negotiated for
    """

    cart: CartStore = field(default_factory=CartStore)
    wishlist: WishlistStore = field(default_factory=WishlistStore)
    payments: PaymentStore = field(default_factory=PaymentStore)
    discounts: DiscountSlots = field(default_factory=DiscountSlots)
    method: ShippingMethod = ShippingMethod.NORMAL
    destination: Optional[Destination] = None

    def __post_init__(self):
        self.cart.subscribe(lambda _: self.discounts.on_subtotal_changed(self.cart.totals().subtotal))

    async def load(self) -> None:
        await self.cart.load()
        await self.wishlist.load()
        await self.payments.load()

    @property
    def order_total(self) -> float:
        return max(0.0, self.cart.totals().subtotal - self.discounts.discount_cart)

    async def apply_coupon_code(self, api: ApiClient, code: str) -> Optional[CouponResult]:
        """
        Validate `code` against the cart as it is now and put it in the coupon slot.

        Returns None without touching the slot when the cart changed while the
        server was deciding. Transport failures propagate.
        """
        cart = self.cart
        generation = cart.generation
        result = await api.validate_coupon(
            code, cart.totals().subtotal, cart.product_ids, cart.category_ids
        )
        if cart.generation != generation:
            _logger.info(f"coupon {code} validated against an outdated cart, dropped")
            return None
        self.discounts.apply_coupon(result)
        return result
