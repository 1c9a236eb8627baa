from typing import Callable, Optional

import httpx
from textual import on, work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.message import Message
from textual.widgets import LoadingIndicator

from db.models import Attribute
from services.api import ApiClient
from services.checkout import CheckoutReconciler
from services.shipping import ShippingCostNegotiator
from services.verifier import CheckoutVerifier
from utils.config import settings
from utils.logger import get_logger
from utils.messages import (
    CartChangedMessage,
    CheckoutStateChangedMessage,
    QuitRequestedMessage,
    ShippingQuoteChangedMessage,
)
from utils.state import CartStore, GlobalState, WishlistStore
from views.scr_cart import CartScreen

_logger = get_logger(__name__)


class StorefrontApp(App):
    BINDINGS = [
        Binding("ctrl+t", "switch_light", "Toggle Theme", show=True),
    ]

    MODES = {
        "cart": CartScreen,
    }

    CSS_PATH = "styles/storefront.tcss"

    state: GlobalState
    api: ApiClient
    shipping: ShippingCostNegotiator
    checkout: CheckoutReconciler

    def __init__(self, api: Optional[ApiClient] = None):
        super().__init__()
        self.verifier: Optional[CheckoutVerifier] = None
        if api is None:
            api = self._build_api()
        self.api = api
        self.state = GlobalState(cart=CartStore(api), wishlist=WishlistStore(api))
        self.shipping = ShippingCostNegotiator(api, on_change=self._on_shipping_change)
        self.checkout = CheckoutReconciler(
            api, self.state, self.shipping, on_change=self._on_checkout_change
        )
        self.state.cart.subscribe(self._on_cart_change)

    def _build_api(self) -> ApiClient:
        if not settings.offline:
            return ApiClient()
        # answer every endpoint locally from the bundled demo catalog
        self.verifier = CheckoutVerifier.from_json()
        _logger.info("offline mode, using the demo catalog")
        return ApiClient(base_url="http://storefront.offline", transport=httpx.MockTransport(self.verifier.handle))

    def compose(self) -> ComposeResult:
        yield LoadingIndicator()

    async def on_mount(self) -> None:
        self.main_flow()

    # ---------------------------
    # Store and service callbacks
    # ---------------------------

    def _broadcast(self, make_message: Callable[[], Message]) -> None:
        # messages posted to the app never reach screens, so address each screen in the stack
        for screen in self.screen_stack:
            screen.post_message(make_message())

    def renegotiate(self) -> None:
        self.shipping.update(self.state.destination, self.state.cart.items, self.state.method)

    def _on_cart_change(self, _cart) -> None:
        self.renegotiate()
        self._broadcast(CartChangedMessage)

    def _on_shipping_change(self, shipping: ShippingCostNegotiator) -> None:
        cost = shipping.quote.cost if shipping.quote else None
        self._broadcast(lambda: ShippingQuoteChangedMessage(shipping.state.value, cost, shipping.error))

    def _on_checkout_change(self, checkout: CheckoutReconciler) -> None:
        self._broadcast(lambda: CheckoutStateChangedMessage(checkout.status.value))

    # ---------------------------
    # Actions
    # ---------------------------

    def action_switch_light(self):
        if self.theme == "textual-dark":
            self.theme = "solarized-light"
        else:
            self.theme = "textual-dark"
        self.notify(f"Theme changed to {self.theme}")

    @on(QuitRequestedMessage)
    @work
    async def handle_quit(self):
        await self.state.cart.flush()
        await self.api.aclose()
        self.exit()

    @work
    async def main_flow(self):
        await self.state.load()
        if self.verifier is not None and self.state.cart.is_empty:
            await self._seed_demo_cart()
        await self.switch_mode("cart")

    async def _seed_demo_cart(self) -> None:
        catalog = self.verifier.catalog
        await self.state.cart.add(catalog["p-tee"], 3, (Attribute("Color", "Red"),))
        await self.state.cart.add(catalog["p-mug"], 5)
        await self.state.cart.add(catalog["p-lamp"], 1)


def run():
    StorefrontApp().run()


if __name__ == "__main__":
    run()
