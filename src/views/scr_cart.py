from textual import on, work
from textual.app import ComposeResult
from textual.containers import Container, Horizontal, HorizontalGroup, VerticalScroll
from textual.events import ScreenResume
from textual.message import Message
from textual.widgets import Button, Input, Label, Markdown, RadioButton, RadioSet, Rule

from db.models import CartItem, Coupon, ShippingMethod, ThresholdPromotion
from pricing.coupons import DiscountSlots, describe_coupon
from pricing.engine import price
from pricing.sale import flash_countdown
from pricing.tiers import describe_tier, format_tier_range, next_tier_savings
from services.checkout import CheckoutState
from services.shipping import ShippingState
from utils.errors import CheckoutStateError, TransportError
from utils.messages import CartChangedMessage, ShippingQuoteChangedMessage
from utils.pure import format_percent, format_price, generate_markdown_table
from views.base_screen import BaseScreen
from views.modal_checkout import CheckoutModal
from views.modal_dialog import DialogModal

METHOD_BUTTONS = {
    "radio-pickup": ShippingMethod.PICKUP,
    "radio-normal": ShippingMethod.NORMAL,
    "radio-express": ShippingMethod.EXPRESS,
}


class CartItemActionWishlistMessage(Message):
    bubble = True


class CartItemActionRemoveMessage(Message):
    bubble = True


class CartItemActionLabel(Label):
    def action_wishlist(self):
        self.post_message(CartItemActionWishlistMessage())

    def action_remove(self):
        self.post_message(CartItemActionRemoveMessage())


def _countdown_text(item: CartItem) -> str:
    left = flash_countdown(item.product.sale)
    if left is None:
        return ""
    hours, rem = divmod(int(left.total_seconds()), 3600)
    return f"ends in {hours}h {rem // 60:02d}m"


def describe_line(item: CartItem) -> str:
    """Sale, tier and upsell notes shown under a cart line."""
    line = price(item)
    notes = []
    if line.sale.has_active_sale:
        sale_note = f"Sale -{format_percent(line.sale_discount)}"
        if line.sale.show_progress:
            sale_note += f" ({line.sale.available_stock} left)"
        countdown = _countdown_text(item)
        if countdown:
            sale_note += f", {countdown}"
        notes.append(sale_note)
    if line.pricing_tier:
        notes.append(f"Tier {format_tier_range(line.pricing_tier)}: {describe_tier(line.pricing_tier)}")

    upgrade = next_tier_savings(item.product.pricing_tiers, item.qty, line.base_price, line.tier_base_price)
    if upgrade and upgrade.savings_per_unit > 0:
        notes.append(
            f"Add {upgrade.qty_needed} more to save {format_price(upgrade.savings_per_unit)} per unit"
        )
    return " | ".join(notes)


def describe_promotion(promotion: ThresholdPromotion) -> str:
    return promotion.label or (
        f"Spend {format_price(promotion.min_order_value)}, save {format_price(promotion.discount)}"
    )


class OfferButton(Button):
    """A cart-page coupon or spend-threshold promotion, enabled once the subtotal reaches it."""

    def __init__(self, offer: Coupon | ThresholdPromotion):
        super().__init__("", classes="offer")
        self.offer = offer

    def refresh_offer(self, subtotal: float, discounts: DiscountSlots) -> None:
        offer = self.offer
        if isinstance(offer, Coupon):
            applied = discounts.coupon is not None and discounts.coupon.code == offer.code
            title = f"{offer.code}: {describe_coupon(offer)}"
        else:
            applied = discounts.promotion is not None and discounts.promotion.id == offer.id
            title = describe_promotion(offer)
        meets = subtotal >= offer.min_order_value
        if applied:
            status = "Applied"
        elif meets:
            status = "Apply"
        else:
            status = f"Min {format_price(offer.min_order_value)} required"
        self.label = f"{title} - {status}"
        self.disabled = applied or not meets


class CartItemWidget(HorizontalGroup):
    def __init__(self, item: CartItem):
        super().__init__()
        self.item = item

    def compose(self):
        with Container(id="div-cart-item-group"):
            with Container(id="div-item"):
                yield Label("", id="label-item-name")
                yield Label("", id="label-item-price")
                yield Label("", id="label-item-note")
            with Horizontal(id="div-qty"):
                yield Button("-", id="btn-sub-qty")
                yield Label(str(self.item.qty), id="label-item-qty")
                yield Button("+", id="btn-add-qty")
            with Container(id="div-actions"):
                yield CartItemActionLabel("", id="link-item-wishlist")
                yield CartItemActionLabel("[@click=remove()]Remove[/]", id="link-item-remove")

    def on_mount(self):
        self.render_item()

    def update_item(self, item: CartItem) -> None:
        self.item = item
        self.render_item()

    def render_item(self) -> None:
        item = self.item
        line = price(item)
        name = item.product.name or "Product"
        if item.selected_attributes:
            name += " (" + ", ".join(a.value for a in item.selected_attributes) + ")"
        self.query_one("#label-item-name", Label).update(name)

        price_text = f"{format_price(line.unit_price)} x {item.qty} = {format_price(line.total_price)}"
        if line.has_discount:
            price_text = f"[strike]{format_price(line.base_price)}[/strike] " + price_text
        self.query_one("#label-item-price", Label).update(price_text)
        self.query_one("#label-item-note", Label).update(describe_line(item))
        self.query_one("#label-item-qty", Label).update(str(item.qty))

        stock = item.product.stock
        self.query_one("#btn-sub-qty", Button).disabled = item.qty <= 1
        self.query_one("#btn-add-qty", Button).disabled = stock is not None and item.qty >= stock

        saved = item.product_id in self.app.state.wishlist
        self.query_one("#link-item-wishlist", CartItemActionLabel).update(
            "[@click=wishlist()]Saved[/]" if saved else "[@click=wishlist()]Save for later[/]"
        )

    @on(Button.Pressed, "#btn-add-qty")
    def handle_add_qty(self):
        self.app.state.cart.request_quantity(self.item.cart_item_id, self.item.qty + 1)

    @on(Button.Pressed, "#btn-sub-qty")
    def handle_sub_qty(self):
        self.app.state.cart.request_quantity(self.item.cart_item_id, self.item.qty - 1)

    @on(CartItemActionWishlistMessage)
    @work()
    async def handle_wishlist(self):
        wishlist = self.app.state.wishlist
        if not await wishlist.toggle(self.item.product_id):
            self.notify(wishlist.error or "Could not update wishlist.", severity="error")
        self.render_item()

    @on(CartItemActionRemoveMessage)
    @work()
    async def handle_remove_item(self):
        remove_confirmed = await self.app.push_screen_wait(
            DialogModal(
                "Do you really want to remove this item from cart?",
                primary_text="Yes",
                secondary_text="No",
                tone="warning",
            )
        )

        if remove_confirmed:
            cart = self.app.state.cart
            if await cart.remove(self.item.cart_item_id):
                self.notify("Item removed from cart.", severity="information")
            else:
                self.notify(cart.error or "Could not remove item.", severity="error")


class CartScreen(BaseScreen):
    """
    Cart lines, coupons and offers, delivery method and totals.
    """

    def __init__(self) -> None:
        super().__init__()
        self.configure("Cart")

    def compose(self) -> ComposeResult:
        yield from super().compose()
        yield VerticalScroll(id="vertscroll-content")
        yield Label("", id="label-cart-error")
        with Horizontal(id="hort-coupon"):
            yield Input(placeholder="Coupon code", id="input-coupon")
            yield Button("Apply", id="btn-apply-coupon")
            yield Button("Remove Coupon", id="btn-remove-coupon")
        yield Label("", id="label-coupon")
        yield HorizontalGroup(id="hort-offers")
        with RadioSet(id="radio-method"):
            yield RadioButton("Pickup (free)", id="radio-pickup")
            yield RadioButton("Normal delivery", id="radio-normal")
            yield RadioButton("Express delivery", id="radio-express")
        yield Markdown("", id="md-totals")
        yield Rule(line_style="dashed")
        with Horizontal(id="hort-buttons"):
            yield Button("Clear Cart", id="btn-clear-cart")
            yield Button("Refresh", id="btn-refresh")
            yield Button("Checkout", id="btn-checkout", variant="primary")

    async def on_mount(self):
        method = self.app.state.method
        for button_id, m in METHOD_BUTTONS.items():
            self.query_one(f"#{button_id}", RadioButton).value = m is method
        self.handle_cart_change()
        self.load_offers()

    @work(exclusive=True, group="offers")
    async def load_offers(self) -> None:
        api = self.app.api
        try:
            offers = [*await api.cart_coupons(), *await api.cart_promotions()]
        except TransportError as e:
            self.notify(f"Could not load offers: {e.message}", severity="warning")
            return
        container = self.query_one("#hort-offers")
        await container.remove_children()
        await container.mount_all([OfferButton(offer) for offer in offers])
        self.render_offers()

    def render_offers(self) -> None:
        state = self.app.state
        subtotal = state.cart.totals().subtotal
        for button in self.query(OfferButton):
            button.refresh_offer(subtotal, state.discounts)

    @on(CartChangedMessage)
    @on(ScreenResume)
    @work(exclusive=True)  # must exclusive, else might race cond and gen duplicate
    async def handle_cart_change(self):
        cart = self.app.state.cart
        items = list(cart.items)

        content = self.query_one("#vertscroll-content")
        widgets = [c for c in content.children if isinstance(c, CartItemWidget)]
        if [w.item.cart_item_id for w in widgets] == [i.cart_item_id for i in items]:
            for widget, item in zip(widgets, items):
                widget.update_item(item)
        else:
            await content.remove_children()
            await content.mount_all([CartItemWidget(item) for item in items])

        if not items:
            content.add_class("no-items")
        else:
            content.remove_class("no-items")

        self.query_one("#label-cart-error", Label).update(cart.error or "")
        await self.render_totals()

    @on(ShippingQuoteChangedMessage)
    async def handle_quote_change(self):
        await self.render_totals()

    def _shipping_text(self) -> str:
        app = self.app
        if app.state.method is ShippingMethod.PICKUP:
            return "Free (pickup)"
        quote = app.checkout.current_quote()
        if quote is not None:
            suffix = " (flat rate)" if quote.source == "guest" else ""
            return format_price(quote.cost) + suffix
        match app.shipping.state:
            case ShippingState.DEBOUNCING | ShippingState.FETCHING:
                return "Calculating..."
            case ShippingState.FAILED:
                return f"Unavailable: {app.shipping.error}"
        return "Enter a delivery address at checkout"

    async def render_totals(self) -> None:
        state = self.app.state
        totals = state.cart.totals()
        discounts = state.discounts

        rows = [["Items", str(totals.item_count)], ["Subtotal", format_price(totals.subtotal)]]
        if totals.total_discount > 0:
            rows.append(["You save", format_price(totals.total_discount)])
        if discounts.coupon:
            rows.append([f"Coupon {discounts.coupon.code}", format_price(-discounts.coupon_discount)])
        if discounts.threshold_discount > 0:
            title = describe_promotion(discounts.promotion) if discounts.promotion else "Promotion"
            rows.append([title, format_price(-discounts.threshold_discount)])
        rows.append(["Shipping", self._shipping_text()])

        total = state.order_total
        quote = self.app.checkout.current_quote()
        if quote is not None:
            total += quote.cost
        rows.append(["**Total**", f"**{format_price(total)}**"])

        md = generate_markdown_table(["", "Amount"], rows, ["l", "r"])
        await self.query_one("#md-totals", Markdown).update(md)

        coupon_label = self.query_one("#label-coupon", Label)
        if discounts.error:
            coupon_label.update(discounts.error)
        elif discounts.coupon:
            coupon_label.update(f"Coupon {discounts.coupon.code} applied")
        else:
            coupon_label.update("")
        self.render_offers()

    @on(RadioSet.Changed, "#radio-method")
    def handle_method_change(self, event: RadioSet.Changed):
        method = METHOD_BUTTONS.get(event.pressed.id or "")
        if method is None or method is self.app.state.method:
            return
        self.app.state.method = method
        self.app.renegotiate()

    async def _apply_code(self, code: str) -> bool:
        state = self.app.state
        if state.cart.is_empty:
            self.notify("Cart is empty.", severity="warning")
            return False
        try:
            result = await state.apply_coupon_code(self.app.api, code)
        except TransportError as e:
            self.notify(e.message, severity="error")
            return False

        await self.render_totals()
        if result is None:
            self.notify("Your cart changed while the coupon was checked. Try again.", severity="warning")
            return False
        if not result.valid:
            self.notify(state.discounts.error or "Coupon cannot be applied", severity="error")
            return False
        self.notify(result.message)
        return True

    @on(Button.Pressed, "#btn-apply-coupon")
    @on(Input.Submitted, "#input-coupon")
    @work(exclusive=True, group="coupon")
    async def handle_apply_coupon(self):
        coupon_input = self.query_one("#input-coupon", Input)
        code = coupon_input.value.strip()
        if not code:
            coupon_input.focus()
            self.notify("Enter a coupon code.", severity="warning")
            return
        if await self._apply_code(code):
            coupon_input.value = ""

    @on(Button.Pressed, ".offer")
    @work(exclusive=True, group="coupon")
    async def handle_apply_offer(self, event: Button.Pressed):
        offer = event.button.offer
        if isinstance(offer, Coupon):
            await self._apply_code(offer.code)
            return
        state = self.app.state
        if state.discounts.apply_promotion(state.cart.totals().subtotal, offer):
            self.notify(f"Promotion applied: {describe_promotion(offer)}")
        else:
            self.notify(state.discounts.error or "Promotion cannot be applied", severity="error")
        await self.render_totals()

    @on(Button.Pressed, "#btn-remove-coupon")
    async def handle_remove_coupon(self):
        if self.app.state.discounts.coupon is None:
            self.notify("No coupon applied.", severity="warning")
            return
        self.app.state.discounts.remove_coupon()
        await self.render_totals()

    @on(Button.Pressed, "#btn-clear-cart")
    @work()
    async def handle_clear_cart(self) -> None:
        if self.app.state.cart.is_empty:
            self.app.notify("Cart is empty.", severity="warning")
            return

        remove_confirmed = await self.app.push_screen_wait(
            DialogModal(
                "Do you really want to remove all items from cart?",
                primary_text="Yes",
                secondary_text="No",
                tone="error",
            )
        )
        if remove_confirmed:
            await self.app.state.cart.clear()
            self.app.state.discounts.reset()

    @on(Button.Pressed, "#btn-refresh")
    @work(exclusive=True, group="refresh")
    async def handle_refresh(self) -> None:
        try:
            await self.app.checkout.refresh()
        except CheckoutStateError as e:
            self.notify(str(e), severity="warning")
            return
        self.app.renegotiate()
        self.notify("Cart refreshed.")

    @on(Button.Pressed, "#btn-checkout")
    @work()
    async def handle_checkout(self) -> None:
        """
        Open up checkout screen
        """
        if self.app.state.cart.is_empty:
            self.app.notify("Cart is empty.", severity="warning")
            return
        if self.app.checkout.status is CheckoutState.BLOCKED:
            self.app.notify("Checkout is blocked, refresh the cart first.", severity="error")
            return

        await self.app.push_screen_wait(CheckoutModal())
        self.handle_cart_change()
