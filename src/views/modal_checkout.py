from textual import events, on, work
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.screen import ModalScreen
from textual.widgets import Button, Input, Label, MarkdownViewer

from db.models import CheckoutBlocked, CheckoutCorrection, CheckoutSuccess, Destination, ShippingMethod
from pricing.engine import price
from services.shipping import ShippingState
from utils.errors import CheckoutStateError
from utils.messages import CartChangedMessage, ShippingQuoteChangedMessage
from utils.pure import format_price, generate_markdown_table
from views.modal_corrections import CorrectionReviewModal
from views.modal_dialog import BlockedDialogModal, DialogModal

ADDRESS_FIELDS = {
    "input-country": ("country", "Country"),
    "input-state": ("state", "State"),
    "input-lga": ("lga", "LGA / District"),
    "input-city": ("city", "City (optional)"),
    "input-street": ("street", "Street address"),
    "input-postal": ("postal_code", "Postal code"),
}


class CheckoutModal(ModalScreen[bool]):
    """
    A modal screen for check out: order summary, delivery address with a live
    shipping quote, and order notes.
    Return True when an order was placed, False otherwise.
    """

    def compose(self) -> ComposeResult:
        with Vertical():
            yield MarkdownViewer("", show_table_of_contents=False)
            with Vertical(id="div-address"):
                yield Label("Delivery Address")
                with Horizontal(id="hort-address-1"):
                    for input_id in ("input-country", "input-state", "input-lga"):
                        yield Input(placeholder=ADDRESS_FIELDS[input_id][1], id=input_id)
                with Horizontal(id="hort-address-2"):
                    for input_id in ("input-city", "input-street", "input-postal"):
                        yield Input(placeholder=ADDRESS_FIELDS[input_id][1], id=input_id)
            yield Label("", id="label-quote")
            yield Input(placeholder="Order notes (optional)", id="input-notes")
            yield Label("", id="label-notice")
            with Horizontal():
                yield Button("Go Back", id="btn-quit")
                yield Button("Accept Changes", id="btn-accept-changes", variant="warning")
                yield Button("Place Order", id="btn-submit", variant="primary")

    async def on_mount(self):
        state = self.app.state
        destination = state.destination
        if destination is not None:
            for input_id, (attr, _) in ADDRESS_FIELDS.items():
                self.query_one(f"#{input_id}", Input).value = getattr(destination, attr)

        self.query_one("#btn-accept-changes").display = False
        pickup = state.method is ShippingMethod.PICKUP
        self.query_one("#div-address").display = not pickup
        await self.render_summary()
        self.render_quote()
        if pickup:
            self.query_one("#btn-submit").focus()
        else:
            self.query_one("#input-country").focus()

    async def render_summary(self) -> None:
        state = self.app.state
        headers = ["Product Name", "Unit Price", "Quantity", "Total Price"]
        rows = []
        for item in state.cart.items:
            line = price(item)
            name = item.product.name or "Product"
            if item.selected_attributes:
                name += " (" + ", ".join(a.value for a in item.selected_attributes) + ")"
            rows.append(
                [name, format_price(line.unit_price), item.qty, format_price(line.total_price)]
            )
        aligns = ["l", "r", "c", "r"]
        header_md = "### Order Summary\n\n"
        md = generate_markdown_table(headers, rows, aligns)

        totals = state.cart.totals()
        md += f"\n\n**Subtotal:** {format_price(totals.subtotal)}"
        if state.discounts.discount_cart > 0:
            md += f"\n\n**Discount:** {format_price(-min(state.discounts.discount_cart, totals.subtotal))}"
        await self.query_one(MarkdownViewer).document.update(header_md + md)

    def render_quote(self) -> None:
        app = self.app
        label = self.query_one("#label-quote", Label)
        quote = app.checkout.current_quote()
        if quote is not None:
            total = app.state.order_total + quote.cost
            shipping = "Free pickup" if quote.method is ShippingMethod.PICKUP else format_price(quote.cost)
            label.update(f"Shipping: {shipping}    Total: {format_price(total)}")
            return
        match app.shipping.state:
            case ShippingState.DEBOUNCING | ShippingState.FETCHING:
                label.update("Shipping: calculating...")
            case ShippingState.FAILED:
                label.update(f"Shipping: {app.shipping.error}")
            case _:
                label.update("Shipping: enter your full address to get a quote")

    def _destination(self) -> Destination:
        values = {
            attr: self.query_one(f"#{input_id}", Input).value.strip()
            for input_id, (attr, _) in ADDRESS_FIELDS.items()
        }
        return Destination(**values)

    @on(Input.Changed)
    def handle_address_changed(self, message: Input.Changed) -> None:
        if message.input.id not in ADDRESS_FIELDS:
            return
        message.input.remove_class("-invalid")
        self.app.state.destination = self._destination()
        self.app.renegotiate()

    @on(ShippingQuoteChangedMessage)
    def handle_quote_change(self):
        self.render_quote()

    @on(CartChangedMessage)
    async def handle_cart_change(self):
        await self.render_summary()
        self.render_quote()

    def on_key(self, event: events.Key) -> None:
        if event.key == "escape":
            self._leave()

    def _leave(self) -> None:
        # unaccepted changes are dropped, the next submit reports them again
        if self.app.checkout.corrections is not None:
            self.app.checkout.dismiss()
        self.dismiss(False)

    def _flag_missing_address(self) -> bool:
        # city is the only optional field
        missing = [
            input_id
            for input_id in ADDRESS_FIELDS
            if input_id != "input-city" and not self.query_one(f"#{input_id}", Input).value.strip()
        ]
        for input_id in missing:
            self.query_one(f"#{input_id}", Input).add_class("-invalid")
        if missing:
            self.query_one(f"#{missing[0]}", Input).focus()
        return bool(missing)

    @on(Button.Pressed, "#btn-submit")
    @work(exclusive=True)
    async def handle_submit(self):
        app = self.app
        checkout = app.checkout
        if app.state.method is not ShippingMethod.PICKUP and self._flag_missing_address():
            self.notify("Delivery address is incomplete.", severity="error")
            return

        quote = checkout.current_quote()
        total = app.state.order_total + (quote.cost if quote else 0.0)
        if not await app.push_screen_wait(
            DialogModal(
                f"Place order for {format_price(total)}?",
                primary_text="Yes",
                secondary_text="No",
                tone="positive",
            )
        ):
            return

        notes = self.query_one("#input-notes", Input).value.strip()
        try:
            outcome = await checkout.submit(notes=notes)
        except CheckoutStateError as e:
            self.notify(str(e), severity="error")
            return

        notice = self.query_one("#label-notice", Label)
        match outcome:
            case None:
                self.notify(checkout.error or "Checkout failed.", severity="error")
            case CheckoutSuccess(order_id=order_id):
                self.notify(f"Order placed. Your order number is {order_id}.")
                self.dismiss(True)
            case CheckoutCorrection() if not checkout.needs_review:
                notice.update(checkout.inline_notice())
                self.query_one("#btn-accept-changes").display = True
                self.query_one("#btn-submit").disabled = True
            case CheckoutCorrection():
                ready = await app.push_screen_wait(CorrectionReviewModal())
                notice.update("Cart updated, place the order again." if ready else "")
                await self.render_summary()
                self.render_quote()
            case CheckoutBlocked(reason=reason, errors=errors):
                detail = None
                if errors.total is not None:
                    detail = (
                        f"Expected {format_price(errors.total.expected_total)}, "
                        f"server calculated {format_price(errors.total.calculated_total)}."
                    )
                await app.push_screen_wait(BlockedDialogModal(reason, detail))
                await checkout.refresh()
                app.renegotiate()
                self.dismiss(False)

    @on(Button.Pressed, "#btn-accept-changes")
    @work(exclusive=True)
    async def handle_accept_changes(self):
        checkout = self.app.checkout
        try:
            ok = await checkout.accept_all()
        except CheckoutStateError as e:
            self.notify(str(e), severity="error")
            return
        if not ok:
            self.notify(checkout.error or "Could not update the cart.", severity="error")
            return
        self.query_one("#btn-accept-changes").display = False
        self.query_one("#btn-submit").disabled = False
        self.query_one("#label-notice", Label).update("Changes accepted, place the order again.")
        await self.render_summary()
        self.render_quote()

    @on(Button.Pressed, "#btn-quit")
    def handle_quit(self):
        self._leave()
