from textual import on, work
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Container
from textual.events import ScreenResume
from textual.screen import Screen
from textual.widgets import Footer, Header, Label, Markdown

from utils.config import settings
from utils.messages import CartChangedMessage, CheckoutStateChangedMessage
from utils.pure import generate_markdown_table
from views.modal_dialog import QuitDialogModal


class Sidebar(Container):
    """Session summary: who we are talking to, wishlist size, last order."""

    def compose(self) -> ComposeResult:
        yield Label("Session", id="label-info-1")
        yield Markdown("", id="md-session")

    async def on_mount(self):
        await self.refresh_info()

    async def refresh_info(self) -> None:
        state = self.app.state
        if settings.offline:
            mode = "Offline demo"
        elif self.app.api.is_guest:
            mode = "Guest"
        else:
            mode = "Signed in"
        latest = state.payments.latest

        table_rows = [
            ["Mode", mode],
            ["Items", str(sum(i.qty for i in state.cart.items))],
            ["Wishlist", str(len(state.wishlist.product_ids))],
            ["Last order", latest.order_id if latest else "-"],
        ]
        md_table_str = generate_markdown_table(None, table_rows, ["l", "l"])
        await self.query_one("#md-session", Markdown).update(md_table_str)


class BaseScreen(Screen):
    """
    Inherited by all screens, contains common elements like
    headers, footers, sidebar, and keybindings.
    """

    BINDINGS = [
        Binding("ctrl+z", "quit", "Quit App", show=True),
    ]

    def __init__(self):
        super().__init__()

        self.configure()

    def configure(
        self,
        header_sub_title: str = "Storefront",
        show_sidebar: bool = True,
    ) -> None:
        """
        configure behavior of the base screen
        :return:
        """
        self.app.title = "Storefront"
        self.sub_title = header_sub_title
        self._show_sidebar = show_sidebar

    def compose(self) -> ComposeResult:
        if self._show_sidebar:
            yield Sidebar()
        yield Header()
        yield Footer(show_command_palette=False)

    @on(CartChangedMessage)
    @on(CheckoutStateChangedMessage)
    @on(ScreenResume)
    async def refresh_sidebar(self):
        for sidebar in self.query(Sidebar):
            await sidebar.refresh_info()

    @work()
    async def action_quit(self):
        await self.app.push_screen_wait(QuitDialogModal())
