from typing import Optional, Tuple

from textual import on, work
from textual.app import ComposeResult
from textual.containers import Horizontal, HorizontalGroup, Vertical, VerticalScroll
from textual.message import Message
from textual.screen import ModalScreen
from textual.widgets import Button, Label, Select

from db.models import Attribute, IssueType, ProductIssue, Severity
from services.corrections import action_label, format_issue_message, group_issues_by_severity
from utils.errors import CheckoutStateError

SEVERITY_TITLES = {
    Severity.CRITICAL: "Needs action",
    Severity.WARNING: "Changed",
    Severity.INFO: "For your information",
}


class IssueResolveRequested(Message):
    bubble = True

    def __init__(self, index: int, choice: Optional[Tuple[Attribute, ...]]) -> None:
        super().__init__()
        self.index = index
        self.choice = choice


class IssueWidget(HorizontalGroup):
    def __init__(self, index: int, issue: ProductIssue, resolved: bool):
        super().__init__(classes=f"issue-{issue.severity.value}")
        self.index = index
        self.issue = issue
        self.resolved = resolved

    def compose(self) -> ComposeResult:
        with Vertical(id="div-issue-text"):
            yield Label(self.issue.product_name or "Item", id="label-issue-product")
            yield Label(format_issue_message(self.issue), id="label-issue-message")
        if self.issue.issue_type is IssueType.ATTRIBUTE_UNAVAILABLE and self.issue.available_attributes:
            yield Select(
                [
                    (", ".join(f"{a.name}: {a.value}" for a in combo), i)
                    for i, combo in enumerate(self.issue.available_attributes)
                ],
                prompt="Choose a variant",
                id="select-variant",
            )
        yield Button(
            "Done" if self.resolved else action_label(self.issue.suggested_action),
            id="btn-resolve",
            disabled=self.resolved,
            variant="error" if self.issue.severity is Severity.CRITICAL else "default",
        )

    @on(Button.Pressed, "#btn-resolve")
    def handle_resolve(self):
        choice = None
        for select in self.query(Select):
            if isinstance(select.value, int):
                choice = self.issue.available_attributes[select.value]
        self.post_message(IssueResolveRequested(self.index, choice))

    def mark_resolved(self) -> None:
        self.resolved = True
        button = self.query_one("#btn-resolve", Button)
        button.label = "Done"
        button.disabled = True


class CorrectionReviewModal(ModalScreen[bool]):
    """
    Review of a checkout correction.
    Returns True once every issue is handled and the cart is ready to resubmit,
    False when dismissed with issues left.
    """

    def compose(self) -> ComposeResult:
        checkout = self.app.checkout
        corrections = checkout.corrections
        with Vertical(id="div-corrections"):
            yield Label("Some items in your cart changed since you added them.", id="caption")
            if checkout.notice:
                yield Label(checkout.notice, id="label-correction-notice")
            with VerticalScroll(id="vertscroll-issues"):
                if corrections is not None:
                    index_of = {id(issue): i for i, issue in enumerate(corrections.issues)}
                    for severity, issues in group_issues_by_severity(corrections.issues).items():
                        if not issues:
                            continue
                        yield Label(SEVERITY_TITLES[severity], classes="severity-title")
                        for issue in issues:
                            index = index_of[id(issue)]
                            yield IssueWidget(index, issue, corrections.is_resolved(index))
            with Horizontal(id="hort-buttons"):
                yield Button("Dismiss", id="btn-dismiss")
                yield Button("Accept All", id="btn-accept-all", variant="primary")

    def on_mount(self):
        self.query_one("#btn-accept-all").focus()

    def _finish_if_settled(self) -> bool:
        if self.app.checkout.corrections is None:
            self.notify("Cart updated. Review the totals and place your order again.")
            self.dismiss(True)
            return True
        return False

    @on(IssueResolveRequested)
    @work(exclusive=True)
    async def handle_resolve(self, message: IssueResolveRequested):
        checkout = self.app.checkout
        try:
            ok = await checkout.resolve_issue(message.index, message.choice)
        except (CheckoutStateError, ValueError) as e:
            self.notify(str(e), severity="error")
            return
        if not ok:
            self.notify(checkout.error or "Could not update the cart.", severity="error")
            return
        if self._finish_if_settled():
            return
        # resolving one issue can settle others raised against the same item
        for widget in self.query(IssueWidget):
            if checkout.corrections.is_resolved(widget.index):
                widget.mark_resolved()

    @on(Button.Pressed, "#btn-accept-all")
    @work(exclusive=True)
    async def handle_accept_all(self):
        checkout = self.app.checkout
        try:
            ok = await checkout.accept_all()
        except CheckoutStateError as e:
            self.notify(str(e), severity="error")
            return
        if not ok:
            self.notify(checkout.error or "Could not update the cart.", severity="error")
            return
        self._finish_if_settled()

    @on(Button.Pressed, "#btn-dismiss")
    def handle_dismiss(self):
        if self.app.checkout.corrections is not None:
            self.app.checkout.dismiss()
        self.dismiss(False)
