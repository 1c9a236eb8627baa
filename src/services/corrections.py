"""
Turning server correction payloads into cart mutations.

Every ProductIssue maps to exactly one mutation. priceChanged and saleExpired
are informational: they resolve without touching the cart, the corrected price
shows up on the next render.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from db.models import (
    Attribute,
    CheckoutCorrection,
    IssueType,
    ProductIssue,
    Severity,
    SuggestedAction,
    attributes_key,
)
from utils.pure import format_price


class MutationKind(str, Enum):
    REMOVE = "remove"
    SET_QUANTITY = "setQuantity"
    SET_ATTRIBUTES = "setAttributes"
    NONE = "none"


@dataclass(frozen=True)
class CartMutation:
    kind: MutationKind
    cart_item_id: str
    qty: Optional[int] = None
    attributes: Tuple[Attribute, ...] = ()


def mutation_for(issue: ProductIssue, choice: Optional[Sequence[Attribute]] = None) -> CartMutation:
    """
    The cart mutation that resolves `issue`.

    For attributeUnavailable, `choice` picks one of the issue's alternative
    combinations; the first is used when omitted, and the item is removed when
    there are none.
    """
    item_id = issue.cart_item_id
    remove = CartMutation(MutationKind.REMOVE, item_id)

    if issue.suggested_action is SuggestedAction.REMOVE:
        return remove

    match issue.issue_type:
        case IssueType.OUT_OF_STOCK:
            return remove
        case IssueType.QUANTITY_REDUCED:
            if issue.available_stock <= 0:
                return remove
            return CartMutation(MutationKind.SET_QUANTITY, item_id, qty=issue.available_stock)
        case IssueType.ATTRIBUTE_UNAVAILABLE:
            if not issue.available_attributes:
                return remove
            if choice is None:
                return CartMutation(
                    MutationKind.SET_ATTRIBUTES, item_id, attributes=issue.available_attributes[0]
                )
            wanted = attributes_key(choice)
            for combo in issue.available_attributes:
                if attributes_key(combo) == wanted:
                    return CartMutation(MutationKind.SET_ATTRIBUTES, item_id, attributes=combo)
            raise ValueError(f"{choice!r} is not an available alternative for {item_id}")
        case IssueType.PRICE_CHANGED | IssueType.SALE_EXPIRED:
            return CartMutation(MutationKind.NONE, item_id)


class CorrectionSet:
    """Per-issue resolution progress for one correction payload."""

    def __init__(self, correction: CheckoutCorrection):
        self.correction = correction
        self._resolved: Dict[int, CartMutation] = {}

    @property
    def issues(self) -> Tuple[ProductIssue, ...]:
        return self.correction.errors.products

    def pending(self) -> List[Tuple[int, ProductIssue]]:
        return [(i, issue) for i, issue in enumerate(self.issues) if i not in self._resolved]

    def is_resolved(self, index: int) -> bool:
        return index in self._resolved

    @property
    def is_complete(self) -> bool:
        return not self.pending()

    @property
    def is_blocking(self) -> bool:
        return any(
            issue.severity is Severity.CRITICAL or issue.affects_availability
            for _, issue in self.pending()
        )

    def mark_resolved(self, index: int, mutation: CartMutation) -> None:
        if not 0 <= index < len(self.issues):
            raise IndexError(index)
        self._resolved[index] = mutation

    def prune(self, cart_item_ids: Iterable[str]) -> None:
        """Issues raised against items no longer in the cart count as resolved."""
        present = set(cart_item_ids)
        for i, issue in self.pending():
            if issue.cart_item_id not in present:
                self._resolved[i] = CartMutation(MutationKind.REMOVE, issue.cart_item_id)


def _plural(n: int, word: str) -> str:
    return f"{n} {word}{'' if n == 1 else 's'}"


def format_issue_message(issue: ProductIssue) -> str:
    match issue.issue_type:
        case IssueType.OUT_OF_STOCK:
            return "This product is currently out of stock"
        case IssueType.QUANTITY_REDUCED:
            return (
                f"Only {_plural(issue.available_stock, 'unit')} available "
                f"(you requested {issue.current_qty})"
            )
        case IssueType.PRICE_CHANGED:
            old, new = issue.current_price or 0.0, issue.corrected_price or 0.0
            direction = "increased" if new > old else "decreased"
            return f"Price {direction}: {format_price(old)} -> {format_price(new)}"
        case IssueType.ATTRIBUTE_UNAVAILABLE:
            attrs = ", ".join(f"{a.name}: {a.value}" for a in issue.unavailable_attributes)
            return f"Selected variant ({attrs}) is no longer available"
        case IssueType.SALE_EXPIRED:
            reason = "sold out" if issue.expiry_reason == "maxBuysReached" else "ended"
            return (
                f"Sale {reason} - price increased from {format_price(issue.current_price or 0.0)} "
                f"to {format_price(issue.corrected_price or 0.0)}"
            )
    return issue.message or "Item requires attention"


def group_issues_by_severity(issues: Sequence[ProductIssue]) -> Dict[Severity, List[ProductIssue]]:
    groups: Dict[Severity, List[ProductIssue]] = {s: [] for s in Severity}
    for issue in issues:
        groups[issue.severity].append(issue)
    return groups


ACTION_LABELS = {
    SuggestedAction.REMOVE: "Remove Item",
    SuggestedAction.REDUCE_QUANTITY: "Reduce Quantity",
    SuggestedAction.CHANGE_ATTRIBUTE: "Change Variant",
    SuggestedAction.ACCEPT_PRICE: "Accept New Price",
}


def action_label(action: SuggestedAction) -> str:
    return ACTION_LABELS.get(action, "Update")
