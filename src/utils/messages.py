from textual.message import Message


class QuitRequestedMessage(Message):
    """
    broadcasted when the app is about to quit
    """

    bubble = True


class CartChangedMessage(Message):
    """
    Fired whenever the cart store notifies a change (add, quantity, attributes, removal).
    Triggers a re-render of the cart lines and totals, and a new shipping negotiation.

    The stores live on the app, so post it at App level
    """

    bubble = True


class ShippingQuoteChangedMessage(Message):
    """
    Fired on every ShippingCostNegotiator state transition
    """

    bubble = True

    def __init__(self, state: str, cost: float | None, error: str | None) -> None:
        super().__init__()
        self.state = state
        self.cost = cost
        self.error = error


class CheckoutStateChangedMessage(Message):
    """
    Fired on every CheckoutReconciler transition. The checkout modal listens
    for NEEDS_CORRECTION to open the review.
    """

    bubble = True

    def __init__(self, status: str) -> None:
        super().__init__()
        self.status = status
