"""
Exceptions raised by the I/O layers (API client, stores, checkout).

Pricing code never raises; see pricing/*. Services catch these, log them and
keep the message on their state object for the UI.
"""

from __future__ import annotations

from typing import Any, Optional


class StorefrontError(Exception):
    """Base exception for all storefront client errors."""

    pass


class TransportError(StorefrontError):
    """A request to the storefront API failed (network error or non-2xx status)."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        payload: Any = None,
        original_error: Exception | None = None,
    ):
        self.status = status
        self.payload = payload
        self.original_error = original_error
        self.message = message
        super().__init__(message if status is None else f"[{status}] {message}")


class AuthorizationError(TransportError):
    """HTTP 401 from an authenticated endpoint."""

    def __init__(self, message: str = "Unauthorized", payload: Any = None):
        super().__init__(message, status=401, payload=payload)


class InvalidResponseError(TransportError):
    """The server answered 2xx but the body did not have the expected shape."""

    pass


class CheckoutStateError(StorefrontError):
    """An operation was attempted from a checkout state that forbids it."""

    pass
