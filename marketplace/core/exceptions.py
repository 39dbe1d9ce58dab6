from __future__ import annotations

from typing import Any


class MarketplaceError(Exception):
    """Base class for engine errors raised across service boundaries."""


class SubmissionValidationError(MarketplaceError):
    """Input rejected before any lender is contacted."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field


class UnsupportedLenderTypeError(MarketplaceError):
    def __init__(self, lender_type: Any) -> None:
        super().__init__(f"No lender client registered for type '{lender_type}'")
        self.lender_type = lender_type


class LenderRequestError(MarketplaceError):
    """Transport-level failure talking to a lender back-end."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        details: Any = None,
        timed_out: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details
        self.timed_out = timed_out


class WebhookConfigurationError(MarketplaceError):
    """Raised when no webhook secret is configured for a lender type."""
