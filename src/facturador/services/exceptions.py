from __future__ import annotations

from typing import Any


class FacturadorError(Exception):
    """Base class for every error raised by the invoicing core."""


class ValidationError(FacturadorError, ValueError):
    """Caller input could not be parsed into a submission."""


class AuthenticationError(FacturadorError):
    """Credential or token failure, or the tenant id could not be resolved."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SellerUnresolvedError(FacturadorError):
    """No seller could be resolved from the catalog or configuration."""

    def __init__(self, message: str, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class NotFoundError(FacturadorError):
    """The invoice referenced by a credit note does not exist upstream."""


class ExternalApiError(FacturadorError):
    """The invoicing API answered with a non-2xx status.

    Carries the upstream error code, the response body and, for invoice
    submissions, the shape of the seller/tax fields that were sent.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        error_code: str | None = None,
        params: list[str] | None = None,
        response: Any = None,
        method: str | None = None,
        url: str | None = None,
        payload_shape: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.params = params or []
        self.response = response
        self.method = method
        self.url = url
        self.payload_shape = payload_shape

    @property
    def is_unauthorized(self) -> bool:
        return self.status_code == 401

    def mentions(self, word: str) -> bool:
        """True if *word* appears in the upstream message or any error param."""
        word = word.lower()
        if word in str(self).lower():
            return True
        return any(word in str(p).lower() for p in self.params)


class RetryableApiError(ExternalApiError):
    """Raised for HTTP status codes that are safe to retry (429, 502, 503, 504)."""


class CustomerCreateError(ExternalApiError):
    """Customer creation failed for a reason other than a duplicate."""
