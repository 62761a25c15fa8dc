"""
Service Error Taxonomy

Every failure the order service reports to a client is one of these.
Each class carries the HTTP status the API layer renders it with, so
services raise domain errors and never touch FastAPI directly.
"""

from typing import Optional


class OrderServiceError(Exception):
    """Base class for all errors raised by the order service."""

    status_code: int = 500
    error: str = "Internal Server Error"

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class ValidationError(OrderServiceError):
    """Request rejected before any write (missing delivery field, required option)."""

    status_code = 400
    error = "Validation Error"

    def __init__(self, problems: list[str]):
        self.problems = list(problems)
        super().__init__("; ".join(self.problems))


class BadRequestError(OrderServiceError):
    """Callback input that cannot be correlated to an order."""

    status_code = 400
    error = "Bad Request"


class NotFoundError(OrderServiceError):
    """Order, postcode or provider session does not exist."""

    status_code = 404
    error = "Not Found"


class SessionNotFoundError(NotFoundError):
    """The payment provider does not know the session id."""


class GatewayError(OrderServiceError):
    """
    Payment provider failure (auth, network, validation).

    The message is deliberately opaque; the provider's own error is
    chained as ``__cause__`` and logged where it is caught.
    """

    status_code = 502
    error = "Payment Gateway Error"


class PersistenceError(OrderServiceError):
    """A database transaction failed and was rolled back."""

    status_code = 500
    error = "Persistence Error"


class SnapshotDecodeError(OrderServiceError):
    """One stored line-item snapshot could not be decoded."""

    error = "Snapshot Decode Error"
