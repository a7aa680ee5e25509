from __future__ import annotations

from dataclasses import dataclass


class BillingError(Exception):
    pass


class StorageError(BillingError):
    pass


class StorageUnavailableError(StorageError):
    """The durable cache could not be opened or written."""


class ConstraintViolationError(StorageError):
    """A catalog write collided on the barcode uniqueness constraint."""

    def __init__(self, message: str, barcode: str | None = None) -> None:
        super().__init__(message)
        self.barcode = barcode


class TenantResolutionError(BillingError):
    """No tenant scope is available for the current principal."""


class RemoteUnavailableError(BillingError):
    """Any failure talking to the remote store, treated as opaque by the core."""


@dataclass
class ApiError(RemoteUnavailableError):
    code: str
    message: str
    details: object | None
    trace_id: str | None
    status_code: int
    raw_payload: object | None = None

    def __str__(self) -> str:
        trace = f" trace_id={self.trace_id}" if self.trace_id else ""
        return f"[{self.status_code}] {self.code}: {self.message}{trace}"


class UnauthorizedError(ApiError):
    pass


class ForbiddenError(ApiError):
    pass


class NotFoundError(ApiError):
    pass


class ValidationError(ApiError):
    pass


class AuthError(UnauthorizedError):
    """Authentication failed or session is invalid."""


class PermissionError(ForbiddenError):
    """Row-level access rules denied the request."""


class ConflictError(ApiError):
    """409 or conflict-style errors, e.g. a replayed invoice id."""


class RateLimitError(ApiError):
    """429 throttling error."""


class ServerError(ApiError):
    """5xx server-side failures."""


class TransportError(ApiError):
    """Network/transport failure before an HTTP response was returned."""


class NoActiveCounterError(BillingError):
    """Checkout attempted in a tab that has not selected a counter."""


class InvalidResponseError(ApiError):
    """A success status whose body is not the JSON the API promises (captive portals, proxies)."""
