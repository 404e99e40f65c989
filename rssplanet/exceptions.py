"""
Gateway error taxonomy.

Each error carries the HTTP status it is rendered with; the server installs a
single handler that turns any GatewayError into the HTML error page.
"""

from typing import TypeVar

T = TypeVar("T")


class GatewayError(Exception):
    """Base class for errors surfaced to the caller."""

    status_code: int = 500
    default_message: str = "An internal server error occurred"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(GatewayError):
    """Malformed or missing request parameters."""

    status_code = 400
    default_message = "Invalid request parameters"


class AuthError(GatewayError):
    """Missing or invalid caller key."""

    status_code = 401
    default_message = "The key parameter was missing or incorrect"


class NotFoundError(GatewayError):
    """Unknown token or stored entry."""

    status_code = 404
    default_message = "Not found"


class InternalError(GatewayError):
    """Parse, encryption or other internal failure."""

    status_code = 500


class ParseFailure(InternalError):
    """The upstream document could not be parsed as XML."""

    default_message = "The feed could not be parsed"


class UpstreamUnreachable(GatewayError):
    """Fetching the target failed."""

    status_code = 502
    default_message = "The target could not be reached"


STATUS_TITLES = {
    400: "Bad Request",
    401: "Unauthorized",
    404: "Not Found",
    429: "Too Many Requests",
    500: "Internal Server Error",
    502: "Target Unreachable",
}


def status_title(status_code: int) -> str:
    """Human readable title for an error status."""
    return STATUS_TITLES.get(status_code, "Error")


def require_resource(resource: T | None, detail: str = "Resource not found") -> T:
    """
    Raise 404 if resource is None, otherwise return the resource.

    Usage:
        entry = require_resource(await store.get(entry_id), "File not found")
    """
    if resource is None:
        raise NotFoundError(detail)
    return resource


def require_auth(auth_key: str | None) -> str:
    """Raise 401 if the caller did not present a valid key."""
    if not auth_key:
        raise AuthError()
    return auth_key
