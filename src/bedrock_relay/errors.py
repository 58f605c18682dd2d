"""Error hierarchy for the relay.

Every error carries the HTTP status code the gateway should answer with
and renders an OpenAI-style error body. Translation-stage errors are
raised before any vendor call; vendor-stage errors wrap the failing
operation's name so diagnostics point at the call that broke.
"""

from __future__ import annotations

from typing import Any


class RelayError(Exception):
    """Base exception for all relay errors."""

    status_code: int = 500
    error_type: str = "relay_error"

    def to_dict(self) -> dict[str, Any]:
        """Render the OpenAI-compatible error body."""
        return {
            "error": {
                "message": str(self),
                "type": self.error_type,
                "code": self.status_code,
            }
        }


class InvalidRequestError(RelayError):
    """Absent or malformed canonical request."""

    status_code = 400
    error_type = "invalid_request_error"


class UnknownModelError(RelayError):
    """Model name is not declared by any vendor adapter."""

    status_code = 404
    error_type = "model_not_found"

    def __init__(self, model: str) -> None:
        super().__init__(f"model {model} not found")
        self.model = model


class ConfigurationError(RelayError):
    """Relay misconfiguration (invalid settings, missing client, etc.)."""

    error_type = "configuration_error"


class ImageFetchError(RelayError):
    """An image part could not be resolved to bytes.

    Request translators catch this and drop the part.
    """

    status_code = 400
    error_type = "image_fetch_error"


# ---------------------------------------------------------------------------
# Vendor-stage errors
# ---------------------------------------------------------------------------


class VendorError(RelayError):
    """Base class for failures attributed to the vendor.

    Attributes:
        vendor: Which vendor adapter was in use.
        operation: Name of the vendor operation that failed.
        raw: Raw error payload from the vendor, when available.
    """

    status_code = 502
    error_type = "upstream_error"

    def __init__(
        self,
        message: str,
        *,
        vendor: str = "",
        operation: str = "",
        status_code: int | None = None,
        raw: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(f"{operation}: {message}" if operation else message)
        self.vendor = vendor
        self.operation = operation
        self.raw = raw
        if status_code is not None:
            self.status_code = status_code


class VendorCallError(VendorError):
    """Network, auth or transport failure from the invocation boundary."""


class AuthenticationError(VendorCallError):
    """401: Invalid or expired credentials."""

    status_code = 401
    error_type = "authentication_error"


class AccessDeniedError(VendorCallError):
    """403: Insufficient permissions or model access not granted."""

    status_code = 403
    error_type = "permission_error"


class NotFoundError(VendorCallError):
    """404: Model id or endpoint not found at the vendor."""

    status_code = 404
    error_type = "not_found_error"


class RequestTimeoutError(VendorCallError):
    """408: Vendor call timed out."""

    status_code = 408
    error_type = "timeout_error"


class RateLimitError(VendorCallError):
    """429: Vendor throttled the call."""

    status_code = 429
    error_type = "rate_limit_error"


class ServerError(VendorCallError):
    """500-599: Vendor internal error."""

    error_type = "server_error"


class VendorDecodeError(VendorError):
    """Vendor body or stream chunk could not be decoded."""

    error_type = "upstream_decode_error"


class UnsupportedVendorEventError(VendorError):
    """Vendor stream produced an unrecognized tagged event."""

    error_type = "upstream_stream_error"

    def __init__(self, tag: str, **kwargs: Any) -> None:
        super().__init__(f"unknown stream event tag: {tag}", **kwargs)
        self.tag = tag


# ---------------------------------------------------------------------------
# HTTP status code mapping
# ---------------------------------------------------------------------------

_STATUS_TO_ERROR: dict[int, type[VendorCallError]] = {
    400: VendorCallError,
    401: AuthenticationError,
    403: AccessDeniedError,
    404: NotFoundError,
    408: RequestTimeoutError,
    429: RateLimitError,
    500: ServerError,
    502: ServerError,
    503: ServerError,
    504: ServerError,
}


def error_from_status(
    status_code: int | None,
    message: str,
    *,
    vendor: str = "",
    operation: str = "",
    raw: dict[str, Any] | None = None,
) -> VendorCallError:
    """Create the appropriate VendorCallError subclass from an HTTP status.

    Unknown or missing status codes surface as 502 Bad Gateway.

    Args:
        status_code: HTTP status reported by the vendor, if any.
        message: Error message.
        vendor: Vendor adapter name.
        operation: Vendor operation that failed.
        raw: Raw error payload.

    Returns:
        An instance of the appropriate VendorCallError subclass.
    """
    if status_code is None:
        return VendorCallError(message, vendor=vendor, operation=operation, raw=raw)
    cls = _STATUS_TO_ERROR.get(status_code)
    if cls is None:
        cls = ServerError if status_code >= 500 else VendorCallError
    return cls(
        message,
        vendor=vendor,
        operation=operation,
        status_code=status_code,
        raw=raw,
    )
