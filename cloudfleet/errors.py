"""Error hierarchy shared by every cloud adapter."""

from __future__ import annotations

from typing import Any


class CloudError(Exception):
    """Base exception for cloud provider errors.

    Every error raised by an adapter carries the vendor tag and an
    HTTP-style status code so callers can render it without knowing which
    vendor produced it.
    """

    default_status: int = 500

    def __init__(
        self,
        message: str,
        provider: str = "unknown",
        status_code: int | None = None,
        vendor_code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.status_code = self.default_status if status_code is None else status_code
        # Vendor's own error code (e.g. Azure's "QuotaExceeded"), when known
        self.vendor_code = vendor_code

    def to_dict(self) -> dict[str, Any]:
        data = {
            "error": type(self).__name__,
            "message": self.message,
            "provider": self.provider,
            "status_code": self.status_code,
        }
        if self.vendor_code:
            data["vendor_code"] = self.vendor_code
        return data


class CloudAuthError(CloudError):
    """Authentication or authorization error."""

    default_status = 401


class CloudNotFoundError(CloudError):
    """Resource not found error."""

    default_status = 404


class CloudQuotaError(CloudError):
    """Resource quota or limit exceeded."""

    default_status = 429


class CloudValidationError(CloudError):
    """Request rejected before or by the vendor as invalid."""

    default_status = 400


class CredentialFormatError(CloudValidationError):
    """Credential string does not match the vendor's expected shape."""


class CapabilityNotSupportedError(CloudError):
    """The adapter does not offer the requested optional capability."""

    default_status = 501


class CloudTimeoutError(CloudError):
    """A polling loop gave up before the vendor reached a terminal state.

    The vendor-side operation may still complete afterwards; this is not a
    hard failure.
    """

    default_status = 504

