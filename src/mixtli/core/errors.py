"""Error taxonomy shared by the gateway and its storage providers.

Provider-specific failures (botocore codes, Google API errors, filesystem
errors) are translated into these classes at the storage boundary. The HTTP
layer renders any :class:`GatewayError` as ``{error, category, hint}``.
"""

from typing import Any, Optional


class GatewayError(Exception):
    """Base exception for the transfer gateway."""

    status_code: int = 500
    category: str = "internal"
    hint: str = "Unexpected gateway failure"

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if hint is not None:
            self.hint = hint

    def to_dict(self) -> dict[str, Any]:
        """Structured error body."""
        return {"error": self.message, "category": self.category, "hint": self.hint}


class ConfigurationError(GatewayError):
    """Exception raised when required configuration is missing or invalid."""

    category = "configuration"
    hint = "Check the storage endpoint, bucket and credential settings"


class ClientInputError(GatewayError):
    """Exception raised for malformed or oversized requests."""

    status_code = 400
    category = "client_input"
    hint = "Fix the request and try again"


class QuotaExceeded(ClientInputError):
    """Exception raised when a declared size exceeds the plan limit."""

    category = "quota_exceeded"
    hint = "Upgrade the plan or upload a smaller file"

    def __init__(self, limit_bytes: int, message: Optional[str] = None):
        super().__init__(message or f"File exceeds the plan limit ({limit_bytes} bytes)")
        self.limit_bytes = limit_bytes

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body["limitBytes"] = self.limit_bytes
        return body


class BundleExpired(ClientInputError):
    """Exception raised when a bundle manifest is past its expiry."""

    status_code = 410
    category = "expired"
    hint = "Ask the sender for a new link"


class FeatureDisabled(ClientInputError):
    """Exception raised when a disabled feature is requested."""

    status_code = 403
    category = "feature_disabled"
    hint = "This deployment does not offer the requested operation"


class UpstreamUnauthorized(GatewayError):
    """Exception raised when storage rejects the gateway credentials."""

    status_code = 401
    category = "upstream_unauthorized"
    hint = "Storage rejected the gateway credentials; rotate or correct the access keys"


class UpstreamForbidden(GatewayError):
    """Exception raised when storage denies access to a bucket or object."""

    status_code = 403
    category = "upstream_forbidden"
    hint = "Grant the gateway credentials access to the bucket"


class UpstreamNotFound(GatewayError):
    """Exception raised when an object, upload or bucket does not exist."""

    status_code = 404
    category = "not_found"
    hint = "Check the key or upload id"


class UpstreamTransientError(GatewayError):
    """Exception raised for network failures and 5xx answers from storage."""

    status_code = 502
    category = "upstream_unavailable"
    hint = "Storage is temporarily unavailable; retry with backoff"
