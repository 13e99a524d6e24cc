"""
SDK Exceptions — Typed error taxonomy surfaced to callers.

HTTP-level failures are mapped onto these classes by
:func:`vault_sdk.handlers.classify_error`; the envelope cipher and the
token manager raise their own subclasses directly.
"""
from typing import Any, Optional


class VaultSDKError(Exception):
    """Root of every error raised by the SDK."""


class SDKError(VaultSDKError):
    """Generic API error carrying the HTTP status when there is one."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, status_code={self.status_code})"


class ValidationError(SDKError):
    """400: the request was rejected as invalid."""

    def __init__(self, message: str = "Invalid request", details: Any = None):
        super().__init__(message, 400)
        self.details = details


class AuthenticationError(SDKError):
    """401"""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message, 401)


class AuthorizationError(SDKError):
    """403"""

    def __init__(self, message: str = "Permission denied"):
        super().__init__(message, 403)


class NotFoundError(SDKError):
    """404: carries the resource type and identifier that were looked up."""

    def __init__(self, resource: str = "Resource", identifier: str = ""):
        super().__init__(f"{resource} not found: {identifier}", 404)
        self.resource = resource
        self.identifier = identifier


class ConflictError(SDKError):
    """409"""

    def __init__(self, message: str = "Resource conflict"):
        super().__init__(message, 409)


class RateLimitError(SDKError):
    """429"""

    def __init__(self, message: str = "Rate limit exceeded"):
        super().__init__(message, 429)


class NetworkError(SDKError):
    """No HTTP response was obtained (connection, DNS or timeout failure)."""

    def __init__(self, message: str = "Network request failed", cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


# ---------------------------------------------------------------------------
# Envelope encryption
# ---------------------------------------------------------------------------

class EnvelopeError(VaultSDKError):
    """Base class for document encryption failures."""


class InvalidKeyLengthError(EnvelopeError, ValueError):
    """The vault key does not decode to exactly 32 bytes."""


class InvalidEnvelopeError(EnvelopeError, ValueError):
    """The envelope is not valid JSON or is structurally malformed."""


class UnsupportedVersionError(EnvelopeError):
    """The envelope declares a version this SDK cannot read."""

    def __init__(self, version: Any):
        self.version = version
        super().__init__(f"Unsupported encryption envelope version: {version!r}")


class UnsupportedAlgorithmError(EnvelopeError):
    """The envelope declares an algorithm this SDK cannot read."""

    def __init__(self, algorithm: Any):
        self.algorithm = algorithm
        super().__init__(f"Unsupported encryption algorithm: {algorithm!r}")


class AuthenticationFailedError(EnvelopeError):
    """GCM tag mismatch: tampered ciphertext/tag or wrong vault key."""


# ---------------------------------------------------------------------------
# Token lifecycle
# ---------------------------------------------------------------------------

class NoRefreshTokenError(VaultSDKError):
    """A refresh was requested but no refresh token is held."""

    def __init__(self, message: str = "No refresh token available"):
        super().__init__(message)


class TokenDecodeError(VaultSDKError, ValueError):
    """A JWT could not be split, base64url-decoded or parsed."""
