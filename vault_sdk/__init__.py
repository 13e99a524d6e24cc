"""Lifestream Vault SDK.

Async client for the Lifestream Vault API with its client-side security
layer: HMAC request signing, JWT refresh and AES-256-GCM document encryption.
"""
from .version import __version__
from .client import VaultClient
from .config import ClientConfig
from .audit import AuditLogger, AuditEntry
from .handlers import classify_error, handle_error
from .exceptions import (
    VaultSDKError,
    SDKError,
    ValidationError,
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
    ConflictError,
    RateLimitError,
    NetworkError,
    EnvelopeError,
    InvalidKeyLengthError,
    InvalidEnvelopeError,
    UnsupportedVersionError,
    UnsupportedAlgorithmError,
    AuthenticationFailedError,
    NoRefreshTokenError,
)
from .security import (
    TokenManager,
    AuthTokens,
    sign_request,
    encrypt,
    decrypt,
    generate_vault_key,
    is_encrypted_envelope,
)

__all__ = [
    "__version__",
    "VaultClient",
    "ClientConfig",
    "AuditLogger",
    "AuditEntry",
    "classify_error",
    "handle_error",
    "VaultSDKError",
    "SDKError",
    "ValidationError",
    "AuthenticationError",
    "AuthorizationError",
    "NotFoundError",
    "ConflictError",
    "RateLimitError",
    "NetworkError",
    "EnvelopeError",
    "InvalidKeyLengthError",
    "InvalidEnvelopeError",
    "UnsupportedVersionError",
    "UnsupportedAlgorithmError",
    "AuthenticationFailedError",
    "NoRefreshTokenError",
    "TokenManager",
    "AuthTokens",
    "sign_request",
    "encrypt",
    "decrypt",
    "generate_vault_key",
    "is_encrypted_envelope",
]
