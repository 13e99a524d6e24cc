"""Client-side security layer: request signing, token lifecycle, envelope encryption.

Security Note (Threat Model):
    Vault keys, API keys and tokens live in process memory while in use.
    A memory dump of the application process could expose them.
    JWT signatures are not verified client-side; the issuing server is
    trusted for token validity and expiry claims are only used to
    schedule refreshes.
"""

from .signature import (
    SIGNATURE_HEADER,
    SIGNATURE_TIMESTAMP_HEADER,
    SIGNATURE_NONCE_HEADER,
    MAX_TIMESTAMP_AGE_MS,
    build_signature_payload,
    generate_nonce,
    sign_payload,
    sign_request,
    verify_signature,
)
from .tokens import AuthTokens, TokenManager, decode_jwt_payload, is_token_expired
from .crypto import (
    EncryptedEnvelope,
    decrypt,
    encrypt,
    generate_vault_key,
    is_encrypted_envelope,
)
from .key_rotation import rotate_vault_key

__all__ = [
    "SIGNATURE_HEADER",
    "SIGNATURE_TIMESTAMP_HEADER",
    "SIGNATURE_NONCE_HEADER",
    "MAX_TIMESTAMP_AGE_MS",
    "build_signature_payload",
    "generate_nonce",
    "sign_payload",
    "sign_request",
    "verify_signature",
    "AuthTokens",
    "TokenManager",
    "decode_jwt_payload",
    "is_token_expired",
    "EncryptedEnvelope",
    "decrypt",
    "encrypt",
    "generate_vault_key",
    "is_encrypted_envelope",
    "rotate_vault_key",
]
