"""
Envelope Crypto — AES-256-GCM encryption of document content.

Envelope format (compact JSON, this key order)::

    {"version":1,"algorithm":"aes-256-gcm","iv":"<24 hex>",
     "authTag":"<32 hex>","ciphertext":"<hex>"}

The vault key is 32 random bytes, hex-encoded. The SDK never stores it:
persistence and distribution are the caller's responsibility.

Security Note:
    Never log plaintext, ciphertext or key material.
    IVs are random 96-bit values from the OS CSPRNG, one per call;
    an IV must never be reused with the same key.
"""
import os
import logging
import secrets
from typing import Any, Union

import orjson
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from ..exceptions import (
    AuthenticationFailedError,
    InvalidEnvelopeError,
    InvalidKeyLengthError,
    UnsupportedAlgorithmError,
    UnsupportedVersionError,
)
from .codec import from_hex, to_hex

logger = logging.getLogger("vault_sdk.security")

ENVELOPE_VERSION = 1
ENVELOPE_ALGORITHM = "aes-256-gcm"
KEY_LENGTH = 32  # AES-256
IV_LENGTH = 12  # 96-bit nonce
AUTH_TAG_LENGTH = 16  # 128-bit tag


class EncryptedEnvelope(BaseModel):
    """Versioned, algorithm-tagged container for encrypted content."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    version: int = ENVELOPE_VERSION
    algorithm: str = ENVELOPE_ALGORITHM
    iv: str
    auth_tag: str = Field(alias="authTag")
    ciphertext: str

    def to_json(self) -> str:
        return orjson.dumps(self.model_dump(by_alias=True)).decode("utf-8")

    @classmethod
    def from_json(cls, envelope_json: Union[str, bytes]) -> "EncryptedEnvelope":
        """Parse and validate an envelope.

        Raises:
            InvalidEnvelopeError: If the JSON is malformed or fields are missing.
            UnsupportedVersionError: If version is not 1.
            UnsupportedAlgorithmError: If algorithm is not aes-256-gcm.
        """
        try:
            data = orjson.loads(envelope_json)
        except (orjson.JSONDecodeError, TypeError) as err:
            raise InvalidEnvelopeError(
                "Invalid encrypted envelope: not valid JSON"
            ) from err
        if not isinstance(data, dict):
            raise InvalidEnvelopeError(
                "Invalid encrypted envelope: expected a JSON object"
            )

        version = data.get("version")
        if isinstance(version, bool) or version != ENVELOPE_VERSION:
            raise UnsupportedVersionError(version)
        algorithm = data.get("algorithm")
        if algorithm != ENVELOPE_ALGORITHM:
            raise UnsupportedAlgorithmError(algorithm)

        try:
            return cls.model_validate(data, strict=True)
        except PydanticValidationError as err:
            raise InvalidEnvelopeError(
                f"Invalid encrypted envelope: {err.error_count()} invalid field(s)"
            ) from err


def load_vault_key(key_hex: str) -> bytes:
    """Decode and length-check a vault key.

    Raises:
        InvalidKeyLengthError: Unless key_hex decodes to exactly 32 bytes.
    """
    try:
        key = from_hex(key_hex)
    except (ValueError, TypeError) as err:
        raise InvalidKeyLengthError(
            f"Invalid key length: expected {KEY_LENGTH} bytes of hex, "
            f"got an undecodable value"
        ) from err
    if len(key) != KEY_LENGTH:
        raise InvalidKeyLengthError(
            f"Invalid key length: expected {KEY_LENGTH} bytes, got {len(key)}"
        )
    return key


def _field_bytes(name: str, value: str) -> bytes:
    try:
        return from_hex(value)
    except ValueError as err:
        raise InvalidEnvelopeError(
            f"Invalid encrypted envelope: {name} is not valid hex"
        ) from err


def generate_vault_key() -> str:
    """Generate a random 256-bit vault key as 64 hex characters."""
    return secrets.token_hex(KEY_LENGTH)


def encrypt(plaintext: str, key_hex: str) -> str:
    """Encrypt plaintext with AES-256-GCM under the vault key.

    Args:
        plaintext: Document content to encrypt.
        key_hex: 64-char hex vault key.

    Returns:
        The envelope as a JSON string.

    Raises:
        InvalidKeyLengthError: If the key is not 32 bytes.
    """
    key = load_vault_key(key_hex)
    iv = os.urandom(IV_LENGTH)
    # AESGCM returns ciphertext with the 16-byte tag appended
    sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
    envelope = EncryptedEnvelope(
        iv=to_hex(iv),
        auth_tag=to_hex(sealed[-AUTH_TAG_LENGTH:]),
        ciphertext=to_hex(sealed[:-AUTH_TAG_LENGTH]),
    )
    return envelope.to_json()


def decrypt(envelope_json: Union[str, bytes], key_hex: str) -> str:
    """Decrypt an envelope produced by :func:`encrypt`.

    The key is validated before the envelope is parsed.

    Raises:
        InvalidKeyLengthError: If the key is not 32 bytes.
        InvalidEnvelopeError: If the envelope is malformed.
        UnsupportedVersionError: If the envelope version is not 1.
        UnsupportedAlgorithmError: If the algorithm is not aes-256-gcm.
        AuthenticationFailedError: If the tag does not verify (tampering or
            wrong key).
    """
    key = load_vault_key(key_hex)
    envelope = EncryptedEnvelope.from_json(envelope_json)

    iv = _field_bytes("iv", envelope.iv)
    auth_tag = _field_bytes("authTag", envelope.auth_tag)
    ciphertext = _field_bytes("ciphertext", envelope.ciphertext)
    if len(iv) != IV_LENGTH:
        raise InvalidEnvelopeError(
            f"Invalid encrypted envelope: iv must be {IV_LENGTH} bytes, got {len(iv)}"
        )
    if len(auth_tag) != AUTH_TAG_LENGTH:
        raise InvalidEnvelopeError(
            f"Invalid encrypted envelope: authTag must be {AUTH_TAG_LENGTH} bytes, "
            f"got {len(auth_tag)}"
        )

    try:
        plaintext = AESGCM(key).decrypt(iv, ciphertext + auth_tag, None)
    except InvalidTag as err:
        logger.warning("Envelope authentication failed")
        raise AuthenticationFailedError(
            "Decryption failed: authentication tag mismatch "
            "(content was modified or the key is wrong)"
        ) from err

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as err:
        raise InvalidEnvelopeError(
            "Invalid encrypted envelope: plaintext is not UTF-8"
        ) from err


def is_encrypted_envelope(content: Any) -> bool:
    """Best-effort structural check for an encrypted envelope; never raises."""
    try:
        parsed = orjson.loads(content)
    except (orjson.JSONDecodeError, TypeError):
        return False
    if not isinstance(parsed, dict):
        return False
    version = parsed.get("version")
    return (
        not isinstance(version, bool)
        and version == ENVELOPE_VERSION
        and parsed.get("algorithm") == ENVELOPE_ALGORITHM
        and isinstance(parsed.get("iv"), str)
        and isinstance(parsed.get("authTag"), str)
        and isinstance(parsed.get("ciphertext"), str)
    )
