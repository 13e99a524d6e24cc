"""
Request Signing — HMAC-SHA256 signatures with replay protection.

Canonical payload (UTF-8)::

    METHOD\\nPATH\\nTIMESTAMP\\nNONCE\\nSHA256HEX(BODY)

The API key is the raw HMAC key. The server accepts a request only when the
recomputed signature matches, the timestamp is within MAX_TIMESTAMP_AGE_MS of
server time and the nonce has not been seen inside that window.

Security Note:
    Never log the API key or computed signatures.
"""
import secrets
from datetime import datetime, timezone
from typing import Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac

from .codec import from_hex, to_hex

SIGNATURE_HEADER = "x-signature"
SIGNATURE_TIMESTAMP_HEADER = "x-signature-timestamp"
SIGNATURE_NONCE_HEADER = "x-signature-nonce"

MAX_TIMESTAMP_AGE_MS = 5 * 60 * 1000  # 5 minutes
NONCE_SIZE = 16


def _as_bytes(value: Union[str, bytes]) -> bytes:
    if isinstance(value, bytes):
        return value
    return value.encode("utf-8")


def sha256_hex(data: Union[str, bytes]) -> str:
    """Return the lowercase hex SHA-256 digest of data."""
    digest = hashes.Hash(hashes.SHA256())
    digest.update(_as_bytes(data))
    return to_hex(digest.finalize())


def utc_timestamp() -> str:
    """Current UTC time as ``YYYY-MM-DDTHH:mm:ss.sssZ``."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def generate_nonce() -> str:
    """Generate a cryptographically secure 16-byte nonce (32 hex chars)."""
    return secrets.token_hex(NONCE_SIZE)


def build_signature_payload(
    method: str,
    path: str,
    timestamp: str,
    nonce: str,
    body: Union[str, bytes] = "",
) -> str:
    """Construct the canonical payload string for HMAC signing.

    Args:
        method: HTTP method; upper-cased before inclusion.
        path: Request path without query string.
        timestamp: ISO-8601 timestamp.
        nonce: 32-char hex nonce.
        body: Request body; the empty string when there is none.

    Returns:
        The canonical payload.
    """
    body_hash = sha256_hex(body or b"")
    return f"{method.upper()}\n{path}\n{timestamp}\n{nonce}\n{body_hash}"


def _hmac(secret: str, payload: str) -> hmac.HMAC:
    mac = hmac.HMAC(secret.encode("utf-8"), hashes.SHA256())
    mac.update(payload.encode("utf-8"))
    return mac


def sign_payload(secret: str, payload: str) -> str:
    """HMAC-SHA256 of payload keyed by secret, as lowercase hex."""
    return to_hex(_hmac(secret, payload).finalize())


def verify_signature(secret: str, payload: str, signature: str) -> bool:
    """Constant-time check of a hex signature against payload."""
    try:
        expected = from_hex(signature)
    except ValueError:
        return False
    try:
        _hmac(secret, payload).verify(expected)
    except InvalidSignature:
        return False
    return True


def sign_request(
    api_key: str,
    method: str,
    path: str,
    body: Union[str, bytes] = "",
) -> dict[str, str]:
    """Sign a request and return the headers to attach.

    Args:
        api_key: The full API key, used as HMAC secret.
        method: HTTP method.
        path: Request path (without query string).
        body: Request body; the exact bytes sent on the wire.

    Returns:
        Mapping of the three signature headers.
    """
    timestamp = utc_timestamp()
    nonce = generate_nonce()
    payload = build_signature_payload(method, path, timestamp, nonce, body)
    return {
        SIGNATURE_HEADER: sign_payload(api_key, payload),
        SIGNATURE_TIMESTAMP_HEADER: timestamp,
        SIGNATURE_NONCE_HEADER: nonce,
    }
