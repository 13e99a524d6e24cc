"""
Byte Codecs — hex and base64url helpers shared by the security layer.
"""
import re
import base64
import binascii

_HEX_RE = re.compile(r"[0-9a-fA-F]*")


def to_hex(data: bytes) -> str:
    """Encode bytes as a lowercase hex string."""
    return data.hex()


def from_hex(value: str) -> bytes:
    """Decode a hex string to bytes.

    Unlike :meth:`bytes.fromhex`, whitespace is not skipped.

    Raises:
        ValueError: If value has an odd length or non-hex characters.
    """
    if not isinstance(value, str) or not _HEX_RE.fullmatch(value):
        raise ValueError("non-hexadecimal characters in hex string")
    return bytes.fromhex(value)


def b64url_decode(segment: str) -> bytes:
    """Decode an unpadded base64url segment (as used by JWTs).

    Raises:
        ValueError: If the segment is not valid base64url.
    """
    padded = segment + "=" * (-len(segment) % 4)
    try:
        return base64.b64decode(padded, altchars=b"-_", validate=True)
    except binascii.Error as err:
        raise ValueError(f"Invalid base64url segment: {err}") from err


def b64url_encode(data: bytes) -> str:
    """Encode bytes as unpadded base64url."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")
