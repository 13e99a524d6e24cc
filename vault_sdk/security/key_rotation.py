"""
Vault Key Rotation — Re-encryption of document envelopes under a new vault key.

Takes ``(identifier, content)`` pairs fetched by the caller, decrypts each
envelope with the old key and re-encrypts it with the new one. Content that is
not an envelope is skipped, so the operation is idempotent when re-run over a
partially rotated vault: envelopes already under the new key fail to
authenticate with the old key and are counted as skipped too.

Security Note:
    Plaintext exists in memory only during re-encryption of each document.
    Never log plaintext or ciphertext values.
"""
import logging
from collections.abc import Iterable

from ..exceptions import AuthenticationFailedError, EnvelopeError
from .crypto import decrypt, encrypt, is_encrypted_envelope, load_vault_key

logger = logging.getLogger("vault_sdk.security")


def rotate_vault_key(
    documents: Iterable[tuple[str, str]],
    old_key_hex: str,
    new_key_hex: str,
) -> tuple[dict[str, str], dict]:
    """Re-encrypt every envelope in documents from old_key_hex to new_key_hex.

    Args:
        documents: Iterable of ``(identifier, content)`` pairs.
        old_key_hex: Current 64-char hex vault key.
        new_key_hex: Replacement 64-char hex vault key.

    Returns:
        Tuple of (rotated, stats) where rotated maps identifier to the new
        envelope JSON (only for documents that were re-encrypted) and stats
        has keys: total, rotated, errors, skipped.

    Raises:
        InvalidKeyLengthError: If either key is not 32 bytes. Checked before
            any document is touched.
    """
    load_vault_key(old_key_hex)
    load_vault_key(new_key_hex)

    rotated: dict[str, str] = {}
    stats = {"total": 0, "rotated": 0, "errors": 0, "skipped": 0}

    logger.info("Starting vault key rotation")

    for identifier, content in documents:
        stats["total"] += 1
        if not is_encrypted_envelope(content):
            stats["skipped"] += 1
            continue
        try:
            plaintext = decrypt(content, old_key_hex)
        except AuthenticationFailedError:
            try:
                decrypt(content, new_key_hex)
            except EnvelopeError:
                logger.error(
                    "Cannot rotate document %s: not readable with either key",
                    identifier,
                )
                stats["errors"] += 1
            else:
                stats["skipped"] += 1
            continue
        except EnvelopeError as err:
            logger.error("Error rotating document %s: %s", identifier, err)
            stats["errors"] += 1
            continue
        rotated[identifier] = encrypt(plaintext, new_key_hex)
        stats["rotated"] += 1

    logger.info("Vault key rotation complete: %s", stats)
    return rotated, stats
