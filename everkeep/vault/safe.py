"""
Safe Decryptor — Read-path decryption that always returns something to show.

Order of attempts for an encrypted-looking value:
1. content key of (owner_id, record_id);
2. content key of (owner_id, placeholder_id), for rows whose rekey overwrite
   never ran after creation;
3. give up and return the stored value unchanged.

Legacy plaintext is returned as-is without touching the cipher.
"""
import logging
from typing import Any, Optional

from .classifier import looks_encrypted
from .config import DEFAULT_PLACEHOLDER_ID
from .crypto import DecryptionError, decrypt_for_record

logger = logging.getLogger("everkeep.vault")


def _try_decrypt(
    value: str, owner_id: str, record_id: str, **kdf_options: Any
) -> Optional[str]:
    try:
        return decrypt_for_record(value, owner_id, record_id, **kdf_options)
    except DecryptionError:
        return None


def safe_decrypt(
    value: str,
    owner_id: str,
    record_id: str,
    *,
    placeholder_id: str = DEFAULT_PLACEHOLDER_ID,
    **kdf_options: Any,
) -> str:
    """Decrypt a stored column value, falling back instead of raising.

    Args:
        value: Stored value (ciphertext or legacy plaintext).
        owner_id: Owner of the record.
        record_id: Vault id the value was encrypted for.
        placeholder_id: Record id used before the real one was assigned.
        kdf_options: ``namespace``/``iterations`` forwarded to derive_key.

    Returns:
        The plaintext, or ``value`` unchanged when it is plaintext or
        cannot be decrypted.
    """
    if not value:
        return value
    if not looks_encrypted(value):
        return value
    plaintext = _try_decrypt(value, owner_id, record_id, **kdf_options)
    if plaintext is not None:
        return plaintext
    if record_id != placeholder_id:
        plaintext = _try_decrypt(value, owner_id, placeholder_id, **kdf_options)
        if plaintext is not None:
            logger.warning(
                "Record %s decrypted with placeholder key; needs rekey",
                record_id,
            )
            return plaintext
    logger.debug(
        "Value for record %s could not be decrypted; returning raw", record_id,
    )
    return value


def safe_decrypt_optional(
    value: Optional[str],
    owner_id: str,
    record_id: str,
    **options: Any,
) -> Optional[str]:
    """Like :func:`safe_decrypt` but passes ``None`` through."""
    if value is None:
        return None
    return safe_decrypt(value, owner_id, record_id, **options)


def needs_rekey(
    value: Optional[str],
    owner_id: str,
    record_id: str,
    *,
    placeholder_id: str = DEFAULT_PLACEHOLDER_ID,
    **kdf_options: Any,
) -> bool:
    """True when ``value`` decrypts only under the placeholder record id."""
    if not value or not looks_encrypted(value) or record_id == placeholder_id:
        return False
    if _try_decrypt(value, owner_id, record_id, **kdf_options) is not None:
        return False
    return _try_decrypt(
        value, owner_id, placeholder_id, **kdf_options
    ) is not None
