"""Everkeep Vault — Vault content encrypted at rest with derived keys.

Security Note (Threat Model):
    Content keys are derived on demand from the owner id and the record id;
    nothing is stored separately. This protects against partial reads of
    the datastore (for example a leaked backup of the content columns)
    but not against an attacker who can read the id columns alongside the
    ciphertext, nor against a compromised application process.
    This is an accepted limitation.
"""

from .config import VaultConfig, generate_share_secret, load_share_secret
from .crypto import (
    DecryptionError,
    Purpose,
    derive_key,
    encrypt_text,
    decrypt_text,
    encrypt_for_record,
    decrypt_for_record,
    encrypt_media_data,
    decrypt_media_data,
)
from .classifier import looks_encrypted, classify, Plaintext, Ciphertext
from .safe import safe_decrypt, safe_decrypt_optional, needs_rekey
from .rekey import (
    RekeyState,
    ProvisionalRecord,
    begin,
    create_with_rekey,
    repair_value,
)
from .share import (
    ShareGrant,
    ShareTokenCodec,
    issue_share_token,
    verify_share_token,
)
from .records import Vault, VaultEntry, VaultStore

__all__ = [
    "VaultConfig",
    "generate_share_secret",
    "load_share_secret",
    "DecryptionError",
    "Purpose",
    "derive_key",
    "encrypt_text",
    "decrypt_text",
    "encrypt_for_record",
    "decrypt_for_record",
    "encrypt_media_data",
    "decrypt_media_data",
    "looks_encrypted",
    "classify",
    "Plaintext",
    "Ciphertext",
    "safe_decrypt",
    "safe_decrypt_optional",
    "needs_rekey",
    "RekeyState",
    "ProvisionalRecord",
    "begin",
    "create_with_rekey",
    "repair_value",
    "ShareGrant",
    "ShareTokenCodec",
    "issue_share_token",
    "verify_share_token",
    "Vault",
    "VaultEntry",
    "VaultStore",
]
