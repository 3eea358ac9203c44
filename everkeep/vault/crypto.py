"""
Vault Crypto Core — Key derivation, encryption/decryption, and serialization.

Implements per-record content encryption for Everkeep vaults:
- Key derivation: PBKDF2-SHA256(owner_id, "<namespace>-<purpose>-<record_id>")
- Cipher: salted envelope, base64("Salted__" | salt 8B | nonce 12B | AES-GCM)
  with the AEAD key derived by HKDF(passphrase, salt, "everkeep-content-aead").

Rows written before the AEAD envelope hold base64("Salted__" | salt 8B |
AES-256-CBC) with key/IV from OpenSSL EVP_BytesToKey (MD5). Those are still
decrypted; nothing new is written in that format. Both start with the same
"Salted__" magic.

Security Note:
    Never log plaintext, ciphertext or derived keys.
    Keys are recomputed on every call and never cached or persisted.
"""
import os
import base64
import binascii
import hashlib
import logging
from enum import Enum
from typing import Any

import orjson
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .config import DEFAULT_NAMESPACE, DEFAULT_ITERATIONS

logger = logging.getLogger("everkeep.vault")

KEY_LENGTH = 32  # AES-256
IV_LENGTH = 16
SALT_SIZE = 8
NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16
BLOCK_SIZE = 16
SALTED_HEADER = b"Salted__"
AEAD_CONTEXT = b"everkeep-content-aead"


class DecryptionError(Exception):
    """Raised when a blob is malformed or was not encrypted under the key."""


class Purpose(str, Enum):
    """Scopes key derivation so content and share keys never collide."""
    CONTENT = "content"
    SHARE = "share"

    def __str__(self) -> str:
        return self.value


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def derive_key(
    owner_id: str,
    record_id: str,
    purpose: Purpose = Purpose.CONTENT,
    *,
    namespace: str = DEFAULT_NAMESPACE,
    iterations: int = DEFAULT_ITERATIONS,
) -> str:
    """Derive the 256-bit key for a record using PBKDF2-HMAC-SHA256.

    Args:
        owner_id: Owning account identifier, used as the secret material.
        record_id: Vault or entry identifier.
        purpose: Key purpose for domain separation.
        namespace: Salt namespace.
        iterations: PBKDF2 iteration count.

    Returns:
        The derived key as a 64-character lowercase hex string.
    """
    salt = f"{namespace}-{Purpose(purpose).value}-{record_id}"
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt.encode("utf-8"),
        iterations=iterations,
    )
    return kdf.derive(owner_id.encode("utf-8")).hex()


def _bytes_to_key(passphrase: bytes, salt: bytes) -> tuple[bytes, bytes]:
    """OpenSSL EVP_BytesToKey with MD5 and a single round."""
    derived = b""
    block = b""
    while len(derived) < KEY_LENGTH + IV_LENGTH:
        block = hashlib.md5(block + passphrase + salt).digest()
        derived += block
    return derived[:KEY_LENGTH], derived[KEY_LENGTH:KEY_LENGTH + IV_LENGTH]


# ---------------------------------------------------------------------------
# Symmetric cipher
# ---------------------------------------------------------------------------

def _aead_key(passphrase: bytes, salt: bytes) -> bytes:
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        info=AEAD_CONTEXT,
    )
    return hkdf.derive(passphrase)


def encrypt_bytes(data: bytes, key: str) -> bytes:
    """Encrypt raw bytes into a salted, authenticated envelope.

    Format: [b"Salted__"][salt 8B][nonce 12B][AES-256-GCM payload + tag 16B]
    """
    salt = os.urandom(SALT_SIZE)
    nonce = os.urandom(NONCE_SIZE)
    cipher = AESGCM(_aead_key(key.encode("utf-8"), salt))
    return SALTED_HEADER + salt + nonce + cipher.encrypt(nonce, data, None)


def _decrypt_legacy(envelope: bytes, passphrase: bytes, salt: bytes) -> bytes:
    """Decrypt the EVP_BytesToKey / AES-256-CBC body of an older row."""
    body = envelope[len(SALTED_HEADER) + SALT_SIZE:]
    if not body or len(body) % BLOCK_SIZE:
        raise DecryptionError(
            f"Ciphertext length {len(body)} is not a multiple of {BLOCK_SIZE}"
        )
    aes_key, iv = _bytes_to_key(passphrase, salt)
    decryptor = Cipher(algorithms.AES(aes_key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(body) + decryptor.finalize()
    unpadder = padding.PKCS7(BLOCK_SIZE * 8).unpadder()
    try:
        data = unpadder.update(padded) + unpadder.finalize()
    except ValueError as err:
        raise DecryptionError("Invalid padding (wrong key?)") from err
    if not data:
        # older rows never hold empty values; an empty result means a wrong key
        raise DecryptionError("Decrypted payload is empty")
    return data


def decrypt_bytes(envelope: bytes, key: str) -> bytes:
    """Decrypt a salted envelope.

    Authenticated envelopes from :func:`encrypt_bytes` are tried first;
    envelopes whose tag does not verify are read as older CBC rows.

    Raises:
        DecryptionError: On a malformed envelope or a key mismatch.
    """
    _min = len(SALTED_HEADER) + SALT_SIZE + BLOCK_SIZE
    if len(envelope) < _min or not envelope.startswith(SALTED_HEADER):
        raise DecryptionError("Not a salted ciphertext envelope")
    passphrase = key.encode("utf-8")
    salt = envelope[len(SALTED_HEADER):len(SALTED_HEADER) + SALT_SIZE]
    if len(envelope) >= len(SALTED_HEADER) + SALT_SIZE + NONCE_SIZE + TAG_SIZE:
        offset = len(SALTED_HEADER) + SALT_SIZE
        nonce = envelope[offset:offset + NONCE_SIZE]
        cipher = AESGCM(_aead_key(passphrase, salt))
        try:
            return cipher.decrypt(nonce, envelope[offset + NONCE_SIZE:], None)
        except InvalidTag:
            pass
    return _decrypt_legacy(envelope, passphrase, salt)


def encrypt_text(plaintext: str, key: str) -> str:
    """Encrypt a text payload into a self-contained base64 blob.

    Every call draws a fresh salt and nonce, so encrypting the same
    plaintext twice yields two different blobs. The empty string is a
    valid plaintext.
    """
    envelope = encrypt_bytes(plaintext.encode("utf-8"), key)
    return base64.b64encode(envelope).decode("ascii")


def decrypt_text(blob: str, key: str) -> str:
    """Decrypt a blob produced by :func:`encrypt_text` (or an older row).

    Raises:
        DecryptionError: If the blob is malformed, the key does not match,
            or the result is not valid UTF-8 text.
    """
    try:
        envelope = base64.b64decode(blob, validate=True)
    except (binascii.Error, ValueError) as err:
        raise DecryptionError("Ciphertext is not valid base64") from err
    data = decrypt_bytes(envelope, key)
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as err:
        raise DecryptionError("Decrypted payload is not valid UTF-8") from err


def encrypt_for_record(
    plaintext: str,
    owner_id: str,
    record_id: str,
    **kdf_options: Any,
) -> str:
    """Encrypt text under the content key of (owner_id, record_id)."""
    key = derive_key(owner_id, record_id, Purpose.CONTENT, **kdf_options)
    return encrypt_text(plaintext, key)


def decrypt_for_record(
    blob: str,
    owner_id: str,
    record_id: str,
    **kdf_options: Any,
) -> str:
    """Decrypt text under the content key of (owner_id, record_id).

    Raises:
        DecryptionError: See :func:`decrypt_text`.
    """
    key = derive_key(owner_id, record_id, Purpose.CONTENT, **kdf_options)
    return decrypt_text(blob, key)


# ---------------------------------------------------------------------------
# Media payloads
# ---------------------------------------------------------------------------

def encrypt_media_data(
    data: Any,
    owner_id: str,
    record_id: str,
    **kdf_options: Any,
) -> str:
    """Serialize a media descriptor to JSON and encrypt it.

    Supports anything orjson can encode: dict, list, str, int, float,
    bool, None, datetime.
    """
    payload = orjson.dumps(data).decode("utf-8")
    return encrypt_for_record(payload, owner_id, record_id, **kdf_options)


def decrypt_media_data(
    blob: str,
    owner_id: str,
    record_id: str,
    **kdf_options: Any,
) -> Any:
    """Decrypt and parse a media descriptor.

    Raises:
        DecryptionError: If decryption fails or the payload is not JSON.
    """
    payload = decrypt_for_record(blob, owner_id, record_id, **kdf_options)
    try:
        return orjson.loads(payload)
    except orjson.JSONDecodeError as err:
        raise DecryptionError("Decrypted media payload is not JSON") from err
