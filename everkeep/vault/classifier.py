"""
Ciphertext Classifier — Tell stored ciphertext apart from legacy plaintext.

Vault name/description and entry content columns hold a mix of rows written
before encryption was introduced (plaintext) and encrypted blobs, with no
column marking which is which. ``looks_encrypted`` is a heuristic:

- any value containing the salted-envelope magic (base64 of ``Salted__``);
- otherwise, a value made only of base64 characters and longer than
  ``MIN_BASE64_LENGTH``.

Known limitation: a long plaintext that happens to be pure base64 alphabet
is classified as ciphertext. Read paths go through ``safe_decrypt``, which
returns such values unchanged when they fail to decrypt.
"""
import re
from dataclasses import dataclass
from typing import Optional, Union

MAGIC_PREFIX = "U2FsdGVkX1"
MIN_BASE64_LENGTH = 50

_BASE64_RE = re.compile(r"[A-Za-z0-9+/=]+")


def looks_encrypted(value: Optional[str]) -> bool:
    """Return True if ``value`` looks like a blob from ``encrypt_text``."""
    if not value:
        return False
    if MAGIC_PREFIX in value:
        return True
    return len(value) > MIN_BASE64_LENGTH and bool(_BASE64_RE.fullmatch(value))


@dataclass(frozen=True)
class Plaintext:
    value: str


@dataclass(frozen=True)
class Ciphertext:
    value: str


StoredValue = Union[Plaintext, Ciphertext]


def classify(value: str) -> StoredValue:
    """Wrap a stored column value in an explicit Plaintext/Ciphertext tag."""
    if looks_encrypted(value):
        return Ciphertext(value)
    return Plaintext(value)
