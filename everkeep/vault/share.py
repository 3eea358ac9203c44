"""
Vault Share Tokens — Stateless, time-bounded references to a vault.

Token layout (before URL-safe base64, ``+``→``-``, ``/``→``_``, no padding):

    [nonce 12B][AES-GCM of {"vaultId", "userId", "issuedAt"} + tag 16B]

The AEAD key is derived with ``Purpose.SHARE`` from the service share
secret, never from tenant data, so a token can be opened without knowing
whose vault it names and cannot be forged or altered without the secret.
Nothing is stored server-side.

``verify`` returns ``None`` for every kind of failure; callers must not
tell clients why a token was rejected.

Security Note:
    Never log tokens or the share secret.
"""
import os
import re
import time
import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

import orjson
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .config import (
    DEFAULT_ITERATIONS,
    DEFAULT_NAMESPACE,
    DEFAULT_SHARE_MAX_AGE,
    VaultConfig,
)
from .crypto import NONCE_SIZE, TAG_SIZE, Purpose, derive_key

logger = logging.getLogger("everkeep.vault")

MAX_CLOCK_SKEW_MS = 60_000
_SHARE_SCOPE = "share-token"
_TOKEN_RE = re.compile(r"[A-Za-z0-9_-]+")


@dataclass(frozen=True)
class ShareGrant:
    """The vault a verified token refers to."""
    owner_id: str
    vault_id: str
    issued_at: int  # milliseconds since epoch


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64url_decode(token: str) -> bytes:
    if not _TOKEN_RE.fullmatch(token):
        raise ValueError("Token contains characters outside the URL alphabet")
    padded = token + "=" * (-len(token) % 4)
    try:
        return base64.urlsafe_b64decode(padded)
    except binascii.Error as err:
        raise ValueError("Token is not valid base64") from err


class ShareTokenCodec:
    """Issues and verifies share tokens under a service secret.

    Args:
        secret: Service share secret (32+ bytes).
        max_age: Maximum token age in seconds; ``None`` disables expiry.
        clock: Returns the current time in seconds since epoch.
    """

    def __init__(
        self,
        secret: bytes,
        max_age: Optional[int] = DEFAULT_SHARE_MAX_AGE,
        clock: Callable[[], float] = time.time,
        *,
        namespace: str = DEFAULT_NAMESPACE,
        iterations: int = DEFAULT_ITERATIONS,
    ):
        material = base64.b64encode(secret).decode("ascii")
        self._cipher = AESGCM(bytes.fromhex(derive_key(
            material, _SHARE_SCOPE, Purpose.SHARE,
            namespace=namespace, iterations=iterations,
        )))
        self._max_age = max_age
        self._clock = clock

    @classmethod
    def from_config(
        cls, config: VaultConfig, clock: Callable[[], float] = time.time
    ) -> "ShareTokenCodec":
        return cls(
            config.share_secret,
            max_age=config.share_max_age,
            clock=clock,
            namespace=config.namespace,
            iterations=config.kdf_iterations,
        )

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def issue(self, owner_id: str, vault_id: str) -> str:
        """Issue a URL-safe share token for a vault.

        Args:
            owner_id: Owner of the vault.
            vault_id: Vault being shared.

        Returns:
            Opaque token safe for URL paths and query strings.
        """
        payload = orjson.dumps({
            "vaultId": str(vault_id),
            "userId": str(owner_id),
            "issuedAt": self._now_ms(),
        })
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._cipher.encrypt(nonce, payload, None)
        logger.debug("Share token issued for vault %s", vault_id)
        return _b64url_encode(nonce + sealed)

    def _open(self, token: str) -> ShareGrant:
        raw = _b64url_decode(token)
        if len(raw) < NONCE_SIZE + TAG_SIZE:
            raise ValueError("Token too short")
        data = orjson.loads(
            self._cipher.decrypt(raw[:NONCE_SIZE], raw[NONCE_SIZE:], None)
        )
        if not isinstance(data, dict):
            raise ValueError("Token payload is not an object")
        vault_id = data["vaultId"]
        owner_id = data["userId"]
        issued_at = data["issuedAt"]
        if not (isinstance(vault_id, str) and vault_id):
            raise ValueError("Token payload has no vault id")
        if not (isinstance(owner_id, str) and owner_id):
            raise ValueError("Token payload has no owner id")
        if isinstance(issued_at, bool) or not isinstance(issued_at, int):
            raise ValueError("Token payload has no issue time")
        return ShareGrant(owner_id, vault_id, issued_at)

    def _is_fresh(self, grant: ShareGrant) -> bool:
        now = self._now_ms()
        if grant.issued_at - now > MAX_CLOCK_SKEW_MS:
            return False
        if self._max_age is None:
            return True
        return now - grant.issued_at <= self._max_age * 1000

    def verify(self, token: Any) -> Optional[ShareGrant]:
        """Verify a share token.

        Returns:
            The ShareGrant it carries, or ``None`` if the token is malformed,
            tampered with, signed under another secret, or expired.
        """
        if not isinstance(token, str) or not token:
            return None
        try:
            grant = self._open(token)
        except (ValueError, KeyError, TypeError, InvalidTag):
            # orjson.JSONDecodeError is a ValueError
            logger.debug("Share token rejected")
            return None
        if not self._is_fresh(grant):
            logger.debug("Share token for vault %s expired", grant.vault_id)
            return None
        return grant

    def verify_for(self, token: Any, vault_id: str) -> Optional[ShareGrant]:
        """Verify a token and require it to name ``vault_id``."""
        grant = self.verify(token)
        if grant is None or grant.vault_id != str(vault_id):
            return None
        return grant


def issue_share_token(codec: ShareTokenCodec, owner_id: str, vault_id: str) -> str:
    return codec.issue(owner_id, vault_id)


def verify_share_token(
    codec: ShareTokenCodec, token: Any
) -> Optional[dict[str, str]]:
    """Function form of :meth:`ShareTokenCodec.verify`.

    Returns:
        ``{"ownerId": ..., "vaultId": ...}`` or ``None``.
    """
    grant = codec.verify(token)
    if grant is None:
        return None
    return {"ownerId": grant.owner_id, "vaultId": grant.vault_id}
