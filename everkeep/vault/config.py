"""
Vault Configuration — Key derivation settings and the share-token secret.

Reads settings from environment variables:
    EVERKEEP_KEY_NAMESPACE  = <salt namespace, default "everkeep">
    EVERKEEP_KDF_ITERATIONS = <integer, default 1000>
    EVERKEEP_PLACEHOLDER_ID = <record id used before creation, default "new">
    EVERKEEP_SHARE_SECRET   = <base64-encoded secret of at least 32 bytes>
    EVERKEEP_SHARE_MAX_AGE  = <seconds, default 604800; 0 disables expiry>

Security Note:
    Never log the share secret. Only log namespace and iteration settings.
"""
import os
import base64
import binascii
import secrets
import logging
from typing import Optional

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger("everkeep.vault")

DEFAULT_NAMESPACE = "everkeep"
DEFAULT_ITERATIONS = 1000
DEFAULT_PLACEHOLDER_ID = "new"
DEFAULT_SHARE_MAX_AGE = 7 * 24 * 3600
MIN_SECRET_LENGTH = 32


def load_share_secret() -> bytes:
    """Load the share-token secret from EVERKEEP_SHARE_SECRET.

    Returns:
        Raw secret bytes.

    Raises:
        RuntimeError: If the variable is not set.
        ValueError: If it is not valid base64 or shorter than 32 bytes.
    """
    raw = os.environ.get("EVERKEEP_SHARE_SECRET")
    if raw is None:
        raise RuntimeError(
            "EVERKEEP_SHARE_SECRET environment variable is not set. "
            "Set EVERKEEP_SHARE_SECRET=<base64-encoded-32-byte-secret>"
        )
    try:
        secret = base64.b64decode(raw, validate=True)
    except binascii.Error as err:
        raise ValueError(
            "EVERKEEP_SHARE_SECRET is not valid base64"
        ) from err
    if len(secret) < MIN_SECRET_LENGTH:
        raise ValueError(
            f"EVERKEEP_SHARE_SECRET must decode to at least "
            f"{MIN_SECRET_LENGTH} bytes, got {len(secret)}"
        )
    return secret


def generate_share_secret() -> str:
    """Generate a random 32-byte share secret and return as base64 string.

    This is a utility for operators provisioning a new deployment.
    """
    return base64.b64encode(secrets.token_bytes(32)).decode("ascii")


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    share_secret: bytes
    namespace: str = Field(default=DEFAULT_NAMESPACE, min_length=1)
    kdf_iterations: int = Field(default=DEFAULT_ITERATIONS, ge=1)
    placeholder_id: str = Field(default=DEFAULT_PLACEHOLDER_ID, min_length=1)
    share_max_age: Optional[int] = Field(default=DEFAULT_SHARE_MAX_AGE)

    @field_validator("share_secret")
    @classmethod
    def validate_secret(cls, v: bytes) -> bytes:
        if len(v) < MIN_SECRET_LENGTH:
            raise ValueError(
                f"share_secret must be at least {MIN_SECRET_LENGTH} bytes"
            )
        return v

    @field_validator("share_max_age")
    @classmethod
    def validate_max_age(cls, v: Optional[int]) -> Optional[int]:
        """A max age of 0 (or None) disables the staleness check."""
        if v is None or v == 0:
            return None
        if v < 0:
            raise ValueError("share_max_age cannot be negative")
        return v

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Returns:
            Populated VaultConfig instance.
        """
        share_secret = load_share_secret()
        config = cls(
            share_secret=share_secret,
            namespace=os.environ.get(
                "EVERKEEP_KEY_NAMESPACE", DEFAULT_NAMESPACE
            ),
            kdf_iterations=int(os.environ.get(
                "EVERKEEP_KDF_ITERATIONS", DEFAULT_ITERATIONS
            )),
            placeholder_id=os.environ.get(
                "EVERKEEP_PLACEHOLDER_ID", DEFAULT_PLACEHOLDER_ID
            ),
            share_max_age=int(os.environ.get(
                "EVERKEEP_SHARE_MAX_AGE", DEFAULT_SHARE_MAX_AGE
            )),
        )
        logger.debug(
            "Vault config loaded: namespace=%s iterations=%d",
            config.namespace, config.kdf_iterations,
        )
        return config
