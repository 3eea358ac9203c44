"""
VaultStore — Encrypted vault and entry records over an asyncpg pool.

Provides the read/write paths for vault content:
- ``create_vault`` — two-phase create (placeholder key, then real key)
- ``get_vault`` / ``list_vaults`` — decrypt name/description on read
- ``update_vault`` / ``delete_vault`` — re-encrypt or soft-delete
- ``add_entry`` / ``list_entries`` / ``update_entry`` / ``delete_entry``
- ``repair_vault`` — rekey rows left encrypted under the placeholder id
- ``issue_share_link`` / ``resolve_share_link`` — share tokens

Entry content is keyed by the owning vault's id, which already exists
when an entry is created, so entries need no rekey step.

Security Note:
    Never log plaintext or ciphertext values. Only log ids and operations.
"""
import logging
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel

from .config import (
    DEFAULT_ITERATIONS,
    DEFAULT_NAMESPACE,
    DEFAULT_PLACEHOLDER_ID,
    VaultConfig,
)
from .crypto import encrypt_for_record
from .rekey import begin, repair_value
from .safe import safe_decrypt_optional
from .share import ShareTokenCodec

logger = logging.getLogger("everkeep.vault")

_DEFAULT_PAGE_SIZE = 10
_MAX_PAGE_SIZE = 100

# ---------------------------------------------------------------------------
# SQL statements
# ---------------------------------------------------------------------------

_VAULT_COLUMNS = "id, user_id, name, description, created_at, updated_at"
_ENTRY_COLUMNS = "id, vault_id, type, content, parent_id, created_at, updated_at"

_INSERT_VAULT = f"""
INSERT INTO vaults (user_id, name, description)
VALUES ($1, $2, $3)
RETURNING {_VAULT_COLUMNS}
"""

_UPDATE_VAULT = f"""
UPDATE vaults
SET name = $2, description = $3, updated_at = NOW()
WHERE id = $1 AND deleted_at IS NULL
RETURNING {_VAULT_COLUMNS}
"""

_SELECT_VAULT = f"""
SELECT {_VAULT_COLUMNS}
FROM vaults
WHERE id = $1 AND user_id = $2 AND deleted_at IS NULL
"""

_SELECT_VAULTS = f"""
SELECT {_VAULT_COLUMNS}
FROM vaults
WHERE user_id = $1 AND deleted_at IS NULL
ORDER BY created_at DESC
LIMIT $2
OFFSET $3
"""

_COUNT_VAULTS = """
SELECT COUNT(*)
FROM vaults
WHERE user_id = $1 AND deleted_at IS NULL
"""

_SOFT_DELETE_VAULT = """
UPDATE vaults
SET deleted_at = NOW()
WHERE id = $1 AND user_id = $2 AND deleted_at IS NULL
RETURNING id
"""

_INSERT_ENTRY = f"""
INSERT INTO vault_entries (vault_id, type, content, parent_id)
VALUES ($1, $2, $3, $4)
RETURNING {_ENTRY_COLUMNS}
"""

_SELECT_ENTRIES = f"""
SELECT {_ENTRY_COLUMNS}
FROM vault_entries
WHERE vault_id = $1 AND deleted_at IS NULL
ORDER BY created_at DESC
"""

_SELECT_OWNED_ENTRY = """
SELECT e.id, e.vault_id
FROM vault_entries e
JOIN vaults v ON v.id = e.vault_id
WHERE e.id = $1 AND v.user_id = $2
  AND e.deleted_at IS NULL AND v.deleted_at IS NULL
"""

_UPDATE_ENTRY = f"""
UPDATE vault_entries
SET content = $2, updated_at = NOW()
WHERE id = $1 AND deleted_at IS NULL
RETURNING {_ENTRY_COLUMNS}
"""

_SOFT_DELETE_ENTRY = """
UPDATE vault_entries
SET deleted_at = NOW()
WHERE id = $1 AND deleted_at IS NULL
RETURNING id
"""

# sentinel: "leave the description as it is"
_UNSET: Any = object()


class Vault(BaseModel):
    """Decrypted view of a vault row."""
    id: str
    owner_id: str
    name: str
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class VaultEntry(BaseModel):
    """Decrypted view of a vault entry row."""
    id: str
    vault_id: str
    type: str
    content: Optional[str] = None
    parent_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class VaultStore:
    """Vault persistence with content encrypted at rest.

    Every value read back from ``name``, ``description`` or ``content``
    goes through ``safe_decrypt``, so legacy plaintext rows and rows
    still keyed to the placeholder id are returned readable.
    """

    def __init__(
        self,
        db_pool: Any,
        *,
        placeholder_id: str = DEFAULT_PLACEHOLDER_ID,
        namespace: str = DEFAULT_NAMESPACE,
        iterations: int = DEFAULT_ITERATIONS,
    ):
        self._db = db_pool
        self._placeholder_id = placeholder_id
        self._kdf = {"namespace": namespace, "iterations": iterations}

    @classmethod
    def from_config(cls, db_pool: Any, config: VaultConfig) -> "VaultStore":
        return cls(
            db_pool,
            placeholder_id=config.placeholder_id,
            namespace=config.namespace,
            iterations=config.kdf_iterations,
        )

    # ------------------------------------------------------------------
    # Crypto helpers
    # ------------------------------------------------------------------

    def _encrypt(self, value: Optional[str], owner_id: str, record_id: str) -> Optional[str]:
        if value is None:
            return None
        return encrypt_for_record(value, owner_id, record_id, **self._kdf)

    def _decrypt(self, value: Optional[str], owner_id: str, record_id: str) -> Optional[str]:
        return safe_decrypt_optional(
            value, owner_id, record_id,
            placeholder_id=self._placeholder_id, **self._kdf,
        )

    def _to_vault(self, row: Any) -> Vault:
        vault_id = str(row["id"])
        owner_id = str(row["user_id"])
        return Vault(
            id=vault_id,
            owner_id=owner_id,
            name=self._decrypt(row["name"], owner_id, vault_id) or "",
            description=self._decrypt(row["description"], owner_id, vault_id),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _to_entry(self, row: Any, owner_id: str) -> VaultEntry:
        vault_id = str(row["vault_id"])
        parent_id = row["parent_id"]
        return VaultEntry(
            id=str(row["id"]),
            vault_id=vault_id,
            type=row["type"],
            content=self._decrypt(row["content"], owner_id, vault_id),
            parent_id=str(parent_id) if parent_id is not None else None,
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    async def _fetch_vault_row(self, vault_id: str, owner_id: str) -> Any:
        async with self._db.acquire() as conn:
            return await conn.fetchrow(_SELECT_VAULT, vault_id, owner_id)

    # ------------------------------------------------------------------
    # Vaults
    # ------------------------------------------------------------------

    async def create_vault(
        self, owner_id: str, name: str, description: Optional[str] = None,
    ) -> Vault:
        """Create a vault with name/description encrypted under its own id.

        The row is inserted with placeholder-keyed ciphertext, then
        overwritten once the id is known. A failed overwrite is logged and
        leaves the vault readable through the placeholder fallback.

        Raises:
            Any error raised by the insert.
        """
        record = begin(
            owner_id, {"name": name, "description": description},
            placeholder_id=self._placeholder_id, **self._kdf,
        )
        async with self._db.acquire() as conn:
            row = await conn.fetchrow(
                _INSERT_VAULT, owner_id,
                record.provisional["name"], record.provisional["description"],
            )
        vault_id = str(row["id"])
        if record.commit(vault_id):
            try:
                async with self._db.acquire() as conn:
                    updated = await conn.fetchrow(
                        _UPDATE_VAULT, vault_id,
                        record.committed["name"], record.committed["description"],
                    )
                if updated is not None:
                    row = updated
            except Exception as err:
                logger.warning(
                    "Rekey of vault %s failed, left provisional: %s",
                    vault_id, err,
                )
        logger.debug("Vault created: user=%s vault=%s", owner_id, vault_id)
        return Vault(
            id=vault_id,
            owner_id=owner_id,
            name=name,
            description=description,
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    async def get_vault(self, vault_id: str, owner_id: str) -> Optional[Vault]:
        """Return the decrypted vault, or None if missing or not owned."""
        row = await self._fetch_vault_row(vault_id, owner_id)
        if row is None:
            return None
        return self._to_vault(row)

    async def list_vaults(
        self,
        owner_id: str,
        page: int = 1,
        limit: int = _DEFAULT_PAGE_SIZE,
    ) -> tuple[list[Vault], int]:
        """List an owner's vaults, newest first.

        Args:
            owner_id: Vault owner.
            page: 1-based page number.
            limit: Page size, clamped to 1..100.

        Returns:
            Tuple of (vaults on this page, total vault count).
        """
        limit = max(1, min(int(limit), _MAX_PAGE_SIZE))
        offset = (max(1, int(page)) - 1) * limit
        async with self._db.acquire() as conn:
            rows = await conn.fetch(_SELECT_VAULTS, owner_id, limit, offset)
            total = await conn.fetchval(_COUNT_VAULTS, owner_id)
        return [self._to_vault(row) for row in rows], int(total or 0)

    async def update_vault(
        self,
        vault_id: str,
        owner_id: str,
        name: Optional[str] = None,
        description: Optional[str] = _UNSET,
    ) -> Optional[Vault]:
        """Update name and/or description, re-encrypting under the vault id.

        Passing ``description=None`` clears it; omitting it keeps it.

        Returns:
            Decrypted updated vault, or None if missing or not owned.
        """
        existing = await self._fetch_vault_row(vault_id, owner_id)
        if existing is None:
            return None
        vault_id = str(existing["id"])
        name_ct = existing["name"]
        if name is not None:
            name_ct = self._encrypt(name, owner_id, vault_id)
        description_ct = existing["description"]
        if description is not _UNSET:
            description_ct = self._encrypt(description, owner_id, vault_id)
        async with self._db.acquire() as conn:
            row = await conn.fetchrow(
                _UPDATE_VAULT, vault_id, name_ct, description_ct,
            )
        if row is None:
            return None
        logger.debug("Vault updated: user=%s vault=%s", owner_id, vault_id)
        return self._to_vault(row)

    async def delete_vault(self, vault_id: str, owner_id: str) -> bool:
        """Soft-delete a vault. Returns False if missing or not owned."""
        async with self._db.acquire() as conn:
            row = await conn.fetchrow(_SOFT_DELETE_VAULT, vault_id, owner_id)
        if row is None:
            return False
        logger.debug("Vault deleted: user=%s vault=%s", owner_id, vault_id)
        return True

    async def repair_vault(self, vault_id: str, owner_id: str) -> bool:
        """Finish the rekey of a vault left keyed to the placeholder id.

        Safe to call repeatedly; returns True only if a row was rewritten.
        """
        row = await self._fetch_vault_row(vault_id, owner_id)
        if row is None:
            return False
        vault_id = str(row["id"])
        options = {"placeholder_id": self._placeholder_id, **self._kdf}
        name_ct = repair_value(row["name"], owner_id, vault_id, **options)
        description_ct = repair_value(
            row["description"], owner_id, vault_id, **options
        )
        if name_ct is None and description_ct is None:
            return False
        async with self._db.acquire() as conn:
            await conn.fetchrow(
                _UPDATE_VAULT, vault_id,
                name_ct or row["name"],
                description_ct or row["description"],
            )
        logger.info("Vault %s rekeyed from placeholder", vault_id)
        return True

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    async def add_entry(
        self,
        vault_id: str,
        owner_id: str,
        type: str,
        content: str,
        parent_id: Optional[str] = None,
    ) -> Optional[VaultEntry]:
        """Add an entry with its content encrypted under the vault's key.

        Returns:
            The decrypted entry, or None if the vault is missing or not owned.
        """
        vault = await self._fetch_vault_row(vault_id, owner_id)
        if vault is None:
            return None
        vault_id = str(vault["id"])
        encrypted = self._encrypt(content, owner_id, vault_id)
        async with self._db.acquire() as conn:
            row = await conn.fetchrow(
                _INSERT_ENTRY, vault_id, type, encrypted, parent_id,
            )
        logger.debug(
            "Entry added: user=%s vault=%s type=%s", owner_id, vault_id, type,
        )
        return self._to_entry(row, owner_id)

    async def list_entries(
        self, vault_id: str, owner_id: str,
    ) -> Optional[list[VaultEntry]]:
        """List a vault's entries with decrypted content, newest first."""
        vault = await self._fetch_vault_row(vault_id, owner_id)
        if vault is None:
            return None
        async with self._db.acquire() as conn:
            rows = await conn.fetch(_SELECT_ENTRIES, str(vault["id"]))
        return [self._to_entry(row, owner_id) for row in rows]

    async def update_entry(
        self, entry_id: str, owner_id: str, content: str,
    ) -> Optional[VaultEntry]:
        """Replace an entry's content. Returns None if missing or not owned."""
        async with self._db.acquire() as conn:
            owned = await conn.fetchrow(_SELECT_OWNED_ENTRY, entry_id, owner_id)
            if owned is None:
                return None
            encrypted = self._encrypt(content, owner_id, str(owned["vault_id"]))
            row = await conn.fetchrow(_UPDATE_ENTRY, entry_id, encrypted)
        if row is None:
            return None
        return self._to_entry(row, owner_id)

    async def delete_entry(self, entry_id: str, owner_id: str) -> bool:
        """Soft-delete an entry. Returns False if missing or not owned."""
        async with self._db.acquire() as conn:
            owned = await conn.fetchrow(_SELECT_OWNED_ENTRY, entry_id, owner_id)
            if owned is None:
                return False
            row = await conn.fetchrow(_SOFT_DELETE_ENTRY, entry_id)
        return row is not None

    # ------------------------------------------------------------------
    # Share links
    # ------------------------------------------------------------------

    async def issue_share_link(
        self, vault_id: str, owner_id: str, codec: ShareTokenCodec,
    ) -> Optional[str]:
        """Issue a share token for a vault the owner holds."""
        row = await self._fetch_vault_row(vault_id, owner_id)
        if row is None:
            return None
        return codec.issue(owner_id, str(row["id"]))

    async def resolve_share_link(
        self, token: str, codec: ShareTokenCodec,
    ) -> Optional[Vault]:
        """Return the vault a share token names, or None if it is invalid."""
        grant = codec.verify(token)
        if grant is None:
            return None
        return await self.get_vault(grant.vault_id, grant.owner_id)
