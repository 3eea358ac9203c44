"""
Vault Rekey Workflow — Two-phase create for records keyed by their own id.

A vault's content key is derived from its id, but the id is only assigned
by the datastore on insert. Creation therefore runs as a small state
machine:

    PROVISIONAL  fields encrypted under the placeholder id, row inserted
    COMMITTED    fields re-encrypted under the real id, row overwritten

If the overwrite never happens the row stays readable through the
placeholder fallback in ``safe_decrypt``, and ``repair_value`` can bring it
to the committed state later. Repair is idempotent.

Security Note:
    Plaintext lives on the ProvisionalRecord only until the caller drops it.
    Never log field values.
"""
import logging
from enum import Enum
from typing import Any, Callable, Mapping, Optional
from dataclasses import dataclass, field

from .config import DEFAULT_PLACEHOLDER_ID
from .crypto import encrypt_for_record
from .safe import needs_rekey, safe_decrypt

logger = logging.getLogger("everkeep.vault")


class RekeyState(Enum):
    PROVISIONAL = "provisional"
    COMMITTED = "committed"


@dataclass
class ProvisionalRecord:
    """A record whose fields are encrypted under the placeholder id."""

    owner_id: str
    plaintext: dict[str, Optional[str]]
    provisional: dict[str, Optional[str]]
    placeholder_id: str = DEFAULT_PLACEHOLDER_ID
    kdf_options: dict[str, Any] = field(default_factory=dict)
    record_id: Optional[str] = None
    committed: dict[str, Optional[str]] = field(default_factory=dict)
    state: RekeyState = RekeyState.PROVISIONAL

    def _encrypt(self, value: Optional[str], record_id: str) -> Optional[str]:
        if value is None:
            return None
        return encrypt_for_record(
            value, self.owner_id, record_id, **self.kdf_options
        )

    def commit(self, record_id: str) -> dict[str, Optional[str]]:
        """Re-encrypt every field under ``record_id``.

        Returns:
            Only the fields whose stored ciphertext must be overwritten.

        Raises:
            RuntimeError: If already committed to a different record id.
        """
        if self.state is RekeyState.COMMITTED:
            if str(record_id) != self.record_id:
                raise RuntimeError(
                    f"Record already committed as {self.record_id}"
                )
            return {}
        self.record_id = str(record_id)
        self.committed = {
            name: self._encrypt(value, self.record_id)
            for name, value in self.plaintext.items()
        }
        self.state = RekeyState.COMMITTED
        return {
            name: value
            for name, value in self.committed.items()
            if value != self.provisional.get(name)
        }


def begin(
    owner_id: str,
    fields: Mapping[str, Optional[str]],
    *,
    placeholder_id: str = DEFAULT_PLACEHOLDER_ID,
    **kdf_options: Any,
) -> ProvisionalRecord:
    """Encrypt ``fields`` under the placeholder id (first phase).

    ``None`` values stay ``None`` (e.g. an absent description).
    """
    record = ProvisionalRecord(
        owner_id=owner_id,
        plaintext=dict(fields),
        provisional={},
        placeholder_id=placeholder_id,
        kdf_options=dict(kdf_options),
    )
    record.provisional = {
        name: record._encrypt(value, placeholder_id)
        for name, value in record.plaintext.items()
    }
    return record


def create_with_rekey(
    owner_id: str,
    plaintext: str,
    persistence_create: Callable[[str], Any],
    persistence_update: Callable[[str, str], Any],
    *,
    placeholder_id: str = DEFAULT_PLACEHOLDER_ID,
    **kdf_options: Any,
) -> tuple[str, str]:
    """Create a record whose content key includes its own id.

    Args:
        owner_id: Owner of the new record.
        plaintext: Value to store encrypted.
        persistence_create: Inserts the placeholder-keyed ciphertext and
            returns the new record id. Errors propagate unchanged.
        persistence_update: Overwrites the stored ciphertext for a record id.
            Errors are logged; the record stays readable via fallback.

    Returns:
        Tuple of (record_id, plaintext).
    """
    record = begin(
        owner_id, {"value": plaintext},
        placeholder_id=placeholder_id, **kdf_options,
    )
    record_id = str(persistence_create(record.provisional["value"]))
    changes = record.commit(record_id)
    if "value" in changes:
        try:
            persistence_update(record_id, changes["value"])
        except Exception as err:
            logger.warning(
                "Rekey overwrite failed for record %s; left provisional: %s",
                record_id, err,
            )
    logger.debug("Record %s created for owner %s", record_id, owner_id)
    return record_id, plaintext


def repair_value(
    value: Optional[str],
    owner_id: str,
    record_id: str,
    *,
    placeholder_id: str = DEFAULT_PLACEHOLDER_ID,
    **kdf_options: Any,
) -> Optional[str]:
    """Return ``value`` re-encrypted under ``record_id`` if it needs it.

    Returns:
        The replacement ciphertext, or ``None`` when nothing is to be done.
    """
    if not needs_rekey(
        value, owner_id, record_id,
        placeholder_id=placeholder_id, **kdf_options,
    ):
        return None
    plaintext = safe_decrypt(
        value, owner_id, placeholder_id,
        placeholder_id=placeholder_id, **kdf_options,
    )
    return encrypt_for_record(plaintext, owner_id, record_id, **kdf_options)
