"""
Tests for the two-phase create/rekey workflow.

Tests cover:
- Provisional -> committed state transitions
- create_with_rekey with in-memory persistence callables
- Failure handling of the create and update callables
- Idempotent repair of placeholder-keyed values
"""
import logging

import pytest

from everkeep.vault.crypto import decrypt_for_record, encrypt_for_record
from everkeep.vault.rekey import (
    RekeyState,
    begin,
    create_with_rekey,
    repair_value,
)
from everkeep.vault.safe import safe_decrypt


class MemoryTable:
    """A single-column table keyed by auto-increment id."""

    def __init__(self, fail_update: bool = False):
        self.rows: dict[str, str] = {}
        self.updates = 0
        self._fail_update = fail_update

    def create(self, ciphertext: str) -> str:
        record_id = f"rec-{len(self.rows) + 1}"
        self.rows[record_id] = ciphertext
        return record_id

    def update(self, record_id: str, ciphertext: str) -> None:
        if self._fail_update:
            raise ConnectionError("database went away")
        self.updates += 1
        self.rows[record_id] = ciphertext


# --- ProvisionalRecord ---

class TestProvisionalRecord:

    def test_begin_encrypts_under_placeholder(self):
        """Fields start out keyed to the placeholder id."""
        record = begin("u1", {"name": "Family Photos", "description": None})
        assert record.state is RekeyState.PROVISIONAL
        assert record.record_id is None
        assert record.provisional["description"] is None
        assert decrypt_for_record(
            record.provisional["name"], "u1", "new"
        ) == "Family Photos"

    def test_commit_returns_changed_fields(self):
        """Commit re-encrypts under the real id and reports changes."""
        record = begin("u1", {"name": "Family Photos", "description": None})
        changes = record.commit("v1")
        assert record.state is RekeyState.COMMITTED
        assert record.record_id == "v1"
        assert list(changes) == ["name"]
        assert decrypt_for_record(changes["name"], "u1", "v1") == "Family Photos"
        assert record.committed["description"] is None

    def test_commit_is_idempotent_for_same_id(self):
        """Committing twice to the same id is a no-op."""
        record = begin("u1", {"name": "x"})
        record.commit("v1")
        assert record.commit("v1") == {}

    def test_commit_to_other_id_rejected(self):
        """A committed record cannot move to another id."""
        record = begin("u1", {"name": "x"})
        record.commit("v1")
        with pytest.raises(RuntimeError):
            record.commit("v2")


# --- create_with_rekey ---

class TestCreateWithRekey:

    def test_final_state_reads_back(self):
        """After create, the persisted value decrypts under the real id."""
        table = MemoryTable()
        record_id, plaintext = create_with_rekey(
            "u1", "secret", table.create, table.update,
        )
        assert plaintext == "secret"
        assert table.updates == 1
        stored = table.rows[record_id]
        assert decrypt_for_record(stored, "u1", record_id) == "secret"
        assert safe_decrypt(stored, "u1", record_id) == "secret"

    def test_empty_plaintext_reads_back(self):
        """An empty value goes through the rekey and reads back as empty."""
        table = MemoryTable()
        record_id, plaintext = create_with_rekey("u1", "", table.create, table.update)
        assert plaintext == ""
        stored = table.rows[record_id]
        assert stored != ""
        assert decrypt_for_record(stored, "u1", record_id) == ""
        assert safe_decrypt(stored, "u1", record_id) == ""

    def test_create_error_propagates(self):
        """Errors from the create callable are not masked."""
        def failing_create(ciphertext):
            raise ConnectionError("insert failed")

        with pytest.raises(ConnectionError):
            create_with_rekey("u1", "secret", failing_create, lambda *a: None)

    def test_update_error_is_logged_not_raised(self, caplog):
        """A failed overwrite leaves the record readable via fallback."""
        table = MemoryTable(fail_update=True)
        with caplog.at_level(logging.WARNING, logger="everkeep.vault"):
            record_id, plaintext = create_with_rekey(
                "u1", "secret", table.create, table.update,
            )
        assert plaintext == "secret"
        assert "Rekey overwrite failed" in caplog.text
        assert "secret" not in caplog.text
        stored = table.rows[record_id]
        assert safe_decrypt(stored, "u1", record_id) == "secret"

    def test_create_receives_ciphertext_only(self):
        """The persistence layer never sees the plaintext."""
        seen = []

        def create(ciphertext):
            seen.append(ciphertext)
            return "v1"

        create_with_rekey("u1", "Family Photos", create, lambda *a: seen.append(a[1]))
        assert all("Family" not in value for value in seen)
        assert len(seen) == 2


# --- repair_value ---

class TestRepairValue:

    def test_repairs_placeholder_value(self):
        """A placeholder-keyed value is re-encrypted under the real id."""
        stored = encrypt_for_record("secret", "u1", "new")
        repaired = repair_value(stored, "u1", "v1")
        assert repaired is not None
        assert decrypt_for_record(repaired, "u1", "v1") == "secret"

    def test_repair_is_idempotent(self):
        """Repairing an already correct value does nothing."""
        stored = encrypt_for_record("secret", "u1", "new")
        repaired = repair_value(stored, "u1", "v1")
        assert repair_value(repaired, "u1", "v1") is None

    def test_plaintext_left_alone(self):
        """Legacy plaintext is not touched."""
        assert repair_value("Grandma's recipes", "u1", "v1") is None
        assert repair_value(None, "u1", "v1") is None
