"""Shared fixtures: an in-memory stand-in for an asyncpg pool."""
import uuid
import itertools
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

import pytest

from everkeep.vault import records


class FakeDatabase:
    """Answers the statements VaultStore issues, keyed by statement."""

    def __init__(self):
        self.vaults: dict[str, dict] = {}
        self.entries: dict[str, dict] = {}
        self.fail_vault_updates = False
        self._tick = itertools.count()
        self._handlers = {
            records._INSERT_VAULT: self._insert_vault,
            records._UPDATE_VAULT: self._update_vault,
            records._SELECT_VAULT: self._select_vault,
            records._SELECT_VAULTS: self._select_vaults,
            records._COUNT_VAULTS: self._count_vaults,
            records._SOFT_DELETE_VAULT: self._soft_delete_vault,
            records._INSERT_ENTRY: self._insert_entry,
            records._SELECT_ENTRIES: self._select_entries,
            records._SELECT_OWNED_ENTRY: self._select_owned_entry,
            records._UPDATE_ENTRY: self._update_entry,
            records._SOFT_DELETE_ENTRY: self._soft_delete_entry,
        }

    def _now(self) -> datetime:
        base = datetime(2026, 1, 1, tzinfo=timezone.utc)
        return base + timedelta(seconds=next(self._tick))

    def run(self, query, *args):
        return self._handlers[query](*args)

    def _insert_vault(self, user_id, name, description):
        now = self._now()
        row = {
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "name": name,
            "description": description,
            "created_at": now,
            "updated_at": now,
            "deleted_at": None,
        }
        self.vaults[row["id"]] = row
        return dict(row)

    def _update_vault(self, vault_id, name, description):
        if self.fail_vault_updates:
            raise ConnectionError("connection lost")
        row = self.vaults.get(vault_id)
        if row is None or row["deleted_at"] is not None:
            return None
        row.update(name=name, description=description, updated_at=self._now())
        return dict(row)

    def _select_vault(self, vault_id, user_id):
        row = self.vaults.get(vault_id)
        if row is None or row["user_id"] != user_id or row["deleted_at"]:
            return None
        return dict(row)

    def _owned_vaults(self, user_id):
        return [
            row for row in self.vaults.values()
            if row["user_id"] == user_id and row["deleted_at"] is None
        ]

    def _select_vaults(self, user_id, limit, offset):
        rows = sorted(
            self._owned_vaults(user_id),
            key=lambda r: r["created_at"], reverse=True,
        )
        return [dict(row) for row in rows[offset:offset + limit]]

    def _count_vaults(self, user_id):
        return len(self._owned_vaults(user_id))

    def _soft_delete_vault(self, vault_id, user_id):
        row = self._select_vault(vault_id, user_id)
        if row is None:
            return None
        self.vaults[vault_id]["deleted_at"] = self._now()
        return {"id": vault_id}

    def _insert_entry(self, vault_id, type_, content, parent_id):
        now = self._now()
        row = {
            "id": str(uuid.uuid4()),
            "vault_id": vault_id,
            "type": type_,
            "content": content,
            "parent_id": parent_id,
            "created_at": now,
            "updated_at": now,
            "deleted_at": None,
        }
        self.entries[row["id"]] = row
        return dict(row)

    def _select_entries(self, vault_id):
        rows = [
            row for row in self.entries.values()
            if row["vault_id"] == vault_id and row["deleted_at"] is None
        ]
        rows.sort(key=lambda r: r["created_at"], reverse=True)
        return [dict(row) for row in rows]

    def _select_owned_entry(self, entry_id, user_id):
        entry = self.entries.get(entry_id)
        if entry is None or entry["deleted_at"] is not None:
            return None
        if self._select_vault(entry["vault_id"], user_id) is None:
            return None
        return {"id": entry["id"], "vault_id": entry["vault_id"]}

    def _update_entry(self, entry_id, content):
        row = self.entries.get(entry_id)
        if row is None or row["deleted_at"] is not None:
            return None
        row.update(content=content, updated_at=self._now())
        return dict(row)

    def _soft_delete_entry(self, entry_id):
        row = self.entries.get(entry_id)
        if row is None or row["deleted_at"] is not None:
            return None
        row["deleted_at"] = self._now()
        return {"id": entry_id}


class FakeConnection:
    def __init__(self, db: FakeDatabase):
        self._db = db

    async def fetchrow(self, query, *args):
        return self._db.run(query, *args)

    async def fetch(self, query, *args):
        return self._db.run(query, *args)

    async def fetchval(self, query, *args):
        return self._db.run(query, *args)


class FakePool:
    def __init__(self, db: FakeDatabase):
        self.db = db

    @asynccontextmanager
    async def acquire(self):
        yield FakeConnection(self.db)


class FakeClock:
    """Settable clock for share-token expiry tests."""

    def __init__(self, now: float = 1_760_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def db():
    return FakeDatabase()


@pytest.fixture
def pool(db):
    return FakePool(db)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def share_secret():
    return bytes(range(32))
