"""Tests for the entity store.

The store is the durable backend under every subsystem: collections of
JSON-compatible records, secondary indexes, a key-value area, and
maintenance helpers (stats, vacuum, import/export).
"""

from datetime import UTC, datetime, timedelta

import pytest

from omni_os.errors import InvalidArgumentError, NotFoundError, PersistenceError
from omni_os.storage.store import Collection, EntityStore


def _open_store(quota: int = 1_000_000) -> EntityStore:
    """Create and initialise a store."""
    store = EntityStore(quota=quota)
    store.initialize()
    return store


def _process_record(pid: str, status: str, started_at: datetime) -> dict[str, object]:
    """Build a minimal process record."""
    return {"pid": pid, "name": pid, "status": status, "started_at": started_at.isoformat()}


class TestInitialisation:
    """Verify the store refuses work until it is opened."""

    def test_operations_before_initialize_fail(self) -> None:
        """Every call before initialize() should raise PersistenceError."""
        store = EntityStore()
        assert not store.initialized
        with pytest.raises(PersistenceError, match="Database not initialized"):
            store.get_all(Collection.FILES)

    def test_initialize_is_idempotent(self) -> None:
        """Calling initialize() twice should be harmless."""
        store = _open_store()
        store.put(Collection.APPS, {"id": "a1", "name": "calc"})
        store.initialize()
        assert store.count(Collection.APPS) == 1


class TestCrud:
    """Verify put, get, get_all, delete and clear."""

    def test_put_then_get(self) -> None:
        """A stored record should come back unchanged."""
        store = _open_store()
        store.put(Collection.APPS, {"id": "a1", "name": "calc"})
        assert store.get(Collection.APPS, "a1") == {"id": "a1", "name": "calc"}

    def test_get_missing_returns_none(self) -> None:
        """A missing key should return None."""
        assert _open_store().get(Collection.APPS, "nope") is None

    def test_processes_keyed_by_pid(self) -> None:
        """Process records should be keyed by their pid field."""
        store = _open_store()
        store.put(Collection.PROCESSES, {"pid": "p1", "status": "running"})
        assert store.get(Collection.PROCESSES, "p1") is not None

    def test_record_without_key_rejected(self) -> None:
        """A record missing its key field should raise PersistenceError."""
        with pytest.raises(PersistenceError, match="has no 'id' key"):
            _open_store().put(Collection.APPS, {"name": "calc"})

    def test_unserialisable_record_rejected(self) -> None:
        """Records must be JSON-compatible."""
        with pytest.raises(PersistenceError, match="not serialisable"):
            _open_store().put(Collection.APPS, {"id": "a1", "when": object()})

    def test_put_on_kvstore_rejected(self) -> None:
        """The kvstore collection is only reachable through set_kv."""
        with pytest.raises(PersistenceError, match="set_kv"):
            _open_store().put(Collection.KVSTORE, {"id": "x"})

    def test_records_are_copied_on_put(self) -> None:
        """Mutating the dict after put should not change stored state."""
        store = _open_store()
        record: dict[str, object] = {"id": "a1", "tags": ["x"]}
        store.put(Collection.APPS, record)
        record["tags"] = ["y"]
        stored = store.get(Collection.APPS, "a1")
        assert stored is not None
        assert stored["tags"] == ["x"]

    def test_records_are_copied_on_get(self) -> None:
        """Mutating a fetched record should not change stored state."""
        store = _open_store()
        store.put(Collection.APPS, {"id": "a1", "tags": ["x"]})
        fetched = store.get(Collection.APPS, "a1")
        assert fetched is not None
        fetched["tags"].append("y")
        again = store.get(Collection.APPS, "a1")
        assert again is not None
        assert again["tags"] == ["x"]

    def test_delete_and_delete_missing(self) -> None:
        """delete() should remove a record and ignore missing keys."""
        store = _open_store()
        store.put(Collection.APPS, {"id": "a1"})
        store.delete(Collection.APPS, "a1")
        store.delete(Collection.APPS, "a1")
        assert store.count(Collection.APPS) == 0

    def test_clear(self) -> None:
        """clear() should empty one collection only."""
        store = _open_store()
        store.put(Collection.APPS, {"id": "a1"})
        store.put(Collection.USERS, {"id": "u1"})
        store.clear(Collection.APPS)
        assert store.count(Collection.APPS) == 0
        assert store.count(Collection.USERS) == 1


class TestIndexes:
    """Verify secondary index lookups."""

    def test_files_by_path(self) -> None:
        """The files.path index should find a record by its path."""
        store = _open_store()
        store.put(Collection.FILES, {"id": "n1", "path": "/tmp", "parent_id": "root"})
        store.put(Collection.FILES, {"id": "n2", "path": "/home", "parent_id": "root"})
        found = store.get_one_by_index(Collection.FILES, "path", "/home")
        assert found is not None
        assert found["id"] == "n2"

    def test_files_by_parent(self) -> None:
        """The files.parent index should return every child."""
        store = _open_store()
        store.put(Collection.FILES, {"id": "n1", "path": "/a", "parent_id": "root"})
        store.put(Collection.FILES, {"id": "n2", "path": "/b", "parent_id": "root"})
        store.put(Collection.FILES, {"id": "n3", "path": "/b/c", "parent_id": "n2"})
        children = store.get_by_index(Collection.FILES, "parent", "root")
        assert {r["id"] for r in children} == {"n1", "n2"}

    def test_no_match_returns_none(self) -> None:
        """get_one_by_index should return None when nothing matches."""
        assert _open_store().get_one_by_index(Collection.USERS, "username", "ghost") is None

    def test_unknown_index_rejected(self) -> None:
        """Looking up an index that does not exist should raise."""
        with pytest.raises(InvalidArgumentError, match="No index 'colour'"):
            _open_store().get_by_index(Collection.APPS, "colour", "red")


class TestKeyValue:
    """Verify the key-value settings area."""

    def test_set_and_get(self) -> None:
        """A stored value should come back."""
        store = _open_store()
        store.set_kv("theme", {"mode": "dark"})
        assert store.get_kv("theme") == {"mode": "dark"}

    def test_get_default(self) -> None:
        """A missing key should return the default."""
        assert _open_store().get_kv("absent", "fallback") == "fallback"

    def test_delete_missing_raises(self) -> None:
        """Deleting a key that does not exist should raise NotFoundError."""
        with pytest.raises(NotFoundError, match="Key not found: absent"):
            _open_store().delete_kv("absent")


class TestMaintenance:
    """Verify stats, vacuum and import/export."""

    def test_stats_tracks_usage(self) -> None:
        """Used bytes should grow as records are added."""
        store = _open_store(quota=10_000)
        empty = store.stats()
        store.put(Collection.APPS, {"id": "a1", "name": "calc"})
        full = store.stats()
        assert full["used"] > empty["used"]
        assert full["available"] == full["quota"] - full["used"]

    def test_vacuum_removes_old_crashed_records(self) -> None:
        """Crashed records older than the retention window should go."""
        store = _open_store()
        now = datetime(2026, 1, 1, tzinfo=UTC)
        store.put(Collection.PROCESSES, _process_record("old", "crashed", now - timedelta(hours=2)))
        store.put(
            Collection.PROCESSES, _process_record("new", "crashed", now - timedelta(minutes=5))
        )
        store.put(
            Collection.PROCESSES, _process_record("live", "stopped", now - timedelta(hours=5))
        )
        removed = store.vacuum(now=now)
        assert removed == 1
        assert store.get(Collection.PROCESSES, "old") is None
        assert store.get(Collection.PROCESSES, "new") is not None
        assert store.get(Collection.PROCESSES, "live") is not None

    def test_export_then_import(self) -> None:
        """Exported data should import into a fresh store."""
        source = _open_store()
        source.put(Collection.USERS, {"id": "u1", "username": "u1"})
        source.set_kv("theme", "dark")
        target = _open_store()
        target.import_data(source.export_data())
        assert target.get(Collection.USERS, "u1") == {"id": "u1", "username": "u1"}
        assert target.get_kv("theme") == "dark"

    def test_import_unknown_collection_rejected(self) -> None:
        """An unknown collection name should raise InvalidArgumentError."""
        with pytest.raises(InvalidArgumentError, match="Unknown collection: widgets"):
            _open_store().import_data({"widgets": []})
