"""Entity store — the durable key-value backend under every subsystem.

The VFS, the process table, the app registry and the user manager all
keep their authoritative state here.  Anything held in memory elsewhere
(the path resolver's cache, the live process table) is derived state
that can be rebuilt from the store.

The store is organised like a small document database:

- **Collections** — one per entity kind (``files``, ``processes``, ...).
- **Records** — plain JSON-compatible dicts keyed by their id field.
- **Indexes** — secondary lookups by a field (``files.path``,
  ``files.parent_id``, ``apps.category``, ``users.username``, ...).

Records are deep-copied on the way in and on the way out, so a caller
mutating the dict it got back can never change stored state without an
explicit ``put``.  Each ``put`` / ``get`` is atomic for one record;
nothing spans records.
"""

from __future__ import annotations

import json
from copy import deepcopy
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, TypeAlias

from omni_os.config import ONE_GIB
from omni_os.errors import InvalidArgumentError, NotFoundError, PersistenceError

Record: TypeAlias = dict[str, Any]

CRASHED_RETENTION_SECONDS = 3600.0


class Collection(StrEnum):
    """The collections the store knows about."""

    FILES = "files"
    PROCESSES = "processes"
    APPS = "apps"
    USERS = "users"
    AGENTS = "agents"
    TRANSACTIONS = "transactions"
    KVSTORE = "kvstore"


# Which field identifies a record in each collection.
_KEY_FIELDS: dict[Collection, str] = {
    Collection.FILES: "id",
    Collection.PROCESSES: "pid",
    Collection.APPS: "id",
    Collection.USERS: "id",
    Collection.AGENTS: "id",
    Collection.TRANSACTIONS: "id",
}

# Secondary indexes: collection → {index name → record field}.
INDEXES: dict[Collection, dict[str, str]] = {
    Collection.FILES: {"path": "path", "parent": "parent_id"},
    Collection.APPS: {"category": "category"},
    Collection.USERS: {"username": "username"},
    Collection.AGENTS: {"owner": "owner_id"},
    Collection.TRANSACTIONS: {"wallet": "from"},
}

# Collections wiped by ``reset``; users and kv settings survive.
RESETTABLE: tuple[Collection, ...] = (
    Collection.FILES,
    Collection.PROCESSES,
    Collection.APPS,
    Collection.TRANSACTIONS,
    Collection.AGENTS,
)


class EntityStore:
    """An in-process document store with secondary indexes.

    Call ``initialize()`` before anything else; until then every
    operation fails with ``PersistenceError`` (the database is not open).
    """

    def __init__(self, *, quota: int = ONE_GIB) -> None:
        """Create a closed, empty store.

        Args:
            quota: Bytes reported as the storage limit by ``stats()``.

        """
        self._quota = quota
        self._initialized = False
        self._data: dict[Collection, dict[str, Record]] = {c: {} for c in Collection}

    @property
    def initialized(self) -> bool:
        """Return True once ``initialize()`` has run."""
        return self._initialized

    def initialize(self) -> None:
        """Open the store.  Calling it again is a no-op."""
        self._initialized = True

    def _require_open(self) -> None:
        if not self._initialized:
            msg = "Database not initialized"
            raise PersistenceError(msg)

    @staticmethod
    def _key_of(collection: Collection, record: Record) -> str:
        field = _KEY_FIELDS[collection]
        key = record.get(field)
        if not isinstance(key, str) or not key:
            msg = f"Record for {collection} has no '{field}' key"
            raise PersistenceError(msg)
        return key

    # -- Generic CRUD ---------------------------------------------------------

    def put(self, collection: Collection, record: Record) -> None:
        """Insert or replace a record.

        Raises:
            PersistenceError: If the store is closed, the record has no
                key, or it is not JSON-serialisable.

        """
        self._require_open()
        if collection is Collection.KVSTORE:
            msg = "Use set_kv() for the kvstore collection"
            raise PersistenceError(msg)
        key = self._key_of(collection, record)
        try:
            json.dumps(record)
        except (TypeError, ValueError) as e:
            msg = f"Record {key} in {collection} is not serialisable: {e}"
            raise PersistenceError(msg) from e
        self._data[collection][key] = deepcopy(record)

    def get(self, collection: Collection, key: str) -> Record | None:
        """Return a copy of the record with *key*, or None."""
        self._require_open()
        record = self._data[collection].get(key)
        return deepcopy(record) if record is not None else None

    def get_all(self, collection: Collection) -> list[Record]:
        """Return copies of every record in insertion order."""
        self._require_open()
        return [deepcopy(r) for r in self._data[collection].values()]

    def delete(self, collection: Collection, key: str) -> None:
        """Remove a record.  Deleting a missing key is a no-op."""
        self._require_open()
        self._data[collection].pop(key, None)

    def clear(self, collection: Collection) -> None:
        """Remove every record in a collection."""
        self._require_open()
        self._data[collection].clear()

    def count(self, collection: Collection) -> int:
        """Return the number of records in a collection."""
        self._require_open()
        return len(self._data[collection])

    # -- Secondary indexes ----------------------------------------------------

    def get_by_index(self, collection: Collection, index: str, value: object) -> list[Record]:
        """Return copies of every record whose indexed field equals *value*.

        Raises:
            InvalidArgumentError: If the collection has no such index.

        """
        self._require_open()
        field = INDEXES.get(collection, {}).get(index)
        if field is None:
            msg = f"No index '{index}' on {collection}"
            raise InvalidArgumentError(msg)
        return [deepcopy(r) for r in self._data[collection].values() if r.get(field) == value]

    def get_one_by_index(self, collection: Collection, index: str, value: object) -> Record | None:
        """Return the first record matching an index lookup, or None."""
        matches = self.get_by_index(collection, index, value)
        return matches[0] if matches else None

    # -- Key-value settings ---------------------------------------------------

    def set_kv(self, key: str, value: Any) -> None:  # noqa: ANN401
        """Store an arbitrary JSON-compatible value under *key*."""
        self._require_open()
        try:
            json.dumps(value)
        except (TypeError, ValueError) as e:
            msg = f"Value for {key} is not serialisable: {e}"
            raise PersistenceError(msg) from e
        self._data[Collection.KVSTORE][key] = deepcopy(value)

    def get_kv(self, key: str, default: Any = None) -> Any:  # noqa: ANN401
        """Return the value stored under *key*, or *default*."""
        self._require_open()
        if key not in self._data[Collection.KVSTORE]:
            return default
        return deepcopy(self._data[Collection.KVSTORE][key])

    def delete_kv(self, key: str) -> None:
        """Remove *key*.

        Raises:
            NotFoundError: If the key does not exist.

        """
        self._require_open()
        if key not in self._data[Collection.KVSTORE]:
            msg = f"Key not found: {key}"
            raise NotFoundError(msg)
        del self._data[Collection.KVSTORE][key]

    # -- Stats and maintenance ------------------------------------------------

    def stats(self) -> dict[str, int]:
        """Return used, available and quota sizes in bytes.

        "Used" is the size of every record serialised as JSON, which is
        what a dump to disk would cost.
        """
        self._require_open()
        used = sum(
            len(json.dumps(record))
            for records in self._data.values()
            for record in records.values()
        )
        return {"used": used, "available": max(self._quota - used, 0), "quota": self._quota}

    def vacuum(
        self,
        *,
        now: datetime | None = None,
        retention: float = CRASHED_RETENTION_SECONDS,
    ) -> int:
        """Drop crashed process records older than *retention* seconds.

        Args:
            now: The current time (defaults to the wall clock).
            retention: Age in seconds after which a crash record goes.

        Returns:
            The number of records removed.

        """
        self._require_open()
        now = now or datetime.now(tz=UTC)
        processes = self._data[Collection.PROCESSES]
        stale = [
            pid
            for pid, record in processes.items()
            if record.get("status") == "crashed"
            and (now - datetime.fromisoformat(record["started_at"])).total_seconds() > retention
        ]
        for pid in stale:
            del processes[pid]
        return len(stale)

    # -- Import / export ------------------------------------------------------

    def export_data(self) -> dict[str, Any]:
        """Return every collection as a JSON-compatible dict."""
        self._require_open()
        return {
            collection.value: (
                deepcopy(records)
                if collection is Collection.KVSTORE
                else [deepcopy(r) for r in records.values()]
            )
            for collection, records in self._data.items()
        }

    def import_data(self, data: dict[str, Any]) -> None:
        """Load collections produced by ``export_data()``.

        Records are merged over existing ones with the same key.

        Raises:
            InvalidArgumentError: If a collection name is unknown.

        """
        self._require_open()
        for name, payload in data.items():
            try:
                collection = Collection(name)
            except ValueError as e:
                msg = f"Unknown collection: {name}"
                raise InvalidArgumentError(msg) from e
            if collection is Collection.KVSTORE:
                for key, value in payload.items():
                    self.set_kv(key, value)
            else:
                for record in payload:
                    self.put(collection, record)
