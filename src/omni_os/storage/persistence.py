"""Store persistence — save and load the entity store to/from disk.

A browser-hosted desktop keeps its entities in IndexedDB, which survives a
page reload.  Our in-process store is just memory, so to simulate a
restart (or an abrupt power loss) we serialise it to **JSON**:

    - ``dump_store(store, path)`` — flush every collection to a file.
    - ``load_store(path)`` — build an opened store from a file.

Records are already JSON-compatible (binary file content is base64
encoded by the VFS), so the dump is a direct ``json.dumps`` of
``export_data()``.
"""

import json
from pathlib import Path

from omni_os.config import ONE_GIB
from omni_os.errors import PersistenceError
from omni_os.storage.store import EntityStore


def dump_store(store: EntityStore, path: Path) -> None:
    """Save every collection of *store* to a JSON file.

    Raises:
        PersistenceError: If the file cannot be written.

    """
    data = store.export_data()
    try:
        path.write_text(json.dumps(data, indent=2))
    except OSError as e:
        msg = f"Cannot write store to {path}: {e}"
        raise PersistenceError(msg) from e


def load_store(path: Path, *, quota: int = ONE_GIB) -> EntityStore:
    """Load an opened store from a JSON file written by ``dump_store``.

    Raises:
        PersistenceError: If the file is missing or not valid JSON.

    """
    try:
        data = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        msg = f"Cannot load store from {path}: {e}"
        raise PersistenceError(msg) from e
    store = EntityStore(quota=quota)
    store.initialize()
    store.import_data(data)
    return store
