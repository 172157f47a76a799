"""Storage subsystem — the entity store and its JSON persistence.

Re-exports public symbols so callers can write::

    from omni_os.storage import Collection, EntityStore
"""

from omni_os.storage.persistence import dump_store, load_store
from omni_os.storage.store import INDEXES, Collection, EntityStore, Record

__all__ = [
    "INDEXES",
    "Collection",
    "EntityStore",
    "Record",
    "dump_store",
    "load_store",
]
