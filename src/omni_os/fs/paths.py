"""Path handling and the path resolver cache.

Paths are absolute, slash-delimited strings.  Before any lookup they are
**normalised**:

    "//home///alice/"  → "/home/alice"
    ""                 → "/"
    "/"                → "/"

The ``PathResolver`` maps a path (or a node id) to a node.  It is a
read-through cache in front of the entity store:

- **hit**  — return the cached node object.
- **miss** — query the store's ``files.path`` index (or fetch by id),
  rebuild the node, and cache it under *both* its path and its id.

The cache is derived state.  Every VFS mutation that changes a node's
existence or path must ``invalidate`` the affected keys before it
returns, otherwise a later ``resolve`` could hand back a stale node.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from omni_os.errors import InvalidArgumentError, NotFoundError
from omni_os.fs.nodes import Node, node_from_record
from omni_os.storage.store import Collection

if TYPE_CHECKING:
    from omni_os.storage.store import EntityStore

ROOT_PATH = "/"

_SLASHES = re.compile(r"/+")


def normalize(path: str) -> str:
    """Collapse repeated slashes, strip a trailing slash, map empty to ``/``."""
    collapsed = _SLASHES.sub("/", path).rstrip("/")
    if not collapsed:
        return ROOT_PATH
    if not collapsed.startswith("/"):
        collapsed = "/" + collapsed
    return collapsed


def join(parent: str, name: str) -> str:
    """Join a parent path and a child name into a normalised path."""
    return normalize(f"{parent}/{name}")


def split(path: str) -> tuple[str, str]:
    """Split a path into (parent_path, child_name).

    Examples::

        "/home/alice/notes.txt" → ("/home/alice", "notes.txt")
        "/tmp"                  → ("/", "tmp")
        "/"                     → ("/", "")

    """
    path = normalize(path)
    if path == ROOT_PATH:
        return (ROOT_PATH, "")
    parent, _, name = path.rpartition("/")
    return (parent or ROOT_PATH, name)


def validate_name(name: str) -> None:
    """Raise if *name* cannot be a single path segment.

    Raises:
        InvalidArgumentError: If the name is empty, ``.``/``..``, or
            contains a slash.

    """
    if not name or name in {".", ".."} or "/" in name:
        msg = f"Invalid name: {name!r}"
        raise InvalidArgumentError(msg)


def is_within(path: str, ancestor: str) -> bool:
    """Return True if *path* equals *ancestor* or lies beneath it."""
    path, ancestor = normalize(path), normalize(ancestor)
    if ancestor == ROOT_PATH:
        return True
    return path == ancestor or path.startswith(ancestor + "/")


class PathResolver:
    """Read-through cache mapping paths and ids to nodes."""

    def __init__(self, store: EntityStore) -> None:
        """Create an empty cache in front of *store*."""
        self._store = store
        self._cache: dict[str, Node] = {}

    def __len__(self) -> int:
        """Return the number of cache keys (paths plus ids)."""
        return len(self._cache)

    def __contains__(self, key: str) -> bool:
        """Return True if *key* (a path or an id) is cached."""
        return key in self._cache

    def lookup(self, path: str) -> Node | None:
        """Return the node at *path*, or None if there is none."""
        path = normalize(path)
        cached = self._cache.get(path)
        if cached is not None:
            return cached
        record = self._store.get_one_by_index(Collection.FILES, "path", path)
        if record is None:
            return None
        node = node_from_record(record)
        self.cache_put(node)
        return node

    def resolve(self, path: str) -> Node:
        """Return the node at *path*.

        Raises:
            NotFoundError: If no node has that path.

        """
        node = self.lookup(path)
        if node is None:
            msg = f"Path not found: {normalize(path)}"
            raise NotFoundError(msg)
        return node

    def get_by_id(self, node_id: str) -> Node | None:
        """Return the node with *node_id*, or None."""
        cached = self._cache.get(node_id)
        if cached is not None:
            return cached
        record = self._store.get(Collection.FILES, node_id)
        if record is None:
            return None
        node = node_from_record(record)
        self.cache_put(node)
        return node

    def cache_put(self, node: Node) -> None:
        """Cache *node* under its current path and its id."""
        self._cache[node.path] = node
        self._cache[node.id] = node

    def invalidate(self, path_or_id: str) -> None:
        """Drop *path_or_id* and the other key of the node it maps to."""
        key = path_or_id if path_or_id in self._cache else normalize(path_or_id)
        node = self._cache.pop(key, None)
        if node is None:
            return
        for other in (node.id, node.path):
            if self._cache.get(other) is node:
                del self._cache[other]

    def clear(self) -> None:
        """Drop every cache entry."""
        self._cache.clear()
