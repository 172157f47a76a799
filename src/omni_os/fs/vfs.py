"""Virtual file system — a permission-checked tree over the entity store.

The VFS owns the directory tree.  The entity store holds the durable
copy of every node; the ``PathResolver`` caches node objects by path
and by id.  Each public operation follows the same shape:

    resolve → check type → check permission → mutate → persist → recache

so no observer can see a half-applied change through the cache.

All permission checks are made on behalf of the *acting user*, set with
``set_current_user``.  Default permissions for a new node are private to
that user (see ``Permissions.private_to``).

Default tree, created on first ``initialize()``::

    /          owner system, world-readable, writable by system only
    ├── apps     open to everyone
    ├── home     open to everyone; each user gets /home/<user>
    ├── shared   open to everyone
    ├── system   world-readable, writable by system only
    └── tmp      open to everyone

Cascades (recursive delete, recursive copy) are best-effort in the
sense that a permission failure deep in a tree stops the walk.  Delete
leaves whatever was already removed; copy is all-or-nothing and removes
the partial destination before re-raising.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from omni_os.errors import ConflictError, InvalidArgumentError, KernelError, NotFoundError
from omni_os.fs.nodes import (
    DEFAULT_MIME_TYPE,
    Content,
    DirectoryNode,
    FileNode,
    Node,
    NodeType,
)
from omni_os.fs.paths import (
    ROOT_PATH,
    PathResolver,
    is_within,
    join,
    normalize,
    split,
    validate_name,
)
from omni_os.fs.permissions import Access, Permissions
from omni_os.logging import SYSTEM_USER, LogLevel
from omni_os.metadata import validate_metadata
from omni_os.storage.store import Collection

if TYPE_CHECKING:
    from collections.abc import Generator, Iterator, Mapping

    from omni_os.logging import Logger
    from omni_os.storage.store import EntityStore

DEFAULT_DIRECTORIES: tuple[str, ...] = ("home", "apps", "tmp", "shared")
SYSTEM_DIRECTORY = "system"


@dataclass(frozen=True)
class FsStats:
    """Totals across the whole tree."""

    total_files: int
    total_directories: int
    total_size: int


class VirtualFileSystem:
    """The directory tree, its permissions and its path cache."""

    def __init__(self, store: EntityStore, *, logger: Logger | None = None) -> None:
        """Create a VFS over *store*.  Call ``initialize()`` before use."""
        self._store = store
        self._logger = logger
        self._resolver = PathResolver(store)
        self._current_user: str = SYSTEM_USER

    # -- Acting user ----------------------------------------------------------

    @property
    def current_user(self) -> str:
        """Return the user id permission checks are made for."""
        return self._current_user

    def set_current_user(self, user_id: str) -> None:
        """Scope subsequent permission checks to *user_id*."""
        self._current_user = user_id

    @contextmanager
    def acting_as(self, user_id: str) -> Generator[None]:
        """Temporarily act as *user_id*, then restore the previous user."""
        previous = self._current_user
        self._current_user = user_id
        try:
            yield
        finally:
            self._current_user = previous

    @property
    def resolver(self) -> PathResolver:
        """Return the path resolver (shared cache)."""
        return self._resolver

    def _log(self, message: str, level: LogLevel = LogLevel.INFO) -> None:
        if self._logger is not None:
            self._logger.log(level, message, source="vfs", user=self._current_user)

    # -- Bootstrap ------------------------------------------------------------

    def initialize(self, user_id: str = SYSTEM_USER) -> bool:
        """Mount the tree for *user_id*, creating the default layout if needed.

        Returns:
            True if the root was absent and the default tree was created.

        """
        self._current_user = user_id
        if self._resolver.lookup(ROOT_PATH) is not None:
            return False

        with self.acting_as(SYSTEM_USER):
            root = DirectoryNode(
                name="",
                path=ROOT_PATH,
                parent_id=None,
                permissions=Permissions(
                    owner=SYSTEM_USER,
                    read=["*"],
                    write=[SYSTEM_USER],
                    execute=["*"],
                    public=True,
                ),
            )
            self._persist(root)
            self._resolver.cache_put(root)

            for name in DEFAULT_DIRECTORIES:
                self.create_directory(ROOT_PATH, name, Permissions.open_to_all(SYSTEM_USER))
            self.create_directory(
                ROOT_PATH,
                SYSTEM_DIRECTORY,
                Permissions(
                    owner=SYSTEM_USER,
                    read=["*"],
                    write=[SYSTEM_USER],
                    execute=[SYSTEM_USER],
                    public=True,
                ),
            )
        self._log("VFS initialized with default structure")
        return True

    def ensure_home(self, user_id: str) -> DirectoryNode:
        """Return ``/home/<user_id>``, creating it (owned by the user) if absent."""
        path = join("/home", user_id)
        existing = self._resolver.lookup(path)
        if isinstance(existing, DirectoryNode):
            return existing
        with self.acting_as(user_id):
            return self.create_directory("/home", user_id, Permissions.private_to(user_id))

    # -- Internal helpers -----------------------------------------------------

    def _persist(self, node: Node) -> None:
        self._store.put(Collection.FILES, node.to_dict())

    @staticmethod
    def _require_content(content: object) -> None:
        if not isinstance(content, str | bytes):
            msg = f"File content must be str or bytes, not {type(content).__name__}"
            raise InvalidArgumentError(msg)

    def _directory(self, path: str, *, what: str = "Directory") -> DirectoryNode:
        node = self._resolver.lookup(path)
        if node is None:
            msg = f"{what} not found: {normalize(path)}"
            raise NotFoundError(msg)
        if not isinstance(node, DirectoryNode):
            msg = f"Not a directory: {normalize(path)}"
            raise InvalidArgumentError(msg)
        return node

    def _file(self, path: str) -> FileNode:
        node = self._resolver.lookup(path)
        if node is None:
            msg = f"File not found: {normalize(path)}"
            raise NotFoundError(msg)
        if not isinstance(node, FileNode):
            msg = f"Is a directory: {normalize(path)}"
            raise InvalidArgumentError(msg)
        return node

    def _check(self, node: Node, access: Access) -> None:
        node.permissions.check(self._current_user, access, path=node.path)

    def _walk(self, node: Node) -> Iterator[Node]:
        """Yield *node* and every descendant, parents before children."""
        yield node
        if isinstance(node, DirectoryNode):
            for child_id in list(node.children):
                child = self._resolver.get_by_id(child_id)
                if child is not None:
                    yield from self._walk(child)

    def _unlink_from_parent(self, node: Node) -> None:
        if node.parent_id is None:
            return
        parent = self._resolver.get_by_id(node.parent_id)
        if isinstance(parent, DirectoryNode):
            parent.children = [cid for cid in parent.children if cid != node.id]
            parent.touch()
            self._persist(parent)

    def _link_into(self, parent: DirectoryNode, node: Node) -> None:
        parent.children.append(node.id)
        parent.touch()
        self._persist(parent)

    def _purge(self, node: Node) -> None:
        """Remove a subtree without permission checks (used for rollback)."""
        for descendant in reversed(list(self._walk(node))):
            self._store.delete(Collection.FILES, descendant.id)
            self._resolver.invalidate(descendant.id)
        self._unlink_from_parent(node)

    def _add_node(self, parent_path: str, name: str, build: type[Node], **fields: object) -> Node:
        validate_name(name)
        parent = self._directory(parent_path, what="Parent directory")
        self._check(parent, Access.WRITE)
        path = join(parent.path, name)
        if self._resolver.lookup(path) is not None:
            msg = f"Already exists: {path}"
            raise ConflictError(msg)
        node = build(name=name, path=path, parent_id=parent.id, **fields)  # pyright: ignore[reportArgumentType]
        self._persist(node)
        self._link_into(parent, node)
        self._resolver.cache_put(node)
        return node

    # -- Directory operations -------------------------------------------------

    def create_directory(
        self,
        parent_path: str,
        name: str,
        permissions: Permissions | None = None,
    ) -> DirectoryNode:
        """Create an empty directory named *name* under *parent_path*.

        Raises:
            NotFoundError: If the parent does not exist.
            InvalidArgumentError: If the parent is a file or *name* is invalid.
            PermissionDeniedError: If the parent is not writable.
            ConflictError: If a sibling named *name* already exists.

        """
        perms = permissions.copy() if permissions else Permissions.private_to(self._current_user)
        node = self._add_node(parent_path, name, DirectoryNode, permissions=perms)
        self._log(f"created directory {node.path}")
        return node  # pyright: ignore[reportReturnType]

    def list_directory(self, path: str) -> list[Node]:
        """Return the readable children of a directory.

        Directories come before files; within each group names sort
        case-sensitively.

        Raises:
            NotFoundError: If the path does not exist.
            InvalidArgumentError: If the path is a file.
            PermissionDeniedError: If the directory is not readable.

        """
        directory = self._directory(path)
        self._check(directory, Access.READ)
        children = [
            child
            for child_id in directory.children
            if (child := self._resolver.get_by_id(child_id)) is not None
            and child.permissions.can_read(self._current_user)
        ]
        return sorted(children, key=lambda n: (n.node_type is not NodeType.DIRECTORY, n.name))

    # -- File operations ------------------------------------------------------

    def create_file(  # noqa: PLR0913
        self,
        parent_path: str,
        name: str,
        content: Content = "",
        mime_type: str = DEFAULT_MIME_TYPE,
        permissions: Permissions | None = None,
        metadata: Mapping[str, object] | None = None,
    ) -> FileNode:
        """Create a file named *name* under *parent_path*.

        Raises:
            NotFoundError: If the parent does not exist.
            InvalidArgumentError: If the parent is a file, *name* is
                invalid, or *metadata* holds unsupported values.
            PermissionDeniedError: If the parent is not writable.
            ConflictError: If a sibling named *name* already exists.

        """
        self._require_content(content)
        perms = permissions.copy() if permissions else Permissions.private_to(self._current_user)
        node = self._add_node(
            parent_path,
            name,
            FileNode,
            permissions=perms,
            content=content,
            mime_type=mime_type,
            metadata=validate_metadata(metadata),
        )
        self._log(f"created file {node.path} ({node.size} bytes)")
        return node  # pyright: ignore[reportReturnType]

    def read_file(self, path: str) -> Content:
        """Return the content of a file.

        Raises:
            NotFoundError: If the path does not exist.
            InvalidArgumentError: If the path is a directory.
            PermissionDeniedError: If the file is not readable.

        """
        node = self._file(path)
        self._check(node, Access.READ)
        return node.content

    def write_file(self, path: str, content: Content, *, append: bool = False) -> FileNode:
        """Replace (or append to) the content of a file.

        Appending joins text to text or bytes to bytes.  Mixing the two
        is rejected rather than guessing an encoding.

        Raises:
            NotFoundError: If the path does not exist.
            InvalidArgumentError: If the path is a directory, *content* is
                neither text nor bytes, or an append mixes the two.
            PermissionDeniedError: If the file is not writable.

        """
        self._require_content(content)
        node = self._file(path)
        self._check(node, Access.WRITE)
        new_content = content
        if append:
            match (node.content, content):
                case (str() as old, str() as new):
                    new_content = old + new
                case (bytes() as old, bytes() as new):
                    new_content = old + new
                case _:
                    msg = (
                        f"Cannot append {type(content).__name__} to "
                        f"{type(node.content).__name__} content: {node.path}"
                    )
                    raise InvalidArgumentError(msg)
        # The cached node changes only once the store has taken the new copy
        updated = replace(node, content=new_content)
        updated.touch()
        self._persist(updated)
        self._resolver.cache_put(updated)
        return updated

    def delete_file(self, path: str) -> None:
        """Delete a file, or a directory and everything beneath it.

        Every node removed must be writable by the acting user.  The walk
        stops at the first failure; nodes already removed stay removed.

        Raises:
            NotFoundError: If the path does not exist.
            InvalidArgumentError: If the path is the root.
            PermissionDeniedError: If any node in the subtree is not writable.

        """
        node = self._resolver.resolve(path)
        if node.parent_id is None:
            msg = "Cannot delete root directory"
            raise InvalidArgumentError(msg)
        self._delete(node)
        self._log(f"deleted {node.path}")

    def _delete(self, node: Node) -> None:
        self._check(node, Access.WRITE)
        if isinstance(node, DirectoryNode):
            for child_id in list(node.children):
                child = self._resolver.get_by_id(child_id)
                if child is not None:
                    self._delete(child)
        self._unlink_from_parent(node)
        self._store.delete(Collection.FILES, node.id)
        self._resolver.invalidate(node.id)

    def move_file(self, source_path: str, dest_path: str) -> Node:
        """Move (or rename) a node to *dest_path*.

        The node keeps its id, content and permissions.  It is appended
        to the end of the destination directory's child order, and every
        descendant's path is rewritten to match.

        Raises:
            NotFoundError: If the source or the destination parent is missing.
            InvalidArgumentError: If the source is the root, the destination
                name is invalid, or a directory would move into itself.
            PermissionDeniedError: If the source or destination parent is
                not writable.
            ConflictError: If the destination path is already taken.

        """
        source = self._resolver.resolve(source_path)
        if source.parent_id is None:
            msg = "Cannot move root directory"
            raise InvalidArgumentError(msg)
        self._check(source, Access.WRITE)

        dest_path = normalize(dest_path)
        dest_parent_path, dest_name = split(dest_path)
        validate_name(dest_name)
        dest_parent = self._directory(dest_parent_path, what="Destination parent")
        self._check(dest_parent, Access.WRITE)

        if dest_path == source.path:
            return source
        if isinstance(source, DirectoryNode) and is_within(dest_path, source.path):
            msg = f"Cannot move {source.path} into itself"
            raise InvalidArgumentError(msg)
        if self._resolver.lookup(dest_path) is not None:
            msg = f"Already exists: {dest_path}"
            raise ConflictError(msg)

        old_path = source.path
        subtree = {node.id: node for node in self._walk(source)}
        for node in subtree.values():
            self._resolver.invalidate(node.id)

        self._unlink_from_parent(source)
        source.name = dest_name
        source.parent_id = dest_parent.id
        source.touch()
        self._repath(source, dest_parent.path, subtree)
        self._link_into(dest_parent, source)
        for node in subtree.values():
            self._resolver.cache_put(node)
        self._log(f"moved {old_path} -> {source.path}")
        return source

    def _repath(self, node: Node, parent_path: str, subtree: dict[str, Node]) -> None:
        node.path = join(parent_path, node.name)
        self._persist(node)
        if isinstance(node, DirectoryNode):
            for child_id in node.children:
                child = subtree.get(child_id)
                if child is not None:
                    self._repath(child, node.path, subtree)

    def copy_file(self, source_path: str, dest_path: str) -> Node:
        """Copy a file, or a directory recursively, to *dest_path*.

        Copies carry the source's permissions.  Children the acting user
        cannot read are skipped, exactly as ``list_directory`` skips them.
        If any child fails to copy, the partial destination tree is
        removed and the error re-raised.

        Raises:
            NotFoundError: If the source or destination parent is missing.
            InvalidArgumentError: If a directory would be copied into itself.
            PermissionDeniedError: If the source is not readable or a
                destination directory is not writable.
            ConflictError: If a destination path is already taken.

        """
        source = self._resolver.resolve(source_path)
        self._check(source, Access.READ)
        dest_path = normalize(dest_path)
        dest_parent_path, dest_name = split(dest_path)

        if isinstance(source, FileNode):
            return self.create_file(
                dest_parent_path,
                dest_name,
                source.content,
                source.mime_type,
                source.permissions,
                source.metadata,
            )

        if is_within(dest_path, source.path):
            msg = f"Cannot copy {source.path} into itself"
            raise InvalidArgumentError(msg)
        copied = self.create_directory(dest_parent_path, dest_name, source.permissions)
        try:
            for child in self.list_directory(source.path):
                self.copy_file(child.path, join(dest_path, child.name))
        except KernelError:
            self._purge(copied)
            self._log(f"copy of {source.path} aborted, rolled back {dest_path}", LogLevel.WARNING)
            raise
        return copied

    # -- Queries --------------------------------------------------------------

    def stat(self, path: str) -> Node:
        """Return the node at *path* (no permission check, like ``stat``).

        Raises:
            NotFoundError: If the path does not exist.

        """
        return self._resolver.resolve(path)

    def exists(self, path: str) -> bool:
        """Return True if a node exists at *path*."""
        return self._resolver.lookup(path) is not None

    def can_execute(self, path: str) -> bool:
        """Return True if the acting user may execute the node at *path*.

        Raises:
            NotFoundError: If the path does not exist.

        """
        return self._resolver.resolve(path).permissions.can_execute(self._current_user)

    def get_stats(self) -> FsStats:
        """Return file and directory counts and the total content size."""
        records = self._store.get_all(Collection.FILES)
        return FsStats(
            total_files=sum(1 for r in records if r["type"] == NodeType.FILE),
            total_directories=sum(1 for r in records if r["type"] == NodeType.DIRECTORY),
            total_size=sum(int(r.get("size", 0)) for r in records),
        )

    def clear_cache(self) -> None:
        """Drop every path resolver cache entry."""
        self._resolver.clear()
