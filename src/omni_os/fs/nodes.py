"""VFS nodes — files and directories.

A node is identified by an opaque ``id`` that never changes; its
``name``, ``path`` and ``parent_id`` change only when it is moved.
Unlike the inode model, the name *does* live on the node: the VFS is a
strict tree (no hard links), so every node has exactly one name and one
parent (the root has neither).

- **FileNode** — holds ``content`` (text or bytes) and a ``mime_type``.
  ``size`` is always derived from the content: UTF-8 bytes for text,
  raw length for binary.
- **DirectoryNode** — holds ``children``, an insertion-ordered list of
  child ids.  Sorting happens only when a directory is listed.

Both serialise to plain dicts for the entity store.  Binary content is
base64 encoded so records stay JSON-compatible.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, TypeAlias
from uuid import uuid4

from omni_os.fs.permissions import Permissions
from omni_os.metadata import Metadata

Content: TypeAlias = str | bytes
Node: TypeAlias = "FileNode | DirectoryNode"

DEFAULT_MIME_TYPE = "text/plain"


class NodeType(StrEnum):
    """The kind of object a node represents."""

    FILE = "file"
    DIRECTORY = "directory"


def new_node_id() -> str:
    """Return a fresh opaque node id."""
    return str(uuid4())


def _now() -> datetime:
    return datetime.now(tz=UTC)


def content_size(content: Content) -> int:
    """Return the stored size of *content* in bytes."""
    if isinstance(content, str):
        return len(content.encode("utf-8"))
    return len(content)


@dataclass
class _NodeBase:
    """Fields shared by files and directories."""

    name: str
    path: str
    parent_id: str | None
    permissions: Permissions
    id: str = field(default_factory=new_node_id)
    created_at: datetime = field(default_factory=_now)
    modified_at: datetime = field(default_factory=_now)
    metadata: Metadata = field(default_factory=lambda: {})  # noqa: PIE807

    def touch(self) -> None:
        """Mark the node as modified now."""
        self.modified_at = _now()

    def _base_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "path": self.path,
            "parent_id": self.parent_id,
            "permissions": self.permissions.to_dict(),
            "created_at": self.created_at.isoformat(),
            "modified_at": self.modified_at.isoformat(),
            "metadata": dict(self.metadata),
        }


@dataclass
class FileNode(_NodeBase):
    """A file — a leaf node with content."""

    content: Content = ""
    mime_type: str = DEFAULT_MIME_TYPE

    @property
    def node_type(self) -> NodeType:
        """Return ``NodeType.FILE``."""
        return NodeType.FILE

    @property
    def size(self) -> int:
        """Return the content size in bytes."""
        return content_size(self.content)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a store record."""
        record = self._base_dict()
        binary = isinstance(self.content, bytes)
        record.update(
            {
                "type": NodeType.FILE.value,
                "size": self.size,
                "mime_type": self.mime_type,
                "encoding": "base64" if binary else "text",
                "content": (
                    base64.b64encode(self.content).decode("ascii")
                    if isinstance(self.content, bytes)
                    else self.content
                ),
            }
        )
        return record


@dataclass
class DirectoryNode(_NodeBase):
    """A directory — an ordered list of child ids."""

    children: list[str] = field(default_factory=lambda: [])  # noqa: PIE807

    @property
    def node_type(self) -> NodeType:
        """Return ``NodeType.DIRECTORY``."""
        return NodeType.DIRECTORY

    @property
    def size(self) -> int:
        """Directories have no content of their own."""
        return 0

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a store record."""
        record = self._base_dict()
        record.update(
            {"type": NodeType.DIRECTORY.value, "size": 0, "children": list(self.children)}
        )
        return record


def node_from_record(record: dict[str, Any]) -> Node:
    """Rebuild a node from a store record produced by ``to_dict()``."""
    common: dict[str, Any] = {
        "id": record["id"],
        "name": record["name"],
        "path": record["path"],
        "parent_id": record["parent_id"],
        "permissions": Permissions.from_dict(record["permissions"]),
        "created_at": datetime.fromisoformat(record["created_at"]),
        "modified_at": datetime.fromisoformat(record["modified_at"]),
        "metadata": dict(record.get("metadata", {})),
    }
    if record["type"] == NodeType.DIRECTORY:
        return DirectoryNode(children=list(record.get("children", [])), **common)
    raw = record.get("content", "")
    content: Content = base64.b64decode(raw) if record.get("encoding") == "base64" else raw
    return FileNode(
        content=content,
        mime_type=record.get("mime_type", DEFAULT_MIME_TYPE),
        **common,
    )
