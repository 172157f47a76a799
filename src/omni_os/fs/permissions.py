"""Access control for VFS nodes.

Every node carries a small access-control record instead of Unix mode
bits:

- **owner** — the user id that created the node.
- **read / write / execute** — lists of user ids granted that access.
  The wildcard ``"*"`` grants it to everyone.
- **public** — world-readable regardless of the read list.

Evaluation order for a request (first match wins):

    1. node is public        → allowed (read only)
    2. caller is the owner   → allowed
    3. caller is listed      → allowed
    4. ``"*"`` is listed     → allowed
    5. otherwise             → denied

There is no superuser bypass: even the ``system`` user only gets in
through ownership or a grant.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from omni_os.errors import PermissionDeniedError

WILDCARD = "*"


class Access(StrEnum):
    """The kind of access being requested."""

    READ = "read"
    WRITE = "write"
    EXECUTE = "execute"


@dataclass
class Permissions:
    """The access-control record attached to a node."""

    owner: str
    read: list[str] = field(default_factory=lambda: [])  # noqa: PIE807
    write: list[str] = field(default_factory=lambda: [])  # noqa: PIE807
    execute: list[str] = field(default_factory=lambda: [])  # noqa: PIE807
    public: bool = False

    @classmethod
    def private_to(cls, user: str) -> Permissions:
        """Return the default record for a node created by *user*.

        Owner is the acting user, each access list holds only that user,
        and the node is not public.
        """
        return cls(owner=user, read=[user], write=[user], execute=[user], public=False)

    @classmethod
    def open_to_all(cls, owner: str, *, public: bool = False) -> Permissions:
        """Return a record granting every access to everyone."""
        return cls(
            owner=owner,
            read=[WILDCARD],
            write=[WILDCARD],
            execute=[WILDCARD],
            public=public,
        )

    def grants(self, access: Access) -> list[str]:
        """Return the access list for *access*."""
        match access:
            case Access.READ:
                return self.read
            case Access.WRITE:
                return self.write
            case Access.EXECUTE:
                return self.execute

    def allows(self, user: str, access: Access) -> bool:
        """Return True if *user* may perform *access*."""
        if access is Access.READ and self.public:
            return True
        if user == self.owner:
            return True
        granted = self.grants(access)
        return user in granted or WILDCARD in granted

    def can_read(self, user: str) -> bool:
        """Return True if *user* may read."""
        return self.allows(user, Access.READ)

    def can_write(self, user: str) -> bool:
        """Return True if *user* may write."""
        return self.allows(user, Access.WRITE)

    def can_execute(self, user: str) -> bool:
        """Return True if *user* may execute."""
        return self.allows(user, Access.EXECUTE)

    def check(self, user: str, access: Access, *, path: str) -> None:
        """Raise unless *user* may perform *access* on the node at *path*.

        Raises:
            PermissionDeniedError: If access is denied.

        """
        if not self.allows(user, access):
            msg = f"Permission denied: {user} cannot {access} {path}"
            raise PermissionDeniedError(msg)

    def copy(self) -> Permissions:
        """Return an independent copy (access lists are not shared)."""
        return Permissions(
            owner=self.owner,
            read=list(self.read),
            write=list(self.write),
            execute=list(self.execute),
            public=self.public,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "owner": self.owner,
            "read": list(self.read),
            "write": list(self.write),
            "execute": list(self.execute),
            "public": self.public,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Permissions:
        """Deserialize a record produced by ``to_dict()``."""
        return cls(
            owner=data["owner"],
            read=list(data.get("read", [])),
            write=list(data.get("write", [])),
            execute=list(data.get("execute", [])),
            public=bool(data.get("public", False)),
        )
