"""Users — who is sitting at the desktop.

Every VFS permission check is made on behalf of a user id, so the kernel
needs to know who is logged in.  This module keeps the user records:

**User** — an identity with a string ``id`` (which doubles as the owner
    id on files), a ``username`` for lookups, and a human-facing
    ``display_name``.  ``last_seen_at`` is bumped on every login.

**UserManager** — a registry of users backed by the entity store's
    ``users`` collection.  ``load_or_create`` is the login path: an
    unknown id is registered on first sight rather than rejected.

A user counts as *active* if they were seen within the last five
minutes (the window is configurable).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from omni_os.errors import InvalidArgumentError
from omni_os.logging import LogLevel
from omni_os.storage.store import Collection

if TYPE_CHECKING:
    from omni_os.logging import Logger
    from omni_os.metadata import Metadata
    from omni_os.storage.store import EntityStore

ACTIVE_WINDOW_SECONDS = 300.0


class Role(StrEnum):
    """What a user is allowed to do beyond their own files."""

    USER = "user"
    DEVELOPER = "developer"
    ADMIN = "admin"


def _default_preferences() -> Metadata:
    return {
        "theme": "dark",
        "language": "en",
        "notifications": True,
        "privacy": {
            "profile_visibility": "public",
            "allow_messages": True,
            "show_online_status": True,
        },
    }


def _now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass
class User:
    """An identity in the system."""

    id: str
    username: str
    display_name: str
    avatar: str = "👤"
    role: Role = Role.USER
    joined_at: datetime = field(default_factory=_now)
    last_seen_at: datetime = field(default_factory=_now)
    preferences: Metadata = field(default_factory=_default_preferences)
    metadata: Metadata = field(default_factory=lambda: {})  # noqa: PIE807

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a store record."""
        return {
            "id": self.id,
            "username": self.username,
            "display_name": self.display_name,
            "avatar": self.avatar,
            "role": self.role.value,
            "joined_at": self.joined_at.isoformat(),
            "last_seen_at": self.last_seen_at.isoformat(),
            "preferences": dict(self.preferences),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> User:
        """Rebuild a user from a store record."""
        return cls(
            id=data["id"],
            username=data["username"],
            display_name=data["display_name"],
            avatar=data.get("avatar", "👤"),
            role=Role(data.get("role", Role.USER)),
            joined_at=datetime.fromisoformat(data["joined_at"]),
            last_seen_at=datetime.fromisoformat(data["last_seen_at"]),
            preferences=dict(data.get("preferences", {})),
            metadata=dict(data.get("metadata", {})),
        )


class UserManager:
    """Registry of users — the desktop's ``/etc/passwd``."""

    def __init__(self, store: EntityStore, *, logger: Logger | None = None) -> None:
        """Create a manager over *store*."""
        self._store = store
        self._logger = logger

    def load_or_create(self, user_id: str, *, now: datetime | None = None) -> tuple[User, bool]:
        """Log a user in, registering them on first sight.

        Args:
            user_id: The user's id (also used as the username).
            now: The login time (defaults to the wall clock).

        Returns:
            The user and whether they were created by this call.

        Raises:
            InvalidArgumentError: If *user_id* is empty or contains a slash.

        """
        if not user_id or "/" in user_id:
            msg = f"Invalid user id: {user_id!r}"
            raise InvalidArgumentError(msg)
        now = now or _now()
        record = self._store.get(Collection.USERS, user_id)
        created = record is None
        if record is None:
            user = User(
                id=user_id,
                username=user_id,
                display_name=user_id[:1].upper() + user_id[1:],
                joined_at=now,
                last_seen_at=now,
            )
        else:
            user = User.from_dict(record)
            user.last_seen_at = now
        self._store.put(Collection.USERS, user.to_dict())
        if self._logger is not None:
            action = "created user" if created else "logged in"
            self._logger.log(LogLevel.INFO, f"{action} {user_id}", source="users", user=user_id)
        return user, created

    def get_user(self, user_id: str) -> User | None:
        """Return the user with *user_id*, or None."""
        record = self._store.get(Collection.USERS, user_id)
        return User.from_dict(record) if record is not None else None

    def get_user_by_username(self, username: str) -> User | None:
        """Return the user with *username*, or None."""
        record = self._store.get_one_by_index(Collection.USERS, "username", username)
        return User.from_dict(record) if record is not None else None

    def list_users(self) -> list[User]:
        """Return all users."""
        return [User.from_dict(r) for r in self._store.get_all(Collection.USERS)]

    def active_users(
        self,
        *,
        now: datetime | None = None,
        window: float = ACTIVE_WINDOW_SECONDS,
    ) -> list[User]:
        """Return users seen within the last *window* seconds."""
        now = now or _now()
        return [
            user
            for user in self.list_users()
            if (now - user.last_seen_at).total_seconds() < window
        ]
