"""System log — a structured audit trail shared by every subsystem.

The kernel creates one ``Logger`` at boot and hands it to the VFS, the
process table, the window registry, the app manager and the user
manager.  Each subsystem writes with its own ``source`` tag, so the log
reads like a desktop's event viewer:

    [INFO] process: spawned storage-monitor (3f2c...)
    [WARNING] process: crashed calc (9a1e...): division by zero
    [INFO] window: closed last window of app 1b7d...

The buffer is a ring: once ``capacity`` entries are held, each new
entry pushes out the oldest one.  A long-running desktop keeps its
recent history without growing without bound.

- **LogLevel** — severity levels ordered for filtering (DEBUG < ERROR).
- **LogEntry** — one immutable record (level, message, source, user, time).
- **Logger** — a bounded buffer queried by level, source, user and time.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import IntEnum
from typing import Any

from omni_os.errors import InvalidArgumentError

SYSTEM_USER = "system"
DEFAULT_CAPACITY = 1000


class LogLevel(IntEnum):
    """Severity levels for log entries.

    IntEnum so minimum-level filtering is a plain ``>=`` comparison.
    """

    DEBUG = 0
    INFO = 1
    WARNING = 2
    ERROR = 3

    @classmethod
    def parse(cls, name: str) -> LogLevel:
        """Return the level called *name*, ignoring case.

        Raises:
            InvalidArgumentError: If no level has that name.

        """
        try:
            return cls[name.upper()]
        except KeyError as e:
            msg = f"Unknown log level: {name}"
            raise InvalidArgumentError(msg) from e


@dataclass(frozen=True)
class LogEntry:
    """A single structured log record.

    Attributes:
        level: The severity of this event.
        message: A human-readable description of what happened.
        source: The subsystem that generated the event (e.g. "vfs").
        user: The user id that triggered the event.
        timestamp: When the event was recorded (UTC).

    """

    level: LogLevel
    message: str
    source: str
    user: str = SYSTEM_USER
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    def __str__(self) -> str:
        """Format as ``[LEVEL] source: message``."""
        return f"[{self.level.name}] {self.source}: {self.message}"

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the HTTP API."""
        return {
            "level": self.level.name.lower(),
            "message": self.message,
            "source": self.source,
            "user": self.user,
            "timestamp": self.timestamp.isoformat(),
        }


class Logger:
    """Bounded log buffer, oldest entries first."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        """Create an empty logger holding at most *capacity* entries.

        Raises:
            InvalidArgumentError: If *capacity* is not positive.

        """
        if capacity <= 0:
            msg = f"Log capacity must be positive, got {capacity}"
            raise InvalidArgumentError(msg)
        self._entries: deque[LogEntry] = deque(maxlen=capacity)
        self._dropped = 0

    @property
    def capacity(self) -> int:
        """Return the most entries the buffer keeps."""
        assert self._entries.maxlen is not None  # noqa: S101
        return self._entries.maxlen

    @property
    def dropped(self) -> int:
        """Return how many entries were pushed out since the last clear."""
        return self._dropped

    @property
    def entries(self) -> list[LogEntry]:
        """Return the retained entries in chronological order."""
        return list(self._entries)

    def log(
        self,
        level: LogLevel,
        message: str,
        *,
        source: str,
        user: str = SYSTEM_USER,
    ) -> None:
        """Append a new entry, evicting the oldest when full.

        Args:
            level: Severity of the event.
            message: Human-readable event description.
            source: Subsystem that generated the event.
            user: User id associated with the event.

        """
        if len(self._entries) == self.capacity:
            self._dropped += 1
        self._entries.append(LogEntry(level=level, message=message, source=source, user=user))

    def filter(
        self,
        *,
        min_level: LogLevel | None = None,
        source: str | None = None,
        user: str | None = None,
        since: datetime | None = None,
    ) -> list[LogEntry]:
        """Return entries matching every given criterion.

        Args:
            min_level: If set, only entries at or above this level.
            source: If set, only entries from this subsystem.
            user: If set, only entries attributed to this user.
            since: If set, only entries recorded at or after this instant.
                A naive datetime is taken to be UTC.

        """
        if since is not None and since.tzinfo is None:
            since = since.replace(tzinfo=UTC)

        def keep(entry: LogEntry) -> bool:
            return (
                (min_level is None or entry.level >= min_level)
                and (source is None or entry.source == source)
                and (user is None or entry.user == user)
                and (since is None or entry.timestamp >= since)
            )

        return [e for e in self._entries if keep(e)]

    def tail(self, count: int = 20) -> list[LogEntry]:
        """Return the most recent *count* entries, oldest first."""
        if count <= 0:
            return []
        return list(self._entries)[-count:]

    def clear(self) -> None:
        """Remove all log entries and reset the dropped counter."""
        self._entries.clear()
        self._dropped = 0

    def __len__(self) -> int:
        """Return the number of retained entries."""
        return len(self._entries)
