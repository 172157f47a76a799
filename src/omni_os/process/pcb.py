"""Process records and their lifecycle state machine.

A process here is a tracked unit of work: an app instance, a background
service, or an autonomous agent.  Nothing actually executes; the record
exists so the desktop can show, pause, resume, crash and kill it.

State machine::

    spawn → RUNNING ⇄ PAUSED
              │         │
              ├─────────┴──→ CRASHED   (crash: failure details recorded)
              │
    any ──────┴────────────→ STOPPED   (kill)

STOPPED and CRASHED are terminal for pause/resume/crash.  ``stop()`` is
allowed from any state because killing must always succeed.

Each transition method checks the source state first and raises
``ConflictError`` on an illegal move, so the process table never has to
repeat those checks.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from omni_os.errors import ConflictError
from omni_os.metadata import Metadata, validate_metadata

if TYPE_CHECKING:
    from collections.abc import Mapping

MIN_PRIORITY = 0
MAX_PRIORITY = 10
DEFAULT_PRIORITY = 5


class ProcessType(StrEnum):
    """What kind of work a process represents."""

    APP = "app"
    SERVICE = "service"
    AGENT = "agent"


class ProcessStatus(StrEnum):
    """Lifecycle states of a process."""

    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"
    CRASHED = "crashed"


TERMINAL_STATES = frozenset({ProcessStatus.STOPPED, ProcessStatus.CRASHED})


def clamp_priority(priority: int) -> int:
    """Clamp *priority* into the 0-10 range."""
    return max(MIN_PRIORITY, min(MAX_PRIORITY, priority))


@dataclass(frozen=True)
class CrashInfo:
    """Failure details captured when a process crashes."""

    error: str | None
    cause: str | None
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "error": self.error,
            "cause": self.cause,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CrashInfo:
        """Deserialize a dict produced by ``to_dict()``."""
        return cls(
            error=data.get("error"),
            cause=data.get("cause"),
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


_KNOWN_METADATA_KEYS = frozenset({"app_id", "window_id", "permissions", "environment"})


@dataclass
class ProcessMetadata:
    """Typed metadata for a process.

    The well-known keys get their own fields; anything else lands in
    ``extra``, restricted to the metadata value union.
    """

    app_id: str | None = None
    window_id: str | None = None
    permissions: list[str] = field(default_factory=lambda: [])  # noqa: PIE807
    environment: Metadata = field(default_factory=lambda: {})  # noqa: PIE807
    crash_info: CrashInfo | None = None
    extra: Metadata = field(default_factory=lambda: {})  # noqa: PIE807

    @classmethod
    def from_mapping(cls, data: Mapping[str, object] | None) -> ProcessMetadata:
        """Build metadata from a loose mapping (as passed to ``spawn``).

        Raises:
            InvalidArgumentError: If any value is outside the metadata union.

        """
        bag = validate_metadata(data)
        extra = {k: v for k, v in bag.items() if k not in _KNOWN_METADATA_KEYS}
        environment = bag.get("environment") or {}
        permissions = bag.get("permissions") or []
        app_id = bag.get("app_id")
        window_id = bag.get("window_id")
        return cls(
            app_id=str(app_id) if app_id is not None else None,
            window_id=str(window_id) if window_id is not None else None,
            permissions=[str(p) for p in permissions] if isinstance(permissions, list) else [],
            environment=dict(environment) if isinstance(environment, dict) else {},
            extra=extra,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "app_id": self.app_id,
            "window_id": self.window_id,
            "permissions": list(self.permissions),
            "environment": dict(self.environment),
            "crash_info": self.crash_info.to_dict() if self.crash_info else None,
            "extra": dict(self.extra),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProcessMetadata:
        """Deserialize a dict produced by ``to_dict()``."""
        crash = data.get("crash_info")
        return cls(
            app_id=data.get("app_id"),
            window_id=data.get("window_id"),
            permissions=list(data.get("permissions", [])),
            environment=dict(data.get("environment", {})),
            crash_info=CrashInfo.from_dict(crash) if crash else None,
            extra=dict(data.get("extra", {})),
        )


class Process:
    """A tracked process record (the desktop's PCB).

    Identity (``pid``, ``name``, ``type``, ``parent_id``, ``started_at``)
    is fixed at creation.  ``status`` only changes through the transition
    methods.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        name: str,
        process_type: ProcessType,
        metadata: ProcessMetadata | None = None,
        parent_id: str | None = None,
        priority: int = DEFAULT_PRIORITY,
        pid: str | None = None,
        status: ProcessStatus = ProcessStatus.RUNNING,
        started_at: datetime | None = None,
    ) -> None:
        """Create a process record (RUNNING unless restored from storage)."""
        self._pid: str = pid or str(uuid4())
        self._name = name
        self._type = process_type
        self._status = status
        self._priority = clamp_priority(priority)
        self._parent_id = parent_id
        self._started_at = started_at or datetime.now(tz=UTC)
        self.cpu_usage: float = 0.0
        self.memory_usage: float = 0.0
        self.metadata: ProcessMetadata = metadata or ProcessMetadata()

    def __repr__(self) -> str:
        """Return a readable representation."""
        return f"Process(pid={self._pid!r}, name={self._name!r}, status={self._status})"

    @property
    def pid(self) -> str:
        """Return the unique process id."""
        return self._pid

    @property
    def name(self) -> str:
        """Return the process name."""
        return self._name

    @property
    def type(self) -> ProcessType:
        """Return the process type."""
        return self._type

    @property
    def status(self) -> ProcessStatus:
        """Return the current status."""
        return self._status

    @property
    def priority(self) -> int:
        """Return the priority (0-10)."""
        return self._priority

    @priority.setter
    def priority(self, value: int) -> None:
        """Set the priority, clamped to 0-10."""
        self._priority = clamp_priority(value)

    @property
    def parent_id(self) -> str | None:
        """Return the parent's pid, or None for a root process."""
        return self._parent_id

    @property
    def started_at(self) -> datetime:
        """Return when the process was spawned."""
        return self._started_at

    @property
    def app_id(self) -> str | None:
        """Return the owning app's id, if this is an app process."""
        return self.metadata.app_id

    def _transition(
        self,
        action: str,
        expected: frozenset[ProcessStatus],
        target: ProcessStatus,
    ) -> None:
        if self._status not in expected:
            allowed = " or ".join(sorted(expected))
            msg = f"Cannot {action}: process {self._pid} is {self._status}, expected {allowed}"
            raise ConflictError(msg)
        self._status = target

    def pause(self) -> None:
        """RUNNING → PAUSED."""
        self._transition("pause", frozenset({ProcessStatus.RUNNING}), ProcessStatus.PAUSED)

    def resume(self) -> None:
        """PAUSED → RUNNING."""
        self._transition("resume", frozenset({ProcessStatus.PAUSED}), ProcessStatus.RUNNING)

    def crash(self, error: str | None = None, cause: str | None = None) -> None:
        """RUNNING | PAUSED → CRASHED, recording the failure."""
        self._transition(
            "crash",
            frozenset({ProcessStatus.RUNNING, ProcessStatus.PAUSED}),
            ProcessStatus.CRASHED,
        )
        self.metadata.crash_info = CrashInfo(
            error=error,
            cause=cause,
            timestamp=datetime.now(tz=UTC),
        )

    def stop(self) -> None:
        """Any state → STOPPED."""
        self._status = ProcessStatus.STOPPED

    def mark_lost(self) -> None:
        """Reclassify a RUNNING record found after a restart as CRASHED."""
        self._transition("recover", frozenset({ProcessStatus.RUNNING}), ProcessStatus.CRASHED)
        self.metadata.crash_info = CrashInfo(
            error="Process was running when the system stopped",
            cause="restart",
            timestamp=datetime.now(tz=UTC),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a store record."""
        return {
            "pid": self._pid,
            "name": self._name,
            "type": self._type.value,
            "status": self._status.value,
            "priority": self._priority,
            "parent_id": self._parent_id,
            "started_at": self._started_at.isoformat(),
            "cpu_usage": self.cpu_usage,
            "memory_usage": self.memory_usage,
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Process:
        """Rebuild a process from a store record."""
        process = cls(
            pid=data["pid"],
            name=data["name"],
            process_type=ProcessType(data["type"]),
            status=ProcessStatus(data["status"]),
            priority=int(data.get("priority", DEFAULT_PRIORITY)),
            parent_id=data.get("parent_id"),
            started_at=datetime.fromisoformat(data["started_at"]),
            metadata=ProcessMetadata.from_dict(data.get("metadata", {})),
        )
        process.cpu_usage = float(data.get("cpu_usage", 0.0))
        process.memory_usage = float(data.get("memory_usage", 0.0))
        return process
