"""Error kinds shared by every subsystem.

Callers (the UI layer, the web surface, tests) need a *stable* way to
tell failures apart without parsing messages.  Every error raised by
the core carries an ``ErrorKind``:

- **NOT_FOUND** — a process, window, file, directory or app is missing.
- **PERMISSION_DENIED** — the acting user lacks a read/write/execute grant.
- **CONFLICT** — a name is already taken among siblings, or a state
  transition is illegal (e.g. resuming a process that is not paused).
- **INVALID_ARGUMENT** — a value is out of range and has no natural clamp.
- **PERSISTENCE** — the entity store rejected a read or write.

The concrete classes also inherit from the closest built-in where one
exists, so ``except LookupError`` and ``except ValueError`` keep working.
"""

from enum import StrEnum
from typing import ClassVar


class ErrorKind(StrEnum):
    """The stable category of a core failure."""

    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    CONFLICT = "conflict"
    INVALID_ARGUMENT = "invalid_argument"
    PERSISTENCE = "persistence"


class KernelError(Exception):
    """Base class for every error the core raises on purpose."""

    kind: ClassVar[ErrorKind]

    @property
    def message(self) -> str:
        """Return the human-readable description."""
        return str(self)


class NotFoundError(KernelError, LookupError):
    """Raise when a referenced id or path does not exist."""

    kind = ErrorKind.NOT_FOUND


class PermissionDeniedError(KernelError):
    """Raise when the acting user lacks the required grant."""

    kind = ErrorKind.PERMISSION_DENIED


class ConflictError(KernelError):
    """Raise on a duplicate name or an illegal state transition."""

    kind = ErrorKind.CONFLICT


class InvalidArgumentError(KernelError, ValueError):
    """Raise when an argument is out of range and cannot be clamped."""

    kind = ErrorKind.INVALID_ARGUMENT


class PersistenceError(KernelError):
    """Raise when the entity store rejects a read or write."""

    kind = ErrorKind.PERSISTENCE
