"""The process table — the registry of live processes.

The table owns every live ``Process`` record and is the only place that
changes their status.  Every transition does three things in order:

    1. validate and mutate the record (via the PCB's state machine),
    2. write the record through to the entity store,
    3. notify observers registered for that event, in registration order.

Parent/child links form a forest: a process may name a live parent at
spawn time and that link never changes.  Killing a process kills its
children first, depth-first, so a subtree disappears bottom-up.

Persistence outlives the table.  Killed and crashed records stay in the
store; on ``initialize()`` any record still marked RUNNING cannot have
survived the restart, so it is reclassified as CRASHED.  That is how an
abrupt stop (power loss, closed tab) is detected.

Simulated CPU and memory usage are refreshed by ``refresh_usage()``,
which the kernel calls from its tick.  Only RUNNING processes that are
still in the table are refreshed.
"""

from __future__ import annotations

import random
from collections import defaultdict
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, TypeAlias, TypeVar

from omni_os.errors import InvalidArgumentError, NotFoundError
from omni_os.logging import LogLevel
from omni_os.process.pcb import Process, ProcessMetadata, ProcessStatus, ProcessType
from omni_os.storage.store import Collection

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from omni_os.logging import Logger
    from omni_os.storage.store import EntityStore


class ProcessEvent(StrEnum):
    """Events observers can subscribe to."""

    SPAWN = "spawn"
    KILL = "kill"
    PAUSE = "pause"
    RESUME = "resume"
    CRASH = "crash"


ProcessHandler: TypeAlias = "Callable[[Process], None]"

E = TypeVar("E", bound=StrEnum)


def _parse(enum: type[E], value: E | str, what: str) -> E:
    try:
        return enum(value)
    except ValueError as e:
        msg = f"Unknown {what}: {value}"
        raise InvalidArgumentError(msg) from e


@dataclass(frozen=True)
class ProcessStats:
    """Counts and simulated usage totals across live processes."""

    total: int
    running: int
    paused: int
    crashed: int
    total_cpu: float
    total_memory: float


class ProcessTable:
    """In-memory registry of live processes, written through to the store."""

    def __init__(
        self,
        store: EntityStore,
        *,
        logger: Logger | None = None,
        rng: random.Random | None = None,
    ) -> None:
        """Create an empty table over *store*.

        Args:
            store: The entity store records are persisted to.
            logger: Optional system log.
            rng: Random source for simulated usage (seed it in tests).

        """
        self._store = store
        self._logger = logger
        self._rng = rng or random.Random()  # noqa: S311
        self._processes: dict[str, Process] = {}
        self._handlers: dict[ProcessEvent, list[ProcessHandler]] = defaultdict(list)

    def _log(self, message: str, level: LogLevel = LogLevel.INFO) -> None:
        if self._logger is not None:
            self._logger.log(level, message, source="process")

    def _persist(self, process: Process) -> None:
        self._store.put(Collection.PROCESSES, process.to_dict())

    def _require(self, pid: str) -> Process:
        process = self._processes.get(pid)
        if process is None:
            msg = f"Process not found: {pid}"
            raise NotFoundError(msg)
        return process

    # -- Boot -----------------------------------------------------------------

    def initialize(self) -> list[Process]:
        """Reclassify persisted RUNNING records as CRASHED.

        Returns:
            The records that were reclassified.

        """
        lost: list[Process] = []
        for record in self._store.get_all(Collection.PROCESSES):
            if record.get("status") != ProcessStatus.RUNNING:
                continue
            process = Process.from_dict(record)
            process.mark_lost()
            self._persist(process)
            lost.append(process)
        for process in lost:
            self._log(
                f"found {process.name} ({process.pid}) running at boot, marked crashed",
                LogLevel.WARNING,
            )
        return lost

    # -- Lifecycle ------------------------------------------------------------

    def spawn(
        self,
        name: str,
        process_type: ProcessType | str,
        metadata: Mapping[str, object] | None = None,
        parent_id: str | None = None,
    ) -> Process:
        """Create and register a RUNNING process.

        Args:
            name: Human-readable label.
            process_type: ``app``, ``service`` or ``agent``.
            metadata: Loose metadata (``app_id``, ``permissions``,
                ``environment`` and any extra keys).
            parent_id: pid of a live parent process, if any.

        Raises:
            NotFoundError: If *parent_id* is not a live process.
            InvalidArgumentError: If the metadata holds unsupported values.
            InvalidArgumentError: If *process_type* is not a known type.

        """
        kind = _parse(ProcessType, process_type, "process type")
        if parent_id is not None:
            self._require(parent_id)
        process = Process(
            name=name,
            process_type=kind,
            metadata=ProcessMetadata.from_mapping(metadata),
            parent_id=parent_id,
        )
        self._processes[process.pid] = process
        self._persist(process)
        self._emit(ProcessEvent.SPAWN, process)
        self.refresh_usage(process.pid)
        self._log(f"spawned {name} ({process.pid})")
        return process

    def kill(self, pid: str, *, force: bool = False) -> None:
        """Stop a process and, depth-first, all of its children.

        Children that vanish mid-cascade (for instance killed by an
        observer) are skipped.  The first failure aborts the cascade;
        processes already killed stay killed.

        Args:
            pid: The process to kill.
            force: Record the kill as forced (propagates to children).

        Raises:
            NotFoundError: If *pid* is not a live process.

        """
        process = self._require(pid)
        self._kill(process, force=force)

    def _kill(self, process: Process, *, force: bool) -> None:
        for child in self.get_child_processes(process.pid):
            if child.pid in self._processes:
                self._kill(child, force=force)
        process.stop()
        if force:
            process.metadata.extra["forced"] = True
        self._persist(process)
        del self._processes[process.pid]
        self._emit(ProcessEvent.KILL, process)
        self._log(f"killed {process.name} ({process.pid}){' [forced]' if force else ''}")

    def pause(self, pid: str) -> Process:
        """RUNNING → PAUSED.

        Raises:
            NotFoundError: If *pid* is not a live process.
            ConflictError: If the process is not running.

        """
        process = self._require(pid)
        process.pause()
        self._persist(process)
        self._emit(ProcessEvent.PAUSE, process)
        return process

    def resume(self, pid: str) -> Process:
        """PAUSED → RUNNING.

        Raises:
            NotFoundError: If *pid* is not a live process.
            ConflictError: If the process is not paused.

        """
        process = self._require(pid)
        process.resume()
        self._persist(process)
        self._emit(ProcessEvent.RESUME, process)
        self.refresh_usage(pid)
        return process

    def crash(self, pid: str, error: BaseException | str | None = None) -> Process:
        """Mark a process CRASHED, recording the failure details.

        The crashed record stays in the table until it is killed or
        ``cleanup_crashed_processes()`` runs.

        Raises:
            NotFoundError: If *pid* is not a live process.
            ConflictError: If the process is already stopped or crashed.

        """
        process = self._require(pid)
        if isinstance(error, BaseException):
            cause = error.__cause__ or error.__context__
            process.crash(
                error=str(error) or type(error).__name__,
                cause=repr(cause) if cause is not None else type(error).__name__,
            )
        else:
            process.crash(error=error)
        self._persist(process)
        self._emit(ProcessEvent.CRASH, process)
        self._log(f"crashed {process.name} ({pid})", LogLevel.WARNING)
        return process

    def set_priority(self, pid: str, priority: int) -> Process:
        """Set a process's priority, clamped to 0-10.

        Raises:
            NotFoundError: If *pid* is not a live process.

        """
        process = self._require(pid)
        process.priority = priority
        self._persist(process)
        return process

    def attach_window(self, pid: str, window_id: str) -> Process:
        """Record the window a process draws into.

        Raises:
            NotFoundError: If *pid* is not a live process.

        """
        process = self._require(pid)
        process.metadata.window_id = window_id
        self._persist(process)
        return process

    def kill_all(self) -> None:
        """Kill every live process (roots first, cascading to children)."""
        for pid in list(self._processes):
            if pid in self._processes:
                self.kill(pid, force=True)

    def cleanup_crashed_processes(self) -> int:
        """Drop crashed processes from the table and the store.

        Returns:
            How many were removed.

        """
        crashed = self.get_processes_by_status(ProcessStatus.CRASHED)
        for process in crashed:
            del self._processes[process.pid]
            self._store.delete(Collection.PROCESSES, process.pid)
        self._log(f"cleaned up {len(crashed)} crashed processes")
        return len(crashed)

    # -- Simulated resource usage ---------------------------------------------

    def refresh_usage(self, pid: str | None = None) -> int:
        """Recompute simulated CPU and memory usage.

        Args:
            pid: Refresh one process, or every running process if None.
                A pid that is gone or not running is skipped silently.

        Returns:
            How many processes were refreshed.

        """
        if pid is not None:
            targets = [p for p in (self._processes.get(pid),) if p is not None]
        else:
            targets = list(self._processes.values())
        refreshed = 0
        for process in targets:
            if process.status is not ProcessStatus.RUNNING:
                continue
            process.cpu_usage = self._rng.random() * 20 + process.priority * 2
            process.memory_usage = self._rng.random() * 100 + 50
            refreshed += 1
        return refreshed

    # -- Queries --------------------------------------------------------------

    def get_process(self, pid: str) -> Process | None:
        """Return the live process with *pid*, or None."""
        return self._processes.get(pid)

    def get_all_processes(self) -> list[Process]:
        """Return every live process in spawn order."""
        return list(self._processes.values())

    def get_processes_by_type(self, process_type: ProcessType) -> list[Process]:
        """Return live processes of one type."""
        return [p for p in self._processes.values() if p.type is process_type]

    def get_processes_by_status(self, status: ProcessStatus) -> list[Process]:
        """Return live processes in one status."""
        return [p for p in self._processes.values() if p.status is status]

    def get_running_processes(self) -> list[Process]:
        """Return live processes that are RUNNING."""
        return self.get_processes_by_status(ProcessStatus.RUNNING)

    def get_process_by_app_id(self, app_id: str) -> Process | None:
        """Return the running process for *app_id*, or None."""
        return next(
            (
                p
                for p in self._processes.values()
                if p.app_id == app_id and p.status is ProcessStatus.RUNNING
            ),
            None,
        )

    def get_child_processes(self, parent_id: str) -> list[Process]:
        """Return the direct children of *parent_id*."""
        return [p for p in self._processes.values() if p.parent_id == parent_id]

    def get_system_stats(self) -> ProcessStats:
        """Return counts by status and summed simulated usage."""
        processes = list(self._processes.values())
        return ProcessStats(
            total=len(processes),
            running=sum(1 for p in processes if p.status is ProcessStatus.RUNNING),
            paused=sum(1 for p in processes if p.status is ProcessStatus.PAUSED),
            crashed=sum(1 for p in processes if p.status is ProcessStatus.CRASHED),
            total_cpu=sum(p.cpu_usage for p in processes),
            total_memory=sum(p.memory_usage for p in processes),
        )

    def __len__(self) -> int:
        """Return the number of live processes."""
        return len(self._processes)

    # -- Observers ------------------------------------------------------------

    def subscribe(self, event: ProcessEvent | str, handler: ProcessHandler) -> None:
        """Call *handler* with the process whenever *event* happens."""
        self._handlers[_parse(ProcessEvent, event, "process event")].append(handler)

    def unsubscribe(self, event: ProcessEvent | str, handler: ProcessHandler) -> None:
        """Stop calling *handler* for *event*.  Unknown handlers are ignored."""
        handlers = self._handlers[_parse(ProcessEvent, event, "process event")]
        if handler in handlers:
            handlers.remove(handler)

    def _emit(self, event: ProcessEvent, process: Process) -> None:
        for handler in list(self._handlers[event]):
            handler(process)
