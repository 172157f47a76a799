"""The kernel — core of the desktop operating system.

The kernel owns every subsystem and sequences their lifecycle with an
explicit state machine:

    SHUTDOWN  →  BOOTING  →  RUNNING  →  SHUTTING_DOWN  →  SHUTDOWN

Boot sequence (order matters):
    0. Logger — capture events from the start.
    1. Storage — every other subsystem persists through it.
    2. User — identity before any permission check.
    3. File system — mount the tree and the user's home directory.
    4. Process table — reclassify processes lost in the last stop.
    5. System services — the storage monitor and process supervisor.
    Then the app layer: app registry, window registry, app manager and
    the built-in apps.

Any failure during boot tears down what was started, returns the kernel
to SHUTDOWN and re-raises: the desktop never runs half-booted.

The entity store outlives a shutdown.  Files, users, apps and stopped
process records survive a reboot; windows and live processes do not.

There are no background threads.  Periodic work (the simulated resource
usage refresh) is driven by ``tick()``, the way a timer interrupt drives
a real scheduler.
"""

from __future__ import annotations

import random
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from time import monotonic
from typing import TYPE_CHECKING

from omni_os.apps.manager import AppManager
from omni_os.apps.registry import AppRegistry
from omni_os.config import SystemConfig
from omni_os.errors import ConflictError
from omni_os.fs.vfs import FsStats, VirtualFileSystem
from omni_os.logging import Logger, LogLevel
from omni_os.process.pcb import ProcessStatus, ProcessType
from omni_os.process.table import ProcessStats, ProcessTable
from omni_os.storage.store import RESETTABLE, EntityStore
from omni_os.users import User, UserManager
from omni_os.windows.registry import WindowRegistry

if TYPE_CHECKING:
    from collections.abc import Callable

SYSTEM_SERVICES: tuple[tuple[str, dict[str, object]], ...] = (
    (
        "storage-monitor",
        {"permissions": ["system.admin"], "environment": {"interval": 60000}},
    ),
    (
        "process-supervisor",
        {"permissions": ["system.admin"], "environment": {"cleanup_interval": 300000}},
    ),
)

_STORAGE_WARNING = 0.7
_STORAGE_CRITICAL = 0.9
_CRASHED_WARNING = 0.1
_CRASHED_CRITICAL = 0.3


class KernelState(StrEnum):
    """Represent the lifecycle phases of the kernel."""

    SHUTDOWN = "shutdown"
    BOOTING = "booting"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"


class Health(StrEnum):
    """Overall verdict of ``run_diagnostics``."""

    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class SystemStats:
    """A snapshot of the whole system for dashboards."""

    total_processes: int
    processes_by_status: dict[str, int]
    active_apps: int
    active_agents: int
    storage_used: int
    storage_available: int
    total_files: int
    total_directories: int
    total_users: int
    active_users: int
    uptime: float
    last_boot_at: datetime | None


@dataclass(frozen=True)
class Diagnostics:
    """Health report combining storage, file system and process figures.

    ``storage_ratio`` is used/quota; ``crashed_ratio`` is crashed/live
    processes.  Either crossing its threshold degrades ``overall``.
    """

    storage: dict[str, int]
    filesystem: FsStats
    processes: ProcessStats
    storage_ratio: float
    crashed_ratio: float
    overall: Health


class Kernel:
    """The central coordinator of the desktop operating system.

    Subsystem references are None when the kernel is not running, and
    are created during boot.  The entity store is created once and kept
    across reboots.
    """

    def __init__(
        self,
        *,
        store: EntityStore | None = None,
        config: SystemConfig | None = None,
        rng: random.Random | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Create a kernel in the SHUTDOWN state.

        Args:
            store: The entity store to boot from.  A fresh in-memory
                store is created if omitted.
            config: Tunables (defaults to ``SystemConfig()``).
            rng: Random source shared by the process table and the
                window registry (seed it for reproducible runs).
            sleep: Called with ``config.reboot_delay`` during reboot.

        """
        self._config = config or SystemConfig()
        self._store = store or EntityStore(quota=self._config.storage_quota)
        self._rng = rng or random.Random()  # noqa: S311
        self._sleep = sleep
        self._state: KernelState = KernelState.SHUTDOWN
        self._boot_time: float | None = None
        self._boot_at: datetime | None = None
        self._logger: Logger | None = None
        self._vfs: VirtualFileSystem | None = None
        self._processes: ProcessTable | None = None
        self._users: UserManager | None = None
        self._apps: AppRegistry | None = None
        self._windows: WindowRegistry | None = None
        self._app_manager: AppManager | None = None
        self._current_user: User | None = None
        self._tick_count: int = 0

        # Boot log: dmesg-style messages from subsystem initialisation
        self._boot_log: list[str] = []

    # -- State ----------------------------------------------------------------

    @property
    def state(self) -> KernelState:
        """Return the current kernel state."""
        return self._state

    @property
    def config(self) -> SystemConfig:
        """Return the configuration the kernel boots with."""
        return self._config

    @property
    def store(self) -> EntityStore:
        """Return the entity store (available in every state)."""
        return self._store

    @property
    def uptime(self) -> float:
        """Return seconds elapsed since boot, or 0.0 if not running."""
        if self._boot_time is None:
            return 0.0
        return monotonic() - self._boot_time

    @property
    def tick_count(self) -> int:
        """Return the number of ticks since boot."""
        return self._tick_count

    @property
    def current_user(self) -> User | None:
        """Return the logged-in user, or None when shut down."""
        return self._current_user

    def dmesg(self) -> list[str]:
        """Return the kernel boot log (like Linux dmesg)."""
        return list(self._boot_log)

    def _require_running(self) -> None:
        """Raise if the kernel is not in the RUNNING state."""
        if self._state is not KernelState.RUNNING:
            msg = f"Kernel is not running (state: {self._state})"
            raise ConflictError(msg)

    # -- Subsystems -----------------------------------------------------------

    @property
    def logger(self) -> Logger:
        """Return the system log."""
        self._require_running()
        assert self._logger is not None  # noqa: S101
        return self._logger

    @property
    def vfs(self) -> VirtualFileSystem:
        """Return the virtual file system."""
        self._require_running()
        assert self._vfs is not None  # noqa: S101
        return self._vfs

    @property
    def processes(self) -> ProcessTable:
        """Return the process table."""
        self._require_running()
        assert self._processes is not None  # noqa: S101
        return self._processes

    @property
    def users(self) -> UserManager:
        """Return the user manager."""
        self._require_running()
        assert self._users is not None  # noqa: S101
        return self._users

    @property
    def apps(self) -> AppRegistry:
        """Return the app registry."""
        self._require_running()
        assert self._apps is not None  # noqa: S101
        return self._apps

    @property
    def windows(self) -> WindowRegistry:
        """Return the window registry."""
        self._require_running()
        assert self._windows is not None  # noqa: S101
        return self._windows

    @property
    def app_manager(self) -> AppManager:
        """Return the app manager."""
        self._require_running()
        assert self._app_manager is not None  # noqa: S101
        return self._app_manager

    # -- Lifecycle ------------------------------------------------------------

    def boot(self, user_id: str | None = None) -> None:
        """Transition the kernel from SHUTDOWN → RUNNING.

        Args:
            user_id: Who logs in (defaults to ``config.default_user``).

        Raises:
            ConflictError: If the kernel is not in the SHUTDOWN state.

        """
        if self._state is not KernelState.SHUTDOWN:
            msg = f"Cannot boot: kernel is {self._state}, expected shutdown"
            raise ConflictError(msg)

        self._state = KernelState.BOOTING
        self._boot_time = monotonic()
        self._boot_at = datetime.now(tz=UTC)
        self._boot_log = []
        user_id = user_id or self._config.default_user

        # 0. Logger: capture events from the start
        self._logger = Logger(capacity=self._config.log_capacity)
        self._boot_log.append("[OK] Logger")

        try:
            self._boot_subsystems(user_id)
        except Exception as e:
            self._boot_log.append(f"[FAIL] {e}")
            self._logger.log(LogLevel.ERROR, f"Boot failed: {e}", source="kernel")
            self._teardown()
            raise

        self._state = KernelState.RUNNING
        self._logger.log(LogLevel.INFO, "Kernel boot complete", source="kernel", user=user_id)

    def _boot_subsystems(self, user_id: str) -> None:
        assert self._logger is not None  # noqa: S101
        logger = self._logger

        # 1. Storage: every other subsystem persists through it
        self._boot_log.append("[1/5] Initializing storage...")
        self._store.initialize()
        self._boot_log.append(f"[OK] Storage ({self._store.stats()['used']} bytes used)")

        # 2. User: identity before any permission check
        self._boot_log.append("[2/5] Loading user...")
        self._users = UserManager(self._store, logger=logger)
        self._current_user, created = self._users.load_or_create(user_id)
        self._boot_log.append(f"[OK] User {user_id}{' (new)' if created else ''}")

        # 3. File system: the tree, then the user's home directory
        self._boot_log.append("[3/5] Mounting file system...")
        self._vfs = VirtualFileSystem(self._store, logger=logger)
        fresh = self._vfs.initialize(user_id)
        self._vfs.ensure_home(user_id)
        self._boot_log.append(f"[OK] File system{' (created default tree)' if fresh else ''}")

        # 4. Process table: anything still running was lost in the last stop
        self._boot_log.append("[4/5] Starting process manager...")
        self._processes = ProcessTable(self._store, logger=logger, rng=self._rng)
        lost = self._processes.initialize()
        self._boot_log.append(f"[OK] Process manager ({len(lost)} lost processes marked crashed)")

        # 5. System services
        self._boot_log.append("[5/5] Starting system services...")
        for name, metadata in SYSTEM_SERVICES:
            self._processes.spawn(name, ProcessType.SERVICE, metadata)
        self._boot_log.append(f"[OK] System services ({len(SYSTEM_SERVICES)} started)")

        # App layer: nothing can be running yet, then install what is missing
        self._apps = AppRegistry(self._store, logger=logger)
        self._apps.reset_running()
        self._windows = WindowRegistry(
            self._apps,
            bounds=self._config.window_bounds,
            base_z_index=self._config.base_z_index,
            logger=logger,
            rng=self._rng,
        )
        self._app_manager = AppManager(self._apps, self._processes, self._windows, logger=logger)
        installed = self._apps.install_built_in_apps()
        self._boot_log.append(f"[OK] App manager ({len(installed)} built-in apps installed)")

    def shutdown(self) -> None:
        """Transition the kernel from RUNNING → SHUTDOWN.

        Kill every process, drop windows and the path cache, and vacuum
        old crash records from the store.  The subsystems are released
        even when a kill observer or the store fails; the error is then
        raised to the caller.

        Raises:
            ConflictError: If the kernel is not in the RUNNING state.

        """
        self._require_running()
        assert self._processes is not None  # noqa: S101
        assert self._logger is not None  # noqa: S101
        self._state = KernelState.SHUTTING_DOWN
        self._logger.log(LogLevel.INFO, "Kernel shutting down", source="kernel")

        try:
            self._processes.kill_all()
            self._store.vacuum(retention=self._config.crashed_retention)
        finally:
            self._teardown()

    def _teardown(self) -> None:
        """Release every subsystem in reverse boot order."""
        if self._app_manager is not None:
            self._app_manager.detach()
        self._app_manager = None
        if self._windows is not None:
            self._windows.clear()
        self._windows = None
        self._apps = None
        self._processes = None
        if self._vfs is not None:
            self._vfs.clear_cache()
        self._vfs = None
        self._users = None
        self._current_user = None
        self._logger = None
        self._tick_count = 0
        self._boot_time = None
        self._state = KernelState.SHUTDOWN

    def reboot(self) -> None:
        """Shut down, wait ``config.reboot_delay`` seconds, boot the same user.

        Raises:
            ConflictError: If the kernel is not running.

        """
        self._require_running()
        user_id = self._current_user.id if self._current_user else None
        self.shutdown()
        self._sleep(self._config.reboot_delay)
        self.boot(user_id)

    def switch_user(self, user_id: str) -> User:
        """Log in as *user_id* (registering them if new).

        Raises:
            ConflictError: If the kernel is not running.
            InvalidArgumentError: If *user_id* is not a valid user id.

        """
        user, _ = self.users.load_or_create(user_id)
        self.vfs.set_current_user(user.id)
        self.vfs.ensure_home(user.id)
        self._current_user = user
        self.logger.log(LogLevel.INFO, f"Switched to user {user_id}", source="kernel", user=user_id)
        return user

    def tick(self) -> None:
        """Advance the system clock by one tick.

        Every ``config.usage_refresh_ticks`` ticks the simulated CPU and
        memory usage of running processes is recomputed.

        Raises:
            ConflictError: If the kernel is not running.

        """
        processes = self.processes
        self._tick_count += 1
        interval = max(self._config.usage_refresh_ticks, 1)
        if self._tick_count % interval == 0:
            processes.refresh_usage()

    # -- Reporting ------------------------------------------------------------

    def get_system_stats(self, *, now: datetime | None = None) -> SystemStats:
        """Return a snapshot of processes, apps, storage, files and users.

        Raises:
            ConflictError: If the kernel is not running.

        """
        processes = self.processes
        storage = self._store.stats()
        fs = self.vfs.get_stats()
        live = processes.get_all_processes()
        return SystemStats(
            total_processes=len(live),
            processes_by_status={
                status.value: sum(1 for p in live if p.status is status) for status in ProcessStatus
            },
            active_apps=len(self.apps.get_running_apps()),
            active_agents=sum(
                1
                for p in live
                if p.type is ProcessType.AGENT and p.status is ProcessStatus.RUNNING
            ),
            storage_used=storage["used"],
            storage_available=storage["available"],
            total_files=fs.total_files,
            total_directories=fs.total_directories,
            total_users=len(self.users.list_users()),
            active_users=len(
                self.users.active_users(now=now, window=self._config.active_user_window)
            ),
            uptime=self.uptime,
            last_boot_at=self._boot_at,
        )

    def run_diagnostics(self) -> Diagnostics:
        """Grade storage pressure and the share of crashed processes.

        Raises:
            ConflictError: If the kernel is not running.

        """
        process_stats = self.processes.get_system_stats()
        storage = self._store.stats()
        storage_ratio = storage["used"] / storage["quota"] if storage["quota"] else 1.0
        crashed_ratio = process_stats.crashed / max(process_stats.total, 1)

        if storage_ratio > _STORAGE_CRITICAL or crashed_ratio > _CRASHED_CRITICAL:
            overall = Health.CRITICAL
        elif storage_ratio > _STORAGE_WARNING or crashed_ratio > _CRASHED_WARNING:
            overall = Health.WARNING
        else:
            overall = Health.HEALTHY

        return Diagnostics(
            storage=storage,
            filesystem=self.vfs.get_stats(),
            processes=process_stats,
            storage_ratio=storage_ratio,
            crashed_ratio=crashed_ratio,
            overall=overall,
        )

    # -- Maintenance ----------------------------------------------------------

    def emergency_cleanup(self) -> dict[str, int]:
        """Drop crashed processes and vacuum old crash records.

        Returns:
            ``{"processes": ..., "records": ...}`` — how many live crashed
            processes and stored crash records were removed.

        Raises:
            ConflictError: If the kernel is not running.

        """
        removed = self.processes.cleanup_crashed_processes()
        vacuumed = self._store.vacuum(retention=self._config.crashed_retention)
        self.logger.log(
            LogLevel.WARNING,
            f"Emergency cleanup removed {removed} processes and {vacuumed} records",
            source="kernel",
        )
        return {"processes": removed, "records": vacuumed}

    def reset_system(self, *, confirm: bool = False) -> bool:
        """Wipe files, processes, apps, agents and transactions, then reboot.

        Users and key-value settings survive.  Without ``confirm=True``
        nothing happens.

        Returns:
            True if the system was reset.

        Raises:
            ConflictError: If the kernel is not running.

        """
        if not confirm:
            return False
        self._require_running()
        user_id = self._current_user.id if self._current_user else None
        self.shutdown()
        for collection in RESETTABLE:
            self._store.clear(collection)
        self._sleep(self._config.reboot_delay)
        self.boot(user_id)
        return True
