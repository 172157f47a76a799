"""The app manager — launching and closing apps.

Launching an app ties three subsystems together:

    1. the process table spawns an ``app`` process for it,
    2. the window registry opens a window owned by that process,
    3. the app registry flags the app as running.

If the app already has a running process with an open window, launch
just focuses that window instead of starting a second instance.

The manager also listens to the process table.  Whenever an app process
is spawned the app is flagged running; when the last live process of an
app is killed it is flagged not running.  The window registry does the
same when an app's last window closes, so the flag follows whichever
happens first.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from omni_os.errors import ConflictError
from omni_os.logging import LogLevel
from omni_os.process.pcb import ProcessType
from omni_os.process.table import ProcessEvent

if TYPE_CHECKING:
    from collections.abc import Mapping

    from omni_os.apps.app import App
    from omni_os.apps.registry import AppRegistry
    from omni_os.logging import Logger
    from omni_os.process.pcb import Process
    from omni_os.process.table import ProcessTable
    from omni_os.windows.registry import WindowRegistry


class AppManager:
    """Coordinate app records, processes and windows."""

    def __init__(
        self,
        apps: AppRegistry,
        processes: ProcessTable,
        windows: WindowRegistry,
        *,
        logger: Logger | None = None,
    ) -> None:
        """Wire the manager to its collaborators and subscribe to process events."""
        self._apps = apps
        self._processes = processes
        self._windows = windows
        self._logger = logger
        processes.subscribe(ProcessEvent.SPAWN, self._on_spawn)
        processes.subscribe(ProcessEvent.KILL, self._on_kill)

    def _log(self, message: str) -> None:
        if self._logger is not None:
            self._logger.log(LogLevel.INFO, message, source="apps")

    @property
    def apps(self) -> AppRegistry:
        """Return the app registry."""
        return self._apps

    def detach(self) -> None:
        """Stop listening to process events."""
        self._processes.unsubscribe(ProcessEvent.SPAWN, self._on_spawn)
        self._processes.unsubscribe(ProcessEvent.KILL, self._on_kill)

    # -- Process events -------------------------------------------------------

    def _on_spawn(self, process: Process) -> None:
        if process.app_id is not None and self._apps.get_app(process.app_id) is not None:
            self._apps.set_running(process.app_id, True)  # noqa: FBT003

    def _on_kill(self, process: Process) -> None:
        app_id = process.app_id
        if app_id is None or self._apps.get_app(app_id) is None:
            return
        if self._processes_of(app_id):
            return
        self._apps.set_running(app_id, False)  # noqa: FBT003

    def _processes_of(self, app_id: str) -> list[Process]:
        return [p for p in self._processes.get_all_processes() if p.app_id == app_id]

    # -- Launch / close -------------------------------------------------------

    def launch_app(self, app_id: str, initial_state: Mapping[str, object] | None = None) -> str:
        """Launch an app, or focus its window if it is already running.

        Returns:
            The id of the window that is now focused.

        Raises:
            NotFoundError: If the app is not installed.
            InvalidArgumentError: If *initial_state* holds unsupported values.

        """
        app = self._apps.require(app_id)
        if self._processes.get_process_by_app_id(app_id) is not None:
            existing = self._windows.get_windows_for_app(app_id)
            if existing:
                self._windows.focus_window(existing[0].id)
                return existing[0].id

        process = self._processes.spawn(
            app.name,
            ProcessType.APP,
            {
                "app_id": app.id,
                "permissions": list(app.permissions),
                "environment": {"initial_state": dict(initial_state) if initial_state else None},
            },
        )
        window_id = self._windows.create_window(app, process.pid, initial_state)
        self._processes.attach_window(process.pid, window_id)
        self._apps.set_running(app.id, True)  # noqa: FBT003
        self._log(f"launched {app.name} (window {window_id})")
        return window_id

    def close_app(self, app_id: str) -> None:
        """Close every window of an app and kill its processes.

        Raises:
            NotFoundError: If the app is not installed.

        """
        app = self._apps.require(app_id)
        for window in self._windows.get_windows_for_app(app_id):
            self._windows.close_window(window.id)
        for process in self._processes_of(app_id):
            if self._processes.get_process(process.pid) is not None:
                self._processes.kill(process.pid)
        self._apps.set_running(app_id, False)  # noqa: FBT003
        self._log(f"closed {app.name}")

    # -- Install / uninstall --------------------------------------------------

    def install_app(self, app: App) -> App:
        """Install a new app (see ``AppRegistry.install_app``)."""
        return self._apps.install_app(app)

    def uninstall_app(self, app_id: str) -> None:
        """Uninstall an app, closing it first if it is running.

        Raises:
            NotFoundError: If the app is not installed.
            ConflictError: If the app is built in.

        """
        app = self._apps.require(app_id)
        if app.is_built_in:
            msg = f"Cannot uninstall built-in app: {app.name}"
            raise ConflictError(msg)
        if app.is_running or self._windows.get_windows_for_app(app_id):
            self.close_app(app_id)
        self._apps.delete_app(app_id)
