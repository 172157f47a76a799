"""The app registry — installed apps, backed by the entity store."""

from __future__ import annotations

from typing import TYPE_CHECKING

from omni_os.apps.app import App, AppCategory, built_in_apps
from omni_os.errors import ConflictError, NotFoundError
from omni_os.logging import LogLevel
from omni_os.storage.store import Collection

if TYPE_CHECKING:
    from omni_os.logging import Logger
    from omni_os.storage.store import EntityStore


class AppRegistry:
    """CRUD over the ``apps`` collection."""

    def __init__(self, store: EntityStore, *, logger: Logger | None = None) -> None:
        """Create a registry over *store*."""
        self._store = store
        self._logger = logger

    def _log(self, message: str) -> None:
        if self._logger is not None:
            self._logger.log(LogLevel.INFO, message, source="apps")

    def install_app(self, app: App) -> App:
        """Persist a new app record.

        Raises:
            ConflictError: If an app with the same id is already installed.

        """
        if self._store.get(Collection.APPS, app.id) is not None:
            msg = f"App already installed: {app.id}"
            raise ConflictError(msg)
        app.is_running = False
        self._store.put(Collection.APPS, app.to_dict())
        self._log(f"installed {app.name} ({app.id})")
        return app

    def delete_app(self, app_id: str) -> None:
        """Remove an app record.

        Raises:
            NotFoundError: If the app is not installed.

        """
        app = self.require(app_id)
        self._store.delete(Collection.APPS, app_id)
        self._log(f"uninstalled {app.name} ({app_id})")

    def get_app(self, app_id: str) -> App | None:
        """Return the app with *app_id*, or None."""
        record = self._store.get(Collection.APPS, app_id)
        return App.from_dict(record) if record is not None else None

    def require(self, app_id: str) -> App:
        """Return the app with *app_id*.

        Raises:
            NotFoundError: If the app is not installed.

        """
        app = self.get_app(app_id)
        if app is None:
            msg = f"App not found: {app_id}"
            raise NotFoundError(msg)
        return app

    def get_all_apps(self) -> list[App]:
        """Return every installed app."""
        return [App.from_dict(r) for r in self._store.get_all(Collection.APPS)]

    def get_apps_by_category(self, category: AppCategory | str) -> list[App]:
        """Return the installed apps in one category."""
        records = self._store.get_by_index(Collection.APPS, "category", str(category))
        return [App.from_dict(r) for r in records]

    def get_running_apps(self) -> list[App]:
        """Return the apps currently flagged as running."""
        return [app for app in self.get_all_apps() if app.is_running]

    def set_running(self, app_id: str, running: bool) -> None:  # noqa: FBT001
        """Update an app's running flag.

        Raises:
            NotFoundError: If the app is not installed.

        """
        app = self.require(app_id)
        if app.is_running == running:
            return
        app.is_running = running
        self._store.put(Collection.APPS, app.to_dict())

    def reset_running(self) -> int:
        """Clear every running flag (nothing can be running at boot).

        Returns:
            How many apps were flagged running.

        """
        stale = self.get_running_apps()
        for app in stale:
            self.set_running(app.id, False)  # noqa: FBT003
        return len(stale)

    def install_built_in_apps(self) -> list[App]:
        """Install every built-in app not already present (matched by name).

        Returns:
            The apps that were installed by this call.

        """
        present = {app.name for app in self.get_all_apps() if app.is_built_in}
        return [self.install_app(app) for app in built_in_apps() if app.name not in present]
