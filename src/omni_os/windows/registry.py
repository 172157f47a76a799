"""The window registry — stacking, focus and geometry for app windows.

Windows are purely in-memory: they do not survive a reboot, because the
processes that own them do not either.

Two invariants hold after every call:

- **Single focus** — at most one window is focused.  Creating or
  focusing a window unfocuses every other window first.
- **Monotonic stacking** — each window gets a z-index from a counter
  that only goes up.  Focusing a window hands it a *fresh* value, so the
  window that was focused last is always drawn on top.  Values are never
  reused, even after a window closes.

Geometry is clamped against the ``WindowConfig`` of the app the window
was created for; any limit the app leaves unset falls back to the system
``WindowBounds``.  The limits are fixed when the window opens.

Closing the last window of an app tells the app directory the app is no
longer running.
"""

from __future__ import annotations

import random
from itertools import count
from typing import TYPE_CHECKING, Protocol

from omni_os.config import WindowBounds
from omni_os.errors import NotFoundError
from omni_os.logging import LogLevel
from omni_os.metadata import validate_metadata
from omni_os.windows.window import AppWindow

if TYPE_CHECKING:
    from collections.abc import Mapping

    from omni_os.apps.app import App
    from omni_os.logging import Logger

DEFAULT_BASE_Z_INDEX = 100


class AppDirectory(Protocol):
    """What the registry needs to know about installed apps."""

    def get_app(self, app_id: str) -> App | None:
        """Return the app with *app_id*, or None."""
        ...

    def set_running(self, app_id: str, running: bool) -> None:  # noqa: FBT001
        """Record whether the app is running."""
        ...


class WindowRegistry:
    """In-memory registry of open windows."""

    def __init__(
        self,
        apps: AppDirectory,
        *,
        bounds: WindowBounds | None = None,
        base_z_index: int = DEFAULT_BASE_Z_INDEX,
        logger: Logger | None = None,
        rng: random.Random | None = None,
    ) -> None:
        """Create an empty registry.

        Args:
            apps: Lookup for app window configs and the running flag.
            bounds: Fallback geometry for apps without their own limits.
            base_z_index: First z-index handed out.
            logger: Optional system log.
            rng: Random source for initial placement.

        """
        self._apps = apps
        self._bounds = bounds or WindowBounds()
        self._z_counter = count(base_z_index)
        self._logger = logger
        self._rng = rng or random.Random()  # noqa: S311
        self._windows: dict[str, AppWindow] = {}
        # Size limits fixed at creation from the app passed in, by window id
        self._limits: dict[str, tuple[int, int, int, int]] = {}

    def _log(self, message: str) -> None:
        if self._logger is not None:
            self._logger.log(LogLevel.INFO, message, source="window")

    def _require(self, window_id: str) -> AppWindow:
        window = self._windows.get(window_id)
        if window is None:
            msg = f"Window not found: {window_id}"
            raise NotFoundError(msg)
        return window

    def _unfocus_all(self) -> None:
        for window in self._windows.values():
            window.is_focused = False

    def _limits_for(self, app: App) -> tuple[int, int, int, int]:
        """Return (min_width, min_height, max_width, max_height) for an app."""
        config = app.window_config
        bounds = self._bounds
        if config is None:
            return (bounds.min_width, bounds.min_height, bounds.max_width, bounds.max_height)
        return (
            config.min_width if config.min_width is not None else bounds.min_width,
            config.min_height if config.min_height is not None else bounds.min_height,
            config.max_width if config.max_width is not None else bounds.max_width,
            config.max_height if config.max_height is not None else bounds.max_height,
        )

    @staticmethod
    def _clamp(limits: tuple[int, int, int, int], width: int, height: int) -> tuple[int, int]:
        min_w, min_h, max_w, max_h = limits
        return (max(min_w, min(width, max_w)), max(min_h, min(height, max_h)))

    # -- Lifecycle ------------------------------------------------------------

    def create_window(
        self,
        app: App,
        owner_process_id: str,
        initial_state: Mapping[str, object] | None = None,
    ) -> str:
        """Open a focused window for *app* on top of every other window.

        Args:
            app: The app the window belongs to.
            owner_process_id: pid of the process that owns the window.
            initial_state: App-defined starting state.

        Returns:
            The new window's id.

        Raises:
            InvalidArgumentError: If *initial_state* holds unsupported values.

        """
        state = validate_metadata(initial_state, name="state")
        config = app.window_config
        width = config.default_width if config else self._bounds.default_width
        height = config.default_height if config else self._bounds.default_height
        limits = self._limits_for(app)
        width, height = self._clamp(limits, width, height)
        window = AppWindow(
            app_id=app.id,
            process_id=owner_process_id,
            title=app.name,
            x=self._rng.random() * 200 + 100,
            y=self._rng.random() * 100 + 50,
            width=width,
            height=height,
            z_index=next(self._z_counter),
            state=state,
        )
        self._unfocus_all()
        window.is_focused = True
        self._windows[window.id] = window
        self._limits[window.id] = limits
        self._log(f"opened window {window.id} for {app.name}")
        return window.id

    def close_window(self, window_id: str) -> None:
        """Close a window; the app stops running when its last window goes.

        Raises:
            NotFoundError: If *window_id* is unknown.

        """
        window = self._require(window_id)
        del self._windows[window_id]
        del self._limits[window_id]
        self._log(f"closed window {window_id}")
        if self.get_windows_for_app(window.app_id):
            return
        if self._apps.get_app(window.app_id) is not None:
            self._apps.set_running(window.app_id, False)  # noqa: FBT003
            self._log(f"closed last window of app {window.app_id}")

    # -- Stacking and state ---------------------------------------------------

    def focus_window(self, window_id: str) -> None:
        """Focus a window, raise it to the top and restore it if minimized.

        Raises:
            NotFoundError: If *window_id* is unknown.

        """
        window = self._require(window_id)
        self._unfocus_all()
        window.is_focused = True
        window.z_index = next(self._z_counter)
        window.is_minimized = False

    def minimize_window(self, window_id: str) -> None:
        """Minimize a window (it also loses focus).

        Raises:
            NotFoundError: If *window_id* is unknown.

        """
        window = self._require(window_id)
        window.is_minimized = True
        window.is_focused = False

    def maximize_window(self, window_id: str) -> None:
        """Toggle maximized; a maximized window is never minimized.

        Raises:
            NotFoundError: If *window_id* is unknown.

        """
        window = self._require(window_id)
        window.is_maximized = not window.is_maximized
        window.is_minimized = False

    def move_window(self, window_id: str, x: float, y: float) -> None:
        """Move a window's top-left corner.

        Raises:
            NotFoundError: If *window_id* is unknown.

        """
        window = self._require(window_id)
        window.x = x
        window.y = y

    def resize_window(self, window_id: str, width: int, height: int) -> None:
        """Resize a window, clamped to the app's size limits.

        Raises:
            NotFoundError: If *window_id* is unknown.

        """
        window = self._require(window_id)
        window.width, window.height = self._clamp(self._limits[window_id], width, height)

    def update_window_state(self, window_id: str, partial: Mapping[str, object]) -> None:
        """Shallow-merge *partial* into the window's state.

        Raises:
            NotFoundError: If *window_id* is unknown.
            InvalidArgumentError: If *partial* holds unsupported values.

        """
        window = self._require(window_id)
        window.state.update(validate_metadata(partial, name="state"))

    # -- Queries --------------------------------------------------------------

    def get_window(self, window_id: str) -> AppWindow | None:
        """Return the window with *window_id*, or None."""
        return self._windows.get(window_id)

    def get_windows_for_app(self, app_id: str) -> list[AppWindow]:
        """Return the open windows of one app."""
        return [w for w in self._windows.values() if w.app_id == app_id]

    def get_all_windows(self) -> list[AppWindow]:
        """Return every open window, bottom of the stack first."""
        return sorted(self._windows.values(), key=lambda w: w.z_index)

    def get_focused_window(self) -> AppWindow | None:
        """Return the focused window, if any."""
        return next((w for w in self._windows.values() if w.is_focused), None)

    def clear(self) -> None:
        """Drop every window without touching app state (used at shutdown)."""
        self._windows.clear()
        self._limits.clear()

    def __len__(self) -> int:
        """Return the number of open windows."""
        return len(self._windows)
