"""Tests for the window registry.

At most one window is focused, z-indexes only ever increase, and sizes
are clamped to the owning app's limits (or the system bounds).
"""

import random

import pytest

from omni_os.apps.app import App, WindowConfig
from omni_os.apps.registry import AppRegistry
from omni_os.config import WindowBounds
from omni_os.errors import InvalidArgumentError, NotFoundError
from omni_os.storage.store import EntityStore
from omni_os.windows.registry import DEFAULT_BASE_Z_INDEX, WindowRegistry


def _setup(app: App | None = None) -> tuple[AppRegistry, WindowRegistry, App]:
    """Create an app registry with one installed app and a window registry over it."""
    store = EntityStore()
    store.initialize()
    apps = AppRegistry(store)
    app = apps.install_app(
        app
        or App(
            name="Notes",
            window_config=WindowConfig(
                default_width=600, default_height=500, min_width=400, min_height=300
            ),
        )
    )
    windows = WindowRegistry(apps, rng=random.Random(3))
    return apps, windows, app


class TestCreate:
    """Verify opening windows."""

    def test_new_window_is_focused_on_top(self) -> None:
        """A new window takes focus and the highest z-index."""
        _, windows, app = _setup()
        first = windows.create_window(app, "pid-1")
        second = windows.create_window(app, "pid-1")
        first_window = windows.get_window(first)
        second_window = windows.get_window(second)
        assert first_window is not None
        assert second_window is not None
        assert not first_window.is_focused
        assert second_window.is_focused
        assert second_window.z_index > first_window.z_index

    def test_first_z_index_is_base(self) -> None:
        """The first window gets the base z-index."""
        _, windows, app = _setup()
        window = windows.get_window(windows.create_window(app, "pid-1"))
        assert window is not None
        assert window.z_index == DEFAULT_BASE_Z_INDEX

    def test_default_size_from_app_config(self) -> None:
        """The app's default size is used."""
        _, windows, app = _setup()
        window = windows.get_window(windows.create_window(app, "pid-1"))
        assert window is not None
        assert (window.width, window.height) == (600, 500)
        assert window.title == "Notes"

    def test_default_size_from_bounds(self) -> None:
        """An app without window config uses the system bounds."""
        _, windows, app = _setup(App(name="Plain"))
        window = windows.get_window(windows.create_window(app, "pid-1"))
        bounds = WindowBounds()
        assert window is not None
        assert (window.width, window.height) == (bounds.default_width, bounds.default_height)

    def test_initial_placement_range(self) -> None:
        """Windows open within the cascade area."""
        _, windows, app = _setup()
        window = windows.get_window(windows.create_window(app, "pid-1"))
        assert window is not None
        assert 100 <= window.x < 300  # noqa: PLR2004
        assert 50 <= window.y < 150  # noqa: PLR2004

    def test_initial_state_is_validated(self) -> None:
        """Unsupported state values are rejected."""
        _, windows, app = _setup()
        with pytest.raises(InvalidArgumentError):
            windows.create_window(app, "pid-1", {"handle": object()})


class TestFocus:
    """Verify focus and stacking."""

    def test_focus_raises_and_moves_focus(self) -> None:
        """Focusing an older window puts it on top with sole focus."""
        _, windows, app = _setup()
        first = windows.create_window(app, "pid-1")
        second = windows.create_window(app, "pid-1")
        windows.focus_window(first)
        focused = windows.get_focused_window()
        assert focused is not None
        assert focused.id == first
        assert [w.id for w in windows.get_all_windows()] == [second, first]

    def test_z_index_strictly_increases(self) -> None:
        """Every focus hands out a fresh, larger z-index."""
        _, windows, app = _setup()
        window_id = windows.create_window(app, "pid-1")
        seen: list[int] = []
        for _ in range(3):
            windows.focus_window(window_id)
            window = windows.get_window(window_id)
            assert window is not None
            seen.append(window.z_index)
        assert seen == sorted(set(seen))

    def test_z_index_not_reused_after_close(self) -> None:
        """Closing a window does not free its z-index."""
        _, windows, app = _setup()
        first = windows.create_window(app, "pid-1")
        first_window = windows.get_window(first)
        assert first_window is not None
        old_z = first_window.z_index
        windows.close_window(first)
        second = windows.get_window(windows.create_window(app, "pid-1"))
        assert second is not None
        assert second.z_index > old_z

    def test_single_focus(self) -> None:
        """At most one window is focused at any time."""
        _, windows, app = _setup()
        ids = [windows.create_window(app, "pid-1") for _ in range(4)]
        windows.focus_window(ids[1])
        windows.focus_window(ids[3])
        assert sum(1 for w in windows.get_all_windows() if w.is_focused) == 1

    def test_focus_restores_minimized(self) -> None:
        """Focusing a minimized window restores it."""
        _, windows, app = _setup()
        window_id = windows.create_window(app, "pid-1")
        windows.minimize_window(window_id)
        windows.focus_window(window_id)
        window = windows.get_window(window_id)
        assert window is not None
        assert not window.is_minimized
        assert window.is_focused

    def test_minimize_drops_focus(self) -> None:
        """A minimized window is not focused."""
        _, windows, app = _setup()
        window_id = windows.create_window(app, "pid-1")
        windows.minimize_window(window_id)
        assert windows.get_focused_window() is None

    def test_maximize_toggles(self) -> None:
        """Maximize flips the flag and clears minimized."""
        _, windows, app = _setup()
        window_id = windows.create_window(app, "pid-1")
        window = windows.get_window(window_id)
        assert window is not None
        windows.minimize_window(window_id)
        windows.maximize_window(window_id)
        assert window.is_maximized
        assert not window.is_minimized
        windows.maximize_window(window_id)
        assert not window.is_maximized


class TestGeometry:
    """Verify moving and resizing."""

    def test_resize_clamps_to_app_minimum(self) -> None:
        """Resizing below the app's minimum clamps to it."""
        _, windows, app = _setup()
        window_id = windows.create_window(app, "pid-1")
        windows.resize_window(window_id, 100, 100)
        window = windows.get_window(window_id)
        assert window is not None
        assert (window.width, window.height) == (400, 300)

    def test_resize_clamps_to_bounds_maximum(self) -> None:
        """Limits the app leaves unset fall back to the system bounds."""
        _, windows, app = _setup()
        window_id = windows.create_window(app, "pid-1")
        windows.resize_window(window_id, 10_000, 10_000)
        window = windows.get_window(window_id)
        bounds = WindowBounds()
        assert window is not None
        assert (window.width, window.height) == (bounds.max_width, bounds.max_height)

    def test_limits_come_from_the_app_passed_in(self) -> None:
        """An app missing from the directory still has its own limits honoured."""
        store = EntityStore()
        store.initialize()
        windows = WindowRegistry(AppRegistry(store))
        app = App(name="Loose", window_config=WindowConfig(600, 500, min_width=400))
        window_id = windows.create_window(app, "pid-1")
        windows.resize_window(window_id, 100, 100)
        window = windows.get_window(window_id)
        assert window is not None
        assert window.width == 400  # noqa: PLR2004
        assert window.height == WindowBounds().min_height

    def test_move(self) -> None:
        """Moving sets the top-left corner."""
        _, windows, app = _setup()
        window_id = windows.create_window(app, "pid-1")
        windows.move_window(window_id, 10.0, 20.0)
        window = windows.get_window(window_id)
        assert window is not None
        assert (window.x, window.y) == (10.0, 20.0)

    def test_update_state_merges(self) -> None:
        """State updates are shallow-merged."""
        _, windows, app = _setup()
        window_id = windows.create_window(app, "pid-1", {"file": "/a.txt", "dirty": False})
        windows.update_window_state(window_id, {"dirty": True})
        window = windows.get_window(window_id)
        assert window is not None
        assert window.state == {"file": "/a.txt", "dirty": True}


class TestClose:
    """Verify closing windows."""

    def test_closing_last_window_stops_app(self) -> None:
        """The app stops running when its last window closes."""
        apps, windows, app = _setup()
        first = windows.create_window(app, "pid-1")
        second = windows.create_window(app, "pid-1")
        apps.set_running(app.id, True)  # noqa: FBT003
        windows.close_window(first)
        assert apps.require(app.id).is_running
        windows.close_window(second)
        assert not apps.require(app.id).is_running

    @pytest.mark.parametrize(
        "operation",
        ["close_window", "focus_window", "minimize_window", "maximize_window"],
    )
    def test_unknown_window(self, operation: str) -> None:
        """Operations on an unknown window are NotFound."""
        _, windows, _ = _setup()
        with pytest.raises(NotFoundError, match="Window not found: ghost"):
            getattr(windows, operation)("ghost")

    def test_clear(self) -> None:
        """clear() drops every window."""
        _, windows, app = _setup()
        windows.create_window(app, "pid-1")
        windows.clear()
        assert len(windows) == 0
