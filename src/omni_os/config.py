"""System configuration — the boot image the kernel starts from.

Before the kernel can boot it needs a handful of tunables: which user
to log in when none is given, how long to settle between shutdown and
boot on reboot, how often to refresh simulated resource usage, and the
default window geometry for apps that do not configure their own.

``SystemConfig`` holds these values.  ``load_config`` reads them from a
JSON image file, falling back to defaults for any key the file omits::

    {
        "default_user": "demo-user",
        "reboot_delay": 1.0,
        "usage_refresh_ticks": 5,
        "log_capacity": 1000,
        "window_bounds": {"min_width": 200, "max_width": 2000}
    }

An unreadable or malformed file is a ``ConfigError`` — the kernel must
not boot on a half-understood configuration.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from typing import TYPE_CHECKING, Any

from omni_os.logging import DEFAULT_CAPACITY as DEFAULT_LOG_CAPACITY

if TYPE_CHECKING:
    from pathlib import Path

DEFAULT_USER = "demo-user"
ONE_GIB = 1024 * 1024 * 1024


class ConfigError(RuntimeError):
    """Raise when a configuration image cannot be loaded."""


@dataclass(frozen=True)
class WindowBounds:
    """Fallback geometry limits for apps without their own window config."""

    default_width: int = 800
    default_height: int = 600
    min_width: int = 200
    min_height: int = 150
    max_width: int = 2000
    max_height: int = 1500


@dataclass(frozen=True)
class SystemConfig:
    """Tunables read once at boot.

    Attributes:
        default_user: User logged in when ``boot()`` gets no user id.
        reboot_delay: Seconds to settle between shutdown and boot.
        usage_refresh_ticks: Ticks between simulated usage refreshes.
        crashed_retention: Seconds a crashed process record survives vacuum.
        active_user_window: Seconds since last seen that still counts as active.
        storage_quota: Bytes the entity store may use.
        base_z_index: First z-order value the window registry hands out.
        window_bounds: Geometry used when an app has no window config.
        log_capacity: Entries the system log keeps before dropping the oldest.

    """

    default_user: str = DEFAULT_USER
    reboot_delay: float = 1.0
    usage_refresh_ticks: int = 5
    crashed_retention: float = 3600.0
    active_user_window: float = 300.0
    storage_quota: int = ONE_GIB
    base_z_index: int = 100
    window_bounds: WindowBounds = field(default_factory=WindowBounds)
    log_capacity: int = DEFAULT_LOG_CAPACITY

    def __post_init__(self) -> None:
        """Reject a log that could hold nothing.

        Raises:
            ConfigError: If *log_capacity* is not positive.

        """
        if self.log_capacity <= 0:
            msg = f"log_capacity must be positive, got {self.log_capacity}"
            raise ConfigError(msg)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SystemConfig:
        """Build a config from a (possibly partial) dictionary.

        Unknown keys are rejected so typos do not pass silently.

        Raises:
            ConfigError: On unknown keys or wrongly-typed sections.

        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            msg = f"Unknown configuration keys: {', '.join(unknown)}"
            raise ConfigError(msg)
        values = dict(data)
        bounds = values.pop("window_bounds", None)
        try:
            if bounds is not None:
                values["window_bounds"] = WindowBounds(**bounds)
            return cls(**values)
        except TypeError as e:
            msg = f"Invalid configuration: {e}"
            raise ConfigError(msg) from e


def load_config(path: Path | None = None) -> SystemConfig:
    """Load a configuration image from JSON, or return the defaults.

    Args:
        path: Path to a JSON image.  ``None`` means "use defaults".

    Raises:
        ConfigError: If the file cannot be read or parsed.

    """
    if path is None:
        return SystemConfig()
    try:
        data = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        msg = f"Cannot load configuration: {e}"
        raise ConfigError(msg) from e
    if not isinstance(data, dict):
        msg = "Cannot load configuration: top level must be an object"
        raise ConfigError(msg)
    return SystemConfig.from_dict(data)  # pyright: ignore[reportUnknownArgumentType]
