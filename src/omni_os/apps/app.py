"""App records — what the desktop can launch.

An ``App`` is an installed program: its name, the capabilities it asks
for, and how its windows should be sized.  The record lives in the
entity store's ``apps`` collection; the ``is_running`` flag is kept in
step with processes and windows by the app manager.

``WindowConfig`` carries the geometry limits the window registry clamps
against.  Any limit left as ``None`` falls back to the system-wide
``WindowBounds`` from the configuration.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from omni_os.metadata import Metadata


class AppCategory(StrEnum):
    """Launcher categories."""

    SYSTEM = "system"
    PRODUCTIVITY = "productivity"
    DEVELOPMENT = "development"
    FINANCE = "finance"
    AI = "ai"
    GAMES = "games"
    MEDIA = "media"
    OTHER = "other"


@dataclass(frozen=True)
class WindowConfig:
    """Geometry and chrome settings for an app's windows."""

    default_width: int
    default_height: int
    min_width: int | None = None
    min_height: int | None = None
    max_width: int | None = None
    max_height: int | None = None
    resizable: bool = True
    draggable: bool = True
    closable: bool = True
    minimizable: bool = True
    maximizable: bool = True

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "default_width": self.default_width,
            "default_height": self.default_height,
            "min_width": self.min_width,
            "min_height": self.min_height,
            "max_width": self.max_width,
            "max_height": self.max_height,
            "resizable": self.resizable,
            "draggable": self.draggable,
            "closable": self.closable,
            "minimizable": self.minimizable,
            "maximizable": self.maximizable,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WindowConfig:
        """Deserialize a dict produced by ``to_dict()``."""
        return cls(**data)


@dataclass
class App:
    """An installed application."""

    name: str
    version: str = "1.0.0"
    description: str = ""
    icon: str = ""
    author: str = "system"
    category: AppCategory = AppCategory.OTHER
    permissions: list[str] = field(default_factory=lambda: [])  # noqa: PIE807
    entry_point: str = ""
    install_size: int = 0
    is_built_in: bool = False
    window_config: WindowConfig | None = None
    metadata: Metadata = field(default_factory=lambda: {})  # noqa: PIE807
    id: str = field(default_factory=lambda: str(uuid4()))
    installed_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    is_running: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a store record."""
        return {
            "id": self.id,
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "icon": self.icon,
            "author": self.author,
            "category": self.category.value,
            "permissions": list(self.permissions),
            "entry_point": self.entry_point,
            "install_size": self.install_size,
            "is_built_in": self.is_built_in,
            "window_config": self.window_config.to_dict() if self.window_config else None,
            "metadata": dict(self.metadata),
            "installed_at": self.installed_at.isoformat(),
            "is_running": self.is_running,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> App:
        """Rebuild an app from a store record."""
        window = data.get("window_config")
        return cls(
            id=data["id"],
            name=data["name"],
            version=data.get("version", "1.0.0"),
            description=data.get("description", ""),
            icon=data.get("icon", ""),
            author=data.get("author", "system"),
            category=AppCategory(data.get("category", AppCategory.OTHER)),
            permissions=list(data.get("permissions", [])),
            entry_point=data.get("entry_point", ""),
            install_size=int(data.get("install_size", 0)),
            is_built_in=bool(data.get("is_built_in", False)),
            window_config=WindowConfig.from_dict(window) if window else None,
            metadata=dict(data.get("metadata", {})),
            installed_at=datetime.fromisoformat(data["installed_at"]),
            is_running=bool(data.get("is_running", False)),
        )


def _window(width: int, height: int, min_width: int, min_height: int) -> WindowConfig:
    return WindowConfig(
        default_width=width,
        default_height=height,
        min_width=min_width,
        min_height=min_height,
    )


def built_in_apps() -> list[App]:
    """Return fresh records for the apps every system ships with."""
    return [
        App(
            name="File Explorer",
            description="Browse and manage files",
            icon="📁",
            category=AppCategory.SYSTEM,
            permissions=["filesystem.read", "filesystem.write"],
            entry_point="/apps/FileExplorer",
            install_size=102400,
            is_built_in=True,
            window_config=_window(800, 600, 600, 400),
        ),
        App(
            name="Terminal",
            description="Command-line interface",
            icon="⌨️",
            category=AppCategory.DEVELOPMENT,
            permissions=["filesystem.read", "filesystem.write", "system.admin"],
            entry_point="/apps/Terminal",
            install_size=51200,
            is_built_in=True,
            window_config=_window(700, 400, 400, 300),
        ),
        App(
            name="Text Editor",
            description="Create and edit text files",
            icon="📝",
            category=AppCategory.PRODUCTIVITY,
            permissions=["filesystem.read", "filesystem.write"],
            entry_point="/apps/TextEditor",
            install_size=76800,
            is_built_in=True,
            window_config=_window(600, 500, 400, 300),
        ),
        App(
            name="Wallet",
            description="Manage your currency and transactions",
            icon="💰",
            category=AppCategory.FINANCE,
            permissions=["economy.transact"],
            entry_point="/apps/Wallet",
            install_size=81920,
            is_built_in=True,
            window_config=_window(500, 600, 400, 500),
        ),
        App(
            name="AI Assistant",
            description="Your personal AI helper",
            icon="🤖",
            category=AppCategory.AI,
            permissions=["ai.execute", "filesystem.read", "network.access"],
            entry_point="/apps/AIAssistant",
            install_size=153600,
            is_built_in=True,
            window_config=_window(450, 650, 350, 500),
        ),
        App(
            name="Settings",
            description="System preferences and configuration",
            icon="⚙️",
            category=AppCategory.SYSTEM,
            permissions=["system.admin"],
            entry_point="/apps/Settings",
            install_size=61440,
            is_built_in=True,
            window_config=_window(700, 550, 600, 450),
        ),
    ]
