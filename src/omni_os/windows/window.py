"""On-screen window records."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

from omni_os.metadata import Metadata


@dataclass
class AppWindow:
    """A window bound to one app and the process that owns it.

    ``state`` is app-defined and only ever shallow-merged, never replaced.
    """

    app_id: str
    process_id: str
    title: str
    x: float
    y: float
    width: int
    height: int
    z_index: int
    is_maximized: bool = False
    is_minimized: bool = False
    is_focused: bool = False
    state: Metadata = field(default_factory=lambda: {})  # noqa: PIE807
    id: str = field(default_factory=lambda: str(uuid4()))

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "id": self.id,
            "app_id": self.app_id,
            "process_id": self.process_id,
            "title": self.title,
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
            "z_index": self.z_index,
            "is_maximized": self.is_maximized,
            "is_minimized": self.is_minimized,
            "is_focused": self.is_focused,
            "state": dict(self.state),
        }
