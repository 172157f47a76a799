"""Window management — on-screen windows, focus and stacking order."""

from omni_os.windows.registry import AppDirectory, WindowRegistry
from omni_os.windows.window import AppWindow

__all__ = ["AppDirectory", "AppWindow", "WindowRegistry"]
