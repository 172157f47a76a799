"""Applications — installed app records and the launcher."""

from omni_os.apps.app import App, AppCategory, WindowConfig, built_in_apps
from omni_os.apps.manager import AppManager
from omni_os.apps.registry import AppRegistry

__all__ = [
    "App",
    "AppCategory",
    "AppManager",
    "AppRegistry",
    "WindowConfig",
    "built_in_apps",
]
