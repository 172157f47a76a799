"""Flask application factory for the desktop's HTTP API.

The ``create_app`` function boots a kernel (unless one is passed in) and
returns a Flask app exposing the desktop as JSON:

- ``GET /api/status`` — system statistics.
- ``GET /api/processes`` — live processes.
- ``GET /api/windows`` — open windows, bottom of the stack first.
- ``GET /api/apps`` — installed apps.
- ``POST /api/apps/<id>/launch`` — launch (or focus) an app.
- ``POST /api/windows/<id>/focus`` — focus a window.
- ``DELETE /api/windows/<id>`` — close a window.
- ``GET /api/fs?path=/...`` — list a directory as the current user.
- ``GET /api/dmesg`` — the kernel boot log.
- ``GET /api/logs`` — the system log, filtered by ``level``, ``source``,
  ``user`` and ``since`` (an ISO 8601 instant).

Core errors are turned into JSON responses with a status code chosen by
the error's kind.
"""

from __future__ import annotations

import atexit
import os
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from flask import Flask, Response, jsonify, request

from omni_os.config import load_config
from omni_os.errors import ErrorKind, InvalidArgumentError, KernelError
from omni_os.fs.nodes import FileNode
from omni_os.kernel import Kernel, KernelState
from omni_os.logging import LogLevel
from omni_os.storage.persistence import dump_store, load_store

if TYPE_CHECKING:
    from omni_os.apps.app import App
    from omni_os.fs.nodes import Node
    from omni_os.process.pcb import Process

_HTTP_CREATED = 201
_HTTP_NO_CONTENT = 204

_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.PERMISSION_DENIED: 403,
    ErrorKind.CONFLICT: 409,
    ErrorKind.INVALID_ARGUMENT: 400,
    ErrorKind.PERSISTENCE: 500,
}


def _process_json(process: Process) -> dict[str, Any]:
    data = process.to_dict()
    data["cpu_usage"] = round(process.cpu_usage, 2)
    data["memory_usage"] = round(process.memory_usage, 2)
    return data


def _app_json(app: App) -> dict[str, Any]:
    return app.to_dict()


def _node_json(node: Node) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": node.id,
        "name": node.name,
        "path": node.path,
        "type": node.node_type.value,
        "size": node.size,
        "modified_at": node.modified_at.isoformat(),
        "owner": node.permissions.owner,
    }
    if isinstance(node, FileNode):
        data["mime_type"] = node.mime_type
    return data


def create_app(kernel: Kernel | None = None) -> Flask:
    """Create and configure the Flask application.

    Args:
        kernel: A kernel to serve.  If omitted, a fresh kernel is booted.

    Returns:
        A configured Flask application ready to serve.

    """
    if kernel is None:
        kernel = Kernel()
    if kernel.state is KernelState.SHUTDOWN:
        kernel.boot()

    app = Flask(__name__)

    @app.errorhandler(KernelError)
    def handle_kernel_error(error: KernelError) -> tuple[Response, int]:  # pyright: ignore[reportUnusedFunction]
        """Translate a core error into a JSON error response."""
        return jsonify({"error": error.message, "kind": error.kind.value}), _STATUS_BY_KIND[
            error.kind
        ]

    @app.route("/api/status")
    def status() -> Response:  # pyright: ignore[reportUnusedFunction]
        """Return system state and statistics."""
        running = kernel.state is KernelState.RUNNING
        if not running:
            return jsonify({"running": False, "state": kernel.state.value})
        stats = kernel.get_system_stats()
        user = kernel.current_user
        return jsonify(
            {
                "running": True,
                "state": kernel.state.value,
                "user": user.id if user else None,
                "stats": {
                    "total_processes": stats.total_processes,
                    "processes_by_status": stats.processes_by_status,
                    "active_apps": stats.active_apps,
                    "active_agents": stats.active_agents,
                    "storage_used": stats.storage_used,
                    "storage_available": stats.storage_available,
                    "total_files": stats.total_files,
                    "total_directories": stats.total_directories,
                    "total_users": stats.total_users,
                    "active_users": stats.active_users,
                    "uptime": stats.uptime,
                    "last_boot_at": (
                        stats.last_boot_at.isoformat() if stats.last_boot_at else None
                    ),
                },
            }
        )

    @app.route("/api/processes")
    def processes() -> Response:  # pyright: ignore[reportUnusedFunction]
        """Return every live process."""
        return jsonify([_process_json(p) for p in kernel.processes.get_all_processes()])

    @app.route("/api/windows")
    def windows() -> Response:  # pyright: ignore[reportUnusedFunction]
        """Return open windows ordered by z-index."""
        return jsonify([w.to_dict() for w in kernel.windows.get_all_windows()])

    @app.route("/api/apps")
    def apps() -> Response:  # pyright: ignore[reportUnusedFunction]
        """Return installed apps, optionally filtered by ``?category=``."""
        category = request.args.get("category")
        registry = kernel.apps
        found = registry.get_apps_by_category(category) if category else registry.get_all_apps()
        return jsonify([_app_json(a) for a in found])

    @app.route("/api/apps/<app_id>/launch", methods=["POST"])
    def launch(app_id: str) -> tuple[Response, int]:  # pyright: ignore[reportUnusedFunction]
        """Launch an app and return the focused window.

        Accepts an optional JSON body: ``{"state": {...}}``.
        """
        data = request.get_json(silent=True) or {}
        if not isinstance(data, dict):
            msg = "Launch body must be a JSON object"
            raise InvalidArgumentError(msg)
        state = data.get("state")
        if state is not None and not isinstance(state, dict):
            msg = "Launch state must be a JSON object"
            raise InvalidArgumentError(msg)
        window_id = kernel.app_manager.launch_app(app_id, state)
        window = kernel.windows.get_window(window_id)
        assert window is not None  # noqa: S101
        return jsonify(window.to_dict()), _HTTP_CREATED

    @app.route("/api/windows/<window_id>/focus", methods=["POST"])
    def focus(window_id: str) -> Response:  # pyright: ignore[reportUnusedFunction]
        """Focus a window and return it."""
        kernel.windows.focus_window(window_id)
        window = kernel.windows.get_window(window_id)
        assert window is not None  # noqa: S101
        return jsonify(window.to_dict())

    @app.route("/api/windows/<window_id>", methods=["DELETE"])
    def close(window_id: str) -> tuple[str, int]:  # pyright: ignore[reportUnusedFunction]
        """Close a window."""
        kernel.windows.close_window(window_id)
        return "", _HTTP_NO_CONTENT

    @app.route("/api/fs")
    def list_directory() -> Response:  # pyright: ignore[reportUnusedFunction]
        """List a directory (``?path=``, default ``/``) as the current user."""
        path = request.args.get("path", "/")
        return jsonify(
            {"path": path, "entries": [_node_json(n) for n in kernel.vfs.list_directory(path)]}
        )

    @app.route("/api/dmesg")
    def dmesg() -> Response:  # pyright: ignore[reportUnusedFunction]
        """Return the kernel boot log."""
        return jsonify({"log": kernel.dmesg()})

    @app.route("/api/logs")
    def logs() -> Response:  # pyright: ignore[reportUnusedFunction]
        """Return system log entries matching the query string."""
        level = request.args.get("level")
        since = request.args.get("since")
        try:
            since_at = datetime.fromisoformat(since) if since else None
        except ValueError as e:
            msg = f"Invalid since timestamp: {since}"
            raise InvalidArgumentError(msg) from e
        entries = kernel.logger.filter(
            min_level=LogLevel.parse(level) if level else None,
            source=request.args.get("source"),
            user=request.args.get("user"),
            since=since_at,
        )
        return jsonify([e.to_dict() for e in entries])

    return app


def build_kernel(config_path: Path | None = None, store_path: Path | None = None) -> Kernel:
    """Create a kernel from an optional config image and store dump.

    Args:
        config_path: JSON configuration image (see ``load_config``).
        store_path: JSON store dump to boot from, if the file exists.

    Raises:
        ConfigError: If the configuration image cannot be loaded.
        PersistenceError: If the store dump cannot be read.

    """
    config = load_config(config_path)
    if store_path is not None and store_path.exists():
        return Kernel(store=load_store(store_path, quota=config.storage_quota), config=config)
    return Kernel(config=config)


def main() -> None:
    """Run the web API development server.

    This is the ``omni-os-web`` console entry point.  ``OMNI_OS_CONFIG``
    names a configuration image and ``OMNI_OS_STORE`` a store dump that
    is loaded at start and written back at exit.
    """
    config_env = os.environ.get("OMNI_OS_CONFIG")
    store_env = os.environ.get("OMNI_OS_STORE")
    config_path = Path(config_env) if config_env else None
    store_path = Path(store_env) if store_env else None
    kernel = build_kernel(config_path, store_path)
    app = create_app(kernel)
    if store_path is not None:
        atexit.register(dump_store, kernel.store, store_path)
    app.run(debug=True, port=8080)
