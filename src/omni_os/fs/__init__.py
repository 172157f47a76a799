"""File system subsystem — nodes, permissions, path resolution and the VFS.

Re-exports public symbols so callers can write::

    from omni_os.fs import Permissions, VirtualFileSystem
"""

from omni_os.fs.nodes import Content, DirectoryNode, FileNode, Node, NodeType, node_from_record
from omni_os.fs.paths import ROOT_PATH, PathResolver, join, normalize, split
from omni_os.fs.permissions import WILDCARD, Access, Permissions
from omni_os.fs.vfs import FsStats, VirtualFileSystem

__all__ = [
    "ROOT_PATH",
    "WILDCARD",
    "Access",
    "Content",
    "DirectoryNode",
    "FileNode",
    "FsStats",
    "Node",
    "NodeType",
    "PathResolver",
    "Permissions",
    "VirtualFileSystem",
    "join",
    "node_from_record",
    "normalize",
    "split",
]
