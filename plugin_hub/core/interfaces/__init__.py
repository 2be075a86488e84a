"""Core interfaces: component lifecycle and plugin loading contracts."""

from .lifecycle import IComponent
from .plugins import ExecutionHandle, ILoadStrategy, IPluginCache, IPluginManager

__all__ = [
    "IComponent",
    "ExecutionHandle",
    "ILoadStrategy",
    "IPluginCache",
    "IPluginManager",
]
