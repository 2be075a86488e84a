"""
Plugin Hub - lifecycle manager for dynamically loaded host application plugins.

This package installs plugins from local archives or a remote catalog, keeps a
local registry with per-version configuration, and loads plugin code either as
a trusted module or inside a restricted sandbox.
"""

__version__ = "0.1.0"

# Public API exports
from .core.domain.models import Catalog, Manifest, PluginDescriptor, RegistrySnapshot
from .core.exceptions import PluginHubError
from .core.interfaces.plugins import ExecutionHandle, IPluginManager
from .plugins.manager import PluginManager

__all__ = [
    "Catalog",
    "ExecutionHandle",
    "IPluginManager",
    "Manifest",
    "PluginDescriptor",
    "PluginHubError",
    "PluginManager",
    "RegistrySnapshot",
]
