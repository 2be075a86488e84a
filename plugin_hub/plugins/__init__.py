"""
Plugin lifecycle: archive installation, registry, online catalog and loading.

The PluginManager facade ties the pieces together; the other modules can be
used on their own for tooling and tests.
"""

from .catalog import CatalogSynchronizer
from .installer import ArchiveInstaller, InstalledArchive
from .loader import IsolatedSandboxLoad, PluginLoader, TrustedModuleLoad
from .manager import PluginManager
from .registry import RegistryStore

__all__ = [
    "ArchiveInstaller",
    "CatalogSynchronizer",
    "InstalledArchive",
    "IsolatedSandboxLoad",
    "PluginLoader",
    "PluginManager",
    "RegistryStore",
    "TrustedModuleLoad",
]
