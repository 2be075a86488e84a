"""
Plugin system interfaces.

These interfaces define the contracts between the lifecycle manager, the
loading strategies and the capabilities handed to plugin code.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, List, Optional

from ..domain.models import ImportType, Manifest, PluginDescriptor, RegistrySnapshot
from .lifecycle import IComponent


class IPluginCache(ABC):
    """Key/value cache a loaded plugin may read and write."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        """Return the cached value for key, or default."""
        pass

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Store value under key and persist the cache."""
        pass


@dataclass
class ExecutionHandle:
    """
    Result of loading a plugin's entry code.

    `namespace` is the module object (trusted mode) or the sandbox module
    built from the evaluated globals; exported names are reachable as
    attributes of the handle. Names in `hidden` were injected by the host
    and are not reported as exports.
    """

    plugin_id: str
    version: str
    mode: ImportType
    namespace: Any
    hidden: FrozenSet[str] = frozenset()

    def __getattr__(self, name: str) -> Any:
        if name.startswith('__'):
            raise AttributeError(name)
        try:
            return getattr(self.__dict__['namespace'], name)
        except KeyError:
            raise AttributeError(name) from None

    @property
    def exports(self) -> List[str]:
        """Public names defined by the plugin."""
        return sorted(
            k for k in vars(self.namespace)
            if not k.startswith('_') and k not in self.hidden
        )


class ILoadStrategy(ABC):
    """Interface for a plugin loading mode."""

    @property
    @abstractmethod
    def mode(self) -> ImportType:
        """Import type handled by this strategy."""
        pass

    @abstractmethod
    def load(
        self,
        descriptor: PluginDescriptor,
        manifest: Manifest,
        cache: IPluginCache
    ) -> ExecutionHandle:
        """
        Evaluate the plugin's entry code.

        Args:
            descriptor: Installed descriptor (entry_file points at the code)
            manifest: Installed manifest
            cache: Cache capability bound to this plugin

        Returns:
            Execution handle exposing the plugin's exports

        Raises:
            PluginLoadError: If the entry code fails to evaluate
        """
        pass


class IPluginManager(IComponent):
    """Interface for the plugin lifecycle manager."""

    @abstractmethod
    async def install_plugins(
        self,
        archive_paths: List[str],
        host_settings: Optional[Dict[str, Any]] = None
    ) -> RegistrySnapshot:
        """Install plugin archives from local paths."""
        pass

    @abstractmethod
    async def uninstall_plugin(self, plugin_id: str) -> RegistrySnapshot:
        """Uninstall a plugin; unknown ids are a no-op."""
        pass

    @abstractmethod
    async def save_configuration(self, plugin_id: str, data: Dict[str, Any]) -> RegistrySnapshot:
        """Replace the stored configuration of an installed plugin."""
        pass

    @abstractmethod
    async def refresh_online_plugins(self, proxy: Optional[str] = None) -> RegistrySnapshot:
        """Refresh the online catalog."""
        pass

    @abstractmethod
    async def install_online_plugin(self, plugin_id: str, proxy: Optional[str] = None) -> RegistrySnapshot:
        """Download and install a plugin listed in the online catalog."""
        pass

    @abstractmethod
    def load_plugin(self, plugin_id: str) -> ExecutionHandle:
        """Load (or return the memoized) execution handle for a plugin."""
        pass

    @abstractmethod
    def get_all_data(self) -> RegistrySnapshot:
        """Return a snapshot of the registry."""
        pass
