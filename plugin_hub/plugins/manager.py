"""
Plugin lifecycle manager.

PluginManager is the facade the host talks to. It installs the preset
archives and reconciles the registry on start, installs plugins from local
archives or the online catalog, uninstalls them, stores their configuration
and loads their code. Every mutating operation returns a RegistrySnapshot.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..core.domain.models import PluginProvider, RegistrySnapshot
from ..core.exceptions import (
    ConfigurationError, IntegrityError, NetworkError, PluginHubError, PluginNotFoundError
)
from ..core.interfaces.plugins import ExecutionHandle, IPluginManager
from ..infrastructure.config.models import PluginHubConfig
from ..infrastructure.network import download_file
from ..infrastructure.storage import files
from .catalog import CatalogSynchronizer
from .inheritance import effective_configuration, missing_required
from .loader import PluginLoader
from .registry import RegistryStore

logger = logging.getLogger(__name__)

DOWNLOAD_DIRNAME = "_download"


class PluginManager(IPluginManager):
    """
    Plugin lifecycle manager.

    Mutating calls are serialized with an asyncio.Lock; reads work on the
    current in-memory registry.
    """

    def __init__(
        self,
        config: Optional[PluginHubConfig] = None,
        host_settings: Optional[Mapping[str, Any]] = None,
        development: bool = False
    ) -> None:
        self._config = config or PluginHubConfig()
        if not self._config.location:
            raise ConfigurationError("Plugin installation location is not configured")

        self._location = Path(self._config.location)
        self._host_settings: Dict[str, Any] = dict(host_settings or {})
        self._development = development
        self._running = False
        self._lock = asyncio.Lock()
        self._refresh_task: Optional[asyncio.Task] = None

        self._store = RegistryStore(self._location)
        self._catalog = CatalogSynchronizer(
            self._location,
            preset_location=self._config.preset_location,
            request_url=self._config.request_url,
            timeout=self._config.request_timeout,
            development=development,
        )
        self._loader = PluginLoader(self._store, self._config.allowed_modules)

    @property
    def name(self) -> str:
        """Get component name."""
        return "PluginManager"

    @property
    def version(self) -> str:
        """Get component version."""
        return "1.0.0"

    @property
    def location(self) -> Path:
        return self._location

    @property
    def store(self) -> RegistryStore:
        return self._store

    @property
    def catalog(self) -> CatalogSynchronizer:
        return self._catalog

    @property
    def loader(self) -> PluginLoader:
        return self._loader

    async def start(self) -> None:
        """Reconcile the registry, install presets and seed the online catalog."""
        if self._running:
            return

        logger.info(f"Starting plugin manager at {self._location}")
        self._location.mkdir(parents=True, exist_ok=True)

        async with self._lock:
            await self._store.load()
            await self._install_preset_archives()

        if self._catalog.seed_from_preset() is None:
            self._catalog.load_cached()

        if self._catalog.request_url:
            self._refresh_task = asyncio.create_task(self._catalog.refresh(self._config.proxy))

        self._running = True
        logger.info("Plugin manager started successfully")

    async def stop(self) -> None:
        """Stop the plugin manager."""
        if not self._running:
            return

        logger.info("Stopping plugin manager...")
        if self._refresh_task and not self._refresh_task.done():
            self._refresh_task.cancel()
            try:
                await self._refresh_task
            except asyncio.CancelledError:
                pass
        self._refresh_task = None
        self._loader.clear()
        self._running = False
        logger.info("Plugin manager stopped")

    async def configure(self, config: Dict[str, Any]) -> None:
        """Update runtime settings (catalog URL, timeout, proxy, hash checks, host settings)."""
        if 'request_url' in config:
            self._config.request_url = config['request_url']
        if 'request_timeout' in config:
            self._config.request_timeout = float(config['request_timeout'])
        if 'proxy' in config:
            self._config.proxy = config['proxy']
        if 'verify_hash' in config:
            self._config.verify_hash = bool(config['verify_hash'])
        if 'host_settings' in config:
            self._host_settings = dict(config['host_settings'] or {})
        self._catalog.configure(self._config.request_url, self._config.request_timeout)

    async def check_health(self) -> Dict[str, Any]:
        """Check plugin manager health."""
        return {
            'healthy': self._running,
            'status': 'running' if self._running else 'stopped',
            'details': {
                'location': str(self._location),
                'installed_plugins': len(self._store.catalog.plugins),
                'online_plugins': len(self._catalog.catalog.plugins),
                'imported_plugins': self._loader.imported_plugins,
                'refreshing': bool(self._refresh_task and not self._refresh_task.done()),
            }
        }

    async def install_plugins(
        self,
        archive_paths: List[str],
        host_settings: Optional[Dict[str, Any]] = None
    ) -> RegistrySnapshot:
        """
        Install plugin archives from local paths.

        Each archive is handled independently; one that fails to unpack or
        parse is logged and skipped. The registry is persisted once at the end.

        Args:
            archive_paths: Archive files to install
            host_settings: Settings tree for ``inherit`` fields (defaults to
                the manager's host settings)

        Returns:
            Registry snapshot after the batch
        """
        async with self._lock:
            await self._install_batch(
                [Path(p) for p in archive_paths],
                self._host_settings if host_settings is None else host_settings,
            )
        return self.get_all_data()

    async def uninstall_plugin(self, plugin_id: str) -> RegistrySnapshot:
        """Uninstall a plugin; unknown ids are a no-op."""
        async with self._lock:
            if await self._store.uninstall(plugin_id):
                self._loader.unload(plugin_id)
        return self.get_all_data()

    async def save_configuration(self, plugin_id: str, data: Dict[str, Any]) -> RegistrySnapshot:
        """Replace the stored configuration of an installed plugin."""
        async with self._lock:
            await self._store.save_configuration(plugin_id, data)
        return self.get_all_data()

    async def refresh_online_plugins(self, proxy: Optional[str] = None) -> RegistrySnapshot:
        """Refresh the online catalog; failures fall back to the cached catalog."""
        await self._catalog.refresh(proxy or self._config.proxy)
        return self.get_all_data()

    async def install_online_plugin(
        self,
        plugin_id: str,
        proxy: Optional[str] = None,
        on_start: Optional[Callable[[], Any]] = None,
        on_progress: Optional[Callable[[float], Any]] = None,
        on_complete: Optional[Callable[[Path], Any]] = None,
        on_error: Optional[Callable[[Exception], Any]] = None,
    ) -> RegistrySnapshot:
        """
        Download a plugin listed in the online catalog and install it.

        Args:
            plugin_id: Online catalog plugin id
            proxy: Optional proxy URL (defaults to the configured proxy)
            on_start, on_progress, on_complete, on_error: Download observers

        Returns:
            Registry snapshot after the install

        Raises:
            PluginNotFoundError: If the id is not in the online catalog
            NetworkError: If the download fails
            IntegrityError: If the archive does not match the catalog hash
        """
        descriptor = self._catalog.catalog.find(plugin_id)
        if descriptor is None:
            raise PluginNotFoundError(plugin_id)
        if not descriptor.link:
            raise NetworkError(
                f"No download link for {descriptor.key}", {"plugin_id": plugin_id}
            )

        download_dir = self._location / DOWNLOAD_DIRNAME
        download_dir.mkdir(parents=True, exist_ok=True)
        save_path = download_dir / f"{descriptor.key}{self._config.archive_extension}"

        await download_file(
            descriptor.link,
            save_path,
            proxy=proxy or self._config.proxy,
            timeout=self._config.request_timeout,
            on_start=on_start,
            on_progress=on_progress,
            on_complete=on_complete,
            on_error=on_error,
        )

        try:
            if self._config.verify_hash and descriptor.content_hash:
                digest = await files.calculate_file_hash(save_path)
                if digest.lower() != descriptor.content_hash.lower():
                    raise IntegrityError(
                        f"Hash mismatch for {descriptor.key}",
                        {"expected": descriptor.content_hash, "actual": digest}
                    )

            async with self._lock:
                if await self._store.install(save_path, self._host_settings):
                    self._loader.unload(plugin_id)
        finally:
            await files.remove_paths([save_path])

        return self.get_all_data()

    def load_plugin(self, plugin_id: str) -> ExecutionHandle:
        """Load (or return the memoized) execution handle for a plugin."""
        return self._loader.load(plugin_id)

    def get_all_data(self) -> RegistrySnapshot:
        """Return a snapshot of the registry."""
        return self._store.snapshot(self._catalog.catalog, self._loader.imported_plugins)

    def get_providers(self) -> List[PluginProvider]:
        return list(self._store.providers)

    def get_configuration(self, plugin_id: str) -> Optional[Dict[str, Any]]:
        return self._store.get_configuration(plugin_id)

    def get_effective_configuration(self, plugin_id: str) -> Optional[Dict[str, Any]]:
        """Stored configuration over manifest defaults, or None if not installed."""
        manifest = self._store.get_manifest(plugin_id)
        stored = self._store.get_configuration(plugin_id)
        if manifest is None or stored is None:
            return None
        return effective_configuration(manifest, stored)

    def get_missing_required(self, plugin_id: str) -> List[str]:
        """Required configuration keys of an installed plugin that have no value."""
        manifest = self._store.get_manifest(plugin_id)
        config = self.get_effective_configuration(plugin_id)
        if manifest is None or config is None:
            return []
        return missing_required(manifest, config)

    def updates_available(self) -> List[str]:
        return self._catalog.updates_available(self._store.catalog)

    def clear_cache(self, plugin_id: str) -> bool:
        return self._store.clear_cache(plugin_id)

    async def _install_preset_archives(self) -> None:
        preset_location = self._config.preset_location
        if not preset_location:
            return
        archives = files.files_with_extension(Path(preset_location), self._config.archive_extension)
        if not archives:
            return

        logger.info(f"Installing {len(archives)} preset plugin archive(s) from {preset_location}")
        await self._install_batch(archives, self._host_settings)

        if self._config.remove_preset_plugins:
            await files.remove_paths(archives)

    async def _install_batch(self, archives: List[Path], host_settings: Mapping[str, Any]) -> None:
        for archive in archives:
            try:
                installed = await self._store.installer.install(archive)
            except PluginHubError as e:
                logger.error(f"Skipping archive {archive}: {e.message}")
                continue

            if not self._store.accepts(installed):
                logger.info(f"Skipping {installed.descriptor.key}: a newer version is installed")
                await installed.discard()
                continue

            try:
                await self._store.commit_archive(installed)
            except PluginHubError as e:
                logger.error(f"Skipping archive {archive}: {e.message}")
                continue

            if self._store.apply_install(installed, host_settings):
                self._loader.unload(installed.plugin_id)

        await self._store.flush()
