"""
Registry store for installed plugins.

The store owns the local catalog (index.json), the per-version configuration
(configuration.json) and the runtime cache (cache.json), plus the manifests,
localization bundles and provider index derived from the installed bundles.

Single mutations work on a copy of the state, persist the copy and only then
swap it in, so a failed write leaves the in-memory registry as it was.
"""

import copy
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from ..core.domain.models import (
    Catalog, Manifest, PluginDescriptor, PluginProvider, RegistrySnapshot
)
from ..core.domain.version import is_newer, should_install
from ..core.exceptions import ArchiveError, ManifestError
from ..infrastructure.storage import (
    CacheRepository, ConfigurationRepository, RegistryRepository
)
from ..infrastructure.storage import files
from .inheritance import merge_forward, resolve_inherited, seed_configuration
from .installer import (
    MANIFEST_FILENAME, ArchiveInstaller, InstalledArchive, read_i18n, read_manifest
)

logger = logging.getLogger(__name__)

Configurations = Dict[str, Dict[str, Any]]


class RegistryStore:
    """
    Authoritative installed-plugin state for one installation root.
    """

    def __init__(self, location: Path) -> None:
        self._location = Path(location)
        self._registry_repo = RegistryRepository(self._location)
        self._config_repo = ConfigurationRepository(self._location)
        self._cache_repo = CacheRepository(self._location)
        self._installer = ArchiveInstaller(self._location)

        self._catalog = Catalog.empty()
        self._configurations: Configurations = {}
        self._manifests: Dict[str, Manifest] = {}
        self._i18ns: Dict[str, Dict[str, Dict[str, str]]] = {}
        self._providers: List[PluginProvider] = []
        self._cache: Dict[str, Dict[str, Any]] = {}
        self._pending_removals: List[Path] = []

    @property
    def location(self) -> Path:
        return self._location

    @property
    def installer(self) -> ArchiveInstaller:
        return self._installer

    @property
    def catalog(self) -> Catalog:
        return self._catalog

    @property
    def configurations(self) -> Configurations:
        return self._configurations

    @property
    def manifests(self) -> Dict[str, Manifest]:
        return self._manifests

    @property
    def i18ns(self) -> Dict[str, Dict[str, Dict[str, str]]]:
        return self._i18ns

    @property
    def providers(self) -> List[PluginProvider]:
        return self._providers

    @property
    def installed_plugins(self) -> Dict[str, PluginDescriptor]:
        return {p.plugin_id: p for p in self._catalog.plugins}

    def is_installed(self, plugin_id: str) -> bool:
        return self._catalog.find(plugin_id) is not None

    def get_descriptor(self, plugin_id: str) -> Optional[PluginDescriptor]:
        return self._catalog.find(plugin_id)

    def get_manifest(self, plugin_id: str) -> Optional[Manifest]:
        return self._manifests.get(plugin_id)

    def get_configuration(self, plugin_id: str) -> Optional[Dict[str, Any]]:
        """Stored configuration of the installed version, or None if not installed."""
        descriptor = self._catalog.find(plugin_id)
        if descriptor is None:
            return None
        return dict(self._configurations.get(descriptor.key, {}))

    def install_dir(self, descriptor: PluginDescriptor) -> Path:
        return self._location / descriptor.key

    async def load(self) -> None:
        """
        Load the registry from disk and reconcile it with the bundles present.

        Entries whose versioned directory or manifest is missing (or whose
        manifest cannot be parsed) are dropped together with their
        configuration; the files are rewritten when anything was pruned.
        """
        self._location.mkdir(parents=True, exist_ok=True)
        if not self._registry_repo.exists():
            self._registry_repo.save(Catalog.empty())
            logger.info(f"Created empty registry at {self._registry_repo.path}")

        catalog = self._registry_repo.load()
        configurations = self._config_repo.load()
        self._cache = self._cache_repo.load()

        manifests: Dict[str, Manifest] = {}
        i18ns: Dict[str, Dict[str, Dict[str, str]]] = {}
        pruned: List[str] = []

        for descriptor in list(catalog.plugins):
            plugin_dir = self.install_dir(descriptor)
            manifest_path = plugin_dir / MANIFEST_FILENAME
            manifest: Optional[Manifest] = None
            if plugin_dir.is_dir() and manifest_path.is_file():
                try:
                    manifest = read_manifest(manifest_path)
                except ManifestError as e:
                    logger.warning(f"Unreadable manifest for {descriptor.key}: {e}")

            if manifest is None:
                logger.warning(f"Pruning {descriptor.key}: bundle missing from {plugin_dir}")
                catalog.remove(descriptor.plugin_id)
                _drop_configurations(configurations, descriptor.plugin_id)
                pruned.append(descriptor.plugin_id)
                continue

            manifests[descriptor.plugin_id] = manifest
            i18ns[descriptor.plugin_id] = read_i18n(plugin_dir)

        if pruned:
            self._registry_repo.save(catalog)
            self._config_repo.save(configurations)

        self._catalog = catalog
        self._configurations = configurations
        self._manifests = manifests
        self._i18ns = i18ns
        self._rebuild_providers()
        logger.info(f"Registry loaded: {len(catalog.plugins)} installed, {len(pruned)} pruned")

    def accepts(self, installed: InstalledArchive) -> bool:
        """Whether an unpacked archive passes the version gate."""
        current = self._catalog.find(installed.plugin_id)
        return should_install(installed.version, current.version if current else None)

    def apply_install(
        self,
        installed: InstalledArchive,
        host_settings: Optional[Mapping[str, Any]] = None
    ) -> bool:
        """
        Stage an unpacked archive into the in-memory registry without persisting.

        Used by batch installs, which call flush() once at the end.

        Returns:
            True if the registry now points at the archive's version
        """
        applied = self._apply(
            installed,
            host_settings or {},
            self._catalog,
            self._configurations,
            self._manifests,
            self._i18ns,
            self._pending_removals,
        )
        if applied:
            self._rebuild_providers()
        return applied

    async def install(
        self,
        archive_path: Path,
        host_settings: Optional[Mapping[str, Any]] = None
    ) -> bool:
        """
        Install one archive and persist the registry.

        A candidate older than the installed version is a no-op.

        Returns:
            True if the archive was installed

        Raises:
            ArchiveError: If the archive cannot be extracted or committed
            ManifestError: If the archive has no valid manifest
        """
        installed = await self._installer.install(archive_path)

        catalog = self._catalog.copy_deep()
        configurations = copy.deepcopy(self._configurations)
        manifests = dict(self._manifests)
        i18ns = dict(self._i18ns)
        removals: List[Path] = []

        if not self._apply(installed, host_settings or {}, catalog, configurations,
                           manifests, i18ns, removals):
            await installed.discard()
            return False

        await self._commit(installed)
        await self._persist(catalog, configurations)

        self._catalog = catalog
        self._configurations = configurations
        self._manifests = manifests
        self._i18ns = i18ns
        self._rebuild_providers()

        await self._remove_superseded(removals)
        return True

    async def commit_archive(self, installed: InstalledArchive) -> None:
        """Move a staged archive's bundle into place."""
        await self._commit(installed)

    async def flush(self) -> None:
        """Persist the registry and configuration, then drop superseded bundles."""
        await self._persist(self._catalog, self._configurations)
        removals, self._pending_removals = self._pending_removals, []
        await self._remove_superseded(removals)

    async def uninstall(self, plugin_id: str) -> bool:
        """
        Remove an installed plugin.

        Every configuration entry of the plugin id is deleted and the registry
        persisted before the versioned directory is removed.

        Returns:
            False if the plugin was not installed (nothing is written)
        """
        descriptor = self._catalog.find(plugin_id)
        if descriptor is None:
            logger.warning(f"Cannot uninstall {plugin_id}: not installed")
            return False

        catalog = self._catalog.copy_deep()
        catalog.remove(plugin_id)
        configurations = copy.deepcopy(self._configurations)
        _drop_configurations(configurations, plugin_id)

        await self._persist(catalog, configurations)

        self._catalog = catalog
        self._configurations = configurations
        self._manifests.pop(plugin_id, None)
        self._i18ns.pop(plugin_id, None)
        self._rebuild_providers()

        await files.remove_paths([self.install_dir(descriptor)])
        logger.info(f"Uninstalled {descriptor.key}")
        return True

    async def save_configuration(self, plugin_id: str, config: Mapping[str, Any]) -> bool:
        """
        Replace the stored configuration of the installed version.

        Returns:
            False if the plugin is not installed
        """
        descriptor = self._catalog.find(plugin_id)
        if descriptor is None:
            logger.warning(f"Cannot save configuration for {plugin_id}: not installed")
            return False

        configurations = copy.deepcopy(self._configurations)
        configurations[descriptor.key] = copy.deepcopy(dict(config))
        await self._config_repo.save_async(configurations)
        self._configurations = configurations
        logger.info(f"Saved configuration for {descriptor.key}")
        return True

    def cache_slice(self, plugin_id: str) -> Dict[str, Any]:
        return dict(self._cache.get(plugin_id, {}))

    def cache_get(self, plugin_id: str, key: str, default: Any = None) -> Any:
        return self._cache.get(plugin_id, {}).get(key, default)

    def cache_set(self, plugin_id: str, key: str, value: Any) -> None:
        """Store a cache value and write cache.json before returning."""
        self._cache.setdefault(plugin_id, {})[key] = value
        self._cache_repo.save(self._cache)

    def clear_cache(self, plugin_id: str) -> bool:
        if plugin_id not in self._cache:
            return False
        del self._cache[plugin_id]
        self._cache_repo.save(self._cache)
        return True

    def snapshot(
        self,
        online_catalog: Optional[Catalog] = None,
        imported_plugins: Optional[List[str]] = None
    ) -> RegistrySnapshot:
        """Copy of the registry state."""
        return RegistrySnapshot(
            local_plugins=self._catalog.copy_deep(),
            online_plugins=online_catalog.copy_deep() if online_catalog else Catalog.empty(),
            installed_plugins=self.installed_plugins,
            installed_i18ns=copy.deepcopy(self._i18ns),
            installed_manifests=dict(self._manifests),
            plugin_providers=list(self._providers),
            configurations=copy.deepcopy(self._configurations),
            imported_plugins=list(imported_plugins or []),
        )

    def _apply(
        self,
        installed: InstalledArchive,
        host_settings: Mapping[str, Any],
        catalog: Catalog,
        configurations: Configurations,
        manifests: Dict[str, Manifest],
        i18ns: Dict[str, Dict[str, Dict[str, str]]],
        removals: List[Path],
    ) -> bool:
        manifest = installed.manifest
        descriptor = installed.descriptor
        current = catalog.find(descriptor.plugin_id)

        if not should_install(descriptor.version, current.version if current else None):
            logger.info(
                f"Skipping {descriptor.key}: version {current.version} is already installed"
            )
            return False

        if current is None:
            configurations[descriptor.key] = seed_configuration(manifest, host_settings)
            logger.info(f"Installing {descriptor.key}")
        elif is_newer(descriptor.version, current.version) or current.key != descriptor.key:
            # Also covers equal versions spelled differently ("1.0" vs "1.0.0")
            previous = configurations.get(current.key, {})
            configurations[descriptor.key] = merge_forward(
                resolve_inherited(manifest.configuration, host_settings), previous
            )
            removals.append(self.install_dir(current))
            logger.info(f"Replacing {current.key} with {descriptor.version}")
        else:
            configurations.setdefault(descriptor.key, seed_configuration(manifest, host_settings))
            logger.info(f"Reinstalling {descriptor.key}")

        catalog.upsert(descriptor)
        manifests[descriptor.plugin_id] = manifest
        i18ns[descriptor.plugin_id] = installed.i18n
        return True

    async def _commit(self, installed: InstalledArchive) -> None:
        try:
            await installed.commit()
        except OSError as e:
            await installed.discard()
            raise ArchiveError(
                f"Failed to install bundle into {installed.install_dir}: {e}",
                {"plugin_id": installed.plugin_id}
            ) from e

    async def _persist(self, catalog: Catalog, configurations: Configurations) -> None:
        await self._registry_repo.save_async(catalog)
        await self._config_repo.save_async(configurations)

    async def _remove_superseded(self, paths: List[Path]) -> None:
        if paths:
            await files.remove_paths(paths)

    def _rebuild_providers(self) -> None:
        providers = []
        for descriptor in self._catalog.plugins:
            manifest = self._manifests.get(descriptor.plugin_id)
            if manifest is not None:
                providers.append(PluginProvider.from_manifest(manifest, descriptor))
        self._providers = providers


def _drop_configurations(configurations: Configurations, plugin_id: str) -> None:
    prefix = f"{plugin_id}@"
    for key in [k for k in configurations if k.startswith(prefix)]:
        del configurations[key]
