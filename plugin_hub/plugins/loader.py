"""
Plugin code loading.

A plugin's entry code is evaluated at most once per plugin id; later calls
return the memoized execution handle until the plugin is unloaded. The
manifest's ``importType`` selects the strategy: ``module`` imports the entry
file as a normal Python module, anything else runs it in the sandbox.
"""

import importlib.util
import logging
import re
import sys
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from ..core.domain.models import ImportType, Manifest, PluginDescriptor
from ..core.exceptions import PluginLoadError, PluginNotInstalledError
from ..core.interfaces.plugins import ExecutionHandle, ILoadStrategy, IPluginCache
from .registry import RegistryStore
from .sandbox import (
    CAPABILITY_NAMES, DEFAULT_ALLOWED_MODULES, PluginCache, RestrictedImporter,
    build_capabilities, build_sandbox_module, compile_sandboxed
)

logger = logging.getLogger(__name__)

MODULE_PREFIX = "plugin_hub_loaded"


def _module_name(descriptor: PluginDescriptor) -> str:
    return f"{MODULE_PREFIX}.{re.sub(r'[^0-9A-Za-z_]', '_', descriptor.key)}"


def _read_source(entry: Path) -> str:
    try:
        return entry.read_text(encoding='utf-8')
    except OSError as e:
        raise PluginLoadError(f"Cannot read plugin entry {entry}: {e}", {"entry": str(entry)}) from e


class TrustedModuleLoad(ILoadStrategy):
    """Imports the entry file with full privileges."""

    @property
    def mode(self) -> ImportType:
        return ImportType.MODULE

    def load(
        self,
        descriptor: PluginDescriptor,
        manifest: Manifest,
        cache: IPluginCache
    ) -> ExecutionHandle:
        entry = Path(descriptor.entry_file)
        if not entry.is_file():
            raise PluginLoadError(f"Plugin entry not found: {entry}", {"entry": str(entry)})

        module_name = _module_name(descriptor)
        spec = importlib.util.spec_from_file_location(module_name, entry)
        if spec is None or spec.loader is None:
            raise PluginLoadError(f"Could not load spec for {entry}", {"entry": str(entry)})

        module = importlib.util.module_from_spec(spec)
        module.plugin_cache = cache  # type: ignore[attr-defined]
        sys.modules[module_name] = module
        try:
            spec.loader.exec_module(module)
        except Exception as e:
            sys.modules.pop(module_name, None)
            raise PluginLoadError(
                f"Plugin {descriptor.key} failed to load: {e}", {"entry": str(entry)}
            ) from e

        return ExecutionHandle(
            plugin_id=descriptor.plugin_id,
            version=descriptor.version,
            mode=self.mode,
            namespace=module,
            hidden=frozenset({'plugin_cache'}),
        )


class IsolatedSandboxLoad(ILoadStrategy):
    """Evaluates the entry file with restricted builtins and imports."""

    def __init__(self, allowed_modules: Optional[Iterable[str]] = None) -> None:
        self._allowed_modules = set(DEFAULT_ALLOWED_MODULES)
        self._allowed_modules.update(allowed_modules or ())

    @property
    def mode(self) -> ImportType:
        return ImportType.SANDBOX

    @property
    def allowed_modules(self) -> List[str]:
        return sorted(self._allowed_modules)

    def load(
        self,
        descriptor: PluginDescriptor,
        manifest: Manifest,
        cache: IPluginCache
    ) -> ExecutionHandle:
        entry = Path(descriptor.entry_file)
        source = _read_source(entry)
        try:
            code = compile_sandboxed(source, str(entry))
        except SyntaxError as e:
            raise PluginLoadError(
                f"Syntax error in plugin {descriptor.key}: {e}", {"entry": str(entry)}
            ) from e
        except (AttributeError, NameError) as e:
            logger.warning(f"Sandbox: rejected plugin {descriptor.key}: {e}")
            raise PluginLoadError(
                f"Plugin {descriptor.key} was rejected: {e}", {"entry": str(entry)}
            ) from e

        module = build_sandbox_module(
            _module_name(descriptor),
            RestrictedImporter(self._allowed_modules),
            build_capabilities(cache),
        )
        module.__file__ = str(entry)
        try:
            exec(code, module.__dict__)
        except Exception as e:
            raise PluginLoadError(
                f"Plugin {descriptor.key} failed to load: {e}", {"entry": str(entry)}
            ) from e

        return ExecutionHandle(
            plugin_id=descriptor.plugin_id,
            version=descriptor.version,
            mode=self.mode,
            namespace=module,
            hidden=CAPABILITY_NAMES,
        )


class PluginLoader:
    """Memoizing loader for installed plugins."""

    def __init__(
        self,
        store: RegistryStore,
        allowed_modules: Optional[Iterable[str]] = None
    ) -> None:
        self._store = store
        self._strategies: Dict[ImportType, ILoadStrategy] = {
            ImportType.MODULE: TrustedModuleLoad(),
            ImportType.SANDBOX: IsolatedSandboxLoad(allowed_modules),
        }
        self._handles: Dict[str, ExecutionHandle] = {}

    @property
    def imported_plugins(self) -> List[str]:
        return list(self._handles)

    def is_loaded(self, plugin_id: str) -> bool:
        return plugin_id in self._handles

    def load(self, plugin_id: str) -> ExecutionHandle:
        """
        Load a plugin, or return its memoized handle.

        Raises:
            PluginNotInstalledError: If the plugin is not in the local registry
            PluginLoadError: If the entry code fails; nothing is memoized
        """
        handle = self._handles.get(plugin_id)
        if handle is not None:
            return handle

        descriptor = self._store.get_descriptor(plugin_id)
        manifest = self._store.get_manifest(plugin_id)
        if descriptor is None or manifest is None:
            raise PluginNotInstalledError(plugin_id)

        strategy = self._strategies[manifest.import_type]
        logger.info(f"Loading plugin {descriptor.key} ({strategy.mode.value} mode)")
        handle = strategy.load(descriptor, manifest, PluginCache(self._store, plugin_id))
        self._handles[plugin_id] = handle
        return handle

    def unload(self, plugin_id: str) -> bool:
        """Forget a plugin's handle so the next load evaluates it again."""
        handle = self._handles.pop(plugin_id, None)
        if handle is None:
            return False
        if handle.mode == ImportType.MODULE:
            sys.modules.pop(handle.namespace.__name__, None)
        logger.debug(f"Unloaded plugin {plugin_id}")
        return True

    def clear(self) -> None:
        for plugin_id in list(self._handles):
            self.unload(plugin_id)
