"""
Plugin hub data models.

These models mirror the JSON documents kept in the installation root
(index.json, plugins.json, configuration.json, cache.json) and inside each
plugin bundle (manifest.json, i18n.json). Field aliases keep the on-disk
camelCase names while the Python attributes stay snake_case.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_LOCALES = ("en", "zh", "zh_tw", "ja", "ko", "es", "de", "it")


class PluginType(str, Enum):
    """Service category a plugin provides."""
    TRANSLATE = "translate"
    SUMMARIZE = "summarize"
    DOWNLOAD = "download"
    TTS = "tts"
    TRANSCRIPTION = "transcription"


class ImportType(str, Enum):
    """How a plugin's entry code is loaded."""
    MODULE = "module"
    SANDBOX = "sandbox"


def _path_segment(value: str) -> str:
    """Reject ids and versions that would not stay one directory name."""
    if any(token in value for token in ("/", "\\", "\x00", "..")):
        raise ValueError(f"must be a single path segment: {value!r}")
    return value


class _JsonModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_dict(self) -> Dict[str, Any]:
        """Serialize using the on-disk field names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Any:
        return cls.model_validate(data)


class PluginDescriptor(_JsonModel):
    """Identity and metadata of one installed or catalog-listed plugin version."""

    plugin_id: str = Field(..., alias="pluginId", min_length=1)
    version: str = Field(..., min_length=1)
    version_label: str = Field("", alias="version_name")
    title: str = ""
    description: str = ""
    type: Optional[PluginType] = None
    category: str = ""
    platforms: List[str] = Field(default_factory=list)
    arch: List[str] = Field(default_factory=list)
    icon: str = ""
    link: str = ""
    author: str = ""
    homepage: str = ""
    source: str = ""
    content_hash: Optional[str] = Field(None, alias="hash")
    entry_file: str = Field("", alias="file")

    @field_validator("plugin_id", "version")
    @classmethod
    def _single_segment(cls, value: str) -> str:
        return _path_segment(value)

    @property
    def key(self) -> str:
        """Configuration store key for this version."""
        return configuration_key(self.plugin_id, self.version)

    def supports(self, platform: str, arch: str) -> bool:
        """Check platform/arch compatibility; empty lists accept anything."""
        if self.platforms and platform not in self.platforms:
            return False
        if self.arch and arch not in self.arch:
            return False
        return True


class SliderRange(_JsonModel):
    min: float = 0
    max: float = 100
    step: float = 1


class FieldOption(_JsonModel):
    value: str
    label: str = ""


class ManifestField(_JsonModel):
    """Declaration of one configuration form field."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    label: str = ""
    key: str
    kind: str = Field("text", alias="type")
    placeholder: str = ""
    description: str = ""
    help_text: str = Field("", alias="helpText")
    search_placeholder: Optional[str] = Field(None, alias="searchPlaceholder")
    empty_placeholder: Optional[str] = Field(None, alias="emptyPlaceholder")
    value_range: Optional[SliderRange] = Field(None, alias="range")
    options: Optional[List[FieldOption]] = None
    use_i18n_options: Optional[bool] = Field(None, alias="useI18nOptions")
    inherit: Optional[str] = None


class Provider(_JsonModel):
    """Service identity exposed by a plugin."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    value: str = ""
    label: str = ""
    disabled: Optional[bool] = None


class Manifest(_JsonModel):
    """Version-specific metadata read from a plugin bundle's manifest.json."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    manifest_version: str = Field("1", alias="manifestVersion")
    plugin_id: str = Field(..., alias="pluginId", min_length=1)
    version: str = Field(..., min_length=1)
    version_label: str = Field("", alias="version_name")
    title: str = ""
    description: str = ""
    type: Optional[PluginType] = None
    category: str = ""
    platforms: List[str] = Field(default_factory=list)
    arch: List[str] = Field(default_factory=list)
    icon: str = ""
    link: str = ""
    author: str = ""
    homepage: str = ""
    source: str = ""
    entry: str = "index.py"
    import_type: ImportType = Field(ImportType.SANDBOX, alias="importType")
    provider: Provider = Field(default_factory=Provider)
    configuration: List[ManifestField] = Field(default_factory=list)
    defaults_configuration: Dict[str, Any] = Field(default_factory=dict, alias="defaultsConfiguration")
    configuration_required: List[str] = Field(default_factory=list, alias="configurationRequired")
    configuration_exposed: List[str] = Field(default_factory=list, alias="configurationExposed")
    tts_input: Optional[List[str]] = Field(None, alias="ttsInput")
    storage_key: Optional[str] = Field(None, alias="storageKey")
    configuration_storage: Optional[List[str]] = Field(None, alias="configurationStorage")

    @field_validator("plugin_id", "version")
    @classmethod
    def _single_segment(cls, value: str) -> str:
        return _path_segment(value)

    @field_validator("entry")
    @classmethod
    def _relative_entry(cls, value: str) -> str:
        if not value or value.startswith(("/", "\\")) or ".." in value.replace("\\", "/").split("/"):
            raise ValueError(f"entry must be a relative path inside the bundle: {value!r}")
        return value

    @field_validator("import_type", mode="before")
    @classmethod
    def _default_import_type(cls, value: Any) -> Any:
        # Anything other than an explicit "module" runs sandboxed
        return ImportType.MODULE if value == ImportType.MODULE.value else ImportType.SANDBOX

    @property
    def install_dir_name(self) -> str:
        return configuration_key(self.plugin_id, self.version)


class PluginProvider(_JsonModel):
    """Provider index entry: manifest provider annotated with its plugin."""

    value: str = ""
    label: str = ""
    disabled: Optional[bool] = None
    plugin_id: str = Field(..., alias="pluginId")
    type: Optional[PluginType] = None

    @classmethod
    def from_manifest(cls, manifest: Manifest, descriptor: PluginDescriptor) -> 'PluginProvider':
        return cls(
            value=manifest.provider.value,
            label=manifest.provider.label,
            disabled=manifest.provider.disabled,
            plugin_id=descriptor.plugin_id,
            type=descriptor.type,
        )


class Catalog(_JsonModel):
    """Ordered plugin list plus the plugin id -> version map."""

    plugins: List[PluginDescriptor] = Field(default_factory=list)
    versions: Dict[str, str] = Field(default_factory=dict)

    @classmethod
    def empty(cls) -> 'Catalog':
        return cls(plugins=[], versions={})

    @classmethod
    def from_plugins(cls, plugins: List[PluginDescriptor]) -> 'Catalog':
        """Build a catalog deriving versions from the plugin list."""
        return cls(
            plugins=list(plugins),
            versions={p.plugin_id: p.version for p in plugins},
        )

    def find(self, plugin_id: str) -> Optional[PluginDescriptor]:
        for plugin in self.plugins:
            if plugin.plugin_id == plugin_id:
                return plugin
        return None

    def upsert(self, descriptor: PluginDescriptor) -> None:
        """Replace the entry with the same plugin id in place, else prepend."""
        for index, plugin in enumerate(self.plugins):
            if plugin.plugin_id == descriptor.plugin_id:
                self.plugins[index] = descriptor
                break
        else:
            self.plugins.insert(0, descriptor)
        self.versions[descriptor.plugin_id] = descriptor.version

    def remove(self, plugin_id: str) -> Optional[PluginDescriptor]:
        removed = None
        for index, plugin in enumerate(self.plugins):
            if plugin.plugin_id == plugin_id:
                removed = self.plugins.pop(index)
                break
        self.versions.pop(plugin_id, None)
        return removed

    def copy_deep(self) -> 'Catalog':
        return self.model_copy(deep=True)


def configuration_key(plugin_id: str, version: str) -> str:
    """Key used for configuration entries and versioned directories."""
    return f"{plugin_id}@{version}"


def default_i18n() -> Dict[str, Dict[str, str]]:
    """Localization bundle used when a plugin ships none."""
    return {locale: {} for locale in DEFAULT_LOCALES}


@dataclass
class RegistrySnapshot:
    """Full view of the plugin registry returned by lifecycle operations."""

    local_plugins: Catalog
    online_plugins: Catalog
    installed_plugins: Dict[str, PluginDescriptor] = field(default_factory=dict)
    installed_i18ns: Dict[str, Dict[str, Dict[str, str]]] = field(default_factory=dict)
    installed_manifests: Dict[str, Manifest] = field(default_factory=dict)
    plugin_providers: List[PluginProvider] = field(default_factory=list)
    configurations: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    imported_plugins: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert snapshot to a JSON-ready dictionary."""
        return {
            "localPlugins": self.local_plugins.to_dict(),
            "onlinePlugins": self.online_plugins.to_dict(),
            "installedPlugins": {k: v.to_dict() for k, v in self.installed_plugins.items()},
            "installedPluginsI18ns": self.installed_i18ns,
            "installedPluginsManifests": {k: v.to_dict() for k, v in self.installed_manifests.items()},
            "pluginProviders": [p.to_dict() for p in self.plugin_providers],
            "pluginsConfigurations": self.configurations,
            "importedPlugins": list(self.imported_plugins),
        }
