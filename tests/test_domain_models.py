"""
Tests for the plugin hub data models.
"""

import pytest
from pydantic import ValidationError

from plugin_hub.core.domain.models import (
    Catalog, ImportType, Manifest, PluginDescriptor, PluginProvider, PluginType,
    RegistrySnapshot, configuration_key, default_i18n
)


def descriptor(plugin_id: str, version: str = "1.0.0") -> PluginDescriptor:
    return PluginDescriptor(plugin_id=plugin_id, version=version)


class TestPluginDescriptor:
    """Test cases for PluginDescriptor."""

    def test_aliases_round_trip(self) -> None:
        data = {
            "pluginId": "tts-edge",
            "version": "2.1.0",
            "version_name": "2.1",
            "type": "tts",
            "hash": "abc",
            "file": "/plugins/tts-edge@2.1.0/index.py",
        }
        plugin = PluginDescriptor.from_dict(data)
        assert plugin.plugin_id == "tts-edge"
        assert plugin.type == PluginType.TTS
        assert plugin.content_hash == "abc"
        assert plugin.to_dict()["file"] == data["file"]
        assert plugin.to_dict()["pluginId"] == "tts-edge"

    def test_key(self) -> None:
        assert descriptor("a", "1.2").key == "a@1.2" == configuration_key("a", "1.2")

    def test_requires_plugin_id(self) -> None:
        with pytest.raises(ValidationError):
            PluginDescriptor.from_dict({"version": "1.0.0"})

    def test_supports(self) -> None:
        plugin = PluginDescriptor(plugin_id="a", version="1", platforms=["linux"], arch=["x86_64"])
        assert plugin.supports("linux", "x86_64")
        assert not plugin.supports("darwin", "x86_64")
        assert not plugin.supports("linux", "arm64")
        assert descriptor("b").supports("anything", "any")


class TestManifest:
    """Test cases for Manifest."""

    def test_defaults(self) -> None:
        manifest = Manifest.from_dict({"pluginId": "a", "version": "1.0.0"})
        assert manifest.entry == "index.py"
        assert manifest.import_type == ImportType.SANDBOX
        assert manifest.configuration == []
        assert manifest.install_dir_name == "a@1.0.0"

    def test_module_import_type(self) -> None:
        manifest = Manifest.from_dict({"pluginId": "a", "version": "1", "importType": "module"})
        assert manifest.import_type == ImportType.MODULE

    def test_unknown_import_type_runs_sandboxed(self) -> None:
        manifest = Manifest.from_dict({"pluginId": "a", "version": "1", "importType": "vm"})
        assert manifest.import_type == ImportType.SANDBOX

    def test_fields_parsed(self) -> None:
        manifest = Manifest.from_dict({
            "pluginId": "a",
            "version": "1",
            "configuration": [
                {"key": "speed", "type": "slider", "range": {"min": 0.5, "max": 2, "step": 0.1}},
                {"key": "voice", "type": "select", "options": [{"value": "f", "label": "Female"}]},
            ],
        })
        slider, select = manifest.configuration
        assert slider.kind == "slider"
        assert slider.value_range is not None and slider.value_range.max == 2
        assert select.options is not None and select.options[0].value == "f"

    def test_frozen(self) -> None:
        manifest = Manifest.from_dict({"pluginId": "a", "version": "1"})
        with pytest.raises(ValidationError):
            manifest.version = "2"  # type: ignore[misc]


class TestCatalog:
    """Test cases for Catalog."""

    def test_upsert_prepends_new(self) -> None:
        catalog = Catalog.from_plugins([descriptor("a")])
        catalog.upsert(descriptor("b"))
        assert [p.plugin_id for p in catalog.plugins] == ["b", "a"]
        assert catalog.versions == {"a": "1.0.0", "b": "1.0.0"}

    def test_upsert_replaces_in_place(self) -> None:
        catalog = Catalog.from_plugins([descriptor("a"), descriptor("b")])
        catalog.upsert(descriptor("b", "2.0.0"))
        assert [p.plugin_id for p in catalog.plugins] == ["a", "b"]
        assert catalog.find("b").version == "2.0.0"  # type: ignore[union-attr]
        assert catalog.versions["b"] == "2.0.0"

    def test_remove(self) -> None:
        catalog = Catalog.from_plugins([descriptor("a")])
        removed = catalog.remove("a")
        assert removed is not None and removed.plugin_id == "a"
        assert catalog.plugins == [] and catalog.versions == {}
        assert catalog.remove("a") is None

    def test_copy_deep_is_independent(self) -> None:
        catalog = Catalog.from_plugins([descriptor("a")])
        clone = catalog.copy_deep()
        clone.upsert(descriptor("b"))
        assert catalog.find("b") is None


class TestSnapshot:
    """Test cases for RegistrySnapshot."""

    def test_to_dict_keys(self) -> None:
        manifest = Manifest.from_dict({"pluginId": "a", "version": "1", "provider": {"value": "a"}})
        plugin = descriptor("a", "1")
        snapshot = RegistrySnapshot(
            local_plugins=Catalog.from_plugins([plugin]),
            online_plugins=Catalog.empty(),
            installed_plugins={"a": plugin},
            installed_i18ns={"a": default_i18n()},
            installed_manifests={"a": manifest},
            plugin_providers=[PluginProvider.from_manifest(manifest, plugin)],
            configurations={"a@1": {}},
            imported_plugins=["a"],
        )
        data = snapshot.to_dict()
        assert set(data) == {
            "localPlugins", "onlinePlugins", "installedPlugins", "installedPluginsI18ns",
            "installedPluginsManifests", "pluginProviders", "pluginsConfigurations",
            "importedPlugins",
        }
        assert data["pluginProviders"][0]["pluginId"] == "a"
        assert data["installedPluginsI18ns"]["a"]["zh_tw"] == {}
