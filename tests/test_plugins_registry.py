"""
Tests for the registry store.

测试插件注册表的安装、升级、卸载与一致性修复。
"""

import json
from pathlib import Path
from typing import Any, Callable, Dict
from unittest.mock import AsyncMock, patch

import pytest

from plugin_hub.plugins.registry import RegistryStore


def read(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


INHERITING_FIELDS = [
    {"key": "apiUrl", "type": "text", "inherit": "openAI.Host"},
    {"key": "apiKey", "type": "password", "inherit": "openAI.Key"},
]


class TestRegistryLoad:
    """Test cases for loading and reconciliation."""

    async def test_creates_index(self, location: Path) -> None:
        store = RegistryStore(location)
        await store.load()

        assert read(location / "index.json") == {"plugins": [], "versions": {}}
        assert store.catalog.plugins == []

    async def test_prunes_entries_without_bundle(
        self, location: Path, make_archive: Callable[..., Path]
    ) -> None:
        store = RegistryStore(location)
        await store.load()
        await store.install(make_archive("keep", "1.0.0"))
        await store.install(make_archive("gone", "1.0.0"))

        (location / "gone@1.0.0" / "manifest.json").unlink()

        reloaded = RegistryStore(location)
        await reloaded.load()

        assert list(reloaded.installed_plugins) == ["keep"]
        assert read(location / "index.json")["versions"] == {"keep": "1.0.0"}
        assert "gone@1.0.0" not in read(location / "configuration.json")
        assert [p.plugin_id for p in reloaded.providers] == ["keep"]

    async def test_reload_restores_manifests(
        self, location: Path, make_archive: Callable[..., Path]
    ) -> None:
        store = RegistryStore(location)
        await store.load()
        await store.install(make_archive("translator", "1.0.0", i18n={"en": {"a": "b"}}))

        reloaded = RegistryStore(location)
        await reloaded.load()

        assert reloaded.get_manifest("translator") is not None
        assert reloaded.i18ns["translator"] == {"en": {"a": "b"}}


class TestRegistryInstall:
    """Test cases for install and upgrade."""

    @pytest.fixture
    async def store(self, location: Path) -> RegistryStore:
        store = RegistryStore(location)
        await store.load()
        return store

    async def test_fresh_install_seeds_inherited_configuration(
        self, store: RegistryStore, location: Path, make_archive: Callable[..., Path]
    ) -> None:
        archive = make_archive("openai", "1.0.0", configuration=INHERITING_FIELDS)
        settings = {"openAI": {"Host": "https://proxy.local"}}

        assert await store.install(archive, settings)

        assert read(location / "configuration.json") == {
            "openai@1.0.0": {"apiUrl": "https://proxy.local"}
        }
        index = read(location / "index.json")
        assert index["versions"] == {"openai": "1.0.0"}
        assert index["plugins"][0]["file"] == str(location / "openai@1.0.0" / "index.py")

    async def test_upgrade_carries_configuration_forward(
        self, store: RegistryStore, location: Path, make_archive: Callable[..., Path]
    ) -> None:
        settings = {"openAI": {"Host": "https://inherited", "Key": "sk-host"}}
        await store.install(make_archive("openai", "1.0.0", configuration=INHERITING_FIELDS), settings)
        await store.save_configuration("openai", {"apiUrl": "https://mine", "temperature": 1})

        await store.install(make_archive("openai", "1.1.0", configuration=INHERITING_FIELDS), settings)

        configurations = read(location / "configuration.json")
        assert configurations["openai@1.1.0"] == {
            "apiUrl": "https://mine", "apiKey": "sk-host", "temperature": 1
        }
        assert "openai@1.0.0" in configurations
        assert store.installed_plugins["openai"].version == "1.1.0"
        assert len(store.catalog.plugins) == 1
        assert not (location / "openai@1.0.0").exists()
        assert (location / "openai@1.1.0").is_dir()

    async def test_older_version_is_noop(
        self, store: RegistryStore, location: Path, make_archive: Callable[..., Path]
    ) -> None:
        await store.install(make_archive("translator", "2.0.0"))
        before = (location / "index.json").read_text(encoding="utf-8")

        assert not await store.install(make_archive("translator", "1.5.0"))

        assert (location / "index.json").read_text(encoding="utf-8") == before
        assert not (location / "translator@1.5.0").exists()
        assert [p.name for p in location.iterdir() if p.is_dir()] == ["translator@2.0.0"]

    async def test_equal_version_keeps_configuration(
        self, store: RegistryStore, location: Path, make_archive: Callable[..., Path]
    ) -> None:
        await store.install(make_archive("translator", "1.0.0"))
        await store.save_configuration("translator", {"key": "value"})

        assert await store.install(make_archive("translator", "1.0.0", title="Renamed"))

        assert store.get_configuration("translator") == {"key": "value"}
        assert store.installed_plugins["translator"].title == "Renamed"

    async def test_equal_version_spelled_differently_moves_configuration(
        self, store: RegistryStore, location: Path, make_archive: Callable[..., Path]
    ) -> None:
        await store.install(make_archive("translator", "1.0"))
        await store.save_configuration("translator", {"key": "value"})

        assert await store.install(make_archive("translator", "1.0.0"))

        assert store.installed_plugins["translator"].version == "1.0.0"
        assert store.get_configuration("translator") == {"key": "value"}
        assert read(location / "configuration.json")["translator@1.0.0"] == {"key": "value"}
        assert not (location / "translator@1.0").exists()
        assert (location / "translator@1.0.0").is_dir()

    async def test_upsert_order(
        self, store: RegistryStore, make_archive: Callable[..., Path]
    ) -> None:
        await store.install(make_archive("a", "1.0.0"))
        await store.install(make_archive("b", "1.0.0"))
        await store.install(make_archive("a", "1.1.0"))

        assert [p.plugin_id for p in store.catalog.plugins] == ["b", "a"]

    async def test_failed_write_leaves_state(
        self, store: RegistryStore, make_archive: Callable[..., Path]
    ) -> None:
        with patch.object(store._registry_repo, "save_async", AsyncMock(side_effect=OSError("disk full"))):
            with pytest.raises(OSError):
                await store.install(make_archive("translator", "1.0.0"))

        assert not store.is_installed("translator")
        assert store.configurations == {}

    async def test_batch_staging_and_flush(
        self, store: RegistryStore, location: Path, make_archive: Callable[..., Path]
    ) -> None:
        for plugin_id in ("a", "b"):
            installed = await store.installer.install(make_archive(plugin_id, "1.0.0"))
            assert store.accepts(installed)
            await store.commit_archive(installed)
            assert store.apply_install(installed, {})

        assert read(location / "index.json")["plugins"] == []

        await store.flush()

        assert read(location / "index.json")["versions"] == {"a": "1.0.0", "b": "1.0.0"}
        assert set(read(location / "configuration.json")) == {"a@1.0.0", "b@1.0.0"}


class TestRegistryUninstall:
    """Test cases for uninstall and configuration."""

    @pytest.fixture
    async def store(self, location: Path, make_archive: Callable[..., Path]) -> RegistryStore:
        store = RegistryStore(location)
        await store.load()
        await store.install(make_archive("translator", "1.0.0"))
        await store.install(make_archive("translator", "1.1.0"))
        return store

    async def test_uninstall_removes_everything(self, store: RegistryStore, location: Path) -> None:
        assert await store.uninstall("translator")

        assert read(location / "index.json") == {"plugins": [], "versions": {}}
        assert read(location / "configuration.json") == {}
        assert not (location / "translator@1.1.0").exists()
        assert store.providers == []
        assert store.get_manifest("translator") is None

    async def test_registry_persisted_before_directory_removed(
        self, store: RegistryStore, location: Path
    ) -> None:
        observed: Dict[str, Any] = {}

        async def remove_paths(paths: Any) -> list:
            observed["index"] = read(location / "index.json")
            observed["dir_exists"] = (location / "translator@1.1.0").exists()
            return []

        with patch("plugin_hub.plugins.registry.files.remove_paths", side_effect=remove_paths):
            await store.uninstall("translator")

        assert observed == {"index": {"plugins": [], "versions": {}}, "dir_exists": True}

    async def test_uninstall_unknown_writes_nothing(self, store: RegistryStore, location: Path) -> None:
        index_mtime = (location / "index.json").stat().st_mtime_ns
        config_mtime = (location / "configuration.json").stat().st_mtime_ns

        assert not await store.uninstall("unknown")

        assert (location / "index.json").stat().st_mtime_ns == index_mtime
        assert (location / "configuration.json").stat().st_mtime_ns == config_mtime

    async def test_save_configuration_replaces(self, store: RegistryStore, location: Path) -> None:
        await store.save_configuration("translator", {"a": 1})
        await store.save_configuration("translator", {"b": 2})

        assert read(location / "configuration.json")["translator@1.1.0"] == {"b": 2}

    async def test_save_configuration_not_installed(self, store: RegistryStore) -> None:
        assert not await store.save_configuration("unknown", {"a": 1})
        assert set(store.configurations) == {"translator@1.0.0", "translator@1.1.0"}


class TestRuntimeCache:
    """Test cases for the runtime cache."""

    async def test_cache_persists_across_reload(self, location: Path) -> None:
        store = RegistryStore(location)
        await store.load()

        store.cache_set("translator", "token", "abc")

        assert read(location / "cache.json") == {"translator": {"token": "abc"}}
        reloaded = RegistryStore(location)
        await reloaded.load()
        assert reloaded.cache_get("translator", "token") == "abc"
        assert reloaded.cache_get("translator", "other", 5) == 5

    async def test_clear_cache(self, location: Path) -> None:
        store = RegistryStore(location)
        await store.load()
        store.cache_set("translator", "token", "abc")

        assert store.clear_cache("translator")
        assert not store.clear_cache("translator")
        assert read(location / "cache.json") == {}
