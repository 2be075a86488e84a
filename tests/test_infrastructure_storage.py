"""
Tests for JSON repositories and filesystem helpers.
"""

import hashlib
import json
import zipfile
from pathlib import Path
from unittest.mock import patch

import pytest

from plugin_hub.core.domain.models import Catalog, PluginDescriptor
from plugin_hub.core.exceptions import ArchiveError
from plugin_hub.infrastructure.storage import (
    CacheRepository, ConfigurationRepository, RegistryRepository
)
from plugin_hub.infrastructure.storage import files
from plugin_hub.infrastructure.storage.json_store import write_json_atomic


class TestJsonRepositories:
    """Test cases for the JSON document repositories."""

    def test_missing_file_loads_default(self, tmp_path: Path) -> None:
        assert RegistryRepository(tmp_path).load() == Catalog.empty()
        assert ConfigurationRepository(tmp_path).load() == {}

    def test_catalog_written_with_aliases(self, tmp_path: Path) -> None:
        repo = RegistryRepository(tmp_path)
        repo.save(Catalog.from_plugins([PluginDescriptor(plugin_id="a", version="1.0.0")]))

        text = (tmp_path / "index.json").read_text(encoding="utf-8")
        assert '    "plugins"' in text
        data = json.loads(text)
        assert data["plugins"][0]["pluginId"] == "a"
        assert data["versions"] == {"a": "1.0.0"}
        assert repo.load().find("a") is not None

    async def test_save_async(self, tmp_path: Path) -> None:
        repo = CacheRepository(tmp_path)

        await repo.save_async({"a": {"k": "v"}})

        assert repo.load() == {"a": {"k": "v"}}
        assert not (tmp_path / "cache.json.tmp").exists()

    def test_invalid_json(self, tmp_path: Path) -> None:
        (tmp_path / "configuration.json").write_text("{oops", encoding="utf-8")

        with pytest.raises(ValueError, match="Invalid JSON"):
            ConfigurationRepository(tmp_path).load()

    def test_non_object_entries_normalized(self, tmp_path: Path) -> None:
        (tmp_path / "cache.json").write_text('{"a": 1, "b": {"x": 2}}', encoding="utf-8")

        assert CacheRepository(tmp_path).load() == {"a": {}, "b": {"x": 2}}

    def test_atomic_write_keeps_old_file_on_failure(self, tmp_path: Path) -> None:
        path = tmp_path / "index.json"
        write_json_atomic(path, {"old": True})

        with patch("plugin_hub.infrastructure.storage.json_store.os.replace", side_effect=OSError("boom")):
            with pytest.raises(OSError):
                write_json_atomic(path, {"new": True})

        assert json.loads(path.read_text(encoding="utf-8")) == {"old": True}


class TestFileHelpers:
    """Test cases for the filesystem helpers."""

    async def test_extract_rejects_path_traversal(self, tmp_path: Path) -> None:
        archive = tmp_path / "evil.zip"
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr("../escape.txt", "x")

        with pytest.raises(ArchiveError, match="escapes"):
            await files.extract_archive(archive, tmp_path / "out")
        assert not (tmp_path / "escape.txt").exists()

    def test_find_file_prefers_root(self, tmp_path: Path) -> None:
        (tmp_path / "a" / "b").mkdir(parents=True)
        (tmp_path / "a" / "b" / "manifest.json").write_text("{}", encoding="utf-8")

        assert files.find_file_in_folder(tmp_path, "manifest.json") == tmp_path / "a" / "b"

        (tmp_path / "manifest.json").write_text("{}", encoding="utf-8")
        assert files.find_file_in_folder(tmp_path, "manifest.json") == tmp_path
        assert files.find_file_in_folder(tmp_path, "missing.json") is None

    async def test_move_folder_replaces(self, tmp_path: Path) -> None:
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "f").write_text("1", encoding="utf-8")
        (tmp_path / "dst").mkdir()
        (tmp_path / "dst" / "stale").write_text("x", encoding="utf-8")

        await files.move_folder(tmp_path / "src", tmp_path / "dst")

        assert sorted(p.name for p in (tmp_path / "dst").iterdir()) == ["f"]
        assert not (tmp_path / "src").exists()

    async def test_remove_paths_reports_failures(self, tmp_path: Path) -> None:
        keep, gone = tmp_path / "keep", tmp_path / "gone"
        keep.write_text("x", encoding="utf-8")
        gone.mkdir()

        async def fake_remove(path: Path) -> None:
            if path == keep:
                raise PermissionError("denied")
            files._remove(path)

        with patch.object(files, "remove_path", side_effect=fake_remove):
            failed = await files.remove_paths([keep, gone])

        assert failed == [keep]
        assert not gone.exists()

    def test_files_with_extension(self, tmp_path: Path) -> None:
        for name in ("b.memox", "a.memox", "c.zip"):
            (tmp_path / name).write_text("", encoding="utf-8")
        (tmp_path / "d.memox").mkdir()

        assert [p.name for p in files.files_with_extension(tmp_path, ".memox")] == ["a.memox", "b.memox"]
        assert files.files_with_extension(tmp_path / "missing", ".memox") == []

    async def test_calculate_file_hash(self, tmp_path: Path) -> None:
        path = tmp_path / "data.bin"
        path.write_bytes(b"plugin" * 50000)

        assert await files.calculate_file_hash(path) == hashlib.sha256(b"plugin" * 50000).hexdigest()
