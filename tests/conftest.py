"""
Shared fixtures for the plugin hub tests.

Archives are real zip files written to the pytest temporary directory.
"""

import json
import zipfile
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import pytest


def build_manifest(plugin_id: str = "translator", version: str = "1.0.0", **extra: Any) -> Dict[str, Any]:
    """Minimal valid manifest dictionary."""
    manifest: Dict[str, Any] = {
        "pluginId": plugin_id,
        "version": version,
        "title": plugin_id.title(),
        "type": "translate",
        "provider": {"value": plugin_id, "label": plugin_id.title()},
    }
    manifest.update(extra)
    return manifest


def write_archive(
    path: Path,
    manifest: Optional[Dict[str, Any]],
    entry_source: str = "VALUE = 1\n",
    subdir: str = "",
    i18n: Optional[Dict[str, Dict[str, str]]] = None,
    raw_manifest: Optional[str] = None,
) -> Path:
    """Write a plugin archive; files go under subdir when given."""
    prefix = f"{subdir.strip('/')}/" if subdir else ""
    entry = (manifest or {}).get("entry", "index.py")
    with zipfile.ZipFile(path, "w") as zf:
        if raw_manifest is not None:
            zf.writestr(f"{prefix}manifest.json", raw_manifest)
        elif manifest is not None:
            zf.writestr(f"{prefix}manifest.json", json.dumps(manifest))
        zf.writestr(f"{prefix}{entry}", entry_source)
        zf.writestr(f"{prefix}icon.svg", "<svg/>")
        if i18n is not None:
            zf.writestr(f"{prefix}i18n.json", json.dumps(i18n))
    return path


@pytest.fixture
def location(tmp_path: Path) -> Path:
    """Installation root."""
    root = tmp_path / "plugins"
    root.mkdir()
    return root


@pytest.fixture
def archive_dir(tmp_path: Path) -> Path:
    path = tmp_path / "archives"
    path.mkdir()
    return path


@pytest.fixture
def make_archive(archive_dir: Path) -> Callable[..., Path]:
    """Factory building ``{pluginId}-{version}.memox`` archives."""

    def _make(
        plugin_id: str = "translator",
        version: str = "1.0.0",
        entry_source: str = "VALUE = 1\n",
        subdir: str = "",
        i18n: Optional[Dict[str, Dict[str, str]]] = None,
        name: Optional[str] = None,
        **manifest_extra: Any
    ) -> Path:
        manifest = build_manifest(plugin_id, version, **manifest_extra)
        filename = name or f"{plugin_id}-{version}.memox"
        return write_archive(archive_dir / filename, manifest, entry_source, subdir, i18n)

    return _make
