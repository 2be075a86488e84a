"""
Archive installer.

Unpacks a plugin archive into a staging directory under the installation
root, finds and validates its manifest, and builds the descriptor whose
paths point at the final ``{pluginId}@{version}`` directory. The staged bundle
only moves into that directory when the caller commits it, after the
registry has decided the install goes ahead.
"""

import json
import logging
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict

from pydantic import ValidationError

from ..core.domain.models import Manifest, PluginDescriptor, default_i18n
from ..core.exceptions import ManifestError
from ..infrastructure.storage import files

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "manifest.json"
I18N_FILENAME = "i18n.json"
ICON_FILENAME = "icon.svg"


def read_manifest(path: Path) -> Manifest:
    """
    Read and validate a manifest file.

    Raises:
        ManifestError: If the file is missing, not JSON, or lacks pluginId/version
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise ManifestError(f"Manifest not found: {path}") from e
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ManifestError(f"Invalid JSON in manifest {path}: {e}") from e
    except OSError as e:
        raise ManifestError(f"Error reading manifest {path}: {e}") from e

    if not isinstance(data, dict):
        raise ManifestError(f"Manifest must be a JSON object: {path}")
    try:
        return Manifest.from_dict(data)
    except ValidationError as e:
        raise ManifestError(f"Invalid manifest {path}: {e}", {"errors": e.errors()}) from e


def read_i18n(plugin_dir: Path) -> Dict[str, Dict[str, str]]:
    """Read a bundle's i18n.json, falling back to empty per-locale tables."""
    i18n_path = Path(plugin_dir) / I18N_FILENAME
    if not i18n_path.exists():
        return default_i18n()
    try:
        with open(i18n_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Ignoring unreadable localization bundle {i18n_path}: {e}")
        return default_i18n()
    if not isinstance(data, dict):
        return default_i18n()
    return {str(k): dict(v) for k, v in data.items() if isinstance(v, dict)}


def build_descriptor(manifest: Manifest, install_dir: Path) -> PluginDescriptor:
    """Descriptor for a manifest installed at install_dir."""
    install_dir = Path(install_dir)
    return PluginDescriptor(
        plugin_id=manifest.plugin_id,
        version=manifest.version,
        version_label=manifest.version_label,
        title=manifest.title,
        description=manifest.description,
        type=manifest.type,
        category=manifest.category,
        platforms=list(manifest.platforms),
        arch=list(manifest.arch),
        icon=str(install_dir / ICON_FILENAME),
        link=manifest.link,
        author=manifest.author,
        homepage=manifest.homepage,
        source=manifest.source,
        entry_file=str(install_dir / manifest.entry),
    )


@dataclass
class InstalledArchive:
    """An unpacked, validated archive waiting to be committed or discarded."""

    descriptor: PluginDescriptor
    manifest: Manifest
    staging_dir: Path
    bundle_dir: Path
    install_dir: Path
    i18n: Dict[str, Dict[str, str]] = field(default_factory=default_i18n)

    @property
    def plugin_id(self) -> str:
        return self.descriptor.plugin_id

    @property
    def version(self) -> str:
        return self.descriptor.version

    async def commit(self) -> Path:
        """
        Move the staged bundle into its versioned directory.

        An existing directory for the same version is replaced.

        Returns:
            The versioned install directory
        """
        await files.move_folder(self.bundle_dir, self.install_dir)
        await _remove_staging(self.staging_dir)
        logger.info(f"Installed bundle at {self.install_dir}")
        return self.install_dir

    async def discard(self) -> None:
        """Drop the staged archive without installing it."""
        await _remove_staging(self.staging_dir)


async def _remove_staging(staging_dir: Path) -> None:
    try:
        await files.remove_path(staging_dir)
    except OSError as e:
        logger.warning(f"Could not remove staging directory {staging_dir}: {e}")


class ArchiveInstaller:
    """
    Unpacks plugin archives into an installation root.

    Staging directories are named with a random UUID so concurrent or
    crashed installs never collide with a versioned directory.
    """

    def __init__(self, location: Path) -> None:
        self._location = Path(location)

    @property
    def location(self) -> Path:
        return self._location

    async def install(self, archive_path: Path) -> InstalledArchive:
        """
        Extract an archive and parse its manifest.

        The manifest is looked up at the root of the archive first and then
        at any depth below it. Nothing is moved into the versioned directory
        until the returned archive is committed.

        Args:
            archive_path: Local archive file

        Returns:
            Staged archive ready to commit

        Raises:
            ArchiveError: If extraction fails
            ManifestError: If no valid manifest is found
        """
        staging_dir = self._location / uuid.uuid4().hex
        logger.debug(f"Extracting {archive_path} into {staging_dir}")

        try:
            await files.extract_archive(Path(archive_path), staging_dir)

            bundle_dir = files.find_file_in_folder(staging_dir, MANIFEST_FILENAME)
            if bundle_dir is None:
                raise ManifestError(
                    f"No {MANIFEST_FILENAME} found in archive {archive_path}",
                    {"archive": str(archive_path)}
                )

            manifest = read_manifest(bundle_dir / MANIFEST_FILENAME)
            install_dir = self._location / manifest.install_dir_name
            if install_dir.resolve().parent != self._location.resolve():
                raise ManifestError(
                    f"Plugin directory {manifest.install_dir_name!r} escapes {self._location}",
                    {"archive": str(archive_path)}
                )
            return InstalledArchive(
                descriptor=build_descriptor(manifest, install_dir),
                manifest=manifest,
                staging_dir=staging_dir,
                bundle_dir=bundle_dir,
                install_dir=install_dir,
                i18n=read_i18n(bundle_dir),
            )
        except BaseException:
            await _remove_staging(staging_dir)
            raise
