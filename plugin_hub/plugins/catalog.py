"""
Online catalog synchronization.

The online catalog lists plugins available for download. It is fetched from
the catalog endpoint and cached as plugins.json in the installation root; a
preset snapshot shipped with the host can seed that cache on first start.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, List, Optional

import aiohttp
from pydantic import ValidationError

from ..core.domain.models import Catalog, PluginDescriptor
from ..core.domain.version import is_newer
from ..infrastructure.network import fetch_json
from ..infrastructure.network.http import DEFAULT_TIMEOUT
from ..infrastructure.storage import OnlineCatalogRepository
from ..infrastructure.storage.json_store import read_json, write_json_atomic

logger = logging.getLogger(__name__)


class CatalogSynchronizer:
    """Keeps the online catalog and its on-disk cache in sync."""

    def __init__(
        self,
        location: Path,
        preset_location: Optional[Path] = None,
        request_url: str = "",
        timeout: float = DEFAULT_TIMEOUT,
        development: bool = False
    ) -> None:
        self._location = Path(location)
        self._preset_location = Path(preset_location) if preset_location else None
        self._request_url = request_url
        self._timeout = timeout
        self._development = development
        self._repository = OnlineCatalogRepository(self._location)
        self._catalog = Catalog.empty()

    @property
    def catalog(self) -> Catalog:
        return self._catalog

    @property
    def request_url(self) -> str:
        return self._request_url

    def configure(self, request_url: Optional[str] = None, timeout: Optional[float] = None) -> None:
        if request_url is not None:
            self._request_url = request_url
        if timeout is not None:
            self._timeout = timeout

    def seed_from_preset(self) -> Optional[Catalog]:
        """
        Use the preset plugins.json snapshot as the online catalog.

        The snapshot is copied into the installation root unless a cached
        catalog is already there, and removed from the preset directory
        outside development mode.

        Returns:
            The seeded catalog, or None if there is no snapshot
        """
        if self._preset_location is None:
            return None
        snapshot_path = self._preset_location / OnlineCatalogRepository.FILENAME
        if not snapshot_path.is_file():
            return None

        try:
            raw = read_json(snapshot_path)
            catalog = _catalog_from_payload(raw.get("plugins", []) if isinstance(raw, dict) else [])
        except ValueError as e:
            logger.warning(f"Ignoring unreadable preset catalog {snapshot_path}: {e}")
            return None

        if not self._repository.exists():
            write_json_atomic(self._repository.path, catalog.to_dict())
            logger.info(f"Seeded online catalog from {snapshot_path}")

        if not self._development:
            try:
                snapshot_path.unlink()
            except OSError as e:
                logger.warning(f"Could not remove preset catalog {snapshot_path}: {e}")

        self._catalog = catalog
        return catalog

    def load_cached(self) -> Catalog:
        """Load plugins.json, or an empty catalog if it is missing or unreadable."""
        try:
            self._catalog = self._repository.load()
        except ValueError as e:
            logger.warning(f"Ignoring unreadable catalog cache: {e}")
            self._catalog = Catalog.empty()
        return self._catalog

    async def refresh(self, proxy: Optional[str] = None) -> Catalog:
        """
        Fetch the remote catalog.

        The endpoint answers ``{"success": bool, "data": [descriptor, ...]}``.
        On success the versions map is rebuilt and plugins.json rewritten. Any
        failure falls back to the cached catalog (or an empty one); this
        method does not raise.

        Args:
            proxy: Optional proxy URL

        Returns:
            The current online catalog
        """
        if not self._request_url:
            logger.debug("No catalog URL configured; using cached catalog")
            return self._fallback()

        try:
            body = await fetch_json(self._request_url, proxy=proxy, timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Catalog request timed out after {self._timeout}s: {self._request_url}")
            return self._fallback()
        except (aiohttp.ClientError, ValueError) as e:
            logger.error(f"Catalog request failed: {e}")
            return self._fallback()

        if not isinstance(body, dict) or not body.get("success") or not isinstance(body.get("data"), list):
            logger.warning(f"Catalog endpoint returned an unsuccessful response: {self._request_url}")
            return self._fallback()

        catalog = _catalog_from_payload(body["data"])
        try:
            await self._repository.save_async(catalog)
        except OSError as e:
            logger.error(f"Failed to cache online catalog: {e}")
        self._catalog = catalog
        logger.info(f"Online catalog refreshed: {len(catalog.plugins)} plugins")
        return catalog

    def updates_available(self, local: Catalog) -> List[str]:
        """Installed plugin ids whose online version is strictly newer."""
        return [
            plugin_id for plugin_id, installed_version in local.versions.items()
            if plugin_id in self._catalog.versions
            and is_newer(self._catalog.versions[plugin_id], installed_version)
        ]

    def _fallback(self) -> Catalog:
        # Exactly what plugins.json holds; empty when there is no cache
        return self.load_cached()


def _catalog_from_payload(entries: Any) -> Catalog:
    """Build a catalog from raw descriptor dicts, skipping invalid entries."""
    plugins: List[PluginDescriptor] = []
    for entry in entries or []:
        try:
            plugins.append(PluginDescriptor.from_dict(entry))
        except ValidationError as e:
            logger.warning(f"Skipping invalid catalog entry: {e.error_count()} validation errors")
    return Catalog.from_plugins(plugins)
