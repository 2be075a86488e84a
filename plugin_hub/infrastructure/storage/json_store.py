"""
JSON file repositories.

Each on-disk document of the installation root is owned by one repository
with explicit load()/save(). Writes go to a temporary sibling file that is
then renamed over the target, so a reader never observes a half-written
document.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, Generic, TypeVar

import aiofiles
import aiofiles.os

from ...core.domain.models import Catalog

logger = logging.getLogger(__name__)

T = TypeVar('T')


def _dumps(data: Any) -> str:
    return json.dumps(data, indent=4, ensure_ascii=False)


def read_json(path: Path) -> Any:
    """Read a JSON document."""
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def write_json_atomic(path: Path, data: Any) -> None:
    """Write a JSON document through a temporary file and rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f"{path.name}.tmp")
    with open(tmp_path, 'w', encoding='utf-8') as f:
        f.write(_dumps(data))
    os.replace(tmp_path, path)


class JsonRepository(Generic[T]):
    """
    Repository for a single JSON document.

    Subclasses convert between the raw JSON value and the in-memory type.
    """

    def __init__(self, path: Path, default_factory: Callable[[], T]) -> None:
        self._path = Path(path)
        self._default_factory = default_factory

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.exists()

    def load(self) -> T:
        """
        Load the document.

        Returns:
            Parsed document, or the default value if the file does not exist

        Raises:
            ValueError: If the file exists but is not valid JSON
        """
        if not self._path.exists():
            return self._default_factory()
        try:
            raw = read_json(self._path)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in {self._path}: {e}")
        return self._decode(raw)

    def save(self, data: T) -> None:
        """Persist the document synchronously."""
        write_json_atomic(self._path, self._encode(data))
        logger.debug(f"Saved {self._path}")

    async def save_async(self, data: T) -> None:
        """Persist the document without blocking the event loop on the write."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_name(f"{self._path.name}.tmp")
        async with aiofiles.open(tmp_path, 'w', encoding='utf-8') as f:
            await f.write(_dumps(self._encode(data)))
        await aiofiles.os.replace(tmp_path, self._path)
        logger.debug(f"Saved {self._path}")

    def _decode(self, raw: Any) -> T:
        return raw  # type: ignore[no-any-return]

    def _encode(self, data: T) -> Any:
        return data


class CatalogRepository(JsonRepository[Catalog]):
    """Catalog document (index.json for installed plugins, plugins.json for the online cache)."""

    def __init__(self, path: Path) -> None:
        super().__init__(path, Catalog.empty)

    def _decode(self, raw: Any) -> Catalog:
        if not isinstance(raw, dict):
            raise ValueError(f"Catalog document must be an object: {self._path}")
        return Catalog.from_dict(raw)

    def _encode(self, data: Catalog) -> Any:
        return data.to_dict()


class MappingRepository(JsonRepository[Dict[str, Dict[str, Any]]]):
    """Object-of-objects document (configuration.json, cache.json)."""

    def __init__(self, path: Path) -> None:
        super().__init__(path, dict)

    def _decode(self, raw: Any) -> Dict[str, Dict[str, Any]]:
        if not isinstance(raw, dict):
            raise ValueError(f"Document must be an object: {self._path}")
        return {str(k): dict(v) if isinstance(v, dict) else {} for k, v in raw.items()}


class RegistryRepository(CatalogRepository):
    """Local catalog of installed plugins: index.json."""

    FILENAME = "index.json"

    def __init__(self, location: Path) -> None:
        super().__init__(Path(location) / self.FILENAME)


class OnlineCatalogRepository(CatalogRepository):
    """Cached copy of the remote catalog: plugins.json."""

    FILENAME = "plugins.json"

    def __init__(self, location: Path) -> None:
        super().__init__(Path(location) / self.FILENAME)


class ConfigurationRepository(MappingRepository):
    """Per-version plugin configuration: configuration.json."""

    FILENAME = "configuration.json"

    def __init__(self, location: Path) -> None:
        super().__init__(Path(location) / self.FILENAME)


class CacheRepository(MappingRepository):
    """Runtime cache written by plugin code: cache.json."""

    FILENAME = "cache.json"

    def __init__(self, location: Path) -> None:
        super().__init__(Path(location) / self.FILENAME)
