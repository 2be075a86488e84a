"""
Storage infrastructure: JSON document repositories and filesystem helpers.
"""

from .json_store import (
    CacheRepository,
    CatalogRepository,
    ConfigurationRepository,
    JsonRepository,
    OnlineCatalogRepository,
    RegistryRepository,
)

__all__ = [
    "CacheRepository",
    "CatalogRepository",
    "ConfigurationRepository",
    "JsonRepository",
    "OnlineCatalogRepository",
    "RegistryRepository",
]
