"""
Domain models for the plugin hub.

This module contains the plugin descriptor, manifest and catalog models
together with the version comparison rules used for upgrade decisions.
"""

from .models import (
    Catalog,
    ImportType,
    Manifest,
    ManifestField,
    PluginDescriptor,
    PluginProvider,
    PluginType,
    Provider,
    RegistrySnapshot,
    configuration_key,
    default_i18n,
)
from .version import compare_versions, is_newer, should_install

__all__ = [
    "Catalog",
    "ImportType",
    "Manifest",
    "ManifestField",
    "PluginDescriptor",
    "PluginProvider",
    "PluginType",
    "Provider",
    "RegistrySnapshot",
    "configuration_key",
    "default_i18n",
    "compare_versions",
    "is_newer",
    "should_install",
]
