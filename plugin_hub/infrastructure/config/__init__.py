"""
Configuration management infrastructure.

This module provides configuration models and the loader that reads them
from YAML/JSON files and environment variables.
"""

from .loader import ConfigLoader
from .models import ApplicationConfig, LoggingConfig, PluginHubConfig

__all__ = [
    "ApplicationConfig",
    "ConfigLoader",
    "LoggingConfig",
    "PluginHubConfig",
]
