"""
Exception hierarchy for the plugin hub.

Every error raised by the registry, installer, catalog and loader derives
from PluginHubError and carries an ErrorCode so callers can branch on the
category without matching on message text.
"""

from enum import Enum
from typing import Any, Optional


class ErrorCode(Enum):
    """Error categories."""
    UNKNOWN_ERROR = 10000
    CONFIG_ERROR = 10001
    ARCHIVE_ERROR = 10002
    MANIFEST_ERROR = 10003
    NETWORK_ERROR = 10004
    INTEGRITY_ERROR = 10005
    PLUGIN_NOT_INSTALLED = 10006
    PLUGIN_NOT_FOUND = 10007
    PLUGIN_LOAD_ERROR = 10008


class PluginHubError(Exception):
    """Base error."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[Any] = None
    ):
        self.code = code
        self.message = message
        self.details = details
        super().__init__(message)


class ConfigurationError(PluginHubError):
    """Invalid or missing configuration (e.g. no install root)."""
    def __init__(self, message: str, details: Any = None):
        super().__init__(ErrorCode.CONFIG_ERROR, message, details)


class ArchiveError(PluginHubError):
    """Archive missing or could not be extracted."""
    def __init__(self, message: str, details: Any = None):
        super().__init__(ErrorCode.ARCHIVE_ERROR, message, details)


class ManifestError(PluginHubError):
    """Manifest missing, unreadable or lacking required fields."""
    def __init__(self, message: str, details: Any = None):
        super().__init__(ErrorCode.MANIFEST_ERROR, message, details)


class NetworkError(PluginHubError):
    """Transport failure or timeout."""
    def __init__(self, message: str, details: Any = None):
        super().__init__(ErrorCode.NETWORK_ERROR, message, details)


class IntegrityError(PluginHubError):
    """Downloaded archive does not match the catalog hash."""
    def __init__(self, message: str, details: Any = None):
        super().__init__(ErrorCode.INTEGRITY_ERROR, message, details)


class PluginNotInstalledError(PluginHubError):
    """Operation on a plugin id that is not in the local registry."""
    def __init__(self, plugin_id: str):
        super().__init__(
            ErrorCode.PLUGIN_NOT_INSTALLED,
            f"Plugin is not installed: {plugin_id}",
            {"plugin_id": plugin_id}
        )
        self.plugin_id = plugin_id


class PluginNotFoundError(PluginHubError):
    """Plugin id not listed in the online catalog."""
    def __init__(self, plugin_id: str):
        super().__init__(
            ErrorCode.PLUGIN_NOT_FOUND,
            f"Plugin not found in online catalog: {plugin_id}",
            {"plugin_id": plugin_id}
        )
        self.plugin_id = plugin_id


class PluginLoadError(PluginHubError):
    """Plugin entry code failed to evaluate."""
    def __init__(self, message: str, details: Any = None):
        super().__init__(ErrorCode.PLUGIN_LOAD_ERROR, message, details)
