"""
Configuration models and data structures.

This module defines the configuration models used throughout the application,
providing type safety and validation for configuration values.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    log_directory: str = "logs"
    max_file_size: str = "10MB"
    backup_count: int = 5
    console_enabled: bool = True
    file_enabled: bool = True


@dataclass
class PluginHubConfig:
    """Plugin installation and catalog configuration."""
    location: str = "plugins"
    preset_location: Optional[str] = None
    request_url: str = ""
    request_timeout: float = 5.0
    proxy: Optional[str] = None
    archive_extension: str = ".memox"
    remove_preset_plugins: bool = True
    verify_hash: bool = True
    allowed_modules: List[str] = field(default_factory=list)


@dataclass
class ApplicationConfig:
    """Main application configuration."""

    name: str = "Plugin Hub"
    version: str = "0.1.0"
    debug: bool = False
    environment: str = "production"

    logging: LoggingConfig = field(default_factory=LoggingConfig)
    plugins: PluginHubConfig = field(default_factory=PluginHubConfig)

    # Settings tree consulted by manifest "inherit" paths
    host_settings_file: Optional[str] = None
    config_file_path: Optional[str] = None

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        self._validate_plugins()
        self._validate_logging()

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    def _validate_plugins(self) -> None:
        if not self.plugins.location:
            raise ValueError("plugins.location must not be empty")
        if self.plugins.request_timeout <= 0:
            raise ValueError(
                f"plugins.request_timeout must be positive, got {self.plugins.request_timeout}")
        if not self.plugins.archive_extension.startswith('.'):
            raise ValueError(
                f"plugins.archive_extension must start with '.', got {self.plugins.archive_extension}")

    def _validate_logging(self) -> None:
        valid_levels = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}
        if self.logging.level.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {self.logging.level}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        result: Dict[str, Any] = {}

        for field_name, field_value in self.__dict__.items():
            if hasattr(field_value, '__dict__'):
                result[field_name] = dict(field_value.__dict__)
            else:
                result[field_name] = field_value

        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ApplicationConfig':
        """Create configuration from dictionary."""
        logging_config = LoggingConfig(**data.get('logging', {}))
        plugin_config = PluginHubConfig(**data.get('plugins', {}))

        return cls(
            name=data.get('name', 'Plugin Hub'),
            version=data.get('version', '0.1.0'),
            debug=data.get('debug', False),
            environment=data.get('environment', 'production'),
            logging=logging_config,
            plugins=plugin_config,
            host_settings_file=data.get('host_settings_file'),
            config_file_path=data.get('config_file_path'),
        )
