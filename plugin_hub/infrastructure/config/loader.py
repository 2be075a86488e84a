"""
Configuration loading and saving.

The application configuration comes from an optional YAML/JSON file with
``PLUGIN_HUB_*`` environment variables layered on top. The host settings
tree (what manifest ``inherit`` paths point into) is a separate file in
either format.
"""

import json
import os
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

import yaml

from .models import ApplicationConfig


def _parse_bool(value: str) -> bool:
    return value.lower() in ('true', '1', 'yes', 'on', 'enabled')


# Environment suffix -> (dotted config path, converter)
ENV_OVERRIDES: Dict[str, Tuple[str, Callable[[str], Any]]] = {
    "DEBUG": ("debug", _parse_bool),
    "ENVIRONMENT": ("environment", str),
    "LOG_LEVEL": ("logging.level", str),
    "LOG_DIR": ("logging.log_directory", str),
    "LOCATION": ("plugins.location", str),
    "PRESET_LOCATION": ("plugins.preset_location", str),
    "REQUEST_URL": ("plugins.request_url", str),
    "REQUEST_TIMEOUT": ("plugins.request_timeout", float),
    "PROXY": ("plugins.proxy", str),
    "REMOVE_PRESETS": ("plugins.remove_preset_plugins", _parse_bool),
    "VERIFY_HASH": ("plugins.verify_hash", _parse_bool),
    "HOST_SETTINGS": ("host_settings_file", str),
}

_YAML_SUFFIXES = ('.yaml', '.yml')


class ConfigLoader:
    """Reads and writes ApplicationConfig and the host settings tree."""

    def __init__(self) -> None:
        self._env_prefix = "PLUGIN_HUB_"

    def load_config(self, config_file: Optional[str] = None) -> ApplicationConfig:
        """
        Load configuration from file and environment variables.

        Args:
            config_file: Path to a YAML or JSON file (optional)

        Returns:
            Validated configuration

        Raises:
            FileNotFoundError: If config_file does not exist
            ValueError: If the file or an environment value is invalid
        """
        data = self._read(config_file) if config_file else {}
        if not isinstance(data, dict):
            raise ValueError(f"Configuration must be a mapping: {config_file}")
        data = self._merge_configs(data, self._environment_overrides())

        config = ApplicationConfig.from_dict(data)
        config.config_file_path = config_file
        return config

    def load_host_settings(self, settings_file: Optional[str]) -> Dict[str, Any]:
        """Load the host settings tree; no file means empty settings."""
        if not settings_file:
            return {}
        data = self._read(settings_file)
        if not isinstance(data, dict):
            raise ValueError(f"Host settings must be a mapping: {settings_file}")
        return data

    def save_config(self, config: ApplicationConfig, file_path: str, format: str = "yaml") -> None:
        """
        Save configuration to file.

        Args:
            config: Configuration to save
            file_path: Output file path
            format: ``yaml`` or ``json``
        """
        fmt = format.lower()
        if fmt not in ("yaml", "json"):
            raise ValueError(f"Unsupported format: {format}")

        data = config.to_dict()
        try:
            with open(file_path, 'w', encoding='utf-8') as f:
                if fmt == "yaml":
                    yaml.dump(data, f, default_flow_style=False, indent=2)
                else:
                    json.dump(data, f, indent=2)
        except OSError as e:
            raise ValueError(f"Error writing {file_path}: {e}")

    def _read(self, file_path: str) -> Any:
        path = Path(file_path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {file_path}")

        suffix = path.suffix.lower()
        if suffix not in _YAML_SUFFIXES and suffix != '.json':
            raise ValueError(f"Unsupported configuration file format: {path.suffix}")

        try:
            text = path.read_text(encoding='utf-8')
        except OSError as e:
            raise ValueError(f"Error reading {file_path}: {e}")

        if suffix in _YAML_SUFFIXES:
            try:
                return yaml.safe_load(text) or {}
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML in {file_path}: {e}")
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in {file_path}: {e}")

    def _environment_overrides(self) -> Dict[str, Any]:
        overrides: Dict[str, Any] = {}
        for suffix, (dotted, convert) in ENV_OVERRIDES.items():
            env_var = f"{self._env_prefix}{suffix}"
            raw = os.getenv(env_var)
            if raw is None:
                continue
            try:
                value = convert(raw)
            except (ValueError, TypeError) as e:
                raise ValueError(f"Invalid value for {env_var}: {raw} ({e})")

            *parents, leaf = dotted.split('.')
            node = overrides
            for key in parents:
                node = node.setdefault(key, {})
            node[leaf] = value
        return overrides

    def _merge_configs(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge override into a copy of base."""
        result = dict(base)
        for key, value in override.items():
            if isinstance(result.get(key), dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value
        return result
