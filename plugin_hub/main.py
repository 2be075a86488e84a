"""
Command-line interface for the plugin hub.

Every command builds a PluginManager from the configuration file (and
``PLUGIN_HUB_*`` environment overrides), starts it, runs one operation and
stops it again.
"""

import asyncio
import json
import logging
import sys
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import typer

from .core.exceptions import PluginHubError
from .infrastructure.config.loader import ConfigLoader
from .infrastructure.config.models import ApplicationConfig
from .infrastructure.logging.setup import setup_logging
from .plugins.manager import PluginManager

T = TypeVar('T')

# Create CLI application
cli = typer.Typer(
    name="plugin-hub",
    help="Install, configure and load plugins for a host application"
)

logger = logging.getLogger(__name__)

ConfigOption = typer.Option(None, "--config", "-c", help="Configuration file path")
LocationOption = typer.Option(None, "--location", "-l", help="Plugin installation directory")


def _load_config(config_file: Optional[str], location: Optional[str]) -> ApplicationConfig:
    config = ConfigLoader().load_config(config_file)
    if location:
        config.plugins.location = location
    setup_logging(config.logging)
    return config


def _run_with_manager(
    config_file: Optional[str],
    location: Optional[str],
    operation: Callable[[PluginManager], Awaitable[T]]
) -> T:
    """Start a manager, run one operation on it and stop it."""

    async def _run(config: ApplicationConfig, host_settings: Dict[str, Any]) -> T:
        manager = PluginManager(config.plugins, host_settings, development=config.is_development)
        await manager.start()
        try:
            return await operation(manager)
        finally:
            await manager.stop()

    try:
        config = _load_config(config_file, location)
        host_settings = ConfigLoader().load_host_settings(config.host_settings_file)
        return asyncio.run(_run(config, host_settings))
    except PluginHubError as e:
        typer.echo(f"Error: {e.message}", err=True)
        sys.exit(1)
    except (OSError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        sys.exit(1)


def _parse_value(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


@cli.command("list")
def list_plugins(
    config_file: Optional[str] = ConfigOption,
    location: Optional[str] = LocationOption,
    online: bool = typer.Option(False, "--online", help="List the online catalog instead")
) -> None:
    """List installed (or available) plugins."""

    async def operation(manager: PluginManager) -> None:
        snapshot = manager.get_all_data()
        catalog = snapshot.online_plugins if online else snapshot.local_plugins
        if not catalog.plugins:
            typer.echo("No plugins")
            return
        for plugin in catalog.plugins:
            typer.echo(f"{plugin.plugin_id}\t{plugin.version}\t{plugin.title}")

    _run_with_manager(config_file, location, operation)


@cli.command()
def install(
    archives: List[str] = typer.Argument(..., help="Plugin archive files"),
    config_file: Optional[str] = ConfigOption,
    location: Optional[str] = LocationOption
) -> None:
    """Install plugins from local archives."""

    async def operation(manager: PluginManager) -> None:
        snapshot = await manager.install_plugins(archives)
        for plugin in snapshot.local_plugins.plugins:
            typer.echo(f"{plugin.plugin_id}\t{plugin.version}")

    _run_with_manager(config_file, location, operation)


@cli.command()
def uninstall(
    plugin_id: str = typer.Argument(..., help="Plugin id"),
    config_file: Optional[str] = ConfigOption,
    location: Optional[str] = LocationOption
) -> None:
    """Uninstall a plugin."""

    async def operation(manager: PluginManager) -> bool:
        installed = manager.store.is_installed(plugin_id)
        await manager.uninstall_plugin(plugin_id)
        return installed

    if _run_with_manager(config_file, location, operation):
        typer.echo(f"Uninstalled {plugin_id}")
    else:
        typer.echo(f"Plugin {plugin_id} is not installed")


@cli.command()
def refresh(
    config_file: Optional[str] = ConfigOption,
    location: Optional[str] = LocationOption,
    proxy: Optional[str] = typer.Option(None, "--proxy", help="Proxy URL")
) -> None:
    """Refresh the online catalog."""

    async def operation(manager: PluginManager) -> int:
        snapshot = await manager.refresh_online_plugins(proxy)
        return len(snapshot.online_plugins.plugins)

    count = _run_with_manager(config_file, location, operation)
    typer.echo(f"Online catalog: {count} plugins")


@cli.command("install-online")
def install_online(
    plugin_id: str = typer.Argument(..., help="Plugin id from the online catalog"),
    config_file: Optional[str] = ConfigOption,
    location: Optional[str] = LocationOption,
    proxy: Optional[str] = typer.Option(None, "--proxy", help="Proxy URL")
) -> None:
    """Download and install a plugin from the online catalog."""

    def on_progress(percent: float) -> None:
        typer.echo(f"\rDownloading {plugin_id}: {percent:.0f}%", nl=False)

    async def operation(manager: PluginManager) -> Optional[str]:
        await manager.refresh_online_plugins(proxy)
        snapshot = await manager.install_online_plugin(plugin_id, proxy, on_progress=on_progress)
        descriptor = snapshot.installed_plugins.get(plugin_id)
        return descriptor.version if descriptor else None

    version = _run_with_manager(config_file, location, operation)
    typer.echo("")
    typer.echo(f"Installed {plugin_id} {version}")


@cli.command()
def configure(
    plugin_id: str = typer.Argument(..., help="Plugin id"),
    values: List[str] = typer.Option([], "--set", "-s", help="key=value (value parsed as JSON when possible)"),
    replace: bool = typer.Option(False, "--replace", help="Replace the stored configuration instead of merging"),
    config_file: Optional[str] = ConfigOption,
    location: Optional[str] = LocationOption
) -> None:
    """Update a plugin's stored configuration."""
    updates: Dict[str, Any] = {}
    for item in values:
        key, sep, raw = item.partition('=')
        if not sep or not key:
            typer.echo(f"Invalid --set value: {item}", err=True)
            sys.exit(1)
        updates[key] = _parse_value(raw)

    async def operation(manager: PluginManager) -> Optional[Dict[str, Any]]:
        current = manager.get_configuration(plugin_id)
        if current is None:
            return None
        data = updates if replace else {**current, **updates}
        await manager.save_configuration(plugin_id, data)
        return manager.get_configuration(plugin_id)

    result = _run_with_manager(config_file, location, operation)
    if result is None:
        typer.echo(f"Plugin {plugin_id} is not installed", err=True)
        sys.exit(1)
    typer.echo(json.dumps(result, indent=2, ensure_ascii=False))


@cli.command()
def show(
    plugin_id: str = typer.Argument(..., help="Plugin id"),
    config_file: Optional[str] = ConfigOption,
    location: Optional[str] = LocationOption
) -> None:
    """Show an installed plugin's descriptor, manifest and configuration."""

    async def operation(manager: PluginManager) -> Optional[Dict[str, Any]]:
        descriptor = manager.store.get_descriptor(plugin_id)
        manifest = manager.store.get_manifest(plugin_id)
        if descriptor is None or manifest is None:
            return None
        return {
            "plugin": descriptor.to_dict(),
            "manifest": manifest.to_dict(),
            "configuration": manager.get_effective_configuration(plugin_id),
            "missingRequired": manager.get_missing_required(plugin_id),
        }

    result = _run_with_manager(config_file, location, operation)
    if result is None:
        typer.echo(f"Plugin {plugin_id} is not installed", err=True)
        sys.exit(1)
    typer.echo(json.dumps(result, indent=2, ensure_ascii=False))


@cli.command()
def updates(
    config_file: Optional[str] = ConfigOption,
    location: Optional[str] = LocationOption,
    proxy: Optional[str] = typer.Option(None, "--proxy", help="Proxy URL")
) -> None:
    """List installed plugins with a newer version in the online catalog."""

    async def operation(manager: PluginManager) -> List[str]:
        await manager.refresh_online_plugins(proxy)
        return manager.updates_available()

    available = _run_with_manager(config_file, location, operation)
    if not available:
        typer.echo("All plugins are up to date")
    for plugin_id in available:
        typer.echo(plugin_id)


@cli.command()
def run(
    plugin_id: str = typer.Argument(..., help="Plugin id"),
    config_file: Optional[str] = ConfigOption,
    location: Optional[str] = LocationOption
) -> None:
    """Load a plugin and list the names it exports."""

    async def operation(manager: PluginManager) -> List[str]:
        return manager.load_plugin(plugin_id).exports

    for name in _run_with_manager(config_file, location, operation):
        typer.echo(name)


@cli.command()
def init_config(
    output: str = typer.Option(
        "config.yaml", "--output", "-o", help="Output configuration file"
    ),
    format: str = typer.Option(
        "yaml", "--format", "-f", help="Configuration format (yaml/json)"
    )
) -> None:
    """Generate a default configuration file."""

    config = ApplicationConfig()
    config_loader = ConfigLoader()

    try:
        config_loader.save_config(config, output, format)
        typer.echo(f"Default configuration saved to {output}")
    except (OSError, ValueError) as e:
        typer.echo(f"Error saving configuration: {e}", err=True)
        sys.exit(1)


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
