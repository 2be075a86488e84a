"""
Configuration inheritance for newly installed plugin versions.

A manifest field may declare an ``inherit`` path such as ``"openAI.Host"``;
at install time the value found at that path in the host settings seeds the
plugin's configuration. When a plugin is upgraded, the configuration saved for
the previous version is carried forward on top of the inherited seed.
"""

from typing import Any, Dict, Iterable, List, Mapping

from ..core.domain.models import Manifest, ManifestField


class _Missing:
    """Marker for a settings path that does not resolve."""

    _instance = None

    def __new__(cls) -> '_Missing':
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False

    def __copy__(self) -> '_Missing':
        return self

    def __deepcopy__(self, memo: Dict[int, Any]) -> '_Missing':
        return self


MISSING = _Missing()


def lookup_path(tree: Any, path: str) -> Any:
    """
    Resolve a dotted path inside a nested mapping.

    Args:
        tree: Settings tree
        path: Dotted key path, e.g. ``"openAI.Host"``

    Returns:
        The value found, or MISSING if any segment is absent or a
        non-mapping value is reached before the last segment
    """
    if not path:
        return MISSING
    head, _, rest = path.partition('.')
    if not isinstance(tree, Mapping) or head not in tree:
        return MISSING
    if not rest:
        return tree[head]
    return lookup_path(tree[head], rest)


def resolve_inherited(
    fields: Iterable[ManifestField],
    host_settings: Mapping[str, Any]
) -> Dict[str, Any]:
    """
    Collect inherited values for every field that declares ``inherit``.

    Values that do not resolve are reported as MISSING rather than omitted,
    so callers can tell "not configured in the host" from a falsy value.
    """
    inherited: Dict[str, Any] = {}
    for manifest_field in fields:
        if manifest_field.inherit:
            inherited[manifest_field.key] = lookup_path(host_settings or {}, manifest_field.inherit)
    return inherited


def strip_missing(config: Mapping[str, Any]) -> Dict[str, Any]:
    """Drop MISSING values."""
    return {k: v for k, v in config.items() if v is not MISSING}


def seed_configuration(
    manifest: Manifest,
    host_settings: Mapping[str, Any]
) -> Dict[str, Any]:
    """Persistable seed configuration for a fresh install."""
    return strip_missing(resolve_inherited(manifest.configuration, host_settings))


def merge_forward(inherited: Mapping[str, Any], previous: Mapping[str, Any]) -> Dict[str, Any]:
    """Carry a previous version's configuration forward; saved values win."""
    return {**strip_missing(inherited), **previous}


def effective_configuration(manifest: Manifest, stored: Mapping[str, Any]) -> Dict[str, Any]:
    """Stored configuration layered over the manifest defaults."""
    return {**manifest.defaults_configuration, **stored}


def missing_required(manifest: Manifest, config: Mapping[str, Any]) -> List[str]:
    """Required keys that have no usable value in config."""
    return [
        key for key in manifest.configuration_required
        if config.get(key) in (None, "")
    ]
