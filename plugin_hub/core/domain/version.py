"""
Version comparison for upgrade decisions.

Versions are dotted numeric strings. Each segment contributes the value of
its leading digits (so "0-beta" counts as 0) and missing trailing segments
count as zero, which makes "1.0" and "1.0.0" equal.
"""

import re
from typing import Optional, Tuple

_LEADING_DIGITS = re.compile(r"^\s*(\d+)")


def version_to_tuple(version_str: str) -> Tuple[int, ...]:
    """
    Convert version string to comparable tuple

    Args:
        version_str: Version string (e.g., "1.2.3")

    Returns:
        Tuple of numeric version components
    """
    parts = []
    for segment in (version_str or "").strip().split('.'):
        match = _LEADING_DIGITS.match(segment)
        parts.append(int(match.group(1)) if match else 0)
    return tuple(parts)


def compare_versions(a: str, b: str) -> int:
    """
    Compare two version strings.

    Returns:
        1 if a > b, 0 if equal, -1 if a < b
    """
    left = version_to_tuple(a)
    right = version_to_tuple(b)
    width = max(len(left), len(right))
    left += (0,) * (width - len(left))
    right += (0,) * (width - len(right))
    if left > right:
        return 1
    if left < right:
        return -1
    return 0


def is_newer(candidate: str, installed: str) -> bool:
    """True when candidate is strictly newer than installed."""
    return compare_versions(candidate, installed) == 1


def should_install(candidate: str, installed: Optional[str]) -> bool:
    """Install gate: nothing installed, or candidate is newer or equal."""
    return not installed or compare_versions(candidate, installed) >= 0
