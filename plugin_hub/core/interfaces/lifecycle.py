"""
Component lifecycle contract.

Long-lived services (the plugin manager) are started once, reconfigured at
runtime and stopped on shutdown.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict


class IComponent(ABC):
    """Base interface for services with an explicit start/stop lifecycle."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the component name."""
        pass

    @property
    @abstractmethod
    def version(self) -> str:
        """Get the component version."""
        pass

    @abstractmethod
    async def start(self) -> None:
        """Acquire resources; calling it on a running component is a no-op."""
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Release resources; calling it on a stopped component is a no-op."""
        pass

    @abstractmethod
    async def configure(self, config: Dict[str, Any]) -> None:
        """
        Apply runtime settings.

        Raises:
            ValueError: If a setting is invalid
        """
        pass

    @abstractmethod
    async def check_health(self) -> Dict[str, Any]:
        """
        Report health as ``{'healthy': bool, 'status': str, 'details': dict}``.
        """
        pass
