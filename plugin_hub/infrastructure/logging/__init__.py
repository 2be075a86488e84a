"""
Logging infrastructure for the application.

This module provides centralized logging configuration for the entire
application.
"""

from .setup import InterceptHandler, setup_logging

__all__ = [
    "InterceptHandler",
    "setup_logging",
]
