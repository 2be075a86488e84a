"""Network helpers: catalog fetch and archive download over aiohttp."""

from .http import download_file, fetch_json

__all__ = [
    "download_file",
    "fetch_json",
]
