"""
HTTP helpers for the catalog endpoint and plugin archive downloads.

Both helpers take an optional proxy URL which is passed straight to aiohttp.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import Any, Callable, Optional

import aiofiles
import aiohttp

from ...core.exceptions import NetworkError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0
DOWNLOAD_CHUNK_SIZE = 64 * 1024
DOWNLOADING_SUFFIX = ".downloading"


async def fetch_json(
    url: str,
    proxy: Optional[str] = None,
    timeout: float = DEFAULT_TIMEOUT
) -> Any:
    """
    GET a JSON document.

    Args:
        url: Endpoint URL
        proxy: Optional proxy URL
        timeout: Total request timeout in seconds

    Returns:
        Decoded JSON body

    Raises:
        asyncio.TimeoutError: If the request timed out
        aiohttp.ClientError: On transport errors or non-2xx status
        ValueError: If the body is not JSON
    """
    timeout_config = aiohttp.ClientTimeout(total=timeout)
    async with aiohttp.ClientSession(timeout=timeout_config) as session:
        async with session.get(
            url,
            proxy=proxy,
            headers={"Content-Type": "application/json"}
        ) as response:
            response.raise_for_status()
            try:
                return await response.json(content_type=None)
            except aiohttp.ContentTypeError as e:
                raise ValueError(f"Response from {url} is not JSON: {e}") from e


async def download_file(
    url: str,
    save_path: Path,
    proxy: Optional[str] = None,
    timeout: float = DEFAULT_TIMEOUT,
    on_start: Optional[Callable[[], Any]] = None,
    on_progress: Optional[Callable[[float], Any]] = None,
    on_complete: Optional[Callable[[Path], Any]] = None,
    on_error: Optional[Callable[[Exception], Any]] = None,
) -> Path:
    """
    Stream a file to disk.

    The body is written to ``save_path + ".downloading"`` and renamed to
    save_path once complete. The timeout bounds connecting and each socket
    read, not the whole transfer.

    Args:
        url: File URL
        save_path: Final local path
        proxy: Optional proxy URL
        timeout: Connect/read timeout in seconds
        on_start: Called when the response headers arrive
        on_progress: Called with a percentage when the size is known
        on_complete: Called with the final path
        on_error: Called with the error before it is raised

    Returns:
        The final local path

    Raises:
        NetworkError: On timeout or transport failure
    """
    save_path = Path(save_path)
    temp_path = save_path.with_name(save_path.name + DOWNLOADING_SUFFIX)
    timeout_config = aiohttp.ClientTimeout(total=None, connect=timeout, sock_read=timeout)

    try:
        async with aiohttp.ClientSession(timeout=timeout_config) as session:
            async with session.get(url, proxy=proxy) as response:
                response.raise_for_status()
                if on_start:
                    on_start()

                total_size = response.content_length
                bytes_downloaded = 0
                async with aiofiles.open(temp_path, 'wb') as f:
                    async for chunk in response.content.iter_chunked(DOWNLOAD_CHUNK_SIZE):
                        await f.write(chunk)
                        bytes_downloaded += len(chunk)
                        if on_progress and total_size:
                            on_progress(bytes_downloaded / total_size * 100)

        os.replace(temp_path, save_path)
    except asyncio.TimeoutError as e:
        logger.warning(f"Download timed out: {url}")
        _discard(temp_path)
        error = NetworkError(f"Download timed out: {url}", {"url": url})
        if on_error:
            on_error(error)
        raise error from e
    except (aiohttp.ClientError, OSError) as e:
        logger.error(f"Download failed: {url}: {e}")
        _discard(temp_path)
        error = NetworkError(f"Download failed: {url}: {e}", {"url": url})
        if on_error:
            on_error(error)
        raise error from e

    if on_complete:
        on_complete(save_path)
    return save_path


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not remove partial download {path}: {e}")
