"""
Filesystem helpers used by the installer and the lifecycle manager.

Blocking work (zip extraction, tree moves, recursive removal, hashing) is
pushed to the default executor so the event loop keeps running while an
archive is unpacked.
"""

import asyncio
import hashlib
import logging
import shutil
import zipfile
from pathlib import Path
from typing import Any, Callable, Iterable, List, Optional, TypeVar

from ...core.exceptions import ArchiveError

logger = logging.getLogger(__name__)

R = TypeVar('R')

HASH_CHUNK_SIZE = 128 * 1024


async def _run_blocking(func: Callable[..., R], *args: Any) -> R:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, func, *args)


def _extract(archive_path: Path, dest_dir: Path) -> None:
    dest_root = dest_dir.resolve()
    with zipfile.ZipFile(archive_path) as zf:
        for member in zf.namelist():
            target = (dest_root / member).resolve()
            if target != dest_root and dest_root not in target.parents:
                raise ArchiveError(
                    f"Archive entry escapes extraction directory: {member}",
                    {"archive": str(archive_path)}
                )
        zf.extractall(dest_root)


async def extract_archive(archive_path: Path, dest_dir: Path) -> None:
    """
    Extract a zip archive into a directory.

    Args:
        archive_path: Archive to unpack
        dest_dir: Target directory (created if needed)

    Raises:
        ArchiveError: If the archive is missing, corrupt or unsafe
    """
    archive_path = Path(archive_path)
    if not archive_path.is_file():
        raise ArchiveError(f"Archive not found: {archive_path}")

    Path(dest_dir).mkdir(parents=True, exist_ok=True)
    try:
        await _run_blocking(_extract, archive_path, Path(dest_dir))
    except zipfile.BadZipFile as e:
        raise ArchiveError(f"Invalid archive {archive_path}: {e}") from e
    except OSError as e:
        raise ArchiveError(f"Failed to extract {archive_path}: {e}") from e


def find_file_in_folder(folder: Path, file_name: str) -> Optional[Path]:
    """
    Search a directory tree for a file name.

    The top level is checked first, then subdirectories in sorted order.

    Returns:
        Directory that contains the file, or None
    """
    folder = Path(folder)
    if (folder / file_name).is_file():
        return folder
    for candidate in sorted(folder.rglob(file_name)):
        if candidate.is_file():
            return candidate.parent
    return None


async def move_folder(source: Path, destination: Path) -> None:
    """Move a directory tree, replacing the destination if it exists."""
    def _move() -> None:
        if Path(destination).exists():
            shutil.rmtree(destination)
        shutil.move(str(source), str(destination))

    await _run_blocking(_move)


def _remove(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    elif path.exists() or path.is_symlink():
        path.unlink()


async def remove_path(path: Path) -> None:
    """Remove a file or directory tree; missing paths are ignored."""
    await _run_blocking(_remove, Path(path))


async def remove_paths(paths: Iterable[Path]) -> List[Path]:
    """
    Remove several files or directories concurrently.

    Each failure is logged individually and does not stop the others.

    Returns:
        Paths that could not be removed
    """
    targets = [Path(p) for p in paths]
    results = await asyncio.gather(
        *(remove_path(p) for p in targets), return_exceptions=True
    )
    failed: List[Path] = []
    for target, result in zip(targets, results):
        if isinstance(result, BaseException):
            logger.error(f"Error removing {target}: {result}")
            failed.append(target)
        else:
            logger.info(f"Removed {target}")
    return failed


def files_with_extension(directory: Path, extension: str) -> List[Path]:
    """List files directly inside directory whose suffix matches extension."""
    directory = Path(directory)
    if not directory.is_dir():
        return []
    return sorted(
        p for p in directory.iterdir()
        if p.is_file() and p.suffix == extension
    )


def _hash_file(path: Path) -> str:
    sha256_hash = hashlib.sha256()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(HASH_CHUNK_SIZE), b''):
            sha256_hash.update(chunk)
    return sha256_hash.hexdigest()


async def calculate_file_hash(path: Path) -> str:
    """Return the sha256 hex digest of a file."""
    return await _run_blocking(_hash_file, Path(path))
