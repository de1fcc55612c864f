"""Shared utilities for butter-installer."""

from __future__ import annotations

import hashlib
import os
import shutil
import stat
from collections.abc import Iterator
from pathlib import Path
from typing import BinaryIO

import structlog

logger = structlog.get_logger()


def chunked_read(
    stream: BinaryIO,
    chunk_size: int = 1024 * 1024
) -> Iterator[bytes]:
    """Read stream in chunks.

    Args:
        stream: Binary stream to read from
        chunk_size: Size of each chunk in bytes

    Yields:
        Data chunks as bytes

    Raises:
        ValueError: If chunk_size is not positive
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")

    while True:
        chunk = stream.read(chunk_size)
        if not chunk:
            break
        yield chunk


def sha256_file(path: Path) -> str:
    """Compute the SHA-256 of a file without loading it whole.

    Args:
        path: File to hash

    Returns:
        Lowercase hex digest
    """
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in chunked_read(f):
            digest.update(chunk)
    return digest.hexdigest()


def normalize_hash(hash_str: str) -> str:
    """Normalize a hex hash for case-insensitive comparison.

    Example:
        >>> normalize_hash(" DeadBeef ")
        'deadbeef'
    """
    return hash_str.strip().lower()


def validate_hash_string(hash_str: str) -> bool:
    """Validate hex hash string.

    Args:
        hash_str: Hash string to validate

    Returns:
        True if valid hex string, False otherwise

    Example:
        >>> validate_hash_string("deadbeef")
        True
        >>> validate_hash_string("invalid")
        False
        >>> validate_hash_string("")
        False
    """
    if not hash_str or hash_str != hash_str.strip() or ' ' in hash_str or '\t' in hash_str:
        return False
    try:
        bytes.fromhex(hash_str)
        return True
    except ValueError:
        return False


def format_size(size: int) -> str:
    """Format byte size as human-readable string.

    Args:
        size: Size in bytes

    Returns:
        Formatted string with appropriate unit (e.g., "1.5 MB")

    Example:
        >>> format_size(1024)
        '1.0 KB'
        >>> format_size(1048576)
        '1.0 MB'
    """
    if size < 0:
        return "0 B"

    size_float = float(size)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size_float < 1024.0:
            if unit == "B":
                return f"{int(size_float)} {unit}"
            return f"{size_float:.1f} {unit}"
        size_float /= 1024.0
    return f"{size_float:.1f} PB"


def ensure_executable(path: Path) -> bool:
    """Set the owner executable bit on a file if it is missing.

    Best-effort: failures are logged and reported through the return value.

    Args:
        path: File to make executable

    Returns:
        True if the file is executable afterwards, False otherwise
    """
    if os.name == "nt":
        return True
    try:
        mode = path.stat().st_mode
        if not mode & stat.S_IXUSR:
            path.chmod(0o755)
        return True
    except OSError as e:
        logger.debug("chmod_failed", path=str(path), error=str(e))
        return False


def remove_file(path: Path) -> bool:
    """Delete a file, reporting instead of raising on failure.

    Args:
        path: File to delete

    Returns:
        True if the file is gone afterwards, False otherwise
    """
    try:
        path.unlink(missing_ok=True)
        return True
    except OSError as e:
        logger.debug("remove_failed", path=str(path), error=str(e))
        return False


def remove_tree(path: Path) -> bool:
    """Delete a directory tree, reporting instead of raising on failure.

    Args:
        path: Directory to delete

    Returns:
        True if the directory is gone afterwards, False otherwise
    """
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.debug("remove_tree_failed", path=str(path), error=str(e))
        return False
    return True
