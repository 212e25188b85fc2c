"""File handler module: root-relative path resolution, encoding-aware
reads, and atomic writes.

Provides the file I/O primitives used by ``FileTree``.  Writes go to a
temporary file in the target directory followed by ``os.replace()`` so
readers never see a half-written file.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path, PurePosixPath

from charset_normalizer import from_bytes

logger = logging.getLogger(__name__)

# =============================================================================
# Path Validation
# =============================================================================


def resolve_within(root: Path, relative_path: str) -> Path:
    """Resolve *relative_path* below *root*.

    Args:
        root: Tree root directory.
        relative_path: POSIX-style path relative to *root*.

    Returns:
        Absolute path below *root* (not resolved through symlinks, so a
        symlinked leaf is still detected by the caller).

    Raises:
        ValueError: If the path is absolute or escapes *root*.
    """
    rel = PurePosixPath(relative_path)
    if rel.is_absolute() or not rel.parts:
        raise ValueError(f"Path must be relative: {relative_path}")
    if ".." in rel.parts:
        raise ValueError(
            f"Path escapes the environment root: {relative_path}"
        )
    return root.joinpath(*rel.parts)


# =============================================================================
# File Read/Write
# =============================================================================


def read_file_with_encoding(path: Path) -> tuple[str, str]:
    """Read a file with automatic encoding detection.

    Reads raw bytes first, then uses charset-normalizer to detect encoding.
    Defaults to UTF-8 for empty files or when detection fails.

    Args:
        path: Path to the file to read.

    Returns:
        Tuple of (content_string, detected_encoding).
    """
    raw = path.read_bytes()
    return decode_bytes(raw)


def decode_bytes(raw: bytes) -> tuple[str, str]:
    """Decode *raw* with charset-normalizer; see ``read_file_with_encoding``."""
    if not raw:
        return ("", "utf-8")

    result = from_bytes(raw).best()
    if result is None:
        encoding = "utf-8"
        content = raw.decode(encoding, errors="replace")
    else:
        encoding = result.encoding
        # ascii is a strict subset of utf-8
        if encoding == "ascii":
            encoding = "utf-8"
        content = str(result)
    return (content, encoding)


def write_bytes_atomic(
    path: Path, data: bytes, mode: int | None = None
) -> int:
    """Write *data* to *path* atomically, creating parent directories.

    Args:
        path: Target file.
        data: Content to write.
        mode: Permission bits for the new file.  Defaults to the mode of
            an existing target, else ``0o644``.

    Returns:
        Number of bytes written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    if mode is None:
        try:
            mode = path.stat().st_mode & 0o7777
        except FileNotFoundError:
            mode = 0o644

    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up temp file on any failure.
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
    return len(data)


def remove_file(path: Path) -> bool:
    """Delete *path*.

    Returns:
        ``True`` if a file was removed, ``False`` if it was already absent.
    """
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    logger.debug("Removed %s", path)
    return True
