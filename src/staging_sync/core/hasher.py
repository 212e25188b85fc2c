"""Content fingerprints for files and rows.

Fingerprints are MD5 hex digests over normalized content.  Text content
has its line endings normalized to ``\\n``; binary content (classified
by file extension) is hashed as raw bytes.  Fingerprints never depend on
modification time or size.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from staging_sync.diff.models import Row

DEFAULT_BINARY_EXTENSIONS: frozenset[str] = frozenset(
    {
        "jpg", "jpeg", "png", "gif", "webp", "bmp", "ico", "svg",
        "zip", "gz", "tar", "rar", "7z",
        "pdf", "doc", "docx", "xls", "xlsx", "ppt", "pptx",
        "exe", "dll", "so", "bin",
        "mp3", "mp4", "avi", "mov", "wmv", "flv",
        "woff", "woff2", "eot", "ttf",
    }
)  # fmt: skip


def normalize_line_endings(data: bytes) -> bytes:
    """Convert ``\\r\\n`` and lone ``\\r`` to ``\\n``."""
    return data.replace(b"\r\n", b"\n").replace(b"\r", b"\n")


class ContentHasher:
    """Compute stable fingerprints for file contents and rows.

    Args:
        binary_extensions: Extensions (without dot, case-insensitive)
            whose files are hashed as raw bytes.
    """

    def __init__(
        self, binary_extensions: Iterable[str] | None = None
    ) -> None:
        if binary_extensions is None:
            binary_extensions = DEFAULT_BINARY_EXTENSIONS
        self._binary = frozenset(
            ext.lower().lstrip(".") for ext in binary_extensions
        )

    def is_binary(self, path: str | PurePosixPath | Path) -> bool:
        """Return ``True`` if *path* is classified as binary by extension."""
        suffix = PurePosixPath(str(path)).suffix.lower().lstrip(".")
        return suffix in self._binary

    @staticmethod
    def hash_bytes(data: bytes, binary: bool = False) -> str:
        """Fingerprint raw *data*.

        Args:
            data: Content to hash.
            binary: Hash raw bytes when ``True``; otherwise normalize
                line endings first.

        Returns:
            32-character hex digest.
        """
        if not binary:
            data = normalize_line_endings(data)
        return hashlib.md5(data, usedforsecurity=False).hexdigest()

    def hash_file(self, path: Path, relative_path: str | None = None) -> str:
        """Fingerprint the file at *path*.

        The text/binary decision uses *relative_path* when given so the
        classification is identical on both sides of a comparison.

        Raises:
            OSError: If the file cannot be read.
        """
        data = path.read_bytes()
        return self.hash_bytes(
            data, self.is_binary(relative_path or path.name)
        )

    @staticmethod
    def hash_row(
        row: Row, excluded_columns: Iterable[str] = ()
    ) -> str:
        """Fingerprint the comparable fields of a typed row.

        Columns are sorted, excluded columns dropped, and each value
        reduced to its normalized comparison form, so two rows that
        compare equal column by column share a fingerprint.
        """
        excluded = set(excluded_columns)
        canonical = {
            column: value.comparison_key()
            for column, value in sorted(row.items())
            if column not in excluded
        }
        payload = json.dumps(canonical, sort_keys=True, default=str)
        return hashlib.md5(
            payload.encode("utf-8"), usedforsecurity=False
        ).hexdigest()
