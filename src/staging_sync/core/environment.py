"""Environment handles: a file tree and a relational source per side.

An ``Environment`` is built from an explicit ``EnvironmentConfig``
descriptor (root path, database URL, table prefix) supplied by the
provisioning side.  Nothing here inspects a tree or database to guess
another environment's identity.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from staging_sync.config_schema import EnvironmentConfig
from staging_sync.core.database import RelationalSource
from staging_sync.errors import DestinationUnavailableError
from staging_sync.file_handler import (
    remove_file,
    resolve_within,
    write_bytes_atomic,
)

logger = logging.getLogger(__name__)


class FileTree:
    """Byte-level access to one environment's file tree.

    Args:
        root: Tree root directory.
        label: Name used in log messages.
    """

    def __init__(self, root: Path, label: str = "files") -> None:
        self.root = Path(root)
        self.label = label

    def path(self, relative_path: str) -> Path:
        """Absolute path for *relative_path* (must stay below the root)."""
        return resolve_within(self.root, relative_path)

    def exists(self, relative_path: str) -> bool:
        target = self.path(relative_path)
        return target.is_file() and not target.is_symlink()

    def read_bytes(self, relative_path: str) -> bytes:
        return self.path(relative_path).read_bytes()

    def size(self, relative_path: str) -> int | None:
        """File size in bytes, or ``None`` when absent."""
        try:
            return self.path(relative_path).stat().st_size
        except FileNotFoundError:
            return None

    def mode(self, relative_path: str) -> int:
        return self.path(relative_path).stat().st_mode & 0o7777

    def write_bytes(
        self, relative_path: str, data: bytes, mode: int | None = None
    ) -> int:
        """Atomically replace *relative_path* with *data*.

        Raises:
            DestinationUnavailableError: The root itself is gone.
        """
        self._require_root()
        return write_bytes_atomic(self.path(relative_path), data, mode)

    def remove(self, relative_path: str) -> bool:
        """Delete *relative_path*; ``False`` if it was already absent."""
        self._require_root()
        return remove_file(self.path(relative_path))

    def is_reachable(self) -> bool:
        """``True`` while the root exists and is writable."""
        return self.root.is_dir() and os.access(self.root, os.W_OK)

    def _require_root(self) -> None:
        # Writing below a vanished root would silently recreate it.
        if not self.root.is_dir():
            raise DestinationUnavailableError(
                f"{self.label} root {self.root} no longer exists"
            )


class Environment:
    """Opened handles for one side of a pair.

    Args:
        name: ``"source"`` or ``"destination"`` (used in messages).
        files: File tree handle, if this side has a file root.
        database: Relational source, if this side has a database.
    """

    def __init__(
        self,
        name: str,
        files: FileTree | None = None,
        database: RelationalSource | None = None,
    ) -> None:
        self.name = name
        self.files = files
        self.database = database

    @classmethod
    def from_config(
        cls, name: str, config: EnvironmentConfig
    ) -> Environment:
        """Open the handles described by *config*."""
        files = (
            FileTree(Path(config.root).expanduser(), label=name)
            if config.root
            else None
        )
        database = (
            RelationalSource.from_url(
                config.database_url, config.table_prefix, label=name
            )
            if config.database_url
            else None
        )
        logger.debug(
            "Opened %s environment (files=%s, database=%s)",
            name,
            files.root if files else None,
            database is not None,
        )
        return cls(name, files=files, database=database)

    @property
    def key(self) -> str:
        """Stable identity of this environment, used for locks and caches."""
        parts = [str(self.files.root.resolve()) if self.files else ""]
        if self.database is not None:
            parts.append(
                self.database.engine.url.render_as_string(
                    hide_password=True
                )
            )
            parts.append(self.database.table_prefix)
        return "|".join(parts)

    def require_files(self) -> FileTree:
        """Return the file tree or raise ``ValueError`` if not configured."""
        if self.files is None:
            raise ValueError(f"The {self.name} environment has no file root")
        return self.files

    def require_database(self) -> RelationalSource:
        """Return the database or raise ``ValueError`` if not configured."""
        if self.database is None:
            raise ValueError(
                f"The {self.name} environment has no database_url"
            )
        return self.database

    def is_reachable(self) -> bool:
        """``True`` if every configured handle answers."""
        if self.files is not None and not self.files.is_reachable():
            return False
        if self.database is not None and not self.database.ping():
            return False
        return True

    def close(self) -> None:
        if self.database is not None:
            self.database.dispose()
