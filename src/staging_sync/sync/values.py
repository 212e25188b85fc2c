"""Current value of an item on one side, in its comparable form.

A file's value is its content fingerprint; a row's value is its
snapshot (column to comparison key, excluded columns dropped).  An item
that does not exist on that side has the value ``None``.  These values
are what baselines and conflict records store.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from staging_sync.core.environment import Environment
from staging_sync.core.hasher import ContentHasher
from staging_sync.diff.models import ItemRef, ItemType, Row, row_snapshot

logger = logging.getLogger(__name__)


class ItemReader:
    """Read comparable item values from an environment.

    Args:
        hasher: Fingerprinting for files.
        excluded_columns: Columns left out of row snapshots.
    """

    def __init__(
        self,
        hasher: ContentHasher,
        excluded_columns: Iterable[str] = (),
    ) -> None:
        self._hasher = hasher
        self._excluded = frozenset(excluded_columns)

    @property
    def excluded_columns(self) -> frozenset[str]:
        return self._excluded

    def value(self, environment: Environment, ref: ItemRef) -> Any:
        """Return the comparable value of *ref* in *environment*.

        Raises:
            OSError: If a file exists but cannot be read.
            ValueError: If the environment lacks the required handle.
        """
        if ref.item_type is ItemType.FILE:
            return self.file_value(environment, ref.path or "")
        return self.row_value(environment, ref.table or "", ref.key or "")

    def file_value(self, environment: Environment, path: str) -> str | None:
        tree = environment.require_files()
        if not tree.exists(path):
            return None
        return self._hasher.hash_file(tree.path(path), relative_path=path)

    def row_value(
        self, environment: Environment, table: str, key: str
    ) -> dict[str, Any] | None:
        database = environment.require_database()
        row = database.fetch_row(table, key)
        if row is None:
            return None
        return self.snapshot(row)

    def snapshot(self, row: Row) -> dict[str, Any]:
        return row_snapshot(row, self._excluded)
