"""Exception taxonomy for the staging sync engine.

Per-item errors (``ScanError``, ``SchemaError``, ``ConflictError``,
``ApplyError``) are normally caught where they occur and recorded in a
result structure (scan warning, skipped table, ``SyncResult``).  Only
``DestinationUnavailableError`` and ``SyncInProgressError`` end a whole
operation.
"""

from __future__ import annotations


class StagingSyncError(Exception):
    """Base class for all engine errors."""


class ScanError(StagingSyncError):
    """A path could not be read while scanning a file tree.

    Attributes:
        path: Relative path of the offending entry.
    """

    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path
        self.reason = message


class SchemaError(StagingSyncError):
    """A table cannot be diffed (missing on one side, no usable key).

    Attributes:
        table: Logical table name.
    """

    def __init__(self, table: str, message: str) -> None:
        super().__init__(f"{table}: {message}")
        self.table = table
        self.reason = message


class ConflictError(StagingSyncError):
    """An item has an unresolved conflict, or a conflict id is unknown."""


class ApplyError(StagingSyncError):
    """Writing one item to the destination failed."""


class DestinationUnavailableError(ApplyError):
    """The destination as a whole cannot be reached.

    Raised by writes when the database connection is lost or the file
    root has disappeared; the remaining items of a batch are then not
    attempted.
    """


class SyncInProgressError(StagingSyncError):
    """Another synchronization holds the destination lock."""
