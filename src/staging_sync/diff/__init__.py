"""Diffing layer: file trees, relational tables, grouping and caching.

Modules:

- ``models``     -- change records and typed rows.
- ``walker``     -- ``ExclusionRules`` and the filtered ``TreeWalker``.
- ``tree``       -- ``TreeDiffer``: fingerprint-based tree comparison.
- ``relational`` -- ``RelationalDiffer``: per-table row comparison.
- ``grouper``    -- ``ChangeGrouper``: logical content units.
- ``cache``      -- ``DiffCache``: short-lived diff results.

``relational`` is imported from its module directly because it depends
on ``staging_sync.core.database``, which itself uses these models.
"""

from .cache import DiffCache
from .grouper import ChangeGrouper
from .models import (
    ChangeGroup,
    ChangeStatus,
    FieldValue,
    FileChange,
    GroupedChanges,
    ItemRef,
    ItemType,
    RowChange,
)
from .tree import TreeDiffer
from .walker import ExclusionRules, TreeWalker

__all__ = [
    "ChangeGroup",
    "ChangeGrouper",
    "ChangeStatus",
    "DiffCache",
    "ExclusionRules",
    "FieldValue",
    "FileChange",
    "GroupedChanges",
    "ItemRef",
    "ItemType",
    "RowChange",
    "TreeDiffer",
    "TreeWalker",
]
