"""Change grouper: cluster row changes into logical content units.

Two passes over the flat diff:

1. **Adjacency** -- over the primary table, map each parent id to its
   child rows and to its attachment rows, and decide the roots (no
   parent, or a parent that is not part of this diff).  Rows of the
   metadata and related tables are indexed by their foreign-key value.
2. **Materialization** -- for each root in order, walk the adjacency
   maps to collect descendants, then pull in metadata/related rows that
   point at any primary id already in the group.

A row is claimed by the first group that reaches it and never appears
in a second one.  Rows no rule reaches stay standalone.  The grouper
holds no state between calls, so the same input always yields the same
groups and group ids.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Sequence

from staging_sync.config_schema import GroupingConfig
from staging_sync.diff.models import ChangeGroup, GroupedChanges, RowChange

logger = logging.getLogger(__name__)

ATTACHMENTS_KEY = "attachments"

_RowId = tuple[str, str]


def _row_id(change: RowChange) -> _RowId:
    return (change.table, change.primary_key_value)


class _Adjacency:
    """Pass-1 output: explicit relationship maps over the flat diff."""

    def __init__(self) -> None:
        self.roots: list[RowChange] = []
        self.children: dict[str, list[RowChange]] = defaultdict(list)
        self.attachments: dict[str, list[RowChange]] = defaultdict(list)
        # (table, foreign key value) -> rows, per relation rule
        self.references: dict[tuple[str, str], list[RowChange]] = (
            defaultdict(list)
        )
        self.primary_rows: list[RowChange] = []


class ChangeGrouper:
    """Group row changes around rows of a primary table.

    Args:
        config: Table and column names describing the relationships.
    """

    def __init__(self, config: GroupingConfig | None = None) -> None:
        self._config = config or GroupingConfig()
        self._root_values = frozenset(self._config.root_parent_values)

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    def group(self, changes: Sequence[RowChange]) -> GroupedChanges:
        """Build the grouped view of *changes*.

        Returns:
            ``GroupedChanges`` with groups in root discovery order and the
            unclaimed rows, in input order, as standalone changes.
        """
        adjacency = self._build_adjacency(changes)
        claimed: set[_RowId] = set()
        groups: list[ChangeGroup] = []

        for root in adjacency.roots:
            if _row_id(root) in claimed:
                continue
            groups.append(self._materialize(root, adjacency, claimed))

        # Parent cycles leave primary rows that no root reaches.
        for row in adjacency.primary_rows:
            if _row_id(row) not in claimed:
                logger.debug(
                    "Promoting unreached row %s:%s to group root",
                    row.table,
                    row.primary_key_value,
                )
                groups.append(self._materialize(row, adjacency, claimed))

        standalone = [c for c in changes if _row_id(c) not in claimed]
        logger.info(
            "Grouped %d row change(s) into %d group(s), %d standalone",
            len(changes),
            len(groups),
            len(standalone),
        )
        return GroupedChanges(groups=groups, standalone=standalone)

    # ------------------------------------------------------------------
    # Pass 1: adjacency
    # ------------------------------------------------------------------

    def _build_adjacency(self, changes: Sequence[RowChange]) -> _Adjacency:
        cfg = self._config
        adjacency = _Adjacency()
        adjacency.primary_rows = [
            c for c in changes if c.table == cfg.primary_table
        ]
        primary_ids = {c.primary_key_value for c in adjacency.primary_rows}

        for row in adjacency.primary_rows:
            parent = self._parent_id(row)
            if parent is None:
                adjacency.roots.append(row)
            elif parent not in primary_ids or parent == row.primary_key_value:
                # Orphan: its parent is not part of this change set.
                adjacency.roots.append(row)
            elif row.detail_text(cfg.kind_column) == cfg.attachment_kind:
                adjacency.attachments[parent].append(row)
            else:
                adjacency.children[parent].append(row)

        relation_tables = {
            rule.table: rule.foreign_key
            for rule in [*cfg.metadata, *cfg.related]
        }
        for row in changes:
            foreign_key = relation_tables.get(row.table)
            if foreign_key is None:
                continue
            target = row.detail_text(foreign_key)
            if target is not None:
                adjacency.references[(row.table, target)].append(row)

        return adjacency

    def _parent_id(self, row: RowChange) -> str | None:
        value = row.details.get(self._config.parent_column)
        if value is None or value.is_blank:
            return None
        parent = str(value.to_json())
        return None if parent in self._root_values else parent

    # ------------------------------------------------------------------
    # Pass 2: materialization
    # ------------------------------------------------------------------

    def _materialize(
        self,
        root: RowChange,
        adjacency: _Adjacency,
        claimed: set[_RowId],
    ) -> ChangeGroup:
        cfg = self._config
        claimed.add(_row_id(root))
        members: dict[str, list[RowChange]] = {}
        group_ids = [root.primary_key_value]

        # Depth-first over children; attachments of any member join too.
        stack = [root.primary_key_value]
        while stack:
            parent = stack.pop()
            reached: list[str] = []
            for key, rows in (
                (ATTACHMENTS_KEY, adjacency.attachments.get(parent, [])),
                (cfg.primary_table, adjacency.children.get(parent, [])),
            ):
                for row in rows:
                    if _row_id(row) in claimed:
                        continue
                    claimed.add(_row_id(row))
                    members.setdefault(key, []).append(row)
                    group_ids.append(row.primary_key_value)
                    reached.append(row.primary_key_value)
            stack.extend(reversed(reached))

        for rule in [*cfg.metadata, *cfg.related]:
            for target in group_ids:
                for row in adjacency.references.get((rule.table, target), []):
                    if _row_id(row) in claimed:
                        continue
                    claimed.add(_row_id(row))
                    members.setdefault(rule.table, []).append(row)

        title = root.detail_text(cfg.title_column) or root.summary
        return ChangeGroup(
            group_id=f"{cfg.primary_table}:{root.primary_key_value}",
            anchor=root,
            members=members,
            title=title,
            status=root.status,
            kind=root.detail_text(cfg.kind_column) or "",
        )
