"""Relational differ: row-level diff of paired tables by primary key.

For every logical table present on both sides (and not excluded):

1. Discover the single-column primary key on each side.
2. Fetch both key sets; set differences give added and deleted keys.
3. Fetch rows for common keys in batches and compare every
   non-excluded column with normalized-value equality.
4. Drop rows matched by an ignored-row rule (e.g. transient caches).

Tables are processed by one worker each.  A table that cannot be
diffed (missing on one side, no usable key, read failure) is skipped
and reported; the other tables are unaffected.
"""

from __future__ import annotations

import fnmatch
import logging
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from staging_sync.config_schema import DiffConfig, ExclusionConfig
from staging_sync.core.database import RelationalSource
from staging_sync.diff.models import (
    ChangeStatus,
    DatabaseDiffReport,
    FieldDiff,
    FieldValue,
    Row,
    RowChange,
    SkippedTable,
    values_equal,
)
from staging_sync.errors import SchemaError

logger = logging.getLogger(__name__)

_NULL = FieldValue.of(None)


def key_order(key: str) -> tuple[int, Any]:
    """Sort key placing numeric primary keys in numeric order."""
    stripped = key.lstrip("-")
    if stripped.isdigit():
        return (0, int(key))
    return (1, key)


def _chunked(items: Sequence[str], size: int) -> Iterable[Sequence[str]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


class RelationalDiffer:
    """Diff the tables of two relational sources.

    Args:
        exclusions: Excluded tables, columns and ignored-row rules.
        diff_config: Worker count, batch size and entry-name columns.
    """

    def __init__(
        self,
        exclusions: ExclusionConfig | None = None,
        diff_config: DiffConfig | None = None,
    ) -> None:
        self._exclusions = exclusions or ExclusionConfig()
        self._config = diff_config or DiffConfig()
        self._excluded_tables = frozenset(self._exclusions.tables)
        self._excluded_columns = frozenset(self._exclusions.columns)

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    def diff(
        self, source: RelationalSource, destination: RelationalSource
    ) -> DatabaseDiffReport:
        """Diff every paired, non-excluded table.

        Returns:
            A ``DatabaseDiffReport`` with changes ordered by table, then
            primary key, plus the tables that were skipped.
        """
        source_tables = set(source.list_tables()) - self._excluded_tables
        destination_tables = (
            set(destination.list_tables()) - self._excluded_tables
        )

        skipped: list[SkippedTable] = []
        for table in sorted(source_tables ^ destination_tables):
            side = "destination" if table in source_tables else "source"
            logger.warning("Skipping table %s: missing in %s", table, side)
            skipped.append(
                SkippedTable(table=table, reason=f"table missing in {side}")
            )

        paired = sorted(source_tables & destination_tables)
        changes: list[RowChange] = []
        if paired:
            workers = min(len(paired), self._config.max_workers)
            with ThreadPoolExecutor(
                max_workers=workers, thread_name_prefix="diff-table"
            ) as pool:
                futures = {
                    table: pool.submit(
                        self.diff_table, source, destination, table
                    )
                    for table in paired
                }
                for table, future in futures.items():
                    try:
                        changes.extend(future.result())
                    except SchemaError as exc:
                        logger.warning("Skipping table %s", exc)
                        skipped.append(
                            SkippedTable(table=table, reason=exc.reason)
                        )
                    except SQLAlchemyError as exc:
                        logger.error("Failed to diff table %s: %s", table, exc)
                        skipped.append(
                            SkippedTable(
                                table=table, reason=f"read failed: {exc}"
                            )
                        )

        logger.info(
            "Database diff: %d change(s) across %d table(s), %d skipped",
            len(changes),
            len(paired),
            len(skipped),
        )
        return DatabaseDiffReport(
            changes=changes,
            skipped_tables=sorted(skipped, key=lambda s: s.table),
            generated_at=datetime.now(timezone.utc).isoformat(),
        )

    # ------------------------------------------------------------------
    # Per-table diff
    # ------------------------------------------------------------------

    def diff_table(
        self,
        source: RelationalSource,
        destination: RelationalSource,
        table: str,
    ) -> list[RowChange]:
        """Diff one logical table.

        Raises:
            SchemaError: If either side lacks a single-column primary key,
                or the two sides disagree on it.
        """
        pk = source.primary_key(table)
        destination_pk = destination.primary_key(table)
        if pk != destination_pk:
            raise SchemaError(
                table,
                f"primary key differs (source {pk!r}, "
                f"destination {destination_pk!r})",
            )

        source_keys = source.fetch_keys(table, pk)
        destination_keys = destination.fetch_keys(table, pk)
        batch = self._config.fetch_batch_size

        added = sorted(source_keys.keys() - destination_keys.keys())
        deleted = sorted(destination_keys.keys() - source_keys.keys())
        common = sorted(
            source_keys.keys() & destination_keys.keys(), key=key_order
        )

        changes: list[RowChange] = []

        added_rows = source.fetch_rows(
            table, pk, [source_keys[k] for k in added], batch
        )
        for key, row in added_rows.items():
            changes.append(
                self._make_change(table, pk, key, ChangeStatus.ADDED, row)
            )

        deleted_rows = destination.fetch_rows(
            table, pk, [destination_keys[k] for k in deleted], batch
        )
        for key, row in deleted_rows.items():
            changes.append(
                self._make_change(table, pk, key, ChangeStatus.DELETED, row)
            )

        for chunk in _chunked(common, batch):
            source_rows = source.fetch_rows(
                table, pk, [source_keys[k] for k in chunk], batch
            )
            destination_rows = destination.fetch_rows(
                table, pk, [destination_keys[k] for k in chunk], batch
            )
            for key in chunk:
                src_row = source_rows.get(key)
                dst_row = destination_rows.get(key)
                if src_row is None or dst_row is None:
                    # Deleted between key fetch and row fetch.
                    continue
                field_diffs = self.compare_rows(pk, src_row, dst_row)
                if field_diffs:
                    changes.append(
                        self._make_change(
                            table,
                            pk,
                            key,
                            ChangeStatus.MODIFIED,
                            src_row,
                            field_diffs,
                        )
                    )

        changes = [c for c in changes if not self.is_ignored(c)]
        changes.sort(key=lambda c: key_order(c.primary_key_value))
        logger.debug("Table %s: %d change(s)", table, len(changes))
        return changes

    def diff_row(
        self,
        source: RelationalSource,
        destination: RelationalSource,
        table: str,
        key: str,
    ) -> RowChange | None:
        """Diff a single row; ``None`` when both sides agree or both lack it."""
        pk = source.primary_key(table)
        src_row = source.fetch_row(table, key)
        dst_row = destination.fetch_row(table, key)
        if src_row is None and dst_row is None:
            return None
        if dst_row is None:
            change = self._make_change(
                table, pk, key, ChangeStatus.ADDED, src_row
            )
        elif src_row is None:
            change = self._make_change(
                table, pk, key, ChangeStatus.DELETED, dst_row
            )
        else:
            field_diffs = self.compare_rows(pk, src_row, dst_row)
            if not field_diffs:
                return None
            change = self._make_change(
                table, pk, key, ChangeStatus.MODIFIED, src_row, field_diffs
            )
        return None if self.is_ignored(change) else change

    # ------------------------------------------------------------------
    # Comparison helpers
    # ------------------------------------------------------------------

    def compare_rows(
        self, pk: str, source_row: Row, destination_row: Row
    ) -> dict[str, FieldDiff]:
        """Per-column differences between two rows, excluded columns skipped."""
        diffs: dict[str, FieldDiff] = {}
        columns = list(source_row)
        columns.extend(c for c in destination_row if c not in source_row)
        for column in columns:
            if column == pk or column in self._excluded_columns:
                continue
            src = source_row.get(column, _NULL)
            dst = destination_row.get(column, _NULL)
            if not values_equal(src, dst):
                diffs[column] = FieldDiff(
                    source_value=src, destination_value=dst
                )
        return diffs

    def is_ignored(self, change: RowChange) -> bool:
        """``True`` if an ignored-row rule matches *change*."""
        for rule in self._exclusions.ignored_rows:
            if rule.table != change.table:
                continue
            value = change.detail_text(rule.column)
            if value is None:
                continue
            if any(fnmatch.fnmatchcase(value, p) for p in rule.patterns):
                return True
        return False

    def entry_name(self, table: str, row: Row) -> str | None:
        """Human-readable name of a row, from the configured name columns."""
        candidates = self._config.name_columns.get(
            table, self._config.fallback_name_columns
        )
        for column in candidates:
            value = row.get(column)
            if value is not None and not value.is_blank:
                return str(value.to_json())
        return None

    def _make_change(
        self,
        table: str,
        pk: str,
        key: str,
        status: ChangeStatus,
        row: Row,
        field_diffs: dict[str, FieldDiff] | None = None,
    ) -> RowChange:
        match status:
            case ChangeStatus.ADDED:
                summary = f"New entry with ID {key}"
            case ChangeStatus.DELETED:
                summary = f"Entry with ID {key} deleted"
            case _:
                name = self.entry_name(table, row)
                summary = (
                    f'Changes to "{name}"'
                    if name
                    else f"Entry with ID {key} modified"
                )
        return RowChange(
            table=table,
            primary_key_column=pk,
            primary_key_value=key,
            status=status,
            field_diffs=field_diffs or {},
            summary=summary,
            details=row,
        )
