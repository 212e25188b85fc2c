"""Engine facade for one environment pair.

The ``StagingEngine`` ties together the differs, the grouper, the diff
cache, conflict detection, resolution and the synchronizer.  It is
constructed with explicit environments and configuration; nothing is
shared between engines except the per-destination lock table and an
optional ``DiffCache`` passed in by the caller.

Diff results are cached per pair and scope.  Synchronization never
trusts the cache: each selected item is re-diffed against the live
environments right before it is applied, and the cache for the pair is
dropped afterwards.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any, Union

from sqlalchemy.exc import SQLAlchemyError

from staging_sync.config_schema import UnifiedConfig
from staging_sync.core.environment import Environment
from staging_sync.core.hasher import ContentHasher
from staging_sync.diff.cache import DiffCache
from staging_sync.diff.grouper import ChangeGrouper
from staging_sync.diff.models import (
    ChangeGroup,
    ChangeStatus,
    DatabaseDiffReport,
    FileChange,
    FileDiffDetail,
    FileDiffReport,
    GroupedChanges,
    ItemRef,
    ItemType,
    RowChange,
    ScanWarning,
)
from staging_sync.diff.relational import RelationalDiffer, key_order
from staging_sync.diff.tree import TreeDiffer
from staging_sync.diff.walker import ExclusionRules, TreeWalker
from staging_sync.errors import SchemaError
from staging_sync.sync.detector import ConflictDetector
from staging_sync.sync.models import (
    Conflict,
    Resolution,
    SyncOutcome,
    SyncReport,
    SyncResult,
)
from staging_sync.sync.reporter import unified_file_diff
from staging_sync.sync.resolver import ConflictResolver
from staging_sync.sync.state import StagingState
from staging_sync.sync.synchronizer import Change, Synchronizer
from staging_sync.sync.values import ItemReader

logger = logging.getLogger(__name__)

Selectable = Union[str, ItemRef, FileChange, RowChange]

FILES_SCOPE = "files"
DATABASE_SCOPE = "database"


def as_item_ref(item: Selectable) -> ItemRef:
    """Normalize a selected item to an ``ItemRef``.

    Raises:
        ValueError: If a string reference is malformed.
    """
    if isinstance(item, ItemRef):
        return item
    if isinstance(item, (FileChange, RowChange)):
        return item.item_ref
    return ItemRef.parse(str(item))


class StagingEngine:
    """Diff, reconcile and synchronize one source/destination pair.

    Args:
        pair_name: Name of the pair (state file and conflict owner).
        source: Staging environment.
        destination: Production environment.
        config: Exclusions, hashing, grouping and diff settings.
        state: Baseline and conflict store.  Defaults to
            ``./.staging_sync``.
        cache: Shared diff cache.  A private one is created when omitted.
        lock_timeout: Seconds to wait for the destination lock.
    """

    def __init__(
        self,
        pair_name: str,
        source: Environment,
        destination: Environment,
        config: UnifiedConfig | None = None,
        state: StagingState | None = None,
        cache: DiffCache | None = None,
        lock_timeout: float = 30.0,
    ) -> None:
        self.pair_name = pair_name
        self.source = source
        self.destination = destination
        self.config = config or UnifiedConfig()

        self._hasher = ContentHasher(self.config.hashing.binary_extensions)
        self._rules = ExclusionRules.from_config(self.config.exclusions)
        self._tree_differ = TreeDiffer(
            TreeWalker(self._rules),
            self._hasher,
            max_workers=self.config.diff.max_workers,
        )
        self._relational = RelationalDiffer(
            self.config.exclusions, self.config.diff
        )
        self._grouper = ChangeGrouper(self.config.grouping)
        self._reader = ItemReader(self._hasher, self.config.exclusions.columns)

        self._state = state or StagingState(Path(".staging_sync"))
        self._cache = (
            cache
            if cache is not None
            else DiffCache(self.config.diff.cache_ttl_seconds)
        )
        self._detector = ConflictDetector(
            self._state, pair_name, self._reader
        )
        self._resolver = ConflictResolver(self._state, pair_name)
        self._synchronizer = Synchronizer(
            source,
            destination,
            self._state,
            pair_name,
            self._reader,
            lock_timeout=lock_timeout,
        )

    @classmethod
    def from_config(
        cls,
        pair_name: str,
        config: UnifiedConfig,
        cache: DiffCache | None = None,
    ) -> StagingEngine:
        """Open both environments of a configured pair.

        Raises:
            ValueError: If *pair_name* is not configured.
        """
        pair = config.pairs.get(pair_name)
        if pair is None:
            raise ValueError(
                f"Unknown environment pair '{pair_name}'. "
                f"Configured pairs: {sorted(config.pairs)}"
            )
        return cls(
            pair_name,
            Environment.from_config("source", pair.source),
            Environment.from_config("destination", pair.destination),
            config=config,
            state=StagingState(Path(pair.state_dir).expanduser()),
            cache=cache,
            lock_timeout=pair.lock_timeout,
        )

    @property
    def cache_key(self) -> str:
        return f"{self.pair_name}|{self.source.key}->{self.destination.key}"

    def close(self) -> None:
        """Release database connections held by both environments."""
        self.source.close()
        self.destination.close()

    # ------------------------------------------------------------------
    # Diffing
    # ------------------------------------------------------------------

    def file_report(self) -> FileDiffReport:
        """Cached tree diff with scan warnings.

        Raises:
            ValueError: If either side has no file root.
        """
        source = self.source.require_files()
        destination = self.destination.require_files()
        return self._cache.get_or_compute(
            self.cache_key,
            FILES_SCOPE,
            lambda: self._tree_differ.diff(source.root, destination.root),
        )

    def diff_files(self) -> list[FileChange]:
        return list(self.file_report().changes)

    def database_report(self) -> DatabaseDiffReport:
        """Cached relational diff with skipped tables.

        Raises:
            ValueError: If either side has no database.
        """
        source = self.source.require_database()
        destination = self.destination.require_database()
        return self._cache.get_or_compute(
            self.cache_key,
            DATABASE_SCOPE,
            lambda: self._relational.diff(source, destination),
        )

    def diff_database(self) -> list[RowChange]:
        return list(self.database_report().changes)

    def group_view(
        self, rows: Sequence[RowChange] | None = None
    ) -> GroupedChanges:
        """Group *rows* (default: the current database diff)."""
        if rows is None:
            rows = self.diff_database()
        return self._grouper.group(rows)

    def group(self, rows: Sequence[RowChange] | None = None) -> list[ChangeGroup]:
        return list(self.group_view(rows).groups)

    def file_diff(self, path: str) -> FileDiffDetail:
        """Side-by-side detail and unified text diff for one path.

        Raises:
            ValueError: If *path* escapes the roots or a side has no
                file root.
        """
        source = self.source.require_files()
        destination = self.destination.require_files()
        src_exists = source.exists(path)
        dst_exists = destination.exists(path)
        binary = self._hasher.is_binary(path)

        diff = None
        if not binary and (src_exists or dst_exists):
            diff = unified_file_diff(
                source.read_bytes(path) if src_exists else None,
                destination.read_bytes(path) if dst_exists else None,
                path,
            )

        return FileDiffDetail(
            relative_path=path,
            is_binary=binary,
            source_exists=src_exists,
            destination_exists=dst_exists,
            source_size=source.size(path) if src_exists else None,
            destination_size=destination.size(path) if dst_exists else None,
            diff=diff,
        )

    def row_diff(self, table: str, key: str) -> RowChange | None:
        """Live diff of one row; ``None`` when both sides agree.

        Raises:
            SchemaError: If the table is missing or has no usable key.
        """
        return self._relational.diff_row(
            self.source.require_database(),
            self.destination.require_database(),
            table,
            str(key),
        )

    def invalidate_cache(self) -> int:
        """Drop every cached diff of this pair; return how many."""
        return self._cache.invalidate(self.cache_key)

    # ------------------------------------------------------------------
    # Conflicts
    # ------------------------------------------------------------------

    def detect_conflicts(self, selected: Iterable[Selectable]) -> list[Conflict]:
        """Record and return the unresolved conflicts among *selected*."""
        refs = _unique_refs(selected)
        return self._detector.detect(refs, self.source, self.destination)

    def resolve_conflict(
        self,
        conflict_id: int,
        resolution: str | Resolution,
        custom_value: Any = None,
    ) -> Any:
        return self._resolver.resolve(conflict_id, resolution, custom_value)

    def resolution_options(self, conflict_id: int) -> dict[str, str]:
        return self._resolver.options(conflict_id)

    def list_conflicts(self, include_resolved: bool = True) -> list[Conflict]:
        """Conflicts owned by this pair, ordered by id."""
        state = self._state.load(self.pair_name)
        conflicts = self._state.conflicts(state)
        if include_resolved:
            return conflicts
        return [c for c in conflicts if not c.resolved]

    def capture_baseline(
        self, selected: Iterable[Selectable] | None = None
    ) -> int:
        """Record the destination's current values as baselines.

        With no selection, every in-scope file and row of the
        destination is recorded.

        Returns:
            Number of baselines written.
        """
        if selected is None:
            values = self._snapshot_destination()
        else:
            values = {}
            for ref in _unique_refs(selected):
                try:
                    values[str(ref)] = self._reader.value(self.destination, ref)
                except (OSError, SQLAlchemyError, SchemaError, ValueError) as exc:
                    logger.warning("Cannot capture baseline for %s: %s", ref, exc)

        with self._state.transaction(self.pair_name) as state:
            for item_ref, value in values.items():
                self._state.set_baseline(state, item_ref, value)
        logger.info(
            "Captured %d baseline(s) for pair '%s'", len(values), self.pair_name
        )
        return len(values)

    def _snapshot_destination(self) -> dict[str, Any]:
        values: dict[str, Any] = {}
        if self.destination.files is not None:
            warnings: list[ScanWarning] = []
            fingerprints = self._tree_differ.fingerprint_tree(
                self.destination.files.root, "destination", warnings
            )
            values.update(fingerprints)

        database = self.destination.database
        if database is not None:
            excluded = set(self.config.exclusions.tables)
            batch = self.config.diff.fetch_batch_size
            for table in database.list_tables():
                if table in excluded:
                    continue
                try:
                    pk = database.primary_key(table)
                    keys = database.fetch_keys(table, pk)
                    rows = database.fetch_rows(
                        table, pk, list(keys.values()), batch
                    )
                except (SchemaError, SQLAlchemyError) as exc:
                    logger.warning("Baseline skips table %s: %s", table, exc)
                    continue
                for key in sorted(rows, key=key_order):
                    ref = ItemRef.row(table, key)
                    values[str(ref)] = self._reader.snapshot(rows[key])
        return values

    # ------------------------------------------------------------------
    # Synchronization
    # ------------------------------------------------------------------

    def synchronize_report(
        self,
        selected: Iterable[Selectable],
        dry_run: bool = False,
        abort: threading.Event | None = None,
    ) -> SyncReport:
        """Apply the selected items and return the full run report.

        Each item is re-diffed against the live environments first; an
        item that no longer differs succeeds as a no-op.  The rest are
        checked for conflicts, so an item whose destination moved since
        its baseline is blocked even when nobody asked for detection.

        Raises:
            SyncInProgressError: If another run holds the destination.
        """
        refs = _unique_refs(selected)
        pending: list[Change] = []
        settled: dict[str, SyncResult] = {}
        for ref in refs:
            try:
                change = self._current_change(ref)
            except (OSError, SQLAlchemyError, SchemaError, ValueError) as exc:
                logger.error("Cannot diff %s: %s", ref, exc)
                settled[str(ref)] = SyncResult(
                    item_ref=str(ref), outcome=SyncOutcome.ERROR, message=str(exc)
                )
                continue
            if change is None:
                settled[str(ref)] = SyncResult(
                    item_ref=str(ref),
                    outcome=SyncOutcome.SUCCESS,
                    message="No changes.",
                )
            else:
                pending.append(change)

        if pending:
            self._detector.detect(
                [change.item_ref for change in pending],
                self.source,
                self.destination,
            )

        try:
            report = self._synchronizer.apply(pending, dry_run=dry_run, abort=abort)
        finally:
            if not dry_run:
                self.invalidate_cache()

        applied = {r.item_ref: r for r in report.results}
        ordered = [
            settled.get(str(ref)) or applied[str(ref)] for ref in refs
        ]
        return report.model_copy(update={"results": ordered})

    def synchronize(
        self,
        selected: Iterable[Selectable],
        abort: threading.Event | None = None,
    ) -> list[SyncResult]:
        """Apply the selected items; one result per item, in order."""
        return list(self.synchronize_report(selected, abort=abort).results)

    def _current_change(self, ref: ItemRef) -> Change | None:
        if ref.item_type is ItemType.FILE:
            return self._current_file_change(ref.path or "")
        table = ref.table or ""
        if table in self.config.exclusions.tables:
            raise ValueError(f"Table {table} is excluded from synchronization")
        return self.row_diff(table, ref.key or "")

    def _current_file_change(self, path: str) -> FileChange | None:
        if self._rules.is_excluded(path):
            raise ValueError(f"{path} is excluded from synchronization")
        src = self._reader.file_value(self.source, path)
        dst = self._reader.file_value(self.destination, path)
        if src == dst:
            return None
        if dst is None:
            status = ChangeStatus.ADDED
        elif src is None:
            status = ChangeStatus.DELETED
        else:
            status = ChangeStatus.MODIFIED
        return FileChange(
            relative_path=path,
            status=status,
            source_hash=src,
            destination_hash=dst,
        )

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        """Reachability, state location and conflict counts for the pair."""
        conflicts = self.list_conflicts()
        return {
            "pair": self.pair_name,
            "source": {
                "files": str(self.source.files.root) if self.source.files else None,
                "database": self.source.database is not None,
                "reachable": self.source.is_reachable(),
            },
            "destination": {
                "files": (
                    str(self.destination.files.root)
                    if self.destination.files
                    else None
                ),
                "database": self.destination.database is not None,
                "reachable": self.destination.is_reachable(),
            },
            "conflicts": {
                "open": sum(1 for c in conflicts if not c.resolved),
                "resolved": sum(1 for c in conflicts if c.resolved),
            },
        }


def _unique_refs(selected: Iterable[Selectable]) -> list[ItemRef]:
    refs: list[ItemRef] = []
    seen: set[str] = set()
    for item in selected:
        ref = as_item_ref(item)
        if str(ref) not in seen:
            seen.add(str(ref))
            refs.append(ref)
    return refs
