"""Apply selected changes from the source to the destination.

Each selected item is applied independently: a failure is recorded as
an ``ERROR`` result and the run moves on, except when the destination
itself stops answering, in which case the items not yet attempted are
reported as ``destination unavailable`` without being tried.

After an item is applied its baseline is advanced to the value now in
the destination.  A keep-source conflict record is cleared then; a
keep-destination or custom decision is kept until the source value
changes, so a second run over the same selection lands on the same
destination state.  State is saved after each applied item.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from typing import Any, Union

from sqlalchemy.exc import SQLAlchemyError

from staging_sync.core.environment import Environment
from staging_sync.diff.models import (
    ChangeStatus,
    FieldValue,
    FileChange,
    RowChange,
    values_equal,
)
from staging_sync.errors import (
    ApplyError,
    ConflictError,
    DestinationUnavailableError,
    SchemaError,
    SyncInProgressError,
)
from staging_sync.sync.models import (
    Conflict,
    Resolution,
    SyncOutcome,
    SyncReport,
    SyncResult,
)
from staging_sync.sync.state import StagingState
from staging_sync.sync.values import ItemReader

logger = logging.getLogger(__name__)

Change = Union[FileChange, RowChange]

_DESTINATION_LOCKS: dict[str, threading.Lock] = {}
_DESTINATION_LOCKS_GUARD = threading.Lock()

UNAVAILABLE = "destination unavailable"
ABORTED = "run aborted"


def destination_lock(key: str) -> threading.Lock:
    """Return the process-wide lock guarding writes to destination *key*."""
    with _DESTINATION_LOCKS_GUARD:
        return _DESTINATION_LOCKS.setdefault(key, threading.Lock())


class _KeptDestination(Exception):
    """Item skipped because its conflict was resolved in the destination's favour."""


class Synchronizer:
    """Push changes for one environment pair.

    Args:
        source: Staging side (read only).
        destination: Side that receives the changes.
        state_store: Baseline and conflict persistence.
        pair_name: Name of the environment pair.
        reader: Reads comparable item values for baselines.
        lock_timeout: Seconds to wait for another run on the same
            destination before giving up.
    """

    def __init__(
        self,
        source: Environment,
        destination: Environment,
        state_store: StagingState,
        pair_name: str,
        reader: ItemReader,
        lock_timeout: float = 30.0,
    ) -> None:
        self._source = source
        self._destination = destination
        self._store = state_store
        self._pair = pair_name
        self._reader = reader
        self._lock_timeout = lock_timeout

    def apply(
        self,
        changes: Sequence[Change],
        dry_run: bool = False,
        abort: threading.Event | None = None,
    ) -> SyncReport:
        """Apply *changes* in order and report one result per item.

        Args:
            changes: Selected changes, in the order to apply them.
            dry_run: Describe what would happen without writing anything.
            abort: When set, items not yet started are reported as
                errors and the run stops.

        Raises:
            SyncInProgressError: If another run holds the destination
                lock for longer than ``lock_timeout``.
        """
        started_at = datetime.now(timezone.utc).isoformat()

        if dry_run:
            state = self._store.load(self._pair)
            results = [self._preview(change, state) for change in changes]
            return SyncReport(
                pair_name=self._pair,
                dry_run=True,
                results=results,
                started_at=started_at,
                completed_at=datetime.now(timezone.utc).isoformat(),
            )

        lock = destination_lock(self._destination.key)
        if not lock.acquire(timeout=self._lock_timeout):
            raise SyncInProgressError(
                f"Another synchronization is running against the "
                f"{self._destination.name} environment"
            )
        try:
            with self._store.transaction(self._pair) as state:
                results, aborted = self._apply_all(changes, state, abort)
        finally:
            lock.release()

        report = SyncReport(
            pair_name=self._pair,
            aborted=aborted,
            results=results,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc).isoformat(),
        )
        logger.info(
            "Sync of pair '%s': %d succeeded, %d failed%s",
            self._pair,
            len(report.succeeded),
            len(report.errors),
            " (aborted)" if aborted else "",
        )
        return report

    # ------------------------------------------------------------------
    # Run loop
    # ------------------------------------------------------------------

    def _apply_all(
        self,
        changes: Sequence[Change],
        state: dict,
        abort: threading.Event | None,
    ) -> tuple[list[SyncResult], bool]:
        results: list[SyncResult] = []

        if changes and not self._destination.is_reachable():
            logger.error("Destination unreachable; nothing applied")
            return self._fail_rest(changes, UNAVAILABLE), True

        for index, change in enumerate(changes):
            ref = str(change.item_ref)
            if abort is not None and abort.is_set():
                logger.warning("Run aborted before %s", ref)
                results.extend(self._fail_rest(changes[index:], ABORTED))
                return results, True

            try:
                override = self._override_for(change, state)
                if isinstance(change, FileChange):
                    message = self._apply_file(change, override)
                else:
                    message = self._apply_row(change, override)
            except _KeptDestination as kept:
                results.append(_success(ref, str(kept)))
                self._store.save(self._pair, state)
            except ConflictError as exc:
                results.append(_error(ref, str(exc)))
            except (
                ApplyError,
                OSError,
                SchemaError,
                SQLAlchemyError,
                ValueError,
            ) as exc:
                logger.error("Failed to apply %s: %s", ref, exc)
                if isinstance(
                    exc, DestinationUnavailableError
                ) or not self._destination.is_reachable():
                    results.append(_error(ref, f"{UNAVAILABLE}: {exc}"))
                    results.extend(
                        self._fail_rest(changes[index + 1 :], UNAVAILABLE)
                    )
                    return results, True
                results.append(_error(ref, str(exc)))
            else:
                results.append(_success(ref, message))
                # A custom value still differs from the source; its
                # record keeps later runs from pushing the source over it.
                self._advance_baseline(
                    change, state, keep_decision=override is not None
                )
                self._store.save(self._pair, state)

        return results, False

    def _decision_stands(self, conflict: Conflict, change: Change) -> bool:
        """Whether a resolved conflict still applies to the live source.

        A decision is about the source value seen at detection time; once
        the source moves on, it no longer covers the item.
        """
        current = self._reader.value(self._source, change.item_ref)
        return current == conflict.source_value

    def _override_for(self, change: Change, state: dict) -> Any:
        """Return the custom value to write, or ``None`` to push the source.

        Keep-destination and custom decisions stay recorded, so every
        later run over the same source value honours them again.

        Raises:
            ConflictError: The item has an unresolved conflict.
            _KeptDestination: The conflict was resolved for the destination.
        """
        ref = str(change.item_ref)
        conflict = self._store.conflict_for_item(state, ref)
        if conflict is None:
            return None
        if not conflict.resolved:
            raise ConflictError(
                f"Unresolved conflict #{conflict.id}; resolve it before syncing"
            )
        if not self._decision_stands(conflict, change):
            logger.info(
                "Source of %s changed since conflict #%d was resolved; "
                "dropping the decision",
                ref,
                conflict.id,
            )
            self._store.remove_conflicts_for_item(state, ref)
            return None
        if conflict.resolution is Resolution.DESTINATION:
            self._store.set_baseline(
                state, ref, self._reader.value(self._destination, change.item_ref)
            )
            raise _KeptDestination(
                f"Kept destination value (conflict #{conflict.id})"
            )
        if conflict.resolution is Resolution.CUSTOM:
            return conflict.custom_value
        return None

    def _advance_baseline(
        self, change: Change, state: dict, keep_decision: bool = False
    ) -> None:
        ref = str(change.item_ref)
        if not keep_decision:
            self._store.remove_conflicts_for_item(state, ref)
        try:
            value = self._reader.value(self._destination, change.item_ref)
        except (OSError, SQLAlchemyError, SchemaError, ValueError) as exc:
            logger.warning("Cannot record baseline for %s: %s", ref, exc)
            self._store.remove_baseline(state, ref)
            return
        self._store.set_baseline(state, ref, value)

    @staticmethod
    def _fail_rest(changes: Sequence[Change], message: str) -> list[SyncResult]:
        return [_error(str(c.item_ref), message) for c in changes]

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def _apply_file(self, change: FileChange, override: Any) -> str:
        path = change.relative_path
        destination = self._destination.require_files()

        if override is not None:
            destination.write_bytes(path, str(override).encode("utf-8"))
            return "Wrote custom content."

        match change.status:
            case ChangeStatus.ADDED | ChangeStatus.MODIFIED:
                source = self._source.require_files()
                data = source.read_bytes(path)
                destination.write_bytes(path, data, mode=source.mode(path))
                verb = "Created" if change.status is ChangeStatus.ADDED else "Updated"
                return f"{verb} file ({len(data)} bytes)."
            case ChangeStatus.DELETED:
                if destination.remove(path):
                    return "Deleted file."
                return "File already deleted."
        raise ApplyError(f"Unsupported change status: {change.status}")

    # ------------------------------------------------------------------
    # Rows
    # ------------------------------------------------------------------

    def _apply_row(self, change: RowChange, override: Any) -> str:
        database = self._destination.require_database()
        table, key = change.table, change.primary_key_value
        overrides = dict(override) if isinstance(override, Mapping) else {}

        match change.status:
            case ChangeStatus.ADDED:
                values = {c: v.value for c, v in change.details.items()}
                values.update(overrides)
                existing = database.fetch_row(table, key)
                if existing is None:
                    database.insert_row(table, values)
                    return "Inserted row."
                if _row_matches(existing, values):
                    return "Row already present."
                database.update_row(table, key, values)
                return "Updated existing row."

            case ChangeStatus.MODIFIED:
                values = {
                    column: diff.source_value.value
                    for column, diff in change.field_diffs.items()
                }
                values.update(overrides)
                if not values:
                    return "No changes."
                if database.update_row(table, key, values) == 0:
                    raise ApplyError(
                        f"Row {key} not found in destination table {table}"
                    )
                return f"Updated {len(values)} column(s)."

            case ChangeStatus.DELETED:
                if overrides:
                    if database.update_row(table, key, overrides) == 0:
                        raise ApplyError(
                            f"Row {key} not found in destination table {table}"
                        )
                    return "Kept row with custom values."
                if database.delete_row(table, key):
                    return "Deleted row."
                return "Row already deleted."
        raise ApplyError(f"Unsupported change status: {change.status}")

    # ------------------------------------------------------------------
    # Dry run
    # ------------------------------------------------------------------

    def _preview(self, change: Change, state: dict) -> SyncResult:
        ref = str(change.item_ref)
        conflict = self._store.conflict_for_item(state, ref)
        if conflict is not None:
            if not conflict.resolved:
                return _error(
                    ref,
                    f"Unresolved conflict #{conflict.id}; resolve it before syncing",
                )
            try:
                stands = self._decision_stands(conflict, change)
            except (OSError, SQLAlchemyError, SchemaError, ValueError) as exc:
                return _error(ref, str(exc))
            if stands and conflict.resolution is Resolution.DESTINATION:
                return _success(ref, "Would keep destination value.")
            if stands and conflict.resolution is Resolution.CUSTOM:
                return _success(ref, "Would write custom value.")

        noun = "file" if isinstance(change, FileChange) else "row"
        match change.status:
            case ChangeStatus.ADDED:
                return _success(ref, f"Would create {noun}.")
            case ChangeStatus.MODIFIED:
                return _success(ref, f"Would update {noun}.")
            case _:
                return _success(ref, f"Would delete {noun}.")


def _row_matches(existing: Mapping[str, FieldValue], values: Mapping[str, Any]) -> bool:
    return all(
        values_equal(
            existing.get(column, FieldValue.of(None)), FieldValue.of(value)
        )
        for column, value in values.items()
    )


def _success(ref: str, message: str) -> SyncResult:
    return SyncResult(item_ref=ref, outcome=SyncOutcome.SUCCESS, message=message)


def _error(ref: str, message: str) -> SyncResult:
    return SyncResult(item_ref=ref, outcome=SyncOutcome.ERROR, message=message)
