"""Conflict detection against recorded baselines.

An item conflicts when the destination's current value differs from the
baseline recorded for it, meaning the destination changed on its own
since the two environments last agreed.  Items without a baseline cannot
be proven divergent and are let through.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError

from staging_sync.core.environment import Environment
from staging_sync.diff.models import ItemRef
from staging_sync.errors import SchemaError
from staging_sync.sync.models import Conflict
from staging_sync.sync.state import StagingState
from staging_sync.sync.values import ItemReader

logger = logging.getLogger(__name__)


class ConflictDetector:
    """Flag selected items whose destination diverged from baseline.

    Args:
        state_store: Baseline and conflict persistence.
        pair_name: Owning environment pair (recorded as ``staging_id``).
        reader: Reads current item values from an environment.
    """

    def __init__(
        self,
        state_store: StagingState,
        pair_name: str,
        reader: ItemReader,
    ) -> None:
        self._store = state_store
        self._pair = pair_name
        self._reader = reader

    def detect(
        self,
        selected: Sequence[ItemRef],
        source: Environment,
        destination: Environment,
    ) -> list[Conflict]:
        """Check *selected* items and record new conflicts.

        Returns:
            The unresolved conflicts for the selected items: newly
            detected ones plus any still open from an earlier call.  An
            item never gets a second record.  A resolved conflict stands
            while the source value it was decided on is unchanged; once
            the source moves on the record is dropped and the item is
            checked against its baseline again.
        """
        found: list[Conflict] = []
        with self._store.transaction(self._pair) as state:
            for ref in selected:
                item_ref = str(ref)
                existing = self._store.conflict_for_item(state, item_ref)
                if existing is not None:
                    if not existing.resolved:
                        found.append(existing)
                        continue
                    try:
                        current_source = self._reader.value(source, ref)
                    except (OSError, SQLAlchemyError, SchemaError, ValueError) as exc:
                        logger.error(
                            "Cannot check %s for conflicts: %s", item_ref, exc
                        )
                        continue
                    if current_source == existing.source_value:
                        continue
                    logger.info(
                        "Source of %s changed since conflict #%d was resolved; "
                        "checking it again",
                        item_ref,
                        existing.id,
                    )
                    self._store.remove_conflicts_for_item(state, item_ref)

                if not self._store.has_baseline(state, item_ref):
                    logger.debug(
                        "No baseline for %s; treating as non-conflicting",
                        item_ref,
                    )
                    continue

                baseline = self._store.get_baseline(state, item_ref)
                try:
                    current = self._reader.value(destination, ref)
                    if current == baseline:
                        continue
                    pushed = self._reader.value(source, ref)
                except (OSError, SQLAlchemyError, SchemaError, ValueError) as exc:
                    logger.error(
                        "Cannot check %s for conflicts: %s", item_ref, exc
                    )
                    continue

                conflict = Conflict(
                    id=self._store.allocate_conflict_id(state),
                    staging_id=self._pair,
                    item_type=ref.item_type,
                    item_ref=item_ref,
                    source_value=pushed,
                    destination_value=current,
                    baseline_value=baseline,
                    detected_at=datetime.now(timezone.utc).isoformat(),
                )
                self._store.put_conflict(state, conflict)
                logger.info(
                    "Conflict #%d: %s changed in destination since baseline",
                    conflict.id,
                    item_ref,
                )
                found.append(conflict)
        return found
