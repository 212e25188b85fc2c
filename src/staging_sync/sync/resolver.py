"""Conflict resolution strategies.

Provides one strategy per operator decision:

- ``KeepSourceStrategy``: Push the staging value over the destination.
- ``KeepDestinationStrategy``: Leave the destination untouched.
- ``CustomValueStrategy``: Write an operator-supplied value.

The ``create_strategy()`` factory maps resolution strings to strategy
instances; ``ConflictResolver`` records the decision on the stored
conflict.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Protocol

from staging_sync.diff.models import ItemType
from staging_sync.errors import ConflictError
from staging_sync.sync.models import Conflict, Resolution
from staging_sync.sync.state import StagingState

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class ResolutionStrategy(Protocol):
    """Protocol that all resolution strategies must satisfy."""

    resolution: Resolution

    def final_value(self, conflict: Conflict, custom_value: Any) -> Any:
        """Return the value the item should end up with.

        Args:
            conflict: The conflict being resolved.
            custom_value: Operator-supplied value, if any.

        Raises:
            ValueError: If *custom_value* is unusable for this strategy.
        """
        ...  # pragma: no cover


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class KeepSourceStrategy:
    """Resolve in favour of the staging value."""

    resolution = Resolution.SOURCE

    def final_value(self, conflict: Conflict, custom_value: Any) -> Any:
        return conflict.source_value


class KeepDestinationStrategy:
    """Resolve in favour of the destination's current value."""

    resolution = Resolution.DESTINATION

    def final_value(self, conflict: Conflict, custom_value: Any) -> Any:
        return conflict.destination_value


class CustomValueStrategy:
    """Resolve with an operator-supplied value.

    For files the value is the new text content.  For rows it is a
    mapping of column overrides; a bare scalar is accepted when exactly
    one column differs between the two sides, and is stored as a
    one-entry mapping for that column.
    """

    resolution = Resolution.CUSTOM

    def final_value(self, conflict: Conflict, custom_value: Any) -> Any:
        if custom_value is None:
            raise ValueError("A custom resolution requires a custom value")

        if conflict.item_type is ItemType.FILE:
            if not isinstance(custom_value, str):
                raise ValueError("Custom value for a file must be text content")
            return custom_value

        if isinstance(custom_value, Mapping):
            return {str(k): v for k, v in custom_value.items()}

        columns = _differing_columns(
            conflict.source_value, conflict.destination_value
        )
        if len(columns) != 1:
            raise ValueError(
                "Custom value for a row must be a column mapping when "
                f"{len(columns)} columns differ"
            )
        return {columns[0]: custom_value}


def _differing_columns(source: Any, destination: Any) -> list[str]:
    source = source or {}
    destination = destination or {}
    names = sorted(set(source) | set(destination))
    return [n for n in names if source.get(n) != destination.get(n)]


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_STRATEGY_MAP: dict[str, type] = {
    "source": KeepSourceStrategy,
    "keep-source": KeepSourceStrategy,
    "destination": KeepDestinationStrategy,
    "keep-destination": KeepDestinationStrategy,
    "custom": CustomValueStrategy,
}


def create_strategy(resolution: str | Resolution) -> ResolutionStrategy:
    """Create the strategy for a resolution string.

    Args:
        resolution: One of ``"source"``/``"keep-source"``,
            ``"destination"``/``"keep-destination"`` or ``"custom"``.

    Raises:
        ValueError: If the resolution is not recognised.
    """
    name = resolution.value if isinstance(resolution, Resolution) else resolution
    cls = _STRATEGY_MAP.get(name)
    if cls is None:
        raise ValueError(
            f"Unknown resolution: '{name}'. Valid resolutions: {sorted(_STRATEGY_MAP.keys())}"
        )
    return cls()  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class ConflictResolver:
    """Record operator decisions on stored conflicts.

    Args:
        state_store: Baseline and conflict persistence.
        pair_name: Owning environment pair.
    """

    def __init__(self, state_store: StagingState, pair_name: str) -> None:
        self._store = state_store
        self._pair = pair_name

    def resolve(
        self,
        conflict_id: int,
        resolution: str | Resolution,
        custom_value: Any = None,
    ) -> Any:
        """Mark a conflict resolved and return the value it will take.

        Resolving an already-resolved conflict overwrites the earlier
        decision.

        Raises:
            ConflictError: If no conflict has that id.
            ValueError: If the resolution is unknown or the custom value
                is missing or unusable.
        """
        strategy = create_strategy(resolution)
        with self._store.transaction(self._pair) as state:
            conflict = self._store.get_conflict(state, conflict_id)
            if conflict is None:
                raise ConflictError(f"Conflict {conflict_id} not found")

            final = strategy.final_value(conflict, custom_value)
            updated = conflict.model_copy(
                update={
                    "resolved": True,
                    "resolution": strategy.resolution,
                    "custom_value": (
                        final
                        if strategy.resolution is Resolution.CUSTOM
                        else None
                    ),
                    "resolved_at": datetime.now(timezone.utc).isoformat(),
                }
            )
            self._store.put_conflict(state, updated)

        logger.info(
            "Conflict #%d (%s) resolved: %s",
            conflict_id,
            conflict.item_ref,
            strategy.resolution.value,
        )
        return final

    def options(self, conflict_id: int) -> dict[str, str]:
        """Describe the decisions available for a conflict.

        Raises:
            ConflictError: If no conflict has that id.
        """
        state = self._store.load(self._pair)
        conflict = self._store.get_conflict(state, conflict_id)
        if conflict is None:
            raise ConflictError(f"Conflict {conflict_id} not found")

        noun = "file" if conflict.item_type is ItemType.FILE else "row"
        return {
            Resolution.SOURCE.value: f"Overwrite the destination {noun} with the staging version",
            Resolution.DESTINATION.value: f"Keep the destination {noun} as it is",
            Resolution.CUSTOM.value: f"Write a custom value to the destination {noun}",
        }
