"""Pydantic models for conflict handling and synchronization runs.

Defines the data contracts used across the sync modules:

- ``Resolution``: Operator decision for a conflict.
- ``Conflict``: A selected item whose destination diverged from baseline.
- ``SyncOutcome`` / ``SyncResult``: Outcome of applying one item.
- ``SyncReport``: Aggregate results for a full synchronization run.

All models are frozen (immutable) for safety; the resolver produces an
updated copy of a ``Conflict`` rather than mutating it.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from staging_sync.diff.models import ItemRef, ItemType


class Resolution(str, Enum):
    """Operator decision recorded on a conflict."""

    SOURCE = "source"
    DESTINATION = "destination"
    CUSTOM = "custom"


class Conflict(BaseModel):
    """Destination-side divergence detected for one selected item.

    Values are JSON-safe: a fingerprint string for files, a
    column-to-value mapping (comparison form) for rows, ``None`` when the
    item is absent on that side.

    Attributes:
        id: Identifier unique within the owning pair.
        staging_id: Name of the environment pair that owns the conflict.
        item_type: File or database item.
        item_ref: String form of the item reference.
        source_value: Value about to be pushed.
        destination_value: Destination's value at detection time.
        baseline_value: Last value both sides agreed on.
        resolved: Whether an operator decision was recorded.
        resolution: The recorded decision.
        custom_value: Replacement value for ``custom`` resolutions.
        detected_at: ISO 8601 detection timestamp.
        resolved_at: ISO 8601 timestamp of the latest decision.
    """

    id: int
    staging_id: str
    item_type: ItemType
    item_ref: str
    source_value: Any = None
    destination_value: Any = None
    baseline_value: Any = None
    resolved: bool = False
    resolution: Resolution | None = None
    custom_value: Any = None
    detected_at: str
    resolved_at: str | None = None

    model_config = {"frozen": True}

    @property
    def ref(self) -> ItemRef:
        return ItemRef.parse(self.item_ref)


class SyncOutcome(str, Enum):
    """Outcome of applying one item."""

    SUCCESS = "success"
    ERROR = "error"


class SyncResult(BaseModel):
    """Result of applying one item to the destination.

    Attributes:
        item_ref: String form of the item reference.
        outcome: Success or error.
        message: What was done, or why it failed.
    """

    item_ref: str
    outcome: SyncOutcome
    message: str = ""

    model_config = {"frozen": True}

    @property
    def success(self) -> bool:
        return self.outcome is SyncOutcome.SUCCESS


class SyncReport(BaseModel):
    """Aggregate report for a full synchronization run.

    Attributes:
        pair_name: Name of the environment pair.
        dry_run: Whether this was a dry-run (no changes applied).
        aborted: Whether the run stopped before the last item.
        results: One result per selected item, in selection order.
        started_at: ISO 8601 timestamp when the run started.
        completed_at: ISO 8601 timestamp when the run completed.
    """

    pair_name: str
    dry_run: bool = False
    aborted: bool = False
    results: list[SyncResult] = Field(default_factory=list)
    started_at: str
    completed_at: str | None = None

    model_config = {"frozen": True}

    @property
    def succeeded(self) -> list[SyncResult]:
        """Results whose outcome is SUCCESS."""
        return [r for r in self.results if r.success]

    @property
    def errors(self) -> list[SyncResult]:
        """Results whose outcome is ERROR."""
        return [r for r in self.results if not r.success]

    def summary(self) -> str:
        """Format a human-readable summary of the run.

        Returns:
            Multi-line summary string with counts by outcome.
        """
        header = f"Sync report for pair '{self.pair_name}'"
        if self.dry_run:
            header += " (dry run)"
        if self.aborted:
            header += " (aborted)"
        lines = [
            header,
            f"  Succeeded: {len(self.succeeded)}",
            f"  Errors:    {len(self.errors)}",
            f"  Total:     {len(self.results)}",
        ]
        return "\n".join(lines)
