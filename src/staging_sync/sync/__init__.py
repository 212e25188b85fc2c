"""Conflict handling and synchronization for an environment pair.

Public API for pushing selected changes from a staging environment to
production.

Architecture
------------
Conflicts are found by **baseline comparison**: for every item the
destination value recorded when both sides last agreed is stored, and a
destination whose current value differs from that baseline has been
edited on its own.  Such items are blocked until an operator decides how
to resolve them.

Modules:

- ``engine``       -- ``StagingEngine``: facade over diffing, conflicts
  and synchronization for one pair.
- ``state``        -- ``StagingState``: load/save/query JSON state files.
- ``values``       -- ``ItemReader``: comparable item values per side.
- ``detector``     -- ``ConflictDetector``: baseline comparison.
- ``resolver``     -- Resolution strategies (keep-source,
  keep-destination, custom) and ``ConflictResolver``.
- ``synchronizer`` -- ``Synchronizer``: applies changes item by item.
- ``models``       -- ``Conflict``, ``Resolution``, ``SyncResult``,
  ``SyncReport``: core data contracts.
- ``reporter``     -- Human-readable and JSON report formatting.

Usage example
-------------
::

    from staging_sync.config import load_config
    from staging_sync.sync import StagingEngine, format_sync_report

    config = load_config()
    engine = StagingEngine.from_config("default", config)

    changes = engine.diff_files()
    selected = [c.item_ref for c in changes]

    conflicts = engine.detect_conflicts(selected)
    for conflict in conflicts:
        engine.resolve_conflict(conflict.id, "keep-source")

    report = engine.synchronize_report(selected, dry_run=True)
    print(format_sync_report(report))
"""

from .engine import StagingEngine
from .models import (
    Conflict,
    Resolution,
    SyncOutcome,
    SyncReport,
    SyncResult,
)
from .reporter import (
    format_dry_run_preview,
    format_sync_report,
    report_to_json,
)
from .state import StagingState

__all__ = [
    "Conflict",
    "Resolution",
    "StagingEngine",
    "StagingState",
    "SyncOutcome",
    "SyncReport",
    "SyncResult",
    "format_dry_run_preview",
    "format_sync_report",
    "report_to_json",
]
