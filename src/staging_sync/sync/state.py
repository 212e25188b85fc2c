"""Persistence for baselines and conflict records.

Manages the JSON state file that tracks, per environment pair, the
baseline value of each item (the destination value at the point both
sides last agreed) and the conflict records created by the detector.
Each pair gets its own file (``state_{pair_name}.json``) in the pair's
``state_dir``.

Key design choices:

* **Atomic writes** -- ``save()`` writes to a temp file then calls
  ``os.replace()`` so readers never see partial data.
* **Dict-based state** -- state is a plain ``dict`` so callers can
  mutate it during an operation and persist once at the end.
* **Serialized updates** -- ``transaction()`` holds a per-file lock
  across load, mutate and save.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from staging_sync.sync.models import Conflict

logger = logging.getLogger(__name__)

_FILE_LOCKS: dict[str, threading.RLock] = {}
_FILE_LOCKS_GUARD = threading.Lock()


def _file_lock(path: Path) -> threading.RLock:
    key = str(path.resolve())
    with _FILE_LOCKS_GUARD:
        return _FILE_LOCKS.setdefault(key, threading.RLock())


class StagingState:
    """Load, save and query the state of one environment pair.

    Args:
        state_dir: Directory where state files are stored.
    """

    def __init__(self, state_dir: Path) -> None:
        self._state_dir = Path(state_dir)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self, pair_name: str) -> dict:
        """Load state from disk.

        Args:
            pair_name: The environment pair name (used in the filename).

        Returns:
            The state dict.  If the file does not exist an empty state
            with ``version=1`` is returned.
        """
        path = self._state_path(pair_name)
        if not path.exists():
            return {
                "version": 1,
                "pair": pair_name,
                "updated_at": None,
                "baselines": {},
                "conflicts": {},
                "next_conflict_id": 1,
            }
        with open(path, encoding="utf-8") as fh:
            return json.load(fh)

    def save(self, pair_name: str, state: dict) -> None:
        """Persist state to disk atomically.

        Writes to a temporary file in the same directory then atomically
        replaces the target.  Creates ``state_dir`` if it does not exist.

        Args:
            pair_name: The environment pair name.
            state: The state dict to persist.
        """
        self._state_dir.mkdir(parents=True, exist_ok=True)
        state["updated_at"] = datetime.now(timezone.utc).isoformat()

        target = self._state_path(pair_name)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self._state_dir), suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(state, fh, indent=2)
            os.replace(tmp_path, target)
        except BaseException:
            # Clean up temp file on any failure.
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    @contextmanager
    def transaction(self, pair_name: str) -> Iterator[dict]:
        """Load state, yield it for mutation, and save it on success.

        Concurrent transactions on the same file within this process are
        serialized.  Nothing is written if the body raises.
        """
        with _file_lock(self._state_path(pair_name)):
            state = self.load(pair_name)
            yield state
            self.save(pair_name, state)

    # ------------------------------------------------------------------
    # Baselines
    # ------------------------------------------------------------------

    def has_baseline(self, state: dict, item_ref: str) -> bool:
        return item_ref in state.get("baselines", {})

    def get_baseline(self, state: dict, item_ref: str) -> Any:
        """Return the recorded baseline (``None`` also means "absent")."""
        return state.get("baselines", {}).get(item_ref)

    def set_baseline(self, state: dict, item_ref: str, value: Any) -> None:
        """Upsert the baseline for *item_ref*.  Mutates *state* in place."""
        state.setdefault("baselines", {})[item_ref] = value

    def remove_baseline(self, state: dict, item_ref: str) -> None:
        state.get("baselines", {}).pop(item_ref, None)

    # ------------------------------------------------------------------
    # Conflicts
    # ------------------------------------------------------------------

    def conflicts(self, state: dict) -> list[Conflict]:
        """All conflict records, ordered by id."""
        records = state.get("conflicts", {}).values()
        return sorted(
            (Conflict.model_validate(r) for r in records),
            key=lambda c: c.id,
        )

    def get_conflict(self, state: dict, conflict_id: int) -> Conflict | None:
        record = state.get("conflicts", {}).get(str(conflict_id))
        return Conflict.model_validate(record) if record else None

    def conflict_for_item(self, state: dict, item_ref: str) -> Conflict | None:
        """Return the conflict recorded for *item_ref*, if any."""
        for conflict in self.conflicts(state):
            if conflict.item_ref == item_ref:
                return conflict
        return None

    def put_conflict(self, state: dict, conflict: Conflict) -> None:
        """Upsert *conflict*.  Mutates *state* in place."""
        state.setdefault("conflicts", {})[str(conflict.id)] = (
            conflict.model_dump(mode="json")
        )

    def remove_conflicts_for_item(self, state: dict, item_ref: str) -> int:
        """Drop every conflict record of *item_ref*; return how many."""
        records = state.get("conflicts", {})
        doomed = [k for k, r in records.items() if r["item_ref"] == item_ref]
        for key in doomed:
            del records[key]
        return len(doomed)

    def allocate_conflict_id(self, state: dict) -> int:
        """Reserve and return the next conflict id."""
        next_id = int(state.get("next_conflict_id", 1))
        state["next_conflict_id"] = next_id + 1
        return next_id

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _state_path(self, pair_name: str) -> Path:
        """Return the path to the state file for *pair_name*."""
        return self._state_dir / f"state_{pair_name}.json"
