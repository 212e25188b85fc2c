"""End-to-end tests for StagingEngine.

Covers the full diff -> detect -> resolve -> synchronize flow against
real temporary file trees and SQLite databases:

- A modified stylesheet and an added row reach production
- Keep-source / keep-destination / custom resolutions hold across runs
- Synchronizing checks for conflicts on its own
- Re-running a finished selection is a no-op
- One failing item does not stop the others
- The diff cache is dropped after a run
- Dry run, abort and destination lock
"""

from __future__ import annotations

import threading
from unittest.mock import patch

import pytest
from conftest import execute, query, write_tree

from staging_sync.core.environment import FileTree
from staging_sync.diff.models import ChangeStatus
from staging_sync.errors import SyncInProgressError
from staging_sync.sync.engine import StagingEngine, as_item_ref
from staging_sync.sync.models import SyncOutcome
from staging_sync.sync.synchronizer import ABORTED, destination_lock


@pytest.fixture
def engine(unified_config):
    eng = StagingEngine.from_config("default", unified_config)
    yield eng
    eng.close()


class TestFromConfig:
    def test_unknown_pair(self, unified_config):
        with pytest.raises(ValueError, match="Unknown environment pair 'nope'"):
            StagingEngine.from_config("nope", unified_config)

    def test_as_item_ref(self):
        assert str(as_item_ref("db:items:5")) == "db:items:5"
        assert str(as_item_ref("file:css/a.css")) == "css/a.css"


class TestFileFlow:
    """Files: diff, sync, re-diff."""

    def test_modified_stylesheet_synced(self, engine, source_root, destination_root):
        write_tree(source_root, {"style.css": "X"})
        write_tree(destination_root, {"style.css": "Y"})

        (change,) = engine.diff_files()
        assert change.relative_path == "style.css"
        assert change.status is ChangeStatus.MODIFIED

        (result,) = engine.synchronize(["style.css"])
        assert result.outcome is SyncOutcome.SUCCESS
        assert (destination_root / "style.css").read_text() == "X"
        assert engine.diff_files() == []

    def test_rerun_is_noop(self, engine, source_root):
        write_tree(source_root, {"a.txt": "a"})
        first = engine.synchronize(["a.txt"])
        second = engine.synchronize(["a.txt"])
        assert first[0].message == "Created file (1 bytes)."
        assert second[0].outcome is SyncOutcome.SUCCESS
        assert second[0].message == "No changes."
        assert engine.detect_conflicts(["a.txt"]) == []

    def test_partial_failure(self, engine, source_root, destination_root):
        write_tree(source_root, {"a.txt": "a", "b.txt": "b", "c.txt": "c"})
        original = FileTree.write_bytes

        def flaky(self, relative_path, data, mode=None):
            if relative_path == "b.txt":
                raise OSError("disk full")
            return original(self, relative_path, data, mode)

        with patch.object(FileTree, "write_bytes", flaky):
            results = engine.synchronize(["a.txt", "b.txt", "c.txt"])

        assert [r.outcome for r in results] == [
            SyncOutcome.SUCCESS,
            SyncOutcome.ERROR,
            SyncOutcome.SUCCESS,
        ]
        assert "disk full" in results[1].message
        assert (destination_root / "a.txt").exists()
        assert not (destination_root / "b.txt").exists()
        assert (destination_root / "c.txt").exists()

    def test_results_follow_selection_order(self, engine, source_root, destination_root):
        write_tree(source_root, {"a.txt": "a", "b.txt": "b", "same.txt": "s"})
        write_tree(destination_root, {"same.txt": "s"})
        results = engine.synchronize(["b.txt", "same.txt", "a.txt", "b.txt"])
        assert [r.item_ref for r in results] == ["b.txt", "same.txt", "a.txt"]
        assert results[1].message == "No changes."

    def test_excluded_path_rejected(self, engine, source_root, destination_root):
        write_tree(source_root, {"debug.log": "x"})
        (result,) = engine.synchronize(["debug.log"])
        assert result.outcome is SyncOutcome.ERROR
        assert "excluded" in result.message
        assert not (destination_root / "debug.log").exists()

    def test_file_diff_detail(self, engine, source_root, destination_root):
        write_tree(source_root, {"page.php": "new line\n", "logo.png": b"\x89PNG"})
        write_tree(destination_root, {"page.php": "old line\n"})

        detail = engine.file_diff("page.php")
        assert detail.source_exists and detail.destination_exists
        assert "-old line" in detail.diff
        assert "+new line" in detail.diff

        binary = engine.file_diff("logo.png")
        assert binary.is_binary is True
        assert binary.diff is None
        assert binary.source_size == 4
        assert binary.destination_exists is False


class TestDatabaseFlow:
    """Rows: diff, sync, re-diff."""

    def test_added_row_synced(self, engine, source_db, destination_db):
        execute(source_db, "INSERT INTO items VALUES (5, 'Hello', 'body', 2.5)")

        (change,) = engine.diff_database()
        assert str(change.item_ref) == "db:items:5"
        assert change.status is ChangeStatus.ADDED

        (result,) = engine.synchronize([change])
        assert result.outcome is SyncOutcome.SUCCESS
        assert query(destination_db, "SELECT id, title, body, price FROM items") == [
            (5, "Hello", "body", 2.5)
        ]
        assert engine.diff_database() == []

    def test_row_diff(self, engine, source_db, destination_db):
        execute(source_db, "INSERT INTO items VALUES (1, 'B', 'x', 1.0)")
        execute(destination_db, "INSERT INTO items VALUES (1, 'A', 'x', 1.0)")
        change = engine.row_diff("items", "1")
        assert set(change.field_diffs) == {"title"}
        assert engine.row_diff("items", "2") is None

    def test_group_view_standalone_rows(self, engine, source_db):
        execute(source_db, "INSERT INTO items VALUES (1, 'B', 'x', 1.0)")
        grouped = engine.group_view()
        assert grouped.groups == []
        assert [str(c.item_ref) for c in grouped.standalone] == ["db:items:1"]


@pytest.fixture
def diverged(engine, source_db, destination_db):
    """Row 1 agreed on 'A', then staging wrote 'B' and production wrote 'C'."""
    execute(source_db, "INSERT INTO items VALUES (1, 'A', 'x', 1.0)")
    execute(destination_db, "INSERT INTO items VALUES (1, 'A', 'x', 1.0)")
    assert engine.capture_baseline() == 1
    execute(source_db, "UPDATE items SET title = 'B' WHERE id = 1")
    execute(destination_db, "UPDATE items SET title = 'C' WHERE id = 1")
    return engine


class TestConflictFlow:
    """Baseline capture, detection and resolution round trips."""

    def test_detects_and_blocks(self, diverged):
        (conflict,) = diverged.detect_conflicts(["db:items:1"])
        assert conflict.baseline_value["title"] == "A"
        assert conflict.source_value["title"] == "B"
        assert conflict.destination_value["title"] == "C"

        (result,) = diverged.synchronize(["db:items:1"])
        assert result.outcome is SyncOutcome.ERROR
        assert f"Unresolved conflict #{conflict.id}" in result.message

    @pytest.mark.parametrize(
        "resolution, custom, expected",
        [
            ("keep-source", None, "B"),
            ("keep-destination", None, "C"),
            ("custom", "D", "D"),
        ],
    )
    def test_resolution_round_trip(self, diverged, destination_db, resolution, custom, expected):
        (conflict,) = diverged.detect_conflicts(["db:items:1"])
        diverged.resolve_conflict(conflict.id, resolution, custom)

        (result,) = diverged.synchronize(["db:items:1"])
        assert result.outcome is SyncOutcome.SUCCESS
        assert query(destination_db, "SELECT title FROM items WHERE id = 1") == [(expected,)]
        assert diverged.list_conflicts(include_resolved=False) == []

        (again,) = diverged.synchronize(["db:items:1"])
        assert again.outcome is SyncOutcome.SUCCESS
        assert query(destination_db, "SELECT title FROM items WHERE id = 1") == [(expected,)]
        assert diverged.detect_conflicts(["db:items:1"]) == []

    def test_sync_detects_without_prior_check(self, diverged, destination_db):
        (result,) = diverged.synchronize(["db:items:1"])
        assert result.outcome is SyncOutcome.ERROR
        assert "Unresolved conflict #1" in result.message
        assert query(destination_db, "SELECT title FROM items WHERE id = 1") == [("C",)]
        assert len(diverged.list_conflicts(include_resolved=False)) == 1

    def test_new_source_value_after_keep_destination(
        self, diverged, source_db, destination_db
    ):
        (conflict,) = diverged.detect_conflicts(["db:items:1"])
        diverged.resolve_conflict(conflict.id, "destination")
        diverged.synchronize(["db:items:1"])

        execute(source_db, "UPDATE items SET title = 'E' WHERE id = 1")
        (result,) = diverged.synchronize(["db:items:1"])
        assert result.outcome is SyncOutcome.SUCCESS
        assert query(destination_db, "SELECT title FROM items WHERE id = 1") == [("E",)]
        assert diverged.list_conflicts() == []

    def test_keep_source_then_idempotent(self, diverged):
        (conflict,) = diverged.detect_conflicts(["db:items:1"])
        diverged.resolve_conflict(conflict.id, "source")
        diverged.synchronize(["db:items:1"])

        assert diverged.detect_conflicts(["db:items:1"]) == []
        (again,) = diverged.synchronize(["db:items:1"])
        assert again.message == "No changes."

    def test_list_conflicts_filters_resolved(self, diverged):
        (conflict,) = diverged.detect_conflicts(["db:items:1"])
        assert len(diverged.list_conflicts(include_resolved=False)) == 1
        diverged.resolve_conflict(conflict.id, "destination")
        assert diverged.list_conflicts(include_resolved=False) == []
        assert len(diverged.list_conflicts()) == 1

    def test_status_counts(self, diverged):
        diverged.detect_conflicts(["db:items:1"])
        status = diverged.status()
        assert status["pair"] == "default"
        assert status["conflicts"] == {"open": 1, "resolved": 0}
        assert status["destination"]["reachable"] is True
        assert status["source"]["database"] is True

    def test_capture_selected_baseline(self, engine, destination_root):
        write_tree(destination_root, {"style.css": "X"})
        assert engine.capture_baseline(["style.css", "missing.css"]) == 2


class TestRunControl:
    """Cache, dry run, abort and locking through the engine."""

    def test_cache_reused_until_invalidated(self, engine, source_root):
        assert engine.diff_files() == []
        write_tree(source_root, {"late.txt": "x"})
        assert engine.diff_files() == []
        assert engine.invalidate_cache() == 1
        assert len(engine.diff_files()) == 1

    def test_sync_drops_cache(self, engine, source_root, destination_root):
        write_tree(source_root, {"a.txt": "a"})
        assert len(engine.diff_files()) == 1
        engine.synchronize(["a.txt"])
        assert engine.diff_files() == []

    def test_dry_run(self, engine, source_root, destination_root):
        write_tree(source_root, {"style.css": "Y"})
        write_tree(destination_root, {"style.css": "X"})
        report = engine.synchronize_report(["style.css"], dry_run=True)
        assert report.dry_run is True
        assert report.results[0].message == "Would update file."
        assert (destination_root / "style.css").read_text() == "X"

    def test_abort(self, engine, source_root, destination_root):
        write_tree(source_root, {"a.txt": "a"})
        abort = threading.Event()
        abort.set()
        report = engine.synchronize_report(["a.txt"], abort=abort)
        assert report.aborted is True
        assert report.results[0].message == ABORTED
        assert not (destination_root / "a.txt").exists()

    def test_lock_contention(self, engine, source_root):
        write_tree(source_root, {"a.txt": "a"})
        lock = destination_lock(engine.destination.key)
        lock.acquire()
        try:
            with pytest.raises(SyncInProgressError):
                engine.synchronize(["a.txt"])
        finally:
            lock.release()
