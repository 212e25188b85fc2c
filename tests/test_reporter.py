"""Tests for text and JSON report formatting."""

from __future__ import annotations

from staging_sync.diff.models import (
    ChangeStatus,
    DatabaseDiffReport,
    FieldDiff,
    FieldValue,
    FileChange,
    FileDiffDetail,
    FileDiffReport,
    GroupedChanges,
    ItemType,
    RowChange,
    ScanWarning,
    SkippedTable,
)
from staging_sync.diff.grouper import ChangeGrouper
from staging_sync.sync.models import (
    Conflict,
    Resolution,
    SyncOutcome,
    SyncReport,
    SyncResult,
)
from staging_sync.sync.reporter import (
    conflicts_to_json,
    database_report_to_json,
    file_report_to_json,
    format_conflicts,
    format_database_report,
    format_dry_run_preview,
    format_file_diff,
    format_file_report,
    format_grouped_changes,
    format_sync_report,
    grouped_to_json,
    report_to_json,
    unified_file_diff,
)

NOW = "2024-01-01T00:00:00+00:00"


def _report(results, dry_run=False, aborted=False) -> SyncReport:
    return SyncReport(
        pair_name="default",
        dry_run=dry_run,
        aborted=aborted,
        results=results,
        started_at=NOW,
        completed_at=NOW,
    )


def _ok(ref, message="done"):
    return SyncResult(item_ref=ref, outcome=SyncOutcome.SUCCESS, message=message)


def _err(ref, message="failed"):
    return SyncResult(item_ref=ref, outcome=SyncOutcome.ERROR, message=message)


def _modified_row() -> RowChange:
    return RowChange(
        table="items",
        primary_key_column="id",
        primary_key_value="1",
        status=ChangeStatus.MODIFIED,
        field_diffs={
            "title": FieldDiff(
                source_value=FieldValue.of("B"),
                destination_value=FieldValue.of("A"),
            )
        },
        summary='Changes to "B"',
    )


class TestDiffListings:
    def test_file_report(self):
        report = FileDiffReport(
            changes=[
                FileChange(relative_path="a.txt", status=ChangeStatus.ADDED),
                FileChange(relative_path="b.txt", status=ChangeStatus.MODIFIED),
                FileChange(relative_path="c.txt", status=ChangeStatus.DELETED),
            ],
            warnings=[ScanWarning(path="link", message="source: symlink skipped")],
            generated_at=NOW,
        )
        text = format_file_report(report)
        assert text.startswith("File changes: 1 added, 1 modified, 1 deleted")
        assert "  + a.txt" in text
        assert "  ~ b.txt" in text
        assert "  - c.txt" in text
        assert "link: source: symlink skipped" in text

    def test_empty_file_report(self):
        text = format_file_report(FileDiffReport(generated_at=NOW))
        assert text.endswith("No file changes.")

    def test_database_report(self):
        report = DatabaseDiffReport(
            changes=[_modified_row()],
            skipped_tables=[SkippedTable(table="logs", reason="no key")],
            generated_at=NOW,
        )
        text = format_database_report(report)
        assert "items:" in text
        assert '~ db:items:1  Changes to "B"' in text
        assert "title: 'A' -> 'B'" in text
        assert "logs: no key" in text

    def test_grouped_changes(self):
        anchor = RowChange(
            table="posts",
            primary_key_column="ID",
            primary_key_value="10",
            status=ChangeStatus.ADDED,
            summary="New entry with ID 10",
            details={
                "post_parent": FieldValue.of(0),
                "post_type": FieldValue.of("page"),
                "post_title": FieldValue.of("About"),
            },
        )
        grouped = ChangeGrouper().group([anchor, _modified_row()])
        text = format_grouped_changes(grouped)
        assert text.startswith("1 content groups, 1 standalone changes")
        assert "[page]" in text
        assert "+ About (posts:10)" in text
        assert "[standalone]" in text


class TestConflicts:
    def test_empty(self):
        assert format_conflicts([]) == "No conflicts."

    def test_open_and_resolved(self):
        base = dict(staging_id="p", item_type=ItemType.FILE, detected_at=NOW)
        conflicts = [
            Conflict(id=1, item_ref="a.css", **base),
            Conflict(
                id=2,
                item_ref="b.css",
                resolved=True,
                resolution=Resolution.DESTINATION,
                **base,
            ),
        ]
        text = format_conflicts(conflicts)
        assert "Unresolved conflicts (1):" in text
        assert "#1 a.css" in text
        assert "Resolved conflicts (1):" in text
        assert "#2 b.css: keep destination" in text

        data = conflicts_to_json(conflicts)
        assert data[1]["resolution"] == "destination"
        assert data[0]["item_type"] == "file"


class TestFileDiff:
    def test_unified_diff_direction(self):
        diff = unified_file_diff(b"new\n", b"old\n", "page.php")
        assert "--- destination: page.php" in diff
        assert "+++ source: page.php" in diff
        assert "-old" in diff
        assert "+new" in diff

    def test_identical_is_empty(self):
        assert unified_file_diff(b"same\n", b"same\n", "x") == ""

    def test_missing_side(self):
        diff = unified_file_diff(b"only\n", None, "x")
        assert "+only" in diff

    def test_format_binary(self):
        detail = FileDiffDetail(
            relative_path="logo.png",
            is_binary=True,
            source_exists=True,
            destination_exists=False,
            source_size=10,
        )
        text = format_file_diff(detail)
        assert "source:      10 bytes" in text
        assert "destination: absent" in text
        assert "binary file" in text


class TestSyncReport:
    def test_summary_counts(self):
        report = _report([_ok("a"), _err("b", "disk full"), _ok("c")])
        text = format_sync_report(report)
        assert "Synced 3 items: 2 succeeded, 1 errors" in text
        assert "b: disk full" in text

    def test_aborted_flag(self):
        text = format_sync_report(_report([_err("a")], aborted=True))
        assert "(ABORTED)" in text.splitlines()[0]

    def test_dry_run_delegates(self):
        report = _report([_ok("a", "Would create file."), _err("b", "blocked")], dry_run=True)
        text = format_sync_report(report)
        assert text == format_dry_run_preview(report)
        assert text.startswith("DRY RUN -- No changes will be made")
        assert "[APPLY]" in text
        assert "[BLOCKED]" in text

    def test_dry_run_empty(self):
        assert "No changes needed." in format_dry_run_preview(_report([], dry_run=True))

    def test_report_to_json(self):
        data = report_to_json(_report([_ok("a"), _err("b")]))
        assert data["counts"] == {"total": 2, "succeeded": 1, "errors": 1}
        assert data["results"][1] == {"item_ref": "b", "outcome": "error", "message": "failed"}


class TestJson:
    def test_file_report_to_json(self):
        report = FileDiffReport(
            changes=[FileChange(relative_path="a", status=ChangeStatus.ADDED, source_hash="h")],
            generated_at=NOW,
        )
        data = file_report_to_json(report)
        assert data["changes"] == [
            {"path": "a", "status": "added", "source_hash": "h", "destination_hash": None}
        ]

    def test_database_report_to_json(self):
        data = database_report_to_json(
            DatabaseDiffReport(changes=[_modified_row()], generated_at=NOW)
        )
        (change,) = data["changes"]
        assert change["item_ref"] == "db:items:1"
        assert change["fields"] == {"title": {"source": "B", "destination": "A"}}

    def test_grouped_to_json_empty(self):
        assert grouped_to_json(GroupedChanges()) == {"groups": [], "standalone": []}
