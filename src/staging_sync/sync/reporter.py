"""Report formatting functions.

Provides human-readable and machine-readable output for engine results:

- ``format_file_report`` / ``format_database_report`` -- diff listings.
- ``format_grouped_changes`` -- database changes as content groups.
- ``format_conflicts`` -- open and resolved conflicts.
- ``format_file_diff`` / ``unified_file_diff`` -- per-file text diff.
- ``format_sync_report`` -- full post-sync summary.
- ``format_dry_run_preview`` -- dry-run preview grouped by outcome.
- ``*_to_json`` -- structured dicts for MCP tool output.
"""

from __future__ import annotations

import difflib
from typing import TYPE_CHECKING

from staging_sync.diff.models import ChangeStatus
from staging_sync.file_handler import decode_bytes

if TYPE_CHECKING:
    from staging_sync.diff.models import (
        ChangeGroup,
        DatabaseDiffReport,
        FileDiffDetail,
        FileDiffReport,
        GroupedChanges,
        RowChange,
    )
    from staging_sync.sync.models import Conflict, SyncReport

_MARKERS = {
    ChangeStatus.ADDED: "+",
    ChangeStatus.MODIFIED: "~",
    ChangeStatus.DELETED: "-",
}

# ------------------------------------------------------------------
# Diff listings
# ------------------------------------------------------------------


def format_file_report(report: FileDiffReport) -> str:
    """Format a file diff as one line per changed path.

    Args:
        report: The tree diff result.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []
    counts = _status_counts(c.status for c in report.changes)
    lines.append(
        f"File changes: {counts['added']} added, "
        f"{counts['modified']} modified, {counts['deleted']} deleted"
    )
    lines.append("")

    for change in report.changes:
        lines.append(f"  {_MARKERS[change.status]} {change.relative_path}")
    if report.changes:
        lines.append("")

    if report.warnings:
        lines.append("Warnings:")
        for warning in report.warnings:
            lines.append(f"  {warning.path}: {warning.message}")
        lines.append("")

    if not report.changes:
        lines.append("No file changes.")

    return "\n".join(lines).rstrip()


def format_database_report(report: DatabaseDiffReport) -> str:
    """Format a database diff as one line per changed row, by table."""
    lines: list[str] = []
    counts = _status_counts(c.status for c in report.changes)
    lines.append(
        f"Database changes: {counts['added']} added, "
        f"{counts['modified']} modified, {counts['deleted']} deleted"
    )
    lines.append("")

    current_table = None
    for change in report.changes:
        if change.table != current_table:
            current_table = change.table
            lines.append(f"{current_table}:")
        lines.append(f"  {_row_line(change)}")
        for column, diff in change.field_diffs.items():
            lines.append(
                f"      {column}: {diff.destination_value.display()!r} -> "
                f"{diff.source_value.display()!r}"
            )
    if report.changes:
        lines.append("")

    if report.skipped_tables:
        lines.append("Skipped tables:")
        for skipped in report.skipped_tables:
            lines.append(f"  {skipped.table}: {skipped.reason}")
        lines.append("")

    if not report.changes:
        lines.append("No database changes.")

    return "\n".join(lines).rstrip()


def format_grouped_changes(grouped: GroupedChanges) -> str:
    """Format grouped database changes, bucketed by content kind."""
    lines: list[str] = []
    lines.append(
        f"{len(grouped.groups)} content groups, "
        f"{len(grouped.standalone)} standalone changes"
    )
    lines.append("")

    for kind, groups in grouped.by_kind.items():
        lines.append(f"[{kind or 'other'}]")
        for group in groups:
            lines.extend(_group_lines(group))
        lines.append("")

    if grouped.standalone:
        lines.append("[standalone]")
        for change in grouped.standalone:
            lines.append(f"  {_row_line(change)}")
        lines.append("")

    return "\n".join(lines).rstrip()


def _group_lines(group: ChangeGroup) -> list[str]:
    lines = [
        f"  {_MARKERS[group.status]} {group.title} ({group.group_id})"
    ]
    for bucket, members in group.members.items():
        lines.append(f"      {bucket}: {len(members)} change(s)")
    return lines


def _row_line(change: RowChange) -> str:
    return f"{_MARKERS[change.status]} {change.item_ref}  {change.summary}"


def _status_counts(statuses) -> dict[str, int]:
    counts = {status.value: 0 for status in ChangeStatus}
    for status in statuses:
        counts[status.value] += 1
    return counts


# ------------------------------------------------------------------
# Conflicts
# ------------------------------------------------------------------


def format_conflicts(conflicts: list[Conflict]) -> str:
    """Format conflict records, open ones first."""
    if not conflicts:
        return "No conflicts."

    open_ = [c for c in conflicts if not c.resolved]
    resolved = [c for c in conflicts if c.resolved]
    lines: list[str] = []

    if open_:
        lines.append(f"Unresolved conflicts ({len(open_)}):")
        for c in open_:
            lines.append(
                f"  #{c.id} {c.item_ref}: destination changed since "
                f"baseline (detected {c.detected_at})"
            )
        lines.append("")

    if resolved:
        lines.append(f"Resolved conflicts ({len(resolved)}):")
        for c in resolved:
            resolution = c.resolution.value if c.resolution else "?"
            lines.append(f"  #{c.id} {c.item_ref}: keep {resolution}")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Per-file diff
# ------------------------------------------------------------------


def unified_file_diff(
    source: bytes | None,
    destination: bytes | None,
    relative_path: str,
) -> str:
    """Unified diff turning the destination's content into the source's.

    Missing sides diff as empty text.  Returns ``""`` when the decoded
    texts are identical.
    """
    source_text = decode_bytes(source)[0] if source is not None else ""
    destination_text = (
        decode_bytes(destination)[0] if destination is not None else ""
    )
    diff = difflib.unified_diff(
        destination_text.splitlines(keepends=True),
        source_text.splitlines(keepends=True),
        fromfile=f"destination: {relative_path}",
        tofile=f"source: {relative_path}",
    )
    return "".join(diff)


def format_file_diff(detail: FileDiffDetail) -> str:
    """Format a single path's side-by-side detail for review."""
    lines = [f"File: {detail.relative_path}"]
    lines.append(
        f"  source:      {_describe_side(detail.source_exists, detail.source_size)}"
    )
    lines.append(
        f"  destination: {_describe_side(detail.destination_exists, detail.destination_size)}"
    )
    lines.append("")

    if detail.is_binary:
        lines.append("(binary file; content diff not shown)")
    elif detail.diff:
        lines.append(detail.diff.rstrip())
    else:
        lines.append("(no textual differences)")

    return "\n".join(lines).rstrip()


def _describe_side(exists: bool, size: int | None) -> str:
    if not exists:
        return "absent"
    return f"{size} bytes"


# ------------------------------------------------------------------
# Sync run
# ------------------------------------------------------------------


def format_sync_report(report: SyncReport) -> str:
    """Format a complete sync report as human-readable text.

    Args:
        report: The completed sync report.

    Returns:
        Multi-line formatted string.
    """
    if report.dry_run:
        return format_dry_run_preview(report)

    lines: list[str] = []
    header = f"Sync report for '{report.pair_name}'"
    if report.aborted:
        header += " (ABORTED)"
    lines.append(header)
    lines.append(f"Started: {report.started_at}")
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at}")
    lines.append("")

    lines.append(
        f"Synced {len(report.results)} items: "
        f"{len(report.succeeded)} succeeded, {len(report.errors)} errors"
    )
    lines.append("")

    if report.succeeded:
        lines.append("Applied:")
        for r in report.succeeded:
            lines.append(f"  {r.item_ref}: {r.message}")
        lines.append("")

    if report.errors:
        lines.append("Errors:")
        for r in report.errors:
            lines.append(f"  {r.item_ref}: {r.message}")
        lines.append("")

    return "\n".join(lines).rstrip()


def format_dry_run_preview(report: SyncReport) -> str:
    """Format a dry-run preview: what would be applied, what is blocked."""
    lines: list[str] = []
    lines.append("DRY RUN -- No changes will be made")
    lines.append(f"Pair: {report.pair_name}")
    lines.append("")

    if report.succeeded:
        lines.append("[APPLY]")
        for r in report.succeeded:
            lines.append(f"  {r.item_ref}: {r.message}")
        lines.append("")

    if report.errors:
        lines.append("[BLOCKED]")
        for r in report.errors:
            lines.append(f"  {r.item_ref}: {r.message}")
        lines.append("")

    if not report.results:
        lines.append("No changes needed.")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def report_to_json(report: SyncReport) -> dict:
    """Convert a sync report to a structured dict for JSON serialisation.

    Suitable for MCP ``structuredContent`` output.
    """
    return {
        "pair_name": report.pair_name,
        "dry_run": report.dry_run,
        "aborted": report.aborted,
        "started_at": report.started_at,
        "completed_at": report.completed_at,
        "counts": {
            "total": len(report.results),
            "succeeded": len(report.succeeded),
            "errors": len(report.errors),
        },
        "results": [
            {
                "item_ref": r.item_ref,
                "outcome": r.outcome.value,
                "message": r.message,
            }
            for r in report.results
        ],
    }


def file_report_to_json(report: FileDiffReport) -> dict:
    return {
        "generated_at": report.generated_at,
        "changes": [
            {
                "path": c.relative_path,
                "status": c.status.value,
                "source_hash": c.source_hash,
                "destination_hash": c.destination_hash,
            }
            for c in report.changes
        ],
        "warnings": [w.model_dump() for w in report.warnings],
    }


def row_change_to_json(change: RowChange) -> dict:
    return {
        "item_ref": str(change.item_ref),
        "table": change.table,
        "primary_key": change.primary_key_value,
        "status": change.status.value,
        "summary": change.summary,
        "fields": {
            column: {
                "source": diff.source_value.to_json(),
                "destination": diff.destination_value.to_json(),
            }
            for column, diff in change.field_diffs.items()
        },
    }


def database_report_to_json(report: DatabaseDiffReport) -> dict:
    return {
        "generated_at": report.generated_at,
        "changes": [row_change_to_json(c) for c in report.changes],
        "skipped_tables": [s.model_dump() for s in report.skipped_tables],
    }


def grouped_to_json(grouped: GroupedChanges) -> dict:
    return {
        "groups": [
            {
                "group_id": g.group_id,
                "title": g.title,
                "kind": g.kind,
                "status": g.status.value,
                "anchor": row_change_to_json(g.anchor),
                "members": {
                    bucket: [row_change_to_json(m) for m in members]
                    for bucket, members in g.members.items()
                },
            }
            for g in grouped.groups
        ],
        "standalone": [row_change_to_json(c) for c in grouped.standalone],
    }


def conflicts_to_json(conflicts: list[Conflict]) -> list[dict]:
    return [c.model_dump(mode="json") for c in conflicts]
