"""MCP tool handlers for staging-to-production synchronization.

Defines the tools:

- ``staging_diff_files`` -- changed files between the two trees.
- ``staging_diff_database`` -- changed rows, optionally grouped.
- ``staging_file_diff`` -- unified diff of one file.
- ``staging_row_diff`` -- field-level diff of one row.
- ``staging_detect_conflicts`` -- check selected items against baselines.
- ``staging_list_conflicts`` -- conflicts recorded for a pair.
- ``staging_resolve_conflict`` -- record a decision on a conflict.
- ``staging_sync`` -- apply selected items (with optional dry-run).
- ``staging_capture_baseline`` -- record destination values as baselines.
- ``staging_status`` -- reachability and conflict counts for a pair.
"""

from __future__ import annotations

import logging
from typing import Any

import mcp.types as types

from ...config_schema import UnifiedConfig
from ...core.async_utils import run_sync
from ...diff.cache import DiffCache
from ...sync.engine import StagingEngine
from ...sync.reporter import (
    conflicts_to_json,
    database_report_to_json,
    file_report_to_json,
    format_conflicts,
    format_database_report,
    format_file_diff,
    format_file_report,
    format_grouped_changes,
    format_sync_report,
    grouped_to_json,
    report_to_json,
    row_change_to_json,
)
from .errors import build_error_response, translate_engine_error

logger = logging.getLogger(__name__)

_PAIR_PROPERTY = {
    "type": "string",
    "default": "default",
    "description": "Name of the environment pair from config",
}

_ITEMS_PROPERTY = {
    "type": "array",
    "items": {"type": "string"},
    "description": (
        "Item references: a file's relative path, or db:<table>:<primary key> for a row"
    ),
}


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------


STAGING_TOOLS: list[types.Tool] = [
    types.Tool(
        name="staging_diff_files",
        description=(
            "List files that differ between the staging (source) and "
            "production (destination) trees, with scan warnings."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "pair": _PAIR_PROPERTY,
                "refresh": {
                    "type": "boolean",
                    "default": False,
                    "description": "Ignore cached results and rescan",
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="staging_diff_database",
        description=(
            "List database rows that differ between staging and "
            "production. With grouped=true, rows are grouped into content "
            "units (a post with its attachments, meta and comments)."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "pair": _PAIR_PROPERTY,
                "grouped": {
                    "type": "boolean",
                    "default": False,
                    "description": "Group rows into content units",
                },
                "refresh": {
                    "type": "boolean",
                    "default": False,
                    "description": "Ignore cached results and rescan",
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="staging_file_diff",
        description="Show a unified diff of one file between staging and production.",
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "pair": _PAIR_PROPERTY,
                "path": {
                    "type": "string",
                    "description": "File path relative to both roots",
                },
            },
            "required": ["path"],
        },
    ),
    types.Tool(
        name="staging_row_diff",
        description="Show the field-level difference of one database row.",
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "pair": _PAIR_PROPERTY,
                "table": {
                    "type": "string",
                    "description": "Table name without environment prefix",
                },
                "key": {
                    "type": "string",
                    "description": "Primary key value",
                },
            },
            "required": ["table", "key"],
        },
    ),
    types.Tool(
        name="staging_detect_conflicts",
        description=(
            "Check selected items for changes made directly in production "
            "since the last synchronization. Conflicting items must be "
            "resolved before they can be synchronized."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "pair": _PAIR_PROPERTY,
                "items": _ITEMS_PROPERTY,
            },
            "required": ["items"],
        },
    ),
    types.Tool(
        name="staging_list_conflicts",
        description="List conflicts recorded for an environment pair.",
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "pair": _PAIR_PROPERTY,
                "include_resolved": {
                    "type": "boolean",
                    "default": True,
                    "description": "Also list conflicts that already have a decision",
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="staging_resolve_conflict",
        description=(
            "Record a decision for a conflict: keep the staging value "
            "(source), keep the production value (destination), or write "
            "a custom value."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "pair": _PAIR_PROPERTY,
                "conflict_id": {
                    "type": "integer",
                    "description": "Conflict id from staging_list_conflicts",
                },
                "resolution": {
                    "type": "string",
                    "enum": [
                        "source",
                        "keep-source",
                        "destination",
                        "keep-destination",
                        "custom",
                    ],
                    "description": "Which value wins",
                },
                "custom_value": {
                    "description": (
                        "For custom: file content, a column-to-value object, "
                        "or a single value when one column differs"
                    ),
                },
            },
            "required": ["conflict_id", "resolution"],
        },
    ),
    types.Tool(
        name="staging_sync",
        description=(
            "Apply selected items from staging to production. Each item "
            "succeeds or fails on its own; items with unresolved conflicts "
            "are reported as errors."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "pair": _PAIR_PROPERTY,
                "items": _ITEMS_PROPERTY,
                "dry_run": {
                    "type": "boolean",
                    "default": False,
                    "description": "Preview changes without applying them",
                },
            },
            "required": ["items"],
        },
    ),
    types.Tool(
        name="staging_capture_baseline",
        description=(
            "Record production's current values as the baseline for "
            "conflict detection. Without items, every file and row is recorded."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "pair": _PAIR_PROPERTY,
                "items": _ITEMS_PROPERTY,
            },
            "required": [],
        },
    ),
    types.Tool(
        name="staging_status",
        description="Show reachability of both environments and conflict counts for a pair.",
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {"pair": _PAIR_PROPERTY},
            "required": [],
        },
    ),
]

STAGING_TOOL_NAMES = frozenset(tool.name for tool in STAGING_TOOLS)


# ---------------------------------------------------------------------------
# Tool handler
# ---------------------------------------------------------------------------


async def handle_staging_tool(
    name: str,
    arguments: dict[str, Any] | None,
    config: UnifiedConfig,
    cache: DiffCache,
) -> types.CallToolResult:
    """Dispatch and execute a staging tool.

    Args:
        name: Tool name (one of ``STAGING_TOOL_NAMES``).
        arguments: Tool arguments dict.
        config: Loaded configuration with the environment pairs.
        cache: Diff cache shared across calls.

    Returns:
        ``CallToolResult`` with tool output or error details.
    """
    args = arguments or {}
    pair_name = args.get("pair") or "default"

    if pair_name not in config.pairs:
        return build_error_response(
            "not_found",
            f"Environment pair '{pair_name}' not found.",
            f"Available pairs: {sorted(config.pairs)}. "
            "Define pairs in .staging_sync/config.yml or via STAGING_* environment variables.",
        )

    try:
        engine = StagingEngine.from_config(pair_name, config, cache=cache)
    except Exception as exc:
        logger.exception("Cannot open pair %s: %s", pair_name, exc)
        return translate_engine_error(exc)

    try:
        match name:
            case "staging_diff_files":
                return await _handle_diff_files(engine, args)
            case "staging_diff_database":
                return await _handle_diff_database(engine, args)
            case "staging_file_diff":
                return await _handle_file_diff(engine, args)
            case "staging_row_diff":
                return await _handle_row_diff(engine, args)
            case "staging_detect_conflicts":
                return await _handle_detect_conflicts(engine, args)
            case "staging_list_conflicts":
                return await _handle_list_conflicts(engine, args)
            case "staging_resolve_conflict":
                return await _handle_resolve_conflict(engine, args)
            case "staging_sync":
                return await _handle_sync(engine, args)
            case "staging_capture_baseline":
                return await _handle_capture_baseline(engine, args)
            case "staging_status":
                return await _handle_status(engine)
            case _:
                raise ValueError(f"Unknown staging tool: {name}")

    except ValueError as exc:
        return translate_engine_error(exc)
    except Exception as exc:
        logger.exception("Staging tool error: %s", exc)
        return translate_engine_error(exc)
    finally:
        engine.close()


# ---------------------------------------------------------------------------
# Individual handlers
# ---------------------------------------------------------------------------


def _result(text: str, structured: dict[str, Any]) -> types.CallToolResult:
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent=structured,
    )


def _require_items(args: dict[str, Any]) -> list[str]:
    items = args.get("items")
    if not items or not isinstance(items, list):
        raise ValueError(
            "items is required: a non-empty list of paths or db:<table>:<key> references"
        )
    return [str(item) for item in items]


async def _handle_diff_files(
    engine: StagingEngine, args: dict[str, Any]
) -> types.CallToolResult:
    if args.get("refresh"):
        engine.invalidate_cache()
    report = await run_sync(engine.file_report)
    return _result(format_file_report(report), file_report_to_json(report))


async def _handle_diff_database(
    engine: StagingEngine, args: dict[str, Any]
) -> types.CallToolResult:
    if args.get("refresh"):
        engine.invalidate_cache()
    report = await run_sync(engine.database_report)
    if not args.get("grouped"):
        return _result(
            format_database_report(report), database_report_to_json(report)
        )

    grouped = await run_sync(engine.group_view, report.changes)
    structured = grouped_to_json(grouped)
    structured["skipped_tables"] = [
        s.model_dump() for s in report.skipped_tables
    ]
    return _result(format_grouped_changes(grouped), structured)


async def _handle_file_diff(
    engine: StagingEngine, args: dict[str, Any]
) -> types.CallToolResult:
    path = args.get("path")
    if not path:
        return build_error_response(
            "validation_error",
            "path is required",
            "Provide the 'path' parameter relative to the environment roots.",
        )
    detail = await run_sync(engine.file_diff, path)
    return _result(format_file_diff(detail), detail.model_dump())


async def _handle_row_diff(
    engine: StagingEngine, args: dict[str, Any]
) -> types.CallToolResult:
    table = args.get("table")
    key = args.get("key")
    if not table or key is None or key == "":
        return build_error_response(
            "validation_error",
            "table and key are required",
            "Provide the 'table' (without prefix) and 'key' parameters.",
        )
    change = await run_sync(engine.row_diff, table, str(key))
    if change is None:
        return _result(
            f"Row {key} of {table} is identical on both sides.",
            {"table": table, "primary_key": str(key), "status": None},
        )

    lines = [f"{change.item_ref} ({change.status.value}): {change.summary}"]
    for column, diff in change.field_diffs.items():
        lines.append(
            f"  {column}: {diff.destination_value.display()!r} -> "
            f"{diff.source_value.display()!r}"
        )
    return _result("\n".join(lines), row_change_to_json(change))


async def _handle_detect_conflicts(
    engine: StagingEngine, args: dict[str, Any]
) -> types.CallToolResult:
    items = _require_items(args)
    conflicts = await run_sync(engine.detect_conflicts, items)
    return _result(
        format_conflicts(conflicts),
        {"conflicts": conflicts_to_json(conflicts)},
    )


async def _handle_list_conflicts(
    engine: StagingEngine, args: dict[str, Any]
) -> types.CallToolResult:
    include_resolved = args.get("include_resolved", True)
    conflicts = await run_sync(engine.list_conflicts, include_resolved)
    return _result(
        format_conflicts(conflicts),
        {"pair": engine.pair_name, "conflicts": conflicts_to_json(conflicts)},
    )


async def _handle_resolve_conflict(
    engine: StagingEngine, args: dict[str, Any]
) -> types.CallToolResult:
    conflict_id = args.get("conflict_id")
    resolution = args.get("resolution")
    if conflict_id is None or not resolution:
        return build_error_response(
            "validation_error",
            "conflict_id and resolution are required",
            "Provide 'conflict_id' from staging_list_conflicts and a 'resolution'.",
        )
    try:
        conflict_id = int(conflict_id)
    except (TypeError, ValueError):
        raise ValueError(
            f"conflict_id must be an integer, got {conflict_id!r}"
        ) from None

    final = await run_sync(
        engine.resolve_conflict,
        conflict_id,
        resolution,
        args.get("custom_value"),
    )
    return _result(
        f"Conflict #{conflict_id} resolved: {resolution}",
        {"conflict_id": conflict_id, "resolution": resolution, "final_value": final},
    )


async def _handle_sync(
    engine: StagingEngine, args: dict[str, Any]
) -> types.CallToolResult:
    items = _require_items(args)
    dry_run = bool(args.get("dry_run", False))
    report = await run_sync(engine.synchronize_report, items, dry_run)
    return _result(format_sync_report(report), report_to_json(report))


async def _handle_capture_baseline(
    engine: StagingEngine, args: dict[str, Any]
) -> types.CallToolResult:
    items = args.get("items") or None
    count = await run_sync(engine.capture_baseline, items)
    return _result(
        f"Captured {count} baseline(s) for pair '{engine.pair_name}'.",
        {"pair": engine.pair_name, "captured": count},
    )


async def _handle_status(engine: StagingEngine) -> types.CallToolResult:
    status = await run_sync(engine.status)
    lines = [f"Staging status for '{status['pair']}'"]
    for side in ("source", "destination"):
        info = status[side]
        reach = "reachable" if info["reachable"] else "UNREACHABLE"
        lines.append(
            f"  {side.capitalize():<12} files={info['files'] or '-'} "
            f"database={'yes' if info['database'] else 'no'} ({reach})"
        )
    lines.append(
        f"  Conflicts:   {status['conflicts']['open']} open, "
        f"{status['conflicts']['resolved']} resolved"
    )
    return _result("\n".join(lines), status)
