"""Tests for mcp/tools/errors.py -- error response builders.

Covers:
- build_error_response() structure and format
- translate_engine_error() mapping of engine exceptions
"""

import mcp.types as types
import pytest
from sqlalchemy.exc import OperationalError

from staging_sync.errors import (
    ConflictError,
    DestinationUnavailableError,
    SchemaError,
    StagingSyncError,
    SyncInProgressError,
)
from staging_sync.mcp.tools.errors import (
    build_error_response,
    translate_engine_error,
)


def _get_error_text(result: types.CallToolResult) -> str:
    """Extract text from first content item with type narrowing for Pyright."""
    content = result.content[0]
    assert isinstance(content, types.TextContent)
    return content.text


# ---------------------------------------------------------------------------
# build_error_response tests
# ---------------------------------------------------------------------------


class TestBuildErrorResponse:
    """Tests for build_error_response()."""

    def test_is_error_flag(self):
        result = build_error_response("not_found", "Not found", "Try again")
        assert isinstance(result, types.CallToolResult)
        assert result.isError is True
        assert len(result.content) == 1

    def test_error_format(self):
        """Text format is 'Error ({type}): {message}\\n\\nAction: {action}'."""
        result = build_error_response(
            "validation_error", "items is required", "Pass items."
        )
        assert _get_error_text(result) == (
            "Error (validation_error): items is required\n\nAction: Pass items."
        )


# ---------------------------------------------------------------------------
# translate_engine_error tests
# ---------------------------------------------------------------------------


class TestTranslateEngineError:
    """Tests for translate_engine_error()."""

    @pytest.mark.parametrize(
        ("error", "error_type"),
        [
            (SyncInProgressError("locked"), "sync_in_progress"),
            (DestinationUnavailableError("gone"), "destination_unavailable"),
            (ConflictError("Conflict 7 not found"), "not_found"),
            (SchemaError("logs", "no primary key"), "schema_error"),
            (ValueError("bad resolution"), "validation_error"),
            (OperationalError("SELECT 1", {}, Exception("refused")), "server_error"),
            (StagingSyncError("other"), "server_error"),
            (RuntimeError("boom"), "server_error"),
        ],
    )
    def test_error_types(self, error, error_type):
        result = translate_engine_error(error)
        assert result.isError is True
        assert _get_error_text(result).startswith(f"Error ({error_type}):")

    def test_message_preserved(self):
        text = _get_error_text(translate_engine_error(SchemaError("logs", "no primary key")))
        assert "logs: no primary key" in text

    def test_conflict_points_to_listing(self):
        text = _get_error_text(translate_engine_error(ConflictError("Conflict 7 not found")))
        assert "staging_list_conflicts" in text

    def test_destination_unavailable_before_apply_error(self):
        """The subclass is matched before its ApplyError parent."""
        text = _get_error_text(translate_engine_error(DestinationUnavailableError("x")))
        assert "destination root is writable" in text
