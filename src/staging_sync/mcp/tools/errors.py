"""Error response builders for MCP tool handlers.

This module provides structured error responses with corrective actions
to help AI agents recover from errors without human intervention, and
the translation of engine exceptions into such responses.
"""

import mcp.types as types
from sqlalchemy.exc import SQLAlchemyError

from ...errors import (
    ConflictError,
    DestinationUnavailableError,
    SchemaError,
    SyncInProgressError,
)


def build_error_response(
    error_type: str, message: str, corrective_action: str
) -> types.CallToolResult:
    """Build a structured error response with corrective action.

    Args:
        error_type: Error category (not_found, validation_error,
            sync_in_progress, destination_unavailable, schema_error,
            server_error)
        message: Human-readable error description
        corrective_action: Specific action the agent can take to resolve the error

    Returns:
        CallToolResult with isError=True

    Examples:
        >>> build_error_response("not_found", "Conflict 7 not found", "Use staging_list_conflicts to see conflict ids.")
        CallToolResult(content=[TextContent(...)], isError=True)
    """
    error_text = f"Error ({error_type}): {message}\n\nAction: {corrective_action}"

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=error_text)],
        isError=True,
    )


def translate_engine_error(error: Exception) -> types.CallToolResult:
    """Translate an engine exception to a structured error response.

    Args:
        error: Exception raised by a ``StagingEngine`` call

    Returns:
        CallToolResult with isError=True and corrective action
    """
    match error:
        case SyncInProgressError():
            return build_error_response(
                "sync_in_progress",
                str(error),
                "Wait for the running synchronization to finish, then retry.",
            )
        case DestinationUnavailableError():
            return build_error_response(
                "destination_unavailable",
                str(error),
                "Check that the destination root is writable and its database is reachable.",
            )
        case ConflictError():
            return build_error_response(
                "not_found",
                str(error),
                "Use staging_list_conflicts to see conflict ids for this pair.",
            )
        case SchemaError():
            return build_error_response(
                "schema_error",
                str(error),
                "Check that the table exists on both sides with a single-column primary key.",
            )
        case ValueError():
            return build_error_response(
                "validation_error",
                str(error),
                "Check parameter values and retry.",
            )
        case SQLAlchemyError():
            return build_error_response(
                "server_error",
                str(error),
                "Check the database URLs of the pair and database connectivity.",
            )
        case _:
            return build_error_response(
                "server_error",
                str(error),
                "Check the pair configuration and retry later.",
            )
