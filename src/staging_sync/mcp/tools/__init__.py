"""MCP tool handlers for staging synchronization.

This package contains MCP tool implementations that wrap the
``StagingEngine`` with async handlers, report formatting, and structured
error responses.
"""

from .errors import build_error_response, translate_engine_error
from .staging import (
    STAGING_TOOL_NAMES,
    STAGING_TOOLS,
    handle_staging_tool,
)

__all__ = [
    "build_error_response",
    "translate_engine_error",
    "STAGING_TOOLS",
    "STAGING_TOOL_NAMES",
    "handle_staging_tool",
]
