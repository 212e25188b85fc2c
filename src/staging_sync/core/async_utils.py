"""Async utilities for running blocking engine calls from async MCP handlers."""

import asyncio
import logging
from typing import Any, Callable, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)


async def run_sync(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a synchronous function in a thread pool without blocking the event loop.

    Diffing, conflict detection and synchronization all do blocking file
    and database I/O; MCP tool handlers wrap them with this helper.

    Args:
        func: Synchronous function to call
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result of func(*args, **kwargs)

    Example:
        # In MCP tool handler:
        report = await run_sync(engine.file_report)
    """
    return await asyncio.to_thread(func, *args, **kwargs)
