"""Lifespan management for MCP server startup and shutdown."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from dotenv import load_dotenv

from ..config import load_config
from ..config_loader import discover_config_files
from ..diff.cache import DiffCache

logger = logging.getLogger(__name__)


def _stderr_print(msg: str) -> None:
    """Print message to stderr for user feedback (safe in MCP mode)."""
    print(msg, file=sys.stderr, flush=True)


@asynccontextmanager
async def server_lifespan(
    config_overrides: dict[str, Any] | None = None,
) -> AsyncIterator[dict[str, Any]]:
    """
    Manage server startup and shutdown lifecycle.

    On startup:
    - Load .env file (so values are available for env var lookups and YAML interpolation)
    - Merge all sources via load_config(): CLI > env vars > .env > YAML > defaults
    - Create the diff cache shared by every tool call
    - Fail fast if the configuration is invalid

    On shutdown:
    - Drop cached diffs

    Args:
        config_overrides: Optional dict with values from CLI (pair,
            source_root, destination_root, source_database_url,
            destination_database_url, state_dir)

    Yields:
        Dict with 'config' (UnifiedConfig) and 'cache' (DiffCache) keys

    Raises:
        RuntimeError: If configuration is invalid.
    """
    logger.info("MCP server starting...")
    _stderr_print("Staging Sync MCP Server starting...")

    overrides = dict(config_overrides or {})
    pair_name = overrides.pop("pair", None) or "default"
    overrides.pop("log_file", None)

    try:
        # Before YAML, so ${VAR} interpolation can use .env values
        load_dotenv()

        sources = [f"config file: {p}" for p in discover_config_files()[:1]]
        config = load_config(pair_name, overrides=overrides)

        if overrides:
            sources.append("CLI arguments")
        sources.append("environment variables")
        source_desc = ", ".join(sources)
        logger.info("Configuration loaded from: %s", source_desc)
        _stderr_print(f"  Configuration loaded from: {source_desc}")
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        _stderr_print(f"ERROR: Configuration error: {e}")
        raise RuntimeError(f"Configuration error: {e}") from e

    if not config.pairs:
        logger.warning("No environment pairs configured")
        _stderr_print(
            "  WARNING: no environment pairs configured. Set "
            "STAGING_SOURCE_ROOT / STAGING_DESTINATION_ROOT or edit "
            ".staging_sync/config.yml."
        )
    else:
        _stderr_print(f"  Pairs: {', '.join(sorted(config.pairs))}")

    cache = DiffCache(config.diff.cache_ttl_seconds)
    _stderr_print("Server ready. Waiting for MCP client connection...")

    yield {"config": config, "cache": cache}

    cache.clear()
    logger.info("MCP server shutting down")
    _stderr_print("Staging Sync MCP Server shutting down.")
