"""Tests for staging_sync.mcp.lifespan -- server startup/shutdown lifecycle.

Tests the server_lifespan() async context manager which:
- Loads config (with optional CLI overrides) for the selected pair
- Creates the shared diff cache
- Fails fast on config errors
- Prints status messages to stderr
"""

from unittest.mock import patch

import pytest

from staging_sync.config_schema import (
    DiffConfig,
    EnvironmentConfig,
    PairConfig,
    UnifiedConfig,
)
from staging_sync.diff.cache import DiffCache
from staging_sync.mcp.lifespan import server_lifespan


def _make_config(**overrides):
    """Create a UnifiedConfig with one file-only pair."""
    defaults = {
        "pairs": {
            "default": PairConfig(
                source=EnvironmentConfig(root="/srv/staging"),
                destination=EnvironmentConfig(root="/srv/production"),
            )
        },
    }
    defaults.update(overrides)
    return UnifiedConfig(**defaults)


# -------------------------------------------------------------------------
# server_lifespan() -- successful startup
# -------------------------------------------------------------------------


class TestServerLifespanSuccess:
    """Tests for the happy path through server_lifespan()."""

    async def test_successful_startup(self):
        config = _make_config(diff=DiffConfig(cache_ttl_seconds=42))

        with (
            patch(
                "staging_sync.mcp.lifespan.load_config",
                return_value=config,
            ) as mock_load,
            patch("staging_sync.mcp.lifespan.load_dotenv"),
            patch("staging_sync.mcp.lifespan._stderr_print"),
        ):
            async with server_lifespan() as ctx:
                assert ctx["config"] is config
                assert isinstance(ctx["cache"], DiffCache)
                assert ctx["cache"].ttl_seconds == 42
            mock_load.assert_called_once_with("default", overrides={})

    async def test_pair_and_log_file_not_passed_as_overrides(self):
        config = _make_config()

        with (
            patch(
                "staging_sync.mcp.lifespan.load_config",
                return_value=config,
            ) as mock_load,
            patch("staging_sync.mcp.lifespan.load_dotenv"),
            patch("staging_sync.mcp.lifespan._stderr_print"),
        ):
            async with server_lifespan(
                config_overrides={
                    "pair": "blog",
                    "log_file": "/tmp/x.log",
                    "source_root": "/srv/staging",
                }
            ):
                pass
            mock_load.assert_called_once_with(
                "blog", overrides={"source_root": "/srv/staging"}
            )

    async def test_no_pairs_warns(self):
        with (
            patch(
                "staging_sync.mcp.lifespan.load_config",
                return_value=UnifiedConfig(),
            ),
            patch("staging_sync.mcp.lifespan.load_dotenv"),
            patch("staging_sync.mcp.lifespan._stderr_print") as mock_print,
        ):
            async with server_lifespan() as ctx:
                assert ctx["config"].pairs == {}
            printed = " ".join(c.args[0] for c in mock_print.call_args_list)
            assert "no environment pairs configured" in printed


# -------------------------------------------------------------------------
# server_lifespan() -- failures
# -------------------------------------------------------------------------


class TestServerLifespanFailure:
    """Tests for fail-fast behaviour on config errors."""

    async def test_config_error_raises_runtime_error(self):
        with (
            patch(
                "staging_sync.mcp.lifespan.load_config",
                side_effect=ValueError("Pair 'default': destination needs a root"),
            ),
            patch("staging_sync.mcp.lifespan.load_dotenv"),
            patch("staging_sync.mcp.lifespan._stderr_print") as mock_print,
        ):
            with pytest.raises(RuntimeError, match="Configuration error"):
                async with server_lifespan():
                    pass
            printed = " ".join(c.args[0] for c in mock_print.call_args_list)
            assert "destination needs a root" in printed

    async def test_cache_cleared_on_shutdown(self):
        with (
            patch(
                "staging_sync.mcp.lifespan.load_config",
                return_value=_make_config(),
            ),
            patch("staging_sync.mcp.lifespan.load_dotenv"),
            patch("staging_sync.mcp.lifespan._stderr_print"),
        ):
            async with server_lifespan() as ctx:
                cache = ctx["cache"]
                cache.put("pair", "files", ["x"])
            assert cache.get("pair", "files") is None
