"""Configuration entry point: YAML config plus env and CLI overrides.

Reads the environment pair descriptors from CLI args, environment
variables, .env files, and the YAML config files found by
``config_loader``.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables (all apply to the selected pair):
    STAGING_SOURCE_ROOT: Source (staging) file tree root
    STAGING_DESTINATION_ROOT: Destination (production) file tree root
    STAGING_SOURCE_DB_URL: SQLAlchemy URL of the source database
    STAGING_DESTINATION_DB_URL: SQLAlchemy URL of the destination database
    STAGING_SOURCE_PREFIX: Source table prefix
    STAGING_DESTINATION_PREFIX: Destination table prefix
    STAGING_STATE_DIR: Directory for baseline/conflict state files
    STAGING_CACHE_TTL: Diff cache lifetime in seconds (optional, default: 300)
"""

from __future__ import annotations

import logging
import os
from typing import Any

from staging_sync.config_loader import load_hierarchical_config
from staging_sync.config_schema import (
    PairConfig,
    UnifiedConfig,
    build_config,
)

logger = logging.getLogger(__name__)

DEFAULT_PAIR = "default"

_SIDE_FIELDS = {
    "root": "ROOT",
    "database_url": "DB_URL",
    "table_prefix": "PREFIX",
}


def validate_pair(name: str, pair: PairConfig) -> None:
    """Raise ``ValueError`` if *pair* cannot be diffed.

    Each side needs a file root or a database URL, and both sides must
    configure the same kinds of handles.
    """
    for side_name, side in (
        ("source", pair.source),
        ("destination", pair.destination),
    ):
        if not side.root and not side.database_url:
            raise ValueError(
                f"Pair '{name}': {side_name} needs a root or a database_url. "
                f"Set STAGING_{side_name.upper()}_ROOT / "
                f"STAGING_{side_name.upper()}_DB_URL or edit the config file."
            )

    if bool(pair.source.root) != bool(pair.destination.root):
        raise ValueError(
            f"Pair '{name}': root must be set on both sides or on neither"
        )
    if bool(pair.source.database_url) != bool(pair.destination.database_url):
        raise ValueError(
            f"Pair '{name}': database_url must be set on both sides or on neither"
        )

    if pair.source.root and pair.source.root == pair.destination.root:
        logger.warning(
            "Pair '%s': source and destination share the root %s",
            name,
            pair.source.root,
        )


def load_config(
    pair_name: str = DEFAULT_PAIR,
    overrides: dict[str, Any] | None = None,
    raw: dict | None = None,
) -> UnifiedConfig:
    """Load configuration with unified precedence.

    Resolution order for each pair field (highest to lowest):
        *overrides* (CLI) > env var / .env > YAML > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        pair_name: Pair that env and CLI values apply to.
        overrides: CLI values keyed ``source_root``, ``destination_root``,
            ``source_database_url``, ``destination_database_url``,
            ``source_table_prefix``, ``destination_table_prefix``,
            ``state_dir``.  ``None`` entries are ignored.
        raw: Already-loaded YAML data (skips discovery; used by tests).

    Returns:
        Validated ``UnifiedConfig``.

    Raises:
        ValueError: If the selected pair ends up unusable or a numeric
            env var is malformed.
    """
    data = dict(raw if raw is not None else load_hierarchical_config())
    cli = {k: v for k, v in (overrides or {}).items() if v is not None}

    pairs = dict(data.get("pairs") or {})
    pair = dict(pairs.get(pair_name) or {})

    for side in ("source", "destination"):
        values = dict(pair.get(side) or {})
        for field, suffix in _SIDE_FIELDS.items():
            env_value = os.getenv(f"STAGING_{side.upper()}_{suffix}")
            cli_value = cli.get(f"{side}_{field}")
            if cli_value is not None:
                values[field] = cli_value
            elif env_value:
                values[field] = env_value
        if values:
            pair[side] = values

    state_dir = cli.get("state_dir") or os.getenv("STAGING_STATE_DIR")
    if state_dir:
        pair["state_dir"] = state_dir

    if pair:
        pairs[pair_name] = pair
    data["pairs"] = pairs

    ttl_raw = os.getenv("STAGING_CACHE_TTL")
    if ttl_raw is not None:
        try:
            ttl = float(ttl_raw)
        except ValueError:
            raise ValueError(
                f"Invalid STAGING_CACHE_TTL '{ttl_raw}': must be a number of seconds"
            ) from None
        if ttl < 0:
            raise ValueError(
                f"Invalid STAGING_CACHE_TTL '{ttl_raw}': must not be negative"
            )
        data["diff"] = {**(data.get("diff") or {}), "cache_ttl_seconds": ttl}

    config = build_config(data)
    if pair_name in config.pairs:
        validate_pair(pair_name, config.pairs[pair_name])
    return config


def require_pair(config: UnifiedConfig, pair_name: str) -> PairConfig:
    """Return the named pair or raise a ``ValueError`` naming the fix."""
    pair = config.pairs.get(pair_name)
    if pair is None:
        raise ValueError(
            f"Environment pair '{pair_name}' is not configured. Set "
            "STAGING_SOURCE_ROOT and STAGING_DESTINATION_ROOT (or the "
            "*_DB_URL variables), or add it under 'pairs' in "
            ".staging_sync/config.yml."
        )
    return pair
