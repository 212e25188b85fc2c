"""Unified configuration schema for staging_sync.

Defines Pydantic models for the unified config structure with dedicated
sections for environment pairs, exclusion rules, hashing, grouping,
diffing and logging.

Usage:
    from staging_sync.config_schema import UnifiedConfig, build_config

    raw = load_hierarchical_config()
    unified = build_config(raw)
    pair = unified.pairs["default"]
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field, field_validator

from .core.hasher import DEFAULT_BINARY_EXTENSIONS

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Environment pairs
# ---------------------------------------------------------------------------


class EnvironmentConfig(BaseModel):
    """Descriptor of one environment, supplied by the provisioning side.

    The engine never guesses any of these values.
    """

    root: str | None = Field(
        default=None, description="File tree root directory"
    )
    database_url: str | None = Field(
        default=None, description="SQLAlchemy database URL"
    )
    table_prefix: str = Field(
        default="", description="Physical table name prefix"
    )

    model_config = {"frozen": True}


class PairConfig(BaseModel):
    """A source (staging) and destination (production) environment.

    Attributes:
        source: Environment changes flow from.
        destination: Environment changes are applied to.
        state_dir: Directory for baseline and conflict state files.
        lock_timeout: Seconds to wait for the destination lock.
    """

    source: EnvironmentConfig = Field(default_factory=EnvironmentConfig)
    destination: EnvironmentConfig = Field(
        default_factory=EnvironmentConfig
    )
    state_dir: str = Field(
        default=".staging_sync",
        description="Directory for baseline/conflict state files",
    )
    lock_timeout: float = Field(
        default=30.0,
        ge=0,
        description="Seconds to wait for another sync to finish",
    )

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Exclusions
# ---------------------------------------------------------------------------


class IgnoredRowRule(BaseModel):
    """Rows of *table* whose *column* matches a glob in *patterns*."""

    table: str
    column: str
    patterns: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}


_DEFAULT_EXCLUDED_PATHS = [
    ".git",
    ".svn",
    "node_modules",
    "wp-config.php",
    "wp-content/cache",
    "wp-content/upgrade",
    "wp-content/uploads/cache",
    ".htaccess",
    ".DS_Store",
    "error_log",
    "*.log",
]

_DEFAULT_EXCLUDED_COLUMNS = [
    "post_modified",
    "post_modified_gmt",
    "comment_date",
    "comment_date_gmt",
    "user_registered",
    "session_expiry",
]


def _default_ignored_rows() -> list[IgnoredRowRule]:
    return [
        IgnoredRowRule(
            table="options",
            column="option_name",
            patterns=["_transient_*", "_site_transient_*"],
        )
    ]


class ExclusionConfig(BaseModel):
    """What the differs never look at.

    ``paths`` entries match as a path prefix (a directory and everything
    below it) or as a glob against the relative path or the basename.
    """

    paths: list[str] = Field(
        default_factory=lambda: list(_DEFAULT_EXCLUDED_PATHS)
    )
    extensions: list[str] = Field(
        default_factory=lambda: ["log", "tmp", "temp", "swp", "bak"]
    )
    tables: list[str] = Field(
        default_factory=lambda: ["options", "usermeta", "sessions"]
    )
    columns: list[str] = Field(
        default_factory=lambda: list(_DEFAULT_EXCLUDED_COLUMNS)
    )
    ignored_rows: list[IgnoredRowRule] = Field(
        default_factory=_default_ignored_rows
    )

    model_config = {"frozen": True}

    @field_validator("extensions")
    @classmethod
    def _strip_dots(cls, value: list[str]) -> list[str]:
        return [ext.lower().lstrip(".") for ext in value]


class HashingConfig(BaseModel):
    """Content hasher settings."""

    binary_extensions: list[str] = Field(
        default_factory=lambda: sorted(DEFAULT_BINARY_EXTENSIONS)
    )

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Grouping
# ---------------------------------------------------------------------------


class RelationRule(BaseModel):
    """Rows of *table* attach to a group when *foreign_key* holds a group id."""

    table: str
    foreign_key: str

    model_config = {"frozen": True}


class GroupingConfig(BaseModel):
    """Rules used by the change grouper.

    Defaults describe a WordPress-shaped schema: posts with a parent
    column, attachments as a post type, post meta, taxonomy links and
    comments pointing back at posts.
    """

    primary_table: str = "posts"
    parent_column: str = "post_parent"
    kind_column: str = "post_type"
    title_column: str = "post_title"
    attachment_kind: str = "attachment"
    root_parent_values: list[str] = Field(
        default_factory=lambda: ["0", ""]
    )
    metadata: list[RelationRule] = Field(
        default_factory=lambda: [
            RelationRule(table="postmeta", foreign_key="post_id")
        ]
    )
    related: list[RelationRule] = Field(
        default_factory=lambda: [
            RelationRule(
                table="term_relationships", foreign_key="object_id"
            ),
            RelationRule(table="comments", foreign_key="comment_post_ID"),
        ]
    )

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Diffing
# ---------------------------------------------------------------------------


def _default_name_columns() -> dict[str, list[str]]:
    return {
        "posts": ["post_title"],
        "terms": ["name"],
        "users": ["display_name", "user_login"],
        "comments": ["comment_author"],
    }


class DiffConfig(BaseModel):
    """Diff pass tuning."""

    cache_ttl_seconds: float = Field(
        default=300.0,
        ge=0,
        description="Lifetime of cached diff results (0 disables)",
    )
    max_workers: int = Field(
        default=8,
        ge=1,
        le=64,
        description="Thread pool size for subtree/table workers (1-64)",
    )
    fetch_batch_size: int = Field(
        default=500,
        ge=1,
        le=10000,
        description="Rows fetched per query when comparing (1-10000)",
    )
    name_columns: dict[str, list[str]] = Field(
        default_factory=_default_name_columns
    )
    fallback_name_columns: list[str] = Field(
        default_factory=lambda: ["name", "title", "label", "description"]
    )

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Aggregates all config sections. Every section has sensible defaults,
    so ``UnifiedConfig()`` (zero-config) is always valid.
    """

    pairs: dict[str, PairConfig] = Field(default_factory=dict)
    exclusions: ExclusionConfig = Field(default_factory=ExclusionConfig)
    hashing: HashingConfig = Field(default_factory=HashingConfig)
    grouping: GroupingConfig = Field(default_factory=GroupingConfig)
    diff: DiffConfig = Field(default_factory=DiffConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Handles missing sections gracefully; anything absent gets defaults.
    A ``pairs`` entry that is ``null`` in YAML becomes an empty mapping.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.
    """
    if not raw_data:
        return UnifiedConfig()

    data = dict(raw_data)
    if data.get("pairs") is None:
        data.pop("pairs", None)
    unified = UnifiedConfig(**data)
    logger.debug(
        "Built config with %d environment pair(s)", len(unified.pairs)
    )
    return unified
