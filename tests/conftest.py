"""Shared pytest fixtures for staging-sync tests."""

from __future__ import annotations

from pathlib import Path

import pytest
from dotenv import load_dotenv
from sqlalchemy import create_engine, text

from staging_sync.config_schema import (
    EnvironmentConfig,
    ExclusionConfig,
    PairConfig,
    UnifiedConfig,
)
from staging_sync.core.environment import Environment

load_dotenv()


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that require live environments",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "live: mark test as requiring live environments"
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed."""
    if config.getoption("--run-live"):
        return
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def write_tree(root: Path, files: dict[str, str | bytes]) -> Path:
    """Create *files* (relative path -> content) below *root*."""
    root.mkdir(parents=True, exist_ok=True)
    for rel, content in files.items():
        target = root / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, str):
            content = content.encode("utf-8")
        target.write_bytes(content)
    return root


ITEMS_DDL = (
    "CREATE TABLE {prefix}items ("
    "id INTEGER PRIMARY KEY, title TEXT, body TEXT, price REAL)"
)


def make_database(
    path: Path,
    statements: tuple[str, ...] | list[str] = (),
    prefix: str = "",
) -> str:
    """Create a SQLite file with an ``items`` table; return its URL."""
    url = f"sqlite:///{path}"
    engine = create_engine(url)
    with engine.begin() as conn:
        conn.execute(text(ITEMS_DDL.format(prefix=prefix)))
        for statement in statements:
            conn.execute(text(statement.format(prefix=prefix)))
    engine.dispose()
    return url


def query(url: str, sql: str) -> list[tuple]:
    """Run *sql* against *url* and return all rows as tuples."""
    engine = create_engine(url)
    try:
        with engine.connect() as conn:
            return [tuple(r) for r in conn.execute(text(sql))]
    finally:
        engine.dispose()


def execute(url: str, sql: str) -> None:
    engine = create_engine(url)
    try:
        with engine.begin() as conn:
            conn.execute(text(sql))
    finally:
        engine.dispose()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def source_root(tmp_path: Path) -> Path:
    return write_tree(tmp_path / "staging", {})


@pytest.fixture
def destination_root(tmp_path: Path) -> Path:
    return write_tree(tmp_path / "production", {})


@pytest.fixture
def source_db(tmp_path: Path) -> str:
    return make_database(tmp_path / "staging.db")


@pytest.fixture
def destination_db(tmp_path: Path) -> str:
    return make_database(tmp_path / "production.db")


@pytest.fixture
def pair_config(
    tmp_path: Path,
    source_root: Path,
    destination_root: Path,
    source_db: str,
    destination_db: str,
) -> PairConfig:
    return PairConfig(
        source=EnvironmentConfig(root=str(source_root), database_url=source_db),
        destination=EnvironmentConfig(
            root=str(destination_root), database_url=destination_db
        ),
        state_dir=str(tmp_path / "state"),
        lock_timeout=1.0,
    )


@pytest.fixture
def unified_config(pair_config: PairConfig) -> UnifiedConfig:
    """Config with the test pair and WordPress-free exclusions."""
    return UnifiedConfig(
        pairs={"default": pair_config},
        exclusions=ExclusionConfig(
            paths=[".git", "cache"],
            extensions=["log"],
            tables=[],
            columns=[],
            ignored_rows=[],
        ),
    )


@pytest.fixture
def environments(pair_config: PairConfig):
    """Opened (source, destination) environments; closed after the test."""
    source = Environment.from_config("source", pair_config.source)
    destination = Environment.from_config(
        "destination", pair_config.destination
    )
    yield source, destination
    source.close()
    destination.close()
