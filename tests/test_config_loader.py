"""Tests for staging_sync.config_loader: discovery, !include, ${VAR}."""

import textwrap

import pytest
import yaml

from staging_sync.config_loader import (
    _interpolate_recursive,
    _load_yaml_with_includes,
    discover_config_files,
    ensure_config,
    interpolate_env_vars,
    load_hierarchical_config,
    resolve_config_path,
)


@pytest.fixture
def isolated(tmp_path, monkeypatch):
    """CWD and HOME inside tmp_path, no explicit config env var."""
    monkeypatch.delenv("STAGING_SYNC_CONFIG", raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    return tmp_path


# -------------------------------------------------------------------------
# Env var interpolation
# -------------------------------------------------------------------------


class TestInterpolateEnvVars:
    """Tests for ${VAR} and ${VAR:-default} substitution."""

    def test_database_url_credentials(self, monkeypatch):
        monkeypatch.setenv("DB_USER", "wp")
        monkeypatch.setenv("DB_PASSWORD", "pw")
        assert (
            interpolate_env_vars("mysql+pymysql://${DB_USER}:${DB_PASSWORD}@db/prod")
            == "mysql+pymysql://wp:pw@db/prod"
        )

    def test_unset_var_replaced_with_empty(self, monkeypatch):
        monkeypatch.delenv("UNSET_STAGING_VAR", raising=False)
        assert interpolate_env_vars("${UNSET_STAGING_VAR}") == ""

    def test_default_when_unset_or_empty(self, monkeypatch):
        monkeypatch.delenv("UNSET_STAGING_VAR", raising=False)
        monkeypatch.setenv("EMPTY_STAGING_VAR", "")
        assert interpolate_env_vars("${UNSET_STAGING_VAR:-wp_}") == "wp_"
        assert interpolate_env_vars("${EMPTY_STAGING_VAR:-wp_}") == "wp_"

    def test_literal_without_closing_brace(self):
        assert interpolate_env_vars("${NO_CLOSE") == "${NO_CLOSE"

    def test_recursive_walk(self, monkeypatch):
        monkeypatch.setenv("PROD_ROOT", "/var/www/html")
        data = {
            "pairs": {"default": {"destination": {"root": "${PROD_ROOT}"}}},
            "paths": ["${PROD_ROOT}/cache", 3],
            "lock_timeout": 30,
        }
        assert _interpolate_recursive(data) == {
            "pairs": {"default": {"destination": {"root": "/var/www/html"}}},
            "paths": ["/var/www/html/cache", 3],
            "lock_timeout": 30,
        }


# -------------------------------------------------------------------------
# YAML !include support
# -------------------------------------------------------------------------


class TestIncludeDirective:
    """Tests for !include YAML loading via ConfigLoader subclass."""

    def test_include_relative_file(self, tmp_path):
        (tmp_path / "exclusions.yml").write_text("tables: [options]\n")
        main = tmp_path / "config.yml"
        main.write_text("exclusions: !include exclusions.yml\n")

        assert _load_yaml_with_includes(main) == {
            "exclusions": {"tables": ["options"]}
        }

    def test_include_nonexistent_raises(self, tmp_path):
        main = tmp_path / "config.yml"
        main.write_text("pairs: !include missing.yml\n")
        with pytest.raises(FileNotFoundError, match="missing.yml"):
            _load_yaml_with_includes(main)

    def test_circular_include_raises(self, tmp_path):
        (tmp_path / "a.yml").write_text("x: !include b.yml\n")
        (tmp_path / "b.yml").write_text("y: !include a.yml\n")
        with pytest.raises(ValueError, match="Circular include"):
            _load_yaml_with_includes(tmp_path / "a.yml")

    def test_global_safe_loader_not_polluted(self, tmp_path):
        cfg = tmp_path / "test.yml"
        cfg.write_text("x: !include other.yml\n")
        with pytest.raises(yaml.constructor.ConstructorError):
            with open(cfg) as fh:
                yaml.safe_load(fh)


# -------------------------------------------------------------------------
# Discovery and bootstrapping
# -------------------------------------------------------------------------


class TestDiscoverConfigFiles:
    """Tests for discover_config_files() precedence and filtering."""

    def test_nothing_found(self, isolated):
        assert discover_config_files() == []

    def test_env_var_first(self, isolated, monkeypatch):
        custom = isolated / "custom.yml"
        custom.write_text("pairs: {}\n")
        project = isolated / ".staging_sync" / "config.yml"
        project.parent.mkdir()
        project.write_text("pairs: {}\n")
        monkeypatch.setenv("STAGING_SYNC_CONFIG", str(custom))

        result = discover_config_files()
        assert result[0] == custom.resolve()
        assert project.resolve() in [p.resolve() for p in result]

    def test_project_before_global(self, isolated):
        project = isolated / ".staging_sync" / "config.yaml"
        project.parent.mkdir()
        project.write_text("a: 1\n")
        global_cfg = isolated / "home" / ".config" / "staging_sync" / "config.yml"
        global_cfg.parent.mkdir(parents=True)
        global_cfg.write_text("b: 2\n")

        assert [p.resolve() for p in discover_config_files()] == [
            project.resolve(),
            global_cfg.resolve(),
        ]


class TestEnsureConfig:
    """Tests for resolve_config_path() and ensure_config()."""

    def test_default_path(self, isolated):
        expected = isolated / ".staging_sync" / "config.yml"
        assert resolve_config_path().resolve() == expected.resolve()

    def test_creates_starter(self, isolated):
        path = ensure_config()
        assert path.resolve() == (isolated / ".staging_sync" / "config.yml").resolve()
        text = path.read_text()
        assert "STAGING_SOURCE_ROOT" in text
        # The starter is all comments, so it loads as empty.
        assert load_hierarchical_config() == {}

    def test_existing_untouched(self, isolated):
        project = isolated / ".staging_sync" / "config.yml"
        project.parent.mkdir()
        project.write_text("pairs: {}\n")
        assert ensure_config().resolve() == project.resolve()
        assert project.read_text() == "pairs: {}\n"


# -------------------------------------------------------------------------
# Hierarchical merge
# -------------------------------------------------------------------------


class TestLoadHierarchicalConfig:
    """Tests for load_hierarchical_config() merge and interpolation."""

    def test_project_replaces_global_sections(self, isolated, monkeypatch):
        monkeypatch.setenv("STAGING_PROD", "/srv/prod")
        global_cfg = isolated / "home" / ".config" / "staging_sync" / "config.yml"
        global_cfg.parent.mkdir(parents=True)
        global_cfg.write_text(
            textwrap.dedent("""\
            diff:
              max_workers: 2
            logging:
              level: DEBUG
            """)
        )
        project = isolated / ".staging_sync" / "config.yml"
        project.parent.mkdir()
        project.write_text(
            textwrap.dedent("""\
            diff:
              cache_ttl_seconds: 10
            pairs:
              default:
                destination:
                  root: "${STAGING_PROD}"
            """)
        )

        result = load_hierarchical_config()
        assert result["diff"] == {"cache_ttl_seconds": 10}
        assert result["logging"]["level"] == "DEBUG"
        assert result["pairs"]["default"]["destination"]["root"] == "/srv/prod"

    def test_non_dict_root_skipped(self, isolated, monkeypatch):
        bad = isolated / "bad.yml"
        bad.write_text("- item1\n- item2\n")
        monkeypatch.setenv("STAGING_SYNC_CONFIG", str(bad))
        assert load_hierarchical_config() == {}
