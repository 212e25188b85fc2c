"""Tests for the tree differ.

Covers:
- Added / modified / deleted classification by fingerprint
- Identical trees and line-ending-only edits yield no changes
- Exclusions apply to both sides
- A missing or unlistable root yields no changes, only a warning
- Changes are ordered by path
"""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest
from conftest import write_tree

from staging_sync.core.hasher import ContentHasher
from staging_sync.diff.models import ChangeStatus
from staging_sync.diff.tree import TreeDiffer
from staging_sync.diff.walker import ExclusionRules, TreeWalker


def _differ(paths=(), extensions=()) -> TreeDiffer:
    rules = ExclusionRules(paths=paths, extensions=extensions)
    return TreeDiffer(TreeWalker(rules), ContentHasher(), max_workers=2)


class TestTreeDiff:
    """Tests for TreeDiffer.diff()."""

    def test_classifies_changes(self, tmp_path: Path):
        src = write_tree(
            tmp_path / "s",
            {"new.txt": "n", "same.txt": "s", "css/style.css": "Y"},
        )
        dst = write_tree(
            tmp_path / "d",
            {"old.txt": "o", "same.txt": "s", "css/style.css": "X"},
        )
        report = _differ().diff(src, dst)

        by_path = {c.relative_path: c.status for c in report.changes}
        assert by_path == {
            "css/style.css": ChangeStatus.MODIFIED,
            "new.txt": ChangeStatus.ADDED,
            "old.txt": ChangeStatus.DELETED,
        }

    def test_hashes_reported_per_side(self, tmp_path: Path):
        src = write_tree(tmp_path / "s", {"a.txt": "new"})
        dst = write_tree(tmp_path / "d", {})
        (change,) = _differ().diff(src, dst).changes
        assert change.source_hash == ContentHasher.hash_bytes(b"new")
        assert change.destination_hash is None

    def test_identical_trees_have_no_changes(self, tmp_path: Path):
        files = {"a.txt": "a", "sub/b.txt": "b", "sub/deeper/c.bin": b"\x00\x01"}
        src = write_tree(tmp_path / "s", files)
        dst = write_tree(tmp_path / "d", files)
        report = _differ().diff(src, dst)
        assert report.changes == []
        assert report.warnings == []

    def test_line_endings_only_is_not_a_change(self, tmp_path: Path):
        src = write_tree(tmp_path / "s", {"page.php": "a\r\nb\r\n"})
        dst = write_tree(tmp_path / "d", {"page.php": "a\nb\n"})
        assert _differ().diff(src, dst).changes == []

    def test_mtime_only_is_not_a_change(self, tmp_path: Path):
        src = write_tree(tmp_path / "s", {"a.txt": "same"})
        dst = write_tree(tmp_path / "d", {"a.txt": "same"})
        os.utime(dst / "a.txt", (1_000_000, 1_000_000))
        assert _differ().diff(src, dst).changes == []

    def test_exclusions_apply_to_both_sides(self, tmp_path: Path):
        src = write_tree(
            tmp_path / "s", {"cache/x.html": "1", "debug.log": "a"}
        )
        dst = write_tree(
            tmp_path / "d", {"cache/y.html": "2", "other.log": "b"}
        )
        report = _differ(paths=["cache"], extensions=["log"]).diff(src, dst)
        assert report.changes == []

    def test_missing_destination_root_reports_no_changes(self, tmp_path: Path):
        src = write_tree(tmp_path / "s", {"a.txt": "a", "b/c.txt": "c"})
        report = _differ().diff(src, tmp_path / "nope")

        assert report.changes == []
        (warning,) = report.warnings
        assert warning.path == "."
        assert "destination root not found" in warning.message

    def test_missing_source_root_deletes_nothing(self, tmp_path: Path):
        dst = write_tree(tmp_path / "d", {"a.txt": "a", "b.txt": "b"})
        report = _differ().diff(tmp_path / "nope", dst)

        assert report.changes == []
        assert "source root not found" in report.warnings[0].message

    def test_unlistable_source_root_deletes_nothing(self, tmp_path: Path):
        """A source root that cannot be listed must not empty the destination."""
        src = write_tree(tmp_path / "s", {"a.txt": "a"})
        dst = write_tree(tmp_path / "d", {"a.txt": "a", "b.txt": "b"})
        real_scandir = os.scandir

        def scandir(path):
            if Path(path) == src:
                raise PermissionError(13, "Permission denied", str(path))
            return real_scandir(path)

        with patch("staging_sync.diff.walker.os.scandir", scandir):
            report = _differ().diff(src, dst)

        assert not any(c.status is ChangeStatus.DELETED for c in report.changes)
        assert report.changes == []
        assert [w.path for w in report.warnings] == ["."]
        assert "cannot list" in report.warnings[0].message

    def test_changes_sorted_by_path(self, tmp_path: Path):
        src = write_tree(
            tmp_path / "s", {"z.txt": "z", "a/b.txt": "b", "m.txt": "m"}
        )
        dst = write_tree(tmp_path / "d", {})
        paths = [c.relative_path for c in _differ().diff(src, dst).changes]
        assert paths == sorted(paths)

    def test_symlink_skipped_on_both_sides(self, tmp_path: Path):
        src = write_tree(tmp_path / "s", {"target.txt": "t"})
        dst = write_tree(tmp_path / "d", {"target.txt": "t", "link.txt": "x"})
        try:
            os.symlink(src / "target.txt", src / "link.txt")
        except (OSError, NotImplementedError):
            pytest.skip("symlinks not supported")

        report = _differ().diff(src, dst)
        assert report.changes == []
        assert [w.path for w in report.warnings] == ["link.txt"]


class TestFingerprintTree:
    """Tests for TreeDiffer.fingerprint_tree()."""

    def test_maps_every_file(self, tmp_path: Path):
        root = write_tree(tmp_path / "r", {"a.txt": "a", "d/e/f.txt": "f"})
        warnings = []
        result = _differ().fingerprint_tree(root, "source", warnings)
        assert set(result) == {"a.txt", "d/e/f.txt"}
        assert result["a.txt"] == ContentHasher.hash_bytes(b"a")
        assert warnings == []
