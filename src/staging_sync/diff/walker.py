"""Filtered file tree traversal.

``ExclusionRules`` decides whether a relative path is out of scope;
``TreeWalker`` yields already-filtered relative paths.  Excluded
directories are pruned during traversal so nothing below them is ever
read.

Exclusion matching (first hit wins):

1. **Extension deny-list** -- files whose extension is excluded.
2. **Prefix** -- the path equals a pattern or lies below it.
3. **Glob** -- the pattern matches the full relative path or the
   basename (so ``.git`` and ``*.log`` apply at any depth).
"""

from __future__ import annotations

import fnmatch
import logging
import os
from collections.abc import Callable, Iterable, Iterator
from pathlib import Path, PurePosixPath

from staging_sync.config_schema import ExclusionConfig
from staging_sync.errors import ScanError

logger = logging.getLogger(__name__)

WarningSink = Callable[[ScanError], None]


class ExclusionRules:
    """Path and extension exclusion policy.

    Args:
        paths: Prefix or glob patterns, relative to the tree root.
        extensions: File extensions (without dot) to skip.
    """

    def __init__(
        self, paths: Iterable[str] = (), extensions: Iterable[str] = ()
    ) -> None:
        self._patterns = [p.strip("/") for p in paths if p.strip("/")]
        self._extensions = frozenset(
            ext.lower().lstrip(".") for ext in extensions
        )

    @classmethod
    def from_config(cls, config: ExclusionConfig) -> ExclusionRules:
        return cls(paths=config.paths, extensions=config.extensions)

    def is_excluded(self, relative_path: str, is_dir: bool = False) -> bool:
        """Return ``True`` if *relative_path* must not be scanned."""
        path = PurePosixPath(relative_path)
        if not is_dir:
            suffix = path.suffix.lower().lstrip(".")
            if suffix and suffix in self._extensions:
                return True

        for pattern in self._patterns:
            if relative_path == pattern or relative_path.startswith(
                pattern + "/"
            ):
                return True
            if fnmatch.fnmatch(relative_path, pattern):
                return True
            if fnmatch.fnmatch(path.name, pattern):
                return True
        return False


class TreeWalker:
    """Enumerate the files of a tree, applying ``ExclusionRules``.

    Symlinks and entries that cannot be listed are skipped and handed
    to the *on_warning* callback as ``ScanError`` instances.
    """

    def __init__(self, rules: ExclusionRules) -> None:
        self._rules = rules

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def top_level(
        self, root: Path, on_warning: WarningSink
    ) -> tuple[list[str], list[str]]:
        """Split the first level of *root* into files and subdirectories.

        Returns:
            ``(files, directories)`` as sorted relative paths, both
            already filtered.
        """
        files: list[str] = []
        dirs: list[str] = []
        for rel, is_dir in self._list_dir(root, "", on_warning):
            (dirs if is_dir else files).append(rel)
        return files, dirs

    def walk(
        self, root: Path, on_warning: WarningSink, start: str = ""
    ) -> Iterator[str]:
        """Yield relative paths of all in-scope files below *start*.

        Args:
            root: Tree root.
            on_warning: Receives a ``ScanError`` for each skipped entry.
            start: Relative directory to start from (``""`` for root).

        Yields:
            POSIX-style relative paths in sorted depth-first order.
        """
        stack = [start]
        while stack:
            current = stack.pop()
            subdirs: list[str] = []
            for rel, is_dir in self._list_dir(root, current, on_warning):
                if is_dir:
                    subdirs.append(rel)
                else:
                    yield rel
            # Reversed so the stack pops in sorted order.
            stack.extend(reversed(subdirs))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _list_dir(
        self, root: Path, relative_dir: str, on_warning: WarningSink
    ) -> list[tuple[str, bool]]:
        """List one directory level as ``(relative_path, is_dir)`` pairs."""
        directory = root / relative_dir if relative_dir else root
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as exc:
            on_warning(
                ScanError(relative_dir or ".", f"cannot list: {exc}")
            )
            return []

        result: list[tuple[str, bool]] = []
        for entry in entries:
            rel = (
                f"{relative_dir}/{entry.name}"
                if relative_dir
                else entry.name
            )
            try:
                if entry.is_symlink():
                    if not self._rules.is_excluded(rel):
                        on_warning(ScanError(rel, "symlink skipped"))
                    continue
                is_dir = entry.is_dir(follow_symlinks=False)
                is_file = entry.is_file(follow_symlinks=False)
            except OSError as exc:
                on_warning(ScanError(rel, f"cannot stat: {exc}"))
                continue

            if not (is_dir or is_file):
                # Sockets, FIFOs, devices.
                continue
            if self._rules.is_excluded(rel, is_dir=is_dir):
                logger.debug("Excluded: %s", rel)
                continue
            result.append((rel, is_dir))
        return result
