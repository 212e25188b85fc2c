"""Tree differ: classify relative paths as added, modified or deleted.

Both roots are scanned with the same ``ExclusionRules`` so a path that
is out of scope on one side can never show up as a phantom add or
delete.  Each side is fingerprinted with one worker per top-level
subtree; the per-side maps are merged once all workers finish and then
compared by fingerprint only (never timestamps).
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path

from staging_sync.core.hasher import ContentHasher
from staging_sync.diff.models import (
    ChangeStatus,
    FileChange,
    FileDiffReport,
    ScanWarning,
)
from staging_sync.diff.walker import TreeWalker, WarningSink
from staging_sync.errors import ScanError

logger = logging.getLogger(__name__)

# Warning path for a root that is missing or cannot be listed.
ROOT = "."


class TreeDiffer:
    """Compare two directory roots.

    Args:
        walker: Filtered traversal shared by both sides.
        hasher: Content fingerprinting.
        max_workers: Upper bound on concurrent subtree workers.
    """

    def __init__(
        self,
        walker: TreeWalker,
        hasher: ContentHasher,
        max_workers: int = 8,
    ) -> None:
        self._walker = walker
        self._hasher = hasher
        self._max_workers = max_workers

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    def diff(
        self, source_root: Path, destination_root: Path
    ) -> FileDiffReport:
        """Diff *source_root* against *destination_root*.

        Returns:
            A ``FileDiffReport`` whose changes are ordered by path.  When
            either root is missing or cannot be listed the report has no
            changes, only the warnings.
        """
        warnings: list[ScanWarning] = []
        source_map = self.fingerprint_tree(
            source_root, "source", warnings
        )
        destination_map = self.fingerprint_tree(
            destination_root, "destination", warnings
        )

        unreadable = {w.path for w in warnings}
        if ROOT in unreadable:
            # An empty side would read as every path added or deleted.
            logger.error(
                "Tree diff skipped: a root could not be scanned (%s)",
                "; ".join(w.message for w in warnings if w.path == ROOT),
            )
            return FileDiffReport(
                changes=[],
                warnings=warnings,
                generated_at=datetime.now(timezone.utc).isoformat(),
            )

        # Anything unreadable on either side is left out on both.
        changes: list[FileChange] = []
        for path in sorted(source_map.keys() | destination_map.keys()):
            if _is_under_any(path, unreadable):
                continue
            src = source_map.get(path)
            dst = destination_map.get(path)
            if dst is None:
                status = ChangeStatus.ADDED
            elif src is None:
                status = ChangeStatus.DELETED
            elif src != dst:
                status = ChangeStatus.MODIFIED
            else:
                continue
            changes.append(
                FileChange(
                    relative_path=path,
                    status=status,
                    source_hash=src,
                    destination_hash=dst,
                )
            )

        logger.info(
            "Tree diff: %d change(s), %d warning(s)",
            len(changes),
            len(warnings),
        )
        return FileDiffReport(
            changes=changes,
            warnings=warnings,
            generated_at=datetime.now(timezone.utc).isoformat(),
        )

    # ------------------------------------------------------------------
    # Fingerprinting
    # ------------------------------------------------------------------

    def fingerprint_tree(
        self,
        root: Path,
        label: str,
        warnings: list[ScanWarning],
    ) -> dict[str, str]:
        """Build ``relative_path -> fingerprint`` for every in-scope file.

        A missing root yields an empty map and a warning on path
        ``ROOT``; ``diff`` then reports no changes for the pair.
        """
        if not root.is_dir():
            warnings.append(
                ScanWarning(
                    path=ROOT, message=f"{label} root not found: {root}"
                )
            )
            return {}

        def record(exc: ScanError) -> None:
            logger.warning("Scan warning (%s): %s", label, exc)
            warnings.append(
                ScanWarning(path=exc.path, message=f"{label}: {exc.reason}")
            )

        top_files, subtrees = self._walker.top_level(root, record)
        fingerprints: dict[str, str] = {}

        if subtrees:
            workers = min(len(subtrees), self._max_workers)
            with ThreadPoolExecutor(
                max_workers=workers, thread_name_prefix=f"scan-{label}"
            ) as pool:
                futures = [
                    pool.submit(self._fingerprint_subtree, root, subtree)
                    for subtree in subtrees
                ]
                for future in futures:
                    partial, partial_warnings = future.result()
                    fingerprints.update(partial)
                    for exc in partial_warnings:
                        record(exc)

        for rel in top_files:
            digest = self._fingerprint_file(root, rel, record)
            if digest is not None:
                fingerprints[rel] = digest

        return fingerprints

    def _fingerprint_subtree(
        self, root: Path, subtree: str
    ) -> tuple[dict[str, str], list[ScanError]]:
        """Worker: fingerprint every file below *subtree*.

        Warnings are returned rather than recorded so the shared list is
        only touched from the calling thread.
        """
        errors: list[ScanError] = []
        result: dict[str, str] = {}
        for rel in self._walker.walk(root, errors.append, start=subtree):
            digest = self._fingerprint_file(root, rel, errors.append)
            if digest is not None:
                result[rel] = digest
        return result, errors

    def _fingerprint_file(
        self, root: Path, rel: str, on_warning: WarningSink
    ) -> str | None:
        try:
            return self._hasher.hash_file(root / rel, relative_path=rel)
        except OSError as exc:
            on_warning(ScanError(rel, f"unreadable: {exc}"))
            return None


def _is_under_any(path: str, prefixes: set[str]) -> bool:
    """``True`` if *path* equals or lies below one of *prefixes*."""
    if not prefixes:
        return False
    if path in prefixes:
        return True
    parts = path.split("/")
    return any(
        "/".join(parts[:i]) in prefixes for i in range(1, len(parts))
    )
