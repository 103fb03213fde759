"""Read-only duplicate queries derived from the catalog."""

from __future__ import annotations

import os
from collections import deque
from pathlib import Path
from typing import NamedTuple

from fdedupe.catalog import Catalog, DirectoryRecord, FileRecord, path_prefix
from fdedupe.scan.errors import PathError
from fdedupe.scan.paths import PathResolver, VisitedSet


class SubtreeAggregate(NamedTuple):
    """Number and combined size of duplicate-group members in a subtree."""

    count: int
    total_size: int


class DuplicateIndex:
    """Derive duplicate groups and per-directory aggregates on demand.

    Nothing here writes to the catalog; every result reflects current rows.
    """

    def __init__(self, catalog: Catalog, resolver: PathResolver | None = None) -> None:
        self.catalog = catalog
        self.resolver = resolver or PathResolver()

    def duplicate_groups(self) -> dict[str, list[FileRecord]]:
        """Return full hash -> files for every hash shared by two or more files."""
        groups: dict[str, list[FileRecord]] = {}
        for record in self.catalog.duplicate_files():
            groups.setdefault(record.full_hash or "", []).append(record)
        return {digest: files for digest, files in groups.items() if len(files) > 1}

    def subtree_aggregate(
        self,
        directory: str | Path,
        *,
        recursive: bool = True,
        follow_symlinks: bool = False,
    ) -> SubtreeAggregate:
        """Count duplicate-group members located in or under ``directory``.

        Args:
            directory: Canonical directory path.
            recursive: Include files in subdirectories, not just direct children.
            follow_symlinks: Also include subtrees reachable through symlinked
                directories found on disk below ``directory``.

        Returns:
            SubtreeAggregate: Count and total size, each file counted once.
        """
        if not recursive:
            files = self.duplicate_files_in(directory)
            return SubtreeAggregate(len(files), sum(record.size for record in files))

        roots = [Path(directory)]
        if follow_symlinks:
            roots.extend(self._symlinked_roots(Path(directory)))

        seen: dict[int, FileRecord] = {}
        for root in roots:
            for record in self.catalog.duplicate_files_under(root):
                seen.setdefault(record.id, record)
        return SubtreeAggregate(len(seen), sum(record.size for record in seen.values()))

    def child_aggregates(
        self, directory: str | Path, *, follow_symlinks: bool = False
    ) -> list[tuple[DirectoryRecord, SubtreeAggregate]]:
        """Return aggregates for known child directories that contain duplicates."""
        results = []
        for child in self.catalog.child_directories(directory):
            aggregate = self.subtree_aggregate(child.path, follow_symlinks=follow_symlinks)
            if aggregate.count:
                results.append((child, aggregate))
        return results

    def duplicate_files_in(self, directory: str | Path) -> list[FileRecord]:
        """Return duplicate-group members stored directly in ``directory``."""
        record = self.catalog.get_directory(directory)
        if record is None:
            return []
        return self.catalog.duplicate_files_in_directory(record.id)

    def _symlinked_roots(self, directory: Path) -> list[Path]:
        inside = path_prefix(directory)
        visited = VisitedSet([directory])
        queue: deque[Path] = deque([directory])
        roots: list[Path] = []
        while queue:
            current = queue.popleft()
            try:
                with os.scandir(current) as iterator:
                    entries = list(iterator)
            except OSError:
                continue
            for entry in entries:
                try:
                    if not entry.is_dir(follow_symlinks=True):
                        continue
                    linked = entry.is_symlink()
                    target = self.resolver.canonicalize(entry.path) if linked else Path(entry.path)
                except (OSError, PathError):
                    continue
                if not visited.claim(target):
                    continue
                if linked and not path_prefix(target).startswith(inside):
                    roots.append(target)
                queue.append(target)
        return roots


__all__ = ["DuplicateIndex", "SubtreeAggregate"]
