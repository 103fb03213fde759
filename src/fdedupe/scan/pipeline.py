"""Breadth-first incremental scanner driving change detection and hashing."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable

from fdedupe.catalog import Catalog, DirectoryRecord, FileRecord
from fdedupe.config.models import ScanSettings

from .discovery import DirectoryEnumerator
from .errors import PathError
from .hashing import Hasher
from .models import (
    DirectoryListing,
    DirectoryReport,
    DirectoryState,
    ProgressEvent,
    ProgressSink,
    ScanSummary,
)
from .paths import PathResolver, VisitedSet, is_hidden

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ScanPass:
    """Traversal-local state shared by every directory of one scan invocation.

    Attributes:
        visited: Canonical directories already processed or enqueued.
        unreadable: File ids whose full hash failed during this pass.
    """

    visited: VisitedSet = field(default_factory=VisitedSet)
    unreadable: set[int] = field(default_factory=set)


class Scanner:
    """Catalog directory trees and keep duplicate candidates fully hashed."""

    def __init__(
        self,
        catalog: Catalog,
        settings: ScanSettings | None = None,
        *,
        hasher: Hasher | None = None,
        resolver: PathResolver | None = None,
        progress: ProgressSink | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the scanner.

        Args:
            catalog: Catalog receiving directory and file rows.
            settings: Scan options; defaults apply when omitted.
            hasher: Content hasher.
            resolver: Path canonicalizer.
            progress: Optional sink receiving progress events.
            clock: Source of scan-completion timestamps.
        """
        self.catalog = catalog
        self.settings = settings or ScanSettings()
        self.hasher = hasher or Hasher()
        self.resolver = resolver or PathResolver()
        self.enumerator = DirectoryEnumerator.from_settings(self.settings, self.resolver)
        self.progress = progress
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def run(self, roots: Iterable[Path | str]) -> ScanSummary:
        """Scan each root in order and return aggregated results.

        A root that cannot be canonicalized or read is reported and skipped;
        the remaining roots still run.

        Raises:
            CatalogError: If a catalog write fails; the current directory's
                changes are rolled back first.
        """
        summary = ScanSummary()
        scan_pass = ScanPass()

        for root in roots:
            try:
                canonical = self.resolver.canonicalize_directory(root)
            except PathError as exc:
                LOGGER.warning("Skipping root %s: %s", root, exc)
                summary.failed_roots.append(f"{root}: {exc}")
                continue
            if not scan_pass.visited.claim(canonical):
                LOGGER.info("Root %s already visited in this pass.", canonical)
                continue
            self._scan_root(canonical, scan_pass, summary)

        summary.duplicate_groups = self.catalog.count_duplicate_groups()
        self._emit("duplicates", count=summary.duplicate_groups)
        return summary

    def _scan_root(self, root: Path, scan_pass: ScanPass, summary: ScanSummary) -> None:
        queue: deque[Path] = deque([root])
        while queue:
            directory = queue.popleft()
            report = self.process_directory(directory, scan_pass)
            summary.record(report)
            if report.state is DirectoryState.FAILED and directory == root:
                summary.failed_roots.append(f"{root}: {'; '.join(report.errors)}")
            queue.extend(report.enqueue)

    def process_directory(self, directory: Path, scan_pass: ScanPass) -> DirectoryReport:
        """Run the per-directory state machine for the canonical ``directory``."""
        report = DirectoryReport(path=directory)
        record = self.catalog.upsert_directory(directory)
        self._emit("directory", path=directory)

        if record.scanned and not self.settings.force_rescan:
            report.advance(DirectoryState.SKIPPED)
            if self.settings.recursive:
                for child in self._known_subdirectories(directory, report):
                    if scan_pass.visited.claim(child):
                        report.enqueue.append(child)
            LOGGER.debug("Skipped already scanned directory %s", directory)
            return report

        try:
            listing = self.enumerator.enumerate(directory)
        except OSError as exc:
            LOGGER.warning("Cannot read directory %s: %s", directory, exc)
            report.errors.append(f"{directory}: {exc}")
            report.advance(DirectoryState.FAILED)
            return report
        report.advance(DirectoryState.ENUMERATED)
        report.errors.extend(listing.errors)
        self._emit("files", path=directory, count=len(listing.files))

        with self.catalog.transaction():
            existing = {row.name: row for row in self.catalog.files_in_directory(record.id)}
            self._detect_deletions(existing, listing, report)
            self._apply_changes(record, existing, listing, report)
            report.advance(DirectoryState.CHANGE_DETECTED)

            self._resolve_collisions(scan_pass, report)
            report.advance(DirectoryState.COLLISION_RESOLVED)

            self.catalog.mark_scanned(record.id, self.clock())
            for subdirectory in listing.subdirectories:
                self.catalog.upsert_directory(subdirectory)
                if self.settings.recursive and scan_pass.visited.claim(subdirectory):
                    report.enqueue.append(subdirectory)

        report.advance(DirectoryState.COMPLETED)
        if self.progress is not None:
            self._emit("duplicates", path=directory, count=self.catalog.count_duplicate_groups())
        return report

    def _known_subdirectories(self, directory: Path, report: DirectoryReport) -> list[Path]:
        """Return the subdirectories to descend into below a skipped directory.

        Only subdirectory entries are re-read from disk so the hidden and
        symlink filters of this pass apply. The catalog's child rows are used
        when the directory can no longer be listed.
        """
        try:
            listing = self.enumerator.subdirectories(directory)
        except OSError as exc:
            LOGGER.warning("Cannot list subdirectories of %s: %s", directory, exc)
            return [
                child.path
                for child in self.catalog.child_directories(directory)
                if self.settings.include_hidden or not is_hidden(child.path.name)
            ]
        report.errors.extend(listing.errors)
        return listing.subdirectories

    def _detect_deletions(
        self,
        existing: dict[str, FileRecord],
        listing: DirectoryListing,
        report: DirectoryReport,
    ) -> None:
        for name, row in existing.items():
            if name in listing.names:
                continue
            if not self.settings.include_hidden and is_hidden(name):
                continue
            self.catalog.delete_file(row.id)
            report.files_deleted += 1
            LOGGER.info("Removed vanished file %s from catalog", row.canonical_path)

    def _apply_changes(
        self,
        record: DirectoryRecord,
        existing: dict[str, FileRecord],
        listing: DirectoryListing,
        report: DirectoryReport,
    ) -> None:
        for entry in listing.files:
            report.files_seen += 1
            row = existing.get(entry.name)
            if row is not None and row.size == entry.size and row.modified_at == entry.modified_at:
                report.files_unchanged += 1
                continue
            try:
                fast_hash = self.hasher.fast_hash(entry.path)
            except OSError as exc:
                report.errors.append(f"{entry.path}: {exc}")
                if row is not None:
                    self.catalog.clear_hashes(row.id)
                continue
            self.catalog.upsert_file(
                record.id, entry.name, entry.path, entry.size, entry.modified_at, fast_hash
            )
            report.files_hashed += 1

    def _resolve_collisions(self, scan_pass: ScanPass, report: DirectoryReport) -> None:
        for candidate in self.catalog.collision_candidates():
            if candidate.id in scan_pass.unreadable:
                continue
            path = candidate.path
            try:
                stat = path.stat()
                if stat.st_size != candidate.size or stat.st_mtime_ns != candidate.modified_at:
                    raise OSError(f"changed on disk since it was cataloged; rescan {path.parent}")
                digest = self.hasher.full_hash(path)
            except OSError as exc:
                scan_pass.unreadable.add(candidate.id)
                report.errors.append(f"{path}: {exc}")
                continue
            self.catalog.set_full_hash(candidate.id, digest)
            report.full_hashed += 1

    def _emit(self, kind: str, *, path: Path | None = None, count: int = 0) -> None:
        if self.progress is None:
            return
        self.progress(ProgressEvent(kind=kind, path=path, count=count))  # type: ignore[arg-type]


__all__ = ["Scanner", "ScanPass"]
