"""Executor applying resolved duplicate groups to disk and catalog."""

from __future__ import annotations

import logging

from fdedupe.catalog import Catalog

from .models import ExecutionReport, Resolved

LOGGER = logging.getLogger(__name__)


class DeletionExecutor:
    """Delete the non-kept members of resolved groups."""

    def __init__(self, catalog: Catalog, *, dry_run: bool = False) -> None:
        self.catalog = catalog
        self.dry_run = dry_run

    def execute(self, resolution: Resolved) -> ExecutionReport:
        """Apply ``resolution``.

        Each deleted file is unlinked first and its catalog row removed in its
        own transaction, so an interruption keeps every completed deletion.
        A failure on one file is reported and the remaining files proceed.

        Args:
            resolution: Resolved group to apply.

        Returns:
            ExecutionReport: Deleted, planned and failed paths.
        """
        report = ExecutionReport(full_hash=resolution.full_hash, dry_run=self.dry_run)
        if not self._validate(resolution, report):
            return report

        for record in resolution.delete:
            if self.dry_run:
                report.planned.append(record.canonical_path)
                continue
            try:
                record.path.unlink()
            except FileNotFoundError:
                LOGGER.info("%s already missing; dropping its catalog row", record.canonical_path)
            except OSError as exc:
                LOGGER.warning("Failed to delete %s: %s", record.canonical_path, exc)
                report.failed.append(f"{record.canonical_path}: {exc}")
                continue
            with self.catalog.transaction():
                self.catalog.delete_file(record.id)
            report.deleted.append(record.canonical_path)

        return report

    def _validate(self, resolution: Resolved, report: ExecutionReport) -> bool:
        if not resolution.keep:
            report.failed.append("No file selected to keep; group left untouched.")
            return False
        if not any(record.path.is_file() for record in resolution.keep):
            report.failed.append(
                "No kept copy is present on disk; group left untouched: "
                + ", ".join(record.canonical_path for record in resolution.keep)
            )
            return False
        return True


__all__ = ["DeletionExecutor"]
