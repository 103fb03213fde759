"""Data structures produced while scanning."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Literal, Optional


class DirectoryState(str, Enum):
    """Processing state of one directory during a scan pass."""

    PENDING = "pending"
    SKIPPED = "skipped"
    ENUMERATED = "enumerated"
    CHANGE_DETECTED = "change_detected"
    COLLISION_RESOLVED = "collision_resolved"
    COMPLETED = "completed"
    FAILED = "failed"


TRANSITIONS: dict[DirectoryState, frozenset[DirectoryState]] = {
    DirectoryState.PENDING: frozenset(
        {DirectoryState.SKIPPED, DirectoryState.ENUMERATED, DirectoryState.FAILED}
    ),
    DirectoryState.ENUMERATED: frozenset({DirectoryState.CHANGE_DETECTED}),
    DirectoryState.CHANGE_DETECTED: frozenset({DirectoryState.COLLISION_RESOLVED}),
    DirectoryState.COLLISION_RESOLVED: frozenset({DirectoryState.COMPLETED}),
    DirectoryState.SKIPPED: frozenset(),
    DirectoryState.COMPLETED: frozenset(),
    DirectoryState.FAILED: frozenset(),
}


@dataclass(slots=True)
class FileEntry:
    """A regular file found while enumerating a directory."""

    name: str
    path: Path
    size: int
    modified_at: int


@dataclass(slots=True)
class DirectoryListing:
    """Filtered enumeration of one directory.

    Attributes:
        names: Every file name that passed the filters, including files whose
            metadata could not be read.
        files: Files whose metadata was read successfully.
        subdirectories: Canonical paths of subdirectories that passed the filters.
        errors: File-local problems encountered while enumerating.
    """

    names: set[str] = field(default_factory=set)
    files: list[FileEntry] = field(default_factory=list)
    subdirectories: list[Path] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass(slots=True)
class DirectoryReport:
    """Outcome of processing a single directory."""

    path: Path
    state: DirectoryState = DirectoryState.PENDING
    history: list[DirectoryState] = field(default_factory=lambda: [DirectoryState.PENDING])
    enqueue: list[Path] = field(default_factory=list)
    files_seen: int = 0
    files_hashed: int = 0
    files_unchanged: int = 0
    files_deleted: int = 0
    full_hashed: int = 0
    errors: list[str] = field(default_factory=list)

    def advance(self, state: DirectoryState) -> None:
        """Move to ``state``, rejecting transitions the state machine does not allow."""
        if state not in TRANSITIONS[self.state]:
            raise ValueError(f"Illegal directory transition {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)


@dataclass(slots=True)
class ProgressEvent:
    """Signal emitted to an optional progress sink."""

    kind: Literal["directory", "files", "duplicates"]
    path: Optional[Path] = None
    count: int = 0


ProgressSink = Callable[[ProgressEvent], None]


@dataclass(slots=True)
class ScanSummary:
    """Aggregate result of a scan invocation."""

    directories_scanned: int = 0
    directories_skipped: int = 0
    directories_failed: int = 0
    files_processed: int = 0
    files_hashed: int = 0
    files_unchanged: int = 0
    files_deleted: int = 0
    full_hashes: int = 0
    duplicate_groups: int = 0
    errors: list[str] = field(default_factory=list)
    failed_roots: list[str] = field(default_factory=list)
    states: dict[str, DirectoryState] = field(default_factory=dict)

    def record(self, report: DirectoryReport) -> None:
        self.states[str(report.path)] = report.state
        if report.state is DirectoryState.COMPLETED:
            self.directories_scanned += 1
        elif report.state is DirectoryState.SKIPPED:
            self.directories_skipped += 1
        elif report.state is DirectoryState.FAILED:
            self.directories_failed += 1
        self.files_processed += report.files_seen
        self.files_hashed += report.files_hashed
        self.files_unchanged += report.files_unchanged
        self.files_deleted += report.files_deleted
        self.full_hashes += report.full_hashed
        self.errors.extend(report.errors)

    @property
    def files_errored(self) -> int:
        return len(self.errors)

    def as_dict(self) -> dict[str, Any]:
        return {
            "directories_scanned": self.directories_scanned,
            "directories_skipped": self.directories_skipped,
            "directories_failed": self.directories_failed,
            "files_processed": self.files_processed,
            "files_hashed": self.files_hashed,
            "files_unchanged": self.files_unchanged,
            "files_deleted": self.files_deleted,
            "full_hashes": self.full_hashes,
            "duplicate_groups": self.duplicate_groups,
            "errors": list(self.errors),
            "failed_roots": list(self.failed_roots),
        }


__all__ = [
    "DirectoryListing",
    "DirectoryReport",
    "DirectoryState",
    "FileEntry",
    "ProgressEvent",
    "ProgressSink",
    "ScanSummary",
    "TRANSITIONS",
]
